"""
Unit tests for the HNSW reference index
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from ann.exact import exact_search, recall_at_k
from ann.hnsw import IndexHNSW
from common.errors import EmptyCatalog, IndexNotBuilt, InvalidQuery, InvalidVector
from common.types import ReferenceRecord

DIM = 32


def make_records(n, dim=DIM, seed=0):
    rng = np.random.default_rng(seed)
    vectors = rng.normal(size=(n, dim)).astype(np.float32)
    lats = rng.uniform(-60, 70, size=n)
    lons = rng.uniform(-170, 170, size=n)
    return [
        ReferenceRecord(id=f"ref-{i}", label=f"place {i}", lat=lats[i], lon=lons[i], vector=vectors[i])
        for i in range(n)
    ]


@pytest.fixture
def records():
    return make_records(200)


@pytest.fixture
def index(records):
    idx = IndexHNSW(dimension=DIM)
    idx.build(records)
    return idx


class TestBuildAndSearch:
    """Search contract"""

    def test_self_query_returns_itself_first(self, index, records):
        """Test a catalog vector finds its own record with similarity ~1"""
        matches = index.search(records[17].vector, 5)
        assert matches[0].id == "ref-17"
        assert matches[0].similarity == pytest.approx(1.0, abs=1e-4)

    def test_results_sorted_and_bounded(self, index, records):
        """Test results are most-similar first and similarities stay in [-1, 1]"""
        matches = index.search(records[3].vector * -1.0, 20)
        assert len(matches) == 20
        sims = [m.similarity for m in matches]
        assert sims == sorted(sims, reverse=True)
        assert all(-1.0 <= s <= 1.0 for s in sims)

    def test_query_magnitude_does_not_matter(self, index, records):
        """Test scaling a query does not change the ranking"""
        q = records[5].vector + 0.1
        a = [m.id for m in index.search(q, 10)]
        b = [m.id for m in index.search(q * 37.0, 10)]
        assert a == b

    def test_k_larger_than_catalog(self):
        """Test k beyond the catalog size returns every record"""
        small = make_records(5)
        idx = IndexHNSW(dimension=DIM)
        idx.build(small)
        assert len(idx.search(small[0].vector, 50)) == 5
        assert idx.size == 5

    def test_ties_keep_insertion_order(self):
        """Test identical vectors come back in catalog order"""
        small = make_records(6)
        twin = ReferenceRecord(id="twin", label="twin", lat=0.0, lon=0.0, vector=small[2].vector.copy())
        small.append(twin)
        idx = IndexHNSW(dimension=DIM)
        idx.build(small)
        ids = [m.id for m in idx.search(small[2].vector, 2)]
        assert ids == ["ref-2", "twin"]

    def test_matches_carry_record_fields(self, index, records):
        m = index.search(records[0].vector, 1)[0]
        assert (m.label, m.lat, m.lon) == (records[0].label, records[0].lat, records[0].lon)

    def test_ef_search_is_adjustable(self, index, records):
        """Test lowering ef_search still returns k results"""
        index.set_ef_search(8)
        assert len(index.search(records[0].vector, 20)) == 20
        with pytest.raises(ValueError):
            index.set_ef_search(0)


class TestErrors:
    """Invalid inputs are rejected"""

    def test_search_before_build(self):
        with pytest.raises(IndexNotBuilt):
            IndexHNSW(dimension=DIM).search(np.ones(DIM), 3)

    def test_empty_catalog(self):
        with pytest.raises(EmptyCatalog):
            IndexHNSW(dimension=DIM).build([])

    def test_wrong_dimension_query(self, index):
        with pytest.raises(InvalidVector):
            index.search(np.ones(DIM + 1), 3)

    def test_non_finite_query(self, index):
        q = np.ones(DIM)
        q[4] = np.nan
        with pytest.raises(InvalidVector):
            index.search(q, 3)

    def test_non_positive_k(self, index, records):
        with pytest.raises(InvalidQuery):
            index.search(records[0].vector, 0)

    def test_catalog_vector_wrong_dimension(self):
        bad = make_records(3) + [ReferenceRecord(id="bad", label="bad", lat=0, lon=0, vector=np.ones(DIM - 1))]
        with pytest.raises(InvalidVector):
            IndexHNSW(dimension=DIM).build(bad)

    def test_failed_build_keeps_previous_index(self, index, records):
        """Test a rejected rebuild leaves the built index searchable"""
        with pytest.raises(EmptyCatalog):
            index.build([])
        assert index.ready
        assert index.search(records[1].vector, 1)[0].id == "ref-1"


class TestPersistence:
    """save() / load()"""

    def test_round_trip(self, index, records, tmp_path):
        path = tmp_path / "idx" / "hnsw.faiss"
        index.save(path)
        restored = IndexHNSW(dimension=DIM)
        assert restored.load(path, records)
        q = records[42].vector
        assert [m.id for m in restored.search(q, 5)] == [m.id for m in index.search(q, 5)]

    def test_size_mismatch_rejected(self, index, records, tmp_path):
        path = tmp_path / "hnsw.faiss"
        index.save(path)
        restored = IndexHNSW(dimension=DIM)
        assert not restored.load(path, records[:-1])
        assert not restored.ready

    def test_dimension_mismatch_rejected(self, index, records, tmp_path):
        path = tmp_path / "hnsw.faiss"
        index.save(path)
        assert not IndexHNSW(dimension=DIM * 2).load(path, records)

    def test_missing_file(self, records, tmp_path):
        assert not IndexHNSW(dimension=DIM).load(tmp_path / "nope.faiss", records)

    def test_save_before_build(self, tmp_path):
        with pytest.raises(IndexNotBuilt):
            IndexHNSW(dimension=DIM).save(tmp_path / "x.faiss")


class TestRecall:
    """ANN quality against brute force"""

    def test_recall_at_10(self):
        recs = make_records(500, seed=3)
        idx = IndexHNSW(dimension=DIM)
        idx.build(recs)
        queries = np.random.default_rng(9).normal(size=(20, DIM))
        assert recall_at_k(idx, recs, queries, 10) >= 0.9

    def test_exact_search_contract(self, records):
        matches = exact_search(records, records[8].vector, 4)
        assert len(matches) == 4
        assert matches[0].id == "ref-8"
        assert matches[0].similarity == pytest.approx(1.0, abs=1e-5)

    def test_exact_search_errors(self, records):
        with pytest.raises(EmptyCatalog):
            exact_search([], np.ones(DIM), 3)
        with pytest.raises(InvalidQuery):
            exact_search(records, np.ones(DIM), 0)
