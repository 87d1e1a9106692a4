"""
Engine: end-to-end geolocation from a query embedding

Provides:
- GeolocationEngine: search -> consensus -> confidence -> visibility gate
- a small CLI in pipeline.py to locate embeddings against a catalog file

Entry point:
    python -m engine.pipeline --config config/params.yaml --catalog data/catalog.npz --query query.npy
"""
from .engine import GeolocationEngine

__all__ = ["GeolocationEngine"]
