"""
Geolocation consensus engine test suite

Structure:
- unit/: ANN index, continent checks, clustering, scoring, gate, config
- integration/: end-to-end engine and CLI runs on synthetic catalogs
"""
