"""
SensorNet core test suite.

This package contains:
- unit/: Unit tests (in-memory stores, mocked drivers)
- integration/: Cross-component flows over in-memory stores
"""
