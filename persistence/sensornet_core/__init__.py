"""
SensorNet core - consistency layer for a sensor network's persistence.

This package keeps three independently transactional stores consistent:
- MongoDB: principal identity (source of truth)
- Neo4j: roles, permissions, geography and sensor topology
- Cassandra: sensor readings in four read-optimized projections

Architecture:
    ┌──────────────────────┐   insert    ┌──────────────┐
    │ IdentitySynchronizer │────────────▶│   MongoDB    │
    │   (saga + rollback)  │────┐        └──────────────┘
    └──────────────────────┘    │ MERGE  ┌──────────────┐
    ┌──────────────────────┐    └───────▶│    Neo4j     │
    │ AuthorizationEvaluator│◀───────────│   (graph)    │
    └──────────┬───────────┘  traverse   └──────────────┘
               │ authorize
    ┌──────────▼───────────┐ LOGGED batch ┌─────────────┐
    │  MeasurementIngestor │─────────────▶│  Cassandra  │
    └──────────────────────┘              └─────────────┘

Invariants:
    - The graph never mirrors a principal absent from MongoDB
    - Inactive or unknown principals hold no permissions
    - A reading is visible in all four projections or in none

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
