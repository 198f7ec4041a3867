"""
Graph-based authorization for the SensorNet core.

- AuthorizationEvaluator: read-only permission and scope checks
- GrantManager: admin-gated grant writes and directory reads
- GrantPath: the ways a principal can hold a permission
"""

from .evaluator import AuthorizationEvaluator
from .grants import GrantManager
from .model import GrantPath, grant_patterns

__all__ = [
    "AuthorizationEvaluator",
    "GrantManager",
    "GrantPath",
    "grant_patterns",
]
