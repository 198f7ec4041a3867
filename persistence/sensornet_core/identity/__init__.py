"""
Principal identity for the SensorNet core.

- IdentitySynchronizer: registration saga, updates, deactivation,
  authentication and credential changes
- Credential hashing helpers
"""

from .credentials import hash_credential, verify_credential
from .models import AuthenticatedPrincipal, PrincipalProfile
from .synchronizer import IdentitySynchronizer

__all__ = [
    "IdentitySynchronizer",
    "AuthenticatedPrincipal",
    "PrincipalProfile",
    "hash_credential",
    "verify_credential",
]
