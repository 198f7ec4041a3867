"""
Principal views returned by the identity synchronizer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class PrincipalProfile:
    """Public fields of a principal record (no credential hash)."""

    id: str
    name: str
    email: str
    status: str
    org_unit: str | None = None
    registered_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> PrincipalProfile:
        return cls(
            id=document["id"],
            name=document["name"],
            email=document["email"],
            status=document["status"],
            org_unit=document.get("org_unit"),
            registered_at=document.get("registered_at"),
            updated_at=document.get("updated_at"),
        )


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Result of a successful authentication.

    Attributes:
        id: Principal id
        name: Display name
        email: Login email
        org_unit: Organisational unit
        permissions: Effective permission ids at login time
        logged_in_at: UTC login time
    """

    id: str
    name: str
    email: str
    org_unit: str | None
    permissions: frozenset[str] = field(default_factory=frozenset)
    logged_in_at: datetime | None = None

    def can(self, permission_id: str) -> bool:
        return permission_id in self.permissions
