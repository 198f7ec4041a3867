"""
Authorization policies for ingestion.

Invariants:
    - A policy only answers yes or no; the ingestor raises the error
    - Both policies deny inactive and unknown principals

How to change safely:
    - New modes need an AuthMode member and a branch in create_policy()
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from ..authz.evaluator import AuthorizationEvaluator
from ..config import AuthMode, IngestConfig


@runtime_checkable
class AuthorizationPolicy(Protocol):
    """Decides whether a principal may record readings for a city."""

    permission: str

    @abstractmethod
    def authorize(self, principal_id: str, city: str) -> bool:
        ...


class GeoScopedPolicy:
    """Requires the permission and geographic coverage of the city."""

    mode = AuthMode.STRICT

    def __init__(self, evaluator: AuthorizationEvaluator, permission: str) -> None:
        self.evaluator = evaluator
        self.permission = permission

    def authorize(self, principal_id: str, city: str) -> bool:
        return self.evaluator.has_permission_in_scope(principal_id, self.permission, city)


class PermissionOnlyPolicy:
    """Requires the permission; geography is ignored."""

    mode = AuthMode.RELAXED

    def __init__(self, evaluator: AuthorizationEvaluator, permission: str) -> None:
        self.evaluator = evaluator
        self.permission = permission

    def authorize(self, principal_id: str, city: str) -> bool:
        return self.evaluator.has_permission(principal_id, self.permission)


def create_policy(config: IngestConfig, evaluator: AuthorizationEvaluator) -> AuthorizationPolicy:
    """Build the policy for the configured auth mode.

    Raises:
        ValueError: If the mode is not supported
    """
    if config.auth_mode == AuthMode.STRICT:
        return GeoScopedPolicy(evaluator, config.permission)
    elif config.auth_mode == AuthMode.RELAXED:
        return PermissionOnlyPolicy(evaluator, config.permission)
    else:
        raise ValueError(f"Unsupported auth mode: {config.auth_mode}")
