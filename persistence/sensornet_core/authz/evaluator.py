"""
Authorization evaluator.

Answers permission questions by traversing the authorization graph:
- Effective permission set of a principal
- Single permission check (one existence query)
- Permission check scoped to a city's geography

Invariants:
    - Read-only: never writes to any store
    - Only principals whose mirrored status is active hold permissions
    - When a document store is configured, the principal must also exist
      and be active there, so a lagging mirror cannot grant access
    - Unknown, inactive and edge-less principals get the empty set, never
      an error
    - Country coverage implies every city in the country; city coverage
      implies nothing about the country

How to change safely:
    - Add grant variants to GrantPath, not new queries here
    - Keep denial as the outcome of every store failure
"""

from __future__ import annotations

import logging

from ..errors import StorageError
from ..stores.base import DocumentStore, GraphStore, NodeRef
from .model import (
    ACTIVE,
    CITY_COUNTRY,
    PERMISSION,
    SCOPE_PATTERNS,
    city_ref,
    grant_patterns,
    principal_ref,
)

logger = logging.getLogger(__name__)

_ACTIVE_FILTER = {"status": ACTIVE}


class AuthorizationEvaluator:
    """Graph-based permission evaluation.

    Example:
        >>> evaluator = AuthorizationEvaluator(graph, documents)
        >>> evaluator.has_permission_in_scope("p1", "record-measurement", "Rosario")
        True
    """

    def __init__(self, graph: GraphStore, documents: DocumentStore | None = None) -> None:
        self.graph = graph
        self.documents = documents
        self._grant_patterns = grant_patterns()

    def _is_active(self, principal_id: str) -> bool:
        if self.documents is None:
            return True
        document = self.documents.find_by_id(principal_id)
        return document is not None and document.get("status") == ACTIVE

    def effective_permissions(self, principal_id: str) -> frozenset[str]:
        """All permission ids the principal holds through any grant path."""
        try:
            if not self._is_active(principal_id):
                return frozenset()
            nodes = self.graph.reachable(
                principal_ref(principal_id),
                self._grant_patterns,
                start_filter=_ACTIVE_FILTER,
            )
        except StorageError as e:
            logger.error(
                f"Permission lookup failed for {principal_id}: {e}",
                extra={"principal_id": principal_id, "store": e.store},
            )
            return frozenset()

        return frozenset(node.get("id") for node in nodes if node.get("id") is not None)

    def has_permission(self, principal_id: str, permission_id: str) -> bool:
        try:
            if not self._is_active(principal_id):
                return False
            return self.graph.path_exists(
                principal_ref(principal_id),
                self._grant_patterns,
                NodeRef(PERMISSION, permission_id),
                start_filter=_ACTIVE_FILTER,
            )
        except StorageError as e:
            logger.error(
                f"Permission check failed for {principal_id}: {e}",
                extra={"principal_id": principal_id, "permission": permission_id},
            )
            return False

    def has_permission_in_scope(
        self, principal_id: str, permission_id: str, city_name: str
    ) -> bool:
        """Whether the principal holds the permission and covers the city.

        Coverage is a COVERS_CITY edge to the city or a COVERS_COUNTRY edge
        to the country that contains it.
        """
        if not self.has_permission(principal_id, permission_id):
            return False
        try:
            return self.graph.path_exists(
                principal_ref(principal_id),
                SCOPE_PATTERNS,
                city_ref(city_name),
                start_filter=_ACTIVE_FILTER,
            )
        except StorageError as e:
            logger.error(
                f"Scope check failed for {principal_id}: {e}",
                extra={"principal_id": principal_id, "city": city_name},
            )
            return False

    def country_of(self, city_name: str) -> str | None:
        """Country containing the city, or None if the city is unknown."""
        nodes = self.graph.reachable(city_ref(city_name), (CITY_COUNTRY,))
        return nodes[0].get("name") if nodes else None
