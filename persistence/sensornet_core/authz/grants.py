"""
Grant management for the authorization graph.

Writes the grant and coverage edges the evaluator reads, and serves the
directory queries built on the same edges.

Invariants:
    - Every write requires the acting principal to hold the admin permission
    - Grants target principals that exist and are active in the document store
    - Edge writes are idempotent (MERGE); revoking a missing edge is a no-op

How to change safely:
    - New grant kinds should reuse _link/_unlink so the admin gate applies
    - Keep read queries free of the admin gate
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import AuthorizationError, ValidationError
from ..stores.base import Direction, DocumentStore, GraphStore, Hop, NodeRef, PathPattern
from .evaluator import AuthorizationEvaluator
from .model import (
    ACTIVE,
    CAN_EXECUTE,
    CITY,
    COVERS_CITY,
    COVERS_COUNTRY,
    GROUP,
    HAS_ROLE,
    IN_CITY,
    IN_COUNTRY,
    MEMBER_OF,
    PERMISSION,
    PRINCIPAL,
    ROLE,
    SENSOR,
    city_ref,
    country_ref,
    principal_ref,
)

logger = logging.getLogger(__name__)

_MEMBERS = PathPattern((Hop((MEMBER_OF,), PRINCIPAL, Direction.IN),))
_CITY_COVERERS = PathPattern((Hop((COVERS_CITY,), PRINCIPAL, Direction.IN),))
_COUNTRY_SENSORS = PathPattern(
    (
        Hop((IN_COUNTRY,), CITY, Direction.IN),
        Hop((IN_CITY,), SENSOR, Direction.IN),
    )
)
_HAS_ROLE = PathPattern((Hop((HAS_ROLE,), ROLE),))


class GrantManager:
    """Admin-gated grant writes and directory reads.

    Attributes:
        admin_permission: Permission the acting principal must hold
    """

    def __init__(
        self,
        graph: GraphStore,
        documents: DocumentStore,
        evaluator: AuthorizationEvaluator,
        admin_permission: str = "admin-principals",
    ) -> None:
        self.graph = graph
        self.documents = documents
        self.evaluator = evaluator
        self.admin_permission = admin_permission

    def _require_admin(self, admin_id: str) -> None:
        if not self.evaluator.has_permission(admin_id, self.admin_permission):
            raise AuthorizationError(
                f"{admin_id} may not manage grants",
                principal_id=admin_id,
                permission=self.admin_permission,
            )

    def _require_active(self, principal_id: str) -> None:
        document = self.documents.find_by_id(principal_id)
        if document is None:
            raise ValidationError(f"Unknown principal: {principal_id}", "principal_id")
        if document.get("status") != ACTIVE:
            raise ValidationError(f"Principal is not active: {principal_id}", "principal_id")

    def _link(self, admin_id: str, principal_id: str, edge_type: str, target: NodeRef) -> None:
        self._require_admin(admin_id)
        self._require_active(principal_id)
        if not self.graph.merge_edge(edge_type, principal_ref(principal_id), target):
            raise ValidationError(
                f"Unknown {target.label.lower()} or unmirrored principal: {target.value}",
                target.label.lower(),
            )
        logger.info(
            f"Granted {edge_type} {target.label}:{target.value} to {principal_id}",
            extra={"admin_id": admin_id, "principal_id": principal_id, "edge": edge_type},
        )

    def _unlink(self, admin_id: str, principal_id: str, edge_type: str, target: NodeRef) -> bool:
        self._require_admin(admin_id)
        removed = self.graph.delete_edge(edge_type, principal_ref(principal_id), target)
        if removed:
            logger.info(
                f"Revoked {edge_type} {target.label}:{target.value} from {principal_id}",
                extra={"admin_id": admin_id, "principal_id": principal_id, "edge": edge_type},
            )
        return removed

    # Grants

    def assign_role(self, admin_id: str, principal_id: str, role_id: str) -> None:
        self._link(admin_id, principal_id, HAS_ROLE, NodeRef(ROLE, role_id))

    def revoke_role(self, admin_id: str, principal_id: str, role_id: str) -> bool:
        return self._unlink(admin_id, principal_id, HAS_ROLE, NodeRef(ROLE, role_id))

    def add_to_group(self, admin_id: str, principal_id: str, group_id: str) -> None:
        self._link(admin_id, principal_id, MEMBER_OF, NodeRef(GROUP, group_id))

    def remove_from_group(self, admin_id: str, principal_id: str, group_id: str) -> bool:
        return self._unlink(admin_id, principal_id, MEMBER_OF, NodeRef(GROUP, group_id))

    def grant_permission(self, admin_id: str, principal_id: str, permission_id: str) -> None:
        """Grant a permission directly, independent of roles and groups."""
        self._link(admin_id, principal_id, CAN_EXECUTE, NodeRef(PERMISSION, permission_id))

    def revoke_permission(self, admin_id: str, principal_id: str, permission_id: str) -> bool:
        return self._unlink(admin_id, principal_id, CAN_EXECUTE, NodeRef(PERMISSION, permission_id))

    # Coverage

    def cover_city(self, admin_id: str, principal_id: str, city_name: str) -> None:
        self._link(admin_id, principal_id, COVERS_CITY, city_ref(city_name))

    def cover_country(self, admin_id: str, principal_id: str, country_name: str) -> None:
        self._link(admin_id, principal_id, COVERS_COUNTRY, country_ref(country_name))

    # Directory reads

    def group_members(self, group_id: str) -> list[dict[str, Any]]:
        """Active principals that are MEMBER_OF the group."""
        nodes = self.graph.reachable(NodeRef(GROUP, group_id), (_MEMBERS,))
        return [node.props for node in nodes if node.get("status") == ACTIVE]

    def principals_covering_city(
        self, city_name: str, role_name: str | None = None
    ) -> list[dict[str, Any]]:
        """Active principals with a direct COVERS_CITY edge to the city.

        Args:
            city_name: City to look up
            role_name: Only principals holding a role with this name
        """
        nodes = self.graph.reachable(city_ref(city_name), (_CITY_COVERERS,))
        result = []
        for node in nodes:
            if node.get("status") != ACTIVE:
                continue
            if role_name is not None and not self.graph.path_exists(
                principal_ref(node.get("id")),
                (_HAS_ROLE,),
                NodeRef(ROLE, role_name, key="name"),
            ):
                continue
            result.append(node.props)
        return result

    def sensors_in_country(self, country_name: str) -> list[dict[str, Any]]:
        nodes = self.graph.reachable(country_ref(country_name), (_COUNTRY_SENSORS,))
        return [node.props for node in nodes]
