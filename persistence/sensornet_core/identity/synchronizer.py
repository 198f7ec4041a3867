"""
Identity synchronizer.

Keeps principal identity consistent between the document store (source of
truth) and its mirror in the authorization graph.

Registration is a two-step saga:
    1. Insert the principal document (status=active)
    2. MERGE the identity projection into the graph
If step 2 fails, any partially applied mirror node is cleared (best effort)
and step 1 is compensated by deleting the document; the caller gets
SyncError. If the compensation fails too, the caller gets
CompensationError carrying the orphaned id.

Invariants:
    - The document write always precedes the graph mirror
    - The graph never holds a principal id missing from the document store
    - The mirror is an idempotent upsert; repeating it is a no-op
    - Updates and deactivations are not rolled back when the mirror fails;
      the failure is logged and resync_principal() repairs the graph
    - Credential hashes never reach the graph or the logs

How to change safely:
    - Graph cleanup during compensation must never mask the document delete
    - Mirrored properties must stay free of timestamps or the mirror
      stops being idempotent
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from ..authz.evaluator import AuthorizationEvaluator
from ..authz.model import ACTIVE, HAS_ROLE, INACTIVE, ROLE, principal_ref
from ..config import IdentityConfig
from ..errors import CompensationError, DuplicateError, StorageError, SyncError, ValidationError
from ..stores.base import DocumentStore, GraphStore, NodeRef
from .credentials import hash_credential, verify_credential
from .models import AuthenticatedPrincipal, PrincipalProfile

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "email", "org_unit"})
MIRRORED_FIELDS = ("email", "name", "status", "org_unit")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field_name)
    return value.strip()


class IdentitySynchronizer:
    """Creates, updates and deactivates principals across both stores.

    Example:
        >>> sync = IdentitySynchronizer(documents, graph, evaluator)
        >>> pid = sync.register_principal("Ana", "ana@x.com", "s3cret", "systems")
        >>> sync.deactivate(pid)
        True
    """

    def __init__(
        self,
        documents: DocumentStore,
        graph: GraphStore,
        evaluator: AuthorizationEvaluator | None = None,
        config: IdentityConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.documents = documents
        self.graph = graph
        self.evaluator = evaluator
        self.config = config or IdentityConfig()
        self._clock = clock

    # =========================================================================
    # Registration
    # =========================================================================

    def register_principal(
        self,
        name: str,
        email: str,
        credential: str,
        org_unit: str | None = None,
    ) -> str:
        """Register a principal in both stores.

        Returns:
            The new principal id

        Raises:
            ValidationError: If name, email or credential is missing
            DuplicateError: If the email is already registered
            SyncError: If the graph mirror failed and the document was removed
            CompensationError: If the document could not be removed either
        """
        name = _require_text(name, "name")
        email = _require_text(email, "email")
        if not isinstance(credential, str) or not credential:
            raise ValidationError("credential is required", "credential")

        if self.documents.find_one("email", email) is not None:
            raise DuplicateError(f"Email already registered: {email}", "email", email)

        principal_id = str(uuid.uuid4())
        now = self._clock()
        document = {
            "id": principal_id,
            "name": name,
            "email": email,
            "credential_hash": hash_credential(credential, self.config.hash_iterations),
            "status": ACTIVE,
            "org_unit": org_unit,
            "registered_at": now,
            "updated_at": now,
        }
        self.documents.insert(document)

        try:
            self._mirror(document)
        except StorageError as e:
            logger.error(
                f"Graph mirror failed for {principal_id}, compensating: {e}",
                extra={"principal_id": principal_id},
            )
            self._compensate(principal_id, e)
            raise SyncError(
                f"Registration of {email} rolled back: graph mirror failed ({e.message})",
                principal_id,
            ) from e

        self._assign_default_role(principal_id, org_unit)
        logger.info(
            f"Registered principal {principal_id}",
            extra={"principal_id": principal_id, "org_unit": org_unit},
        )
        return principal_id

    def _compensate(self, principal_id: str, cause: StorageError) -> None:
        """Undo a registration whose mirror failed, or raise CompensationError."""
        self._unmirror(principal_id)

        attempts = self.config.compensation_attempts
        last_error: Exception = cause
        for attempt in range(1, attempts + 1):
            try:
                deleted = self.documents.delete(principal_id)
            except StorageError as e:
                last_error = e
                logger.warning(
                    f"Compensating delete attempt {attempt}/{attempts} failed: {e}",
                    extra={"principal_id": principal_id},
                )
                continue
            if not deleted:
                # Already gone: the id is in neither store
                logger.warning(
                    f"Compensating delete found no document for {principal_id}",
                    extra={"principal_id": principal_id},
                )
            logger.info(
                f"Rolled back registration of {principal_id}",
                extra={"principal_id": principal_id},
            )
            return

        logger.error(
            f"Compensation failed, orphaned principal {principal_id} needs manual removal",
            extra={"principal_id": principal_id, "attempts": attempts},
        )
        raise CompensationError(
            f"Could not roll back registration of {principal_id}",
            principal_id,
            attempts,
        ) from last_error

    def _unmirror(self, principal_id: str) -> None:
        # A failed MERGE may still have been applied server-side
        try:
            self.graph.delete_node(principal_ref(principal_id))
        except StorageError as e:
            logger.warning(
                f"Could not clear graph mirror of {principal_id}: {e}",
                extra={"principal_id": principal_id},
            )

    def _mirror(self, document: dict[str, Any]) -> None:
        props = {key: document.get(key) for key in MIRRORED_FIELDS}
        self.graph.merge_node(principal_ref(document["id"]), props)

    def _assign_default_role(self, principal_id: str, org_unit: str | None) -> None:
        role_id = self.config.role_for(org_unit)
        if not role_id:
            return
        try:
            assigned = self.graph.merge_edge(HAS_ROLE, principal_ref(principal_id), NodeRef(ROLE, role_id))
        except StorageError as e:
            logger.warning(
                f"Default role {role_id} not assigned to {principal_id}: {e}",
                extra={"principal_id": principal_id, "role_id": role_id},
            )
            return
        if not assigned:
            logger.warning(
                f"Default role {role_id} does not exist",
                extra={"principal_id": principal_id, "role_id": role_id},
            )

    # =========================================================================
    # Updates
    # =========================================================================

    def update_principal(self, principal_id: str, fields: dict[str, Any]) -> bool:
        """Update name, email or org unit and re-mirror.

        Returns:
            False if the principal does not exist

        Raises:
            ValidationError: For unknown fields or blank name/email
            DuplicateError: If the email belongs to another principal
        """
        if not fields:
            raise ValidationError("No fields to update")
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}", sorted(unknown)[0])

        updates = dict(fields)
        for key in ("name", "email"):
            if key in updates:
                updates[key] = _require_text(updates[key], key)

        current = self.documents.find_by_id(principal_id)
        if current is None:
            return False

        email = updates.get("email")
        if email is not None and email != current["email"]:
            owner = self.documents.find_one("email", email)
            if owner is not None and owner["id"] != principal_id:
                raise DuplicateError(f"Email already registered: {email}", "email", email)

        updates["updated_at"] = self._clock()
        if not self.documents.update(principal_id, updates):
            return False

        self._mirror_after_write({**current, **updates}, "update")
        return True

    def deactivate(self, principal_id: str) -> bool:
        """Set status=inactive. Returns False if the principal does not exist."""
        current = self.documents.find_by_id(principal_id)
        if current is None:
            return False

        updates = {"status": INACTIVE, "updated_at": self._clock()}
        if not self.documents.update(principal_id, updates):
            return False

        self._mirror_after_write({**current, **updates}, "deactivate")
        logger.info(f"Deactivated principal {principal_id}", extra={"principal_id": principal_id})
        return True

    def resync_principal(self, principal_id: str) -> bool:
        """Re-mirror a principal from the document store.

        Repairs the graph after a logged mirror failure. Returns False if the
        principal does not exist.

        Raises:
            StorageError: If the mirror fails again
        """
        document = self.documents.find_by_id(principal_id)
        if document is None:
            return False
        self._mirror(document)
        return True

    def _mirror_after_write(self, document: dict[str, Any], operation: str) -> None:
        try:
            self._mirror(document)
        except StorageError as e:
            logger.error(
                f"Graph mirror failed after {operation} of {document['id']}: {e}",
                extra={"principal_id": document["id"], "operation": operation},
            )

    # =========================================================================
    # Credentials
    # =========================================================================

    def authenticate(self, email: str, credential: str) -> AuthenticatedPrincipal | None:
        """Check a credential. None for unknown, inactive or wrong credential."""
        document = self.documents.find_one("email", email)
        if document is None or document.get("status") != ACTIVE:
            return None
        if not verify_credential(credential, document.get("credential_hash", "")):
            logger.info("Authentication failed", extra={"principal_id": document["id"]})
            return None

        permissions = frozenset()
        if self.evaluator is not None:
            permissions = self.evaluator.effective_permissions(document["id"])

        return AuthenticatedPrincipal(
            id=document["id"],
            name=document["name"],
            email=document["email"],
            org_unit=document.get("org_unit"),
            permissions=permissions,
            logged_in_at=self._clock(),
        )

    def get_profile(self, principal_id: str) -> PrincipalProfile | None:
        document = self.documents.find_by_id(principal_id)
        return PrincipalProfile.from_document(document) if document else None

    def change_credential(self, principal_id: str, current: str, new: str) -> bool:
        """Replace the credential after verifying the current one.

        Returns:
            False if the principal does not exist or current does not match
        """
        if not isinstance(new, str) or not new:
            raise ValidationError("new credential is required", "credential")
        document = self.documents.find_by_id(principal_id)
        if document is None:
            return False
        if not verify_credential(current, document.get("credential_hash", "")):
            return False

        changed = self.documents.update(
            principal_id,
            {
                "credential_hash": hash_credential(new, self.config.hash_iterations),
                "updated_at": self._clock(),
            },
        )
        if changed:
            logger.info(f"Credential changed for {principal_id}", extra={"principal_id": principal_id})
        return changed
