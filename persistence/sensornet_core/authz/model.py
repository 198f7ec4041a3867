"""
Graph vocabulary for authorization.

Node labels, relationship types and the grant/scope traversals shared by
the evaluator, the grant manager and the identity synchronizer.

Invariants:
    - Principal, Role, Group, Permission and Sensor nodes are keyed by "id"
    - City and Country nodes are keyed by "name"
    - Every grant path ends at a Permission node

How to change safely:
    - A new grant variant is a new GrantPath member; the evaluator picks it
      up through grant_patterns() without further changes
    - Renaming a label or relationship type requires a graph migration
"""

from __future__ import annotations

from enum import Enum

from ..stores.base import Direction, Hop, NodeRef, PathPattern

# Labels
PRINCIPAL = "Principal"
ROLE = "Role"
GROUP = "Group"
PERMISSION = "Permission"
CITY = "City"
COUNTRY = "Country"
SENSOR = "Sensor"

# Relationship types
HAS_ROLE = "HAS_ROLE"
MEMBER_OF = "MEMBER_OF"
CAN_EXECUTE = "CAN_EXECUTE"
COVERS_CITY = "COVERS_CITY"
COVERS_COUNTRY = "COVERS_COUNTRY"
IN_COUNTRY = "IN_COUNTRY"
IN_CITY = "IN_CITY"

# Principal status
ACTIVE = "active"
INACTIVE = "inactive"


def principal_ref(principal_id: str) -> NodeRef:
    return NodeRef(PRINCIPAL, principal_id)


def city_ref(name: str) -> NodeRef:
    return NodeRef(CITY, name, key="name")


def country_ref(name: str) -> NodeRef:
    return NodeRef(COUNTRY, name, key="name")


class GrantPath(Enum):
    """Ways a principal can hold a permission.

    ROLE:   (Principal)-[:HAS_ROLE]->(Role)-[:CAN_EXECUTE]->(Permission)
    GROUP:  (Principal)-[:MEMBER_OF]->(Group)-[:CAN_EXECUTE]->(Permission)
    DIRECT: (Principal)-[:CAN_EXECUTE]->(Permission)
    """

    ROLE = (HAS_ROLE, ROLE)
    GROUP = (MEMBER_OF, GROUP)
    DIRECT = (CAN_EXECUTE, None)

    @property
    def pattern(self) -> PathPattern:
        edge_type, via = self.value
        grant = Hop((CAN_EXECUTE,), PERMISSION)
        if via is None:
            return PathPattern((grant,))
        return PathPattern((Hop((edge_type,), via), grant))


def grant_patterns() -> tuple[PathPattern, ...]:
    return tuple(path.pattern for path in GrantPath)


# A principal covers a city directly, or covers the country containing it
SCOPE_PATTERNS = (
    PathPattern((Hop((COVERS_CITY,), CITY),)),
    PathPattern(
        (
            Hop((COVERS_COUNTRY,), COUNTRY),
            Hop((IN_COUNTRY,), CITY, Direction.IN),
        )
    ),
)

CITY_COUNTRY = PathPattern((Hop((IN_COUNTRY,), COUNTRY),))
