"""
Shared fixtures for SensorNet core tests.

All fixtures use the in-memory stores; no database is required.

The seeded graph:
    Permissions: pt_prom, pt_maxmin, record-measurement, admin-principals
    Roles:       role_tech ("technician")  -> record-measurement, pt_prom
                 role_admin ("admin")      -> admin-principals
    Groups:      grp_analysts ("analysts") -> pt_maxmin
    Geography:   Buenos Aires, Córdoba, Rosario -> Argentina
                 Santiago -> Chile
    Sensors:     S1 in Buenos Aires, S2 in Córdoba, S3 in Santiago
"""

from datetime import datetime, timezone

import pytest

from persistence.sensornet_core.authz.evaluator import AuthorizationEvaluator
from persistence.sensornet_core.authz.model import (
    CAN_EXECUTE,
    CITY,
    COUNTRY,
    GROUP,
    IN_CITY,
    IN_COUNTRY,
    PERMISSION,
    ROLE,
    SENSOR,
    principal_ref,
)
from persistence.sensornet_core.stores.base import NodeRef, Stores
from persistence.sensornet_core.stores.memory import (
    InMemoryColumnStore,
    InMemoryDocumentStore,
    InMemoryGraphStore,
)

ROLES = {
    "role_tech": ("technician", ["record-measurement", "pt_prom"]),
    "role_admin": ("admin", ["admin-principals"]),
}
GROUPS = {"grp_analysts": ("analysts", ["pt_maxmin"])}
PERMISSIONS = ["pt_prom", "pt_maxmin", "record-measurement", "admin-principals"]
CITIES = {
    "Buenos Aires": "Argentina",
    "Córdoba": "Argentina",
    "Rosario": "Argentina",
    "Santiago": "Chile",
}
SENSORS = {"S1": "Buenos Aires", "S2": "Córdoba", "S3": "Santiago"}


def seed_graph(graph):
    """Create roles, groups, permissions, geography and sensors."""
    for permission_id in PERMISSIONS:
        graph.merge_node(NodeRef(PERMISSION, permission_id), {"name": permission_id})
    for label, entries in ((ROLE, ROLES), (GROUP, GROUPS)):
        for node_id, (name, permissions) in entries.items():
            graph.merge_node(NodeRef(label, node_id), {"name": name})
            for permission_id in permissions:
                graph.merge_edge(CAN_EXECUTE, NodeRef(label, node_id), NodeRef(PERMISSION, permission_id))
    for city, country in CITIES.items():
        graph.merge_node(NodeRef(COUNTRY, country, key="name"), {})
        graph.merge_node(NodeRef(CITY, city, key="name"), {})
        graph.merge_edge(IN_COUNTRY, NodeRef(CITY, city, key="name"), NodeRef(COUNTRY, country, key="name"))
    for sensor_id, city in SENSORS.items():
        graph.merge_node(NodeRef(SENSOR, sensor_id), {"name": f"sensor {sensor_id}"})
        graph.merge_edge(IN_CITY, NodeRef(SENSOR, sensor_id), NodeRef(CITY, city, key="name"))


def add_principal(documents, graph, principal_id, status="active", email=None, org_unit=None):
    """Insert a principal document and its graph mirror directly."""
    email = email or f"{principal_id}@example.com"
    documents.insert(
        {
            "id": principal_id,
            "name": principal_id.title(),
            "email": email,
            "status": status,
            "org_unit": org_unit,
            "registered_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "updated_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
    )
    graph.merge_node(
        principal_ref(principal_id),
        {"email": email, "name": principal_id.title(), "status": status, "org_unit": org_unit},
    )
    return principal_id


@pytest.fixture
def documents():
    """Fresh in-memory document store."""
    store = InMemoryDocumentStore()
    store.connect()
    return store


@pytest.fixture
def graph():
    """In-memory graph store with the seeded authorization graph."""
    store = InMemoryGraphStore()
    store.connect()
    seed_graph(store)
    return store


@pytest.fixture
def columns():
    """Fresh in-memory column store."""
    store = InMemoryColumnStore()
    store.connect()
    return store


@pytest.fixture
def stores(documents, graph, columns):
    return Stores(documents=documents, graph=graph, columns=columns)


@pytest.fixture
def evaluator(graph, documents):
    return AuthorizationEvaluator(graph, documents)
