"""
Unit tests for MeasurementIngestor.

Tests cover:
- Validation and normalization of readings
- Strict and relaxed authorization
- Four-projection atomic writes
- Batch ingestion (dropping, city-level authorization, projections mode)
- Projection reads
"""

import math
from datetime import date, datetime, timedelta, timezone

import pytest

from persistence.sensornet_core.authz.model import (
    COVERS_CITY,
    COVERS_COUNTRY,
    HAS_ROLE,
    ROLE,
    city_ref,
    country_ref,
    principal_ref,
)
from persistence.sensornet_core.config import AuthMode, BatchProjections, IngestConfig
from persistence.sensornet_core.errors import AuthorizationError, StorageError, ValidationError
from persistence.sensornet_core.ingest.ingestor import MeasurementIngestor
from persistence.sensornet_core.ingest.models import Reading
from persistence.sensornet_core.ingest.policy import GeoScopedPolicy, PermissionOnlyPolicy
from persistence.sensornet_core.stores.base import NodeRef
from tests.conftest import add_principal

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
TABLES = (
    "measurements_by_sensor_day",
    "measurements_by_city_day",
    "measurements_by_country_day",
    "last_measurement_by_sensor",
)


@pytest.fixture
def tech(graph, documents):
    """Technician covering all of Argentina."""
    add_principal(documents, graph, "tech")
    graph.merge_edge(HAS_ROLE, principal_ref("tech"), NodeRef(ROLE, "role_tech"))
    graph.merge_edge(COVERS_COUNTRY, principal_ref("tech"), country_ref("Argentina"))
    return "tech"


@pytest.fixture
def roamer(graph, documents):
    """Technician with the permission but no coverage."""
    add_principal(documents, graph, "roamer")
    graph.merge_edge(HAS_ROLE, principal_ref("roamer"), NodeRef(ROLE, "role_tech"))
    return "roamer"


def make_ingestor(columns, evaluator, **config):
    return MeasurementIngestor(columns, evaluator, IngestConfig(**config), clock=lambda: FIXED_NOW)


@pytest.fixture
def ingestor(columns, evaluator):
    return make_ingestor(columns, evaluator)


class TestValidation:
    """Tests for validate()."""

    def test_defaults(self, ingestor):
        reading = ingestor.validate(Reading("S1", city="Buenos Aires", temperature=23.5))

        assert reading.timestamp == FIXED_NOW
        assert reading.day == date(2024, 6, 1)
        assert reading.country == "Argentina"
        assert reading.type == "temperature"
        assert reading.humidity is None

    @pytest.mark.parametrize(
        "temperature, humidity, expected",
        [(20.0, None, "temperature"), (None, 55.0, "humidity"), (20.0, 55.0, "combined")],
    )
    def test_type_derived(self, ingestor, temperature, humidity, expected):
        reading = ingestor.validate(
            Reading("S1", city="Rosario", temperature=temperature, humidity=humidity)
        )
        assert reading.type == expected

    def test_explicit_type_kept(self, ingestor):
        reading = ingestor.validate(Reading("S1", city="Rosario", temperature=1, type="calibration"))
        assert reading.type == "calibration"
        assert reading.temperature == 1.0

    def test_timestamp_normalized_to_utc(self, ingestor):
        local = datetime(2024, 6, 1, 22, 30, tzinfo=timezone(timedelta(hours=-3)))

        reading = ingestor.validate(Reading("S1", city="Rosario", humidity=40, timestamp=local))

        assert reading.timestamp == datetime(2024, 6, 2, 1, 30, tzinfo=timezone.utc)
        assert reading.day == date(2024, 6, 2)

    def test_naive_timestamp_taken_as_utc(self, ingestor):
        reading = ingestor.validate(
            Reading("S1", city="Rosario", humidity=40, timestamp=datetime(2024, 1, 2, 3, 4))
        )
        assert reading.timestamp.tzinfo == timezone.utc

    @pytest.mark.parametrize(
        "reading, field_name",
        [
            (Reading("", city="Rosario", temperature=1.0), "sensor_id"),
            (Reading("S1", city="Rosario"), "temperature"),
            (Reading("S1", temperature=1.0), "city"),
            (Reading("S1", city="Atlantis", temperature=1.0), "country"),
            (Reading("S1", city="Rosario", temperature=math.nan), "temperature"),
            (Reading("S1", city="Rosario", humidity=math.inf), "humidity"),
            (Reading("S1", city="Rosario", temperature=10**400), "temperature"),
            (Reading("S1", city="Rosario", temperature="20"), "temperature"),
            (Reading("S1", city="Rosario", temperature=True), "temperature"),
            (Reading("S1", city="Rosario", temperature=1.0, timestamp="2024-01-01"), "timestamp"),
        ],
    )
    def test_invalid(self, ingestor, reading, field_name):
        with pytest.raises(ValidationError) as exc_info:
            ingestor.validate(reading)
        assert exc_info.value.field_name == field_name

    def test_unknown_city_with_explicit_country(self, ingestor):
        reading = ingestor.validate(Reading("S9", city="Atlantis", country="Ocean", temperature=1.0))
        assert reading.country == "Ocean"


class TestIngest:
    """Tests for single-reading ingest()."""

    def test_scenario_d_latest_round_trip(self, ingestor, tech):
        assert ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=23.5)) is True

        latest = ingestor.get_latest("S1")

        assert latest.temperature == 23.5
        assert latest.city == "Buenos Aires"
        assert latest.country == "Argentina"
        assert latest.timestamp == FIXED_NOW

    def test_writes_four_projections_in_one_logged_batch(self, ingestor, columns, tech):
        ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=23.5, humidity=60.0))

        assert columns.batches == [(True, 4)]
        for table in TABLES:
            assert columns.row_count(table) == 1

    def test_projections_agree(self, ingestor, tech):
        ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=23.5, humidity=60.0))
        day = FIXED_NOW.date()

        views = [
            ingestor.get_latest("S1"),
            ingestor.get_sensor_day("S1", day)[0],
            ingestor.get_city_day("Buenos Aires", day)[0],
            ingestor.get_country_day("Argentina", day)[0],
        ]

        assert len({(v.ts, v.temperature, v.humidity, v.type, v.city, v.country) for v in views}) == 1

    def test_failed_batch_writes_nothing(self, ingestor, columns, tech):
        columns.inject_failure("execute_batch")

        with pytest.raises(StorageError):
            ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=23.5))

        for table in TABLES:
            assert columns.row_count(table) == 0
        assert ingestor.get_latest("S1") is None

    def test_strict_requires_coverage(self, ingestor, columns, roamer):
        with pytest.raises(AuthorizationError) as exc_info:
            ingestor.ingest(roamer, Reading("S1", city="Buenos Aires", temperature=23.5))

        assert exc_info.value.scope == "Buenos Aires"
        assert exc_info.value.permission == "record-measurement"
        assert columns.batches == []

    def test_strict_rejects_city_outside_country(self, ingestor, tech):
        with pytest.raises(AuthorizationError):
            ingestor.ingest(tech, Reading("S3", city="Santiago", temperature=10.0))

    def test_city_coverage_is_enough(self, ingestor, graph, roamer):
        graph.merge_edge(COVERS_CITY, principal_ref(roamer), city_ref("Rosario"))
        assert ingestor.ingest(roamer, Reading("S4", city="Rosario", temperature=10.0))

    def test_relaxed_ignores_geography(self, columns, evaluator, roamer):
        ingestor = make_ingestor(columns, evaluator, auth_mode=AuthMode.RELAXED)

        assert isinstance(ingestor.policy, PermissionOnlyPolicy)
        assert ingestor.ingest(roamer, Reading("S3", city="Santiago", temperature=10.0))

    def test_relaxed_still_requires_permission(self, columns, evaluator, graph, documents):
        add_principal(documents, graph, "nobody")
        ingestor = make_ingestor(columns, evaluator, auth_mode=AuthMode.RELAXED)

        with pytest.raises(AuthorizationError):
            ingestor.ingest("nobody", Reading("S3", city="Santiago", temperature=10.0))

    def test_inactive_principal_denied(self, ingestor, documents, tech):
        documents.update(tech, {"status": "inactive"})
        with pytest.raises(AuthorizationError):
            ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=23.5))

    def test_default_policy_is_strict(self, ingestor):
        assert isinstance(ingestor.policy, GeoScopedPolicy)

    def test_validation_before_authorization(self, ingestor, roamer):
        with pytest.raises(ValidationError):
            ingestor.ingest(roamer, Reading("S1", city="Buenos Aires"))

    def test_latest_overwritten(self, ingestor, tech):
        ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=20.0))
        later = FIXED_NOW + timedelta(minutes=5)
        ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=21.0, timestamp=later))

        assert ingestor.get_latest("S1").temperature == 21.0
        assert [r.temperature for r in ingestor.get_sensor_day("S1", FIXED_NOW.date())] == [21.0, 20.0]


class TestIngestBatch:
    """Tests for ingest_batch()."""

    def test_drops_invalid_readings(self, ingestor, columns, tech):
        readings = [
            Reading("S1", city="Buenos Aires", temperature=20.0),
            Reading("S1", city="Buenos Aires"),
            Reading("S2", city="Córdoba", humidity=math.nan),
            Reading("S3", city="Rosario", temperature=10**400),
            Reading("S2", city="Córdoba", humidity=50.0),
        ]

        assert ingestor.ingest_batch(tech, readings) is True

        assert columns.batches == [(True, 2)]
        assert columns.row_count("measurements_by_sensor_day") == 2

    def test_nothing_valid_returns_false(self, ingestor, columns, tech):
        assert ingestor.ingest_batch(tech, [Reading("S1", city="Buenos Aires")]) is False
        assert ingestor.ingest_batch(tech, []) is False
        assert columns.batches == []

    def test_sensor_projection_only_by_default(self, ingestor, columns, tech):
        ingestor.ingest_batch(tech, [Reading("S1", city="Buenos Aires", temperature=20.0)])

        assert columns.row_count("measurements_by_sensor_day") == 1
        for table in TABLES[1:]:
            assert columns.row_count(table) == 0

    def test_all_projections_when_configured(self, columns, evaluator, tech):
        ingestor = make_ingestor(columns, evaluator, batch_projections=BatchProjections.ALL)

        ingestor.ingest_batch(
            tech,
            [
                Reading("S1", city="Buenos Aires", temperature=20.0),
                Reading("S2", city="Córdoba", temperature=18.0),
            ],
        )

        assert columns.batches == [(True, 8)]
        for table in TABLES:
            assert columns.row_count(table) == 2

    def test_one_unauthorized_city_writes_nothing(self, ingestor, columns, tech):
        readings = [
            Reading("S1", city="Buenos Aires", temperature=20.0),
            Reading("S3", city="Santiago", temperature=12.0),
        ]

        with pytest.raises(AuthorizationError) as exc_info:
            ingestor.ingest_batch(tech, readings)

        assert exc_info.value.scope == "Santiago"
        assert columns.batches == []

    def test_authorizes_each_city_once(self, ingestor, graph, tech):
        readings = [Reading("S1", city="Buenos Aires", temperature=float(i)) for i in range(5)]

        ingestor.ingest_batch(tech, readings)

        # One permission check and one scope check for the single city
        assert graph.call_count("path_exists") == 2

    def test_country_resolved_once_per_city(self, ingestor, graph, tech):
        readings = [Reading("S1", city="Buenos Aires", temperature=float(i)) for i in range(5)]

        ingestor.ingest_batch(tech, readings)

        assert graph.call_count("reachable") == 1


class TestReads:
    """Tests for projection reads."""

    @pytest.fixture
    def loaded(self, columns, evaluator, tech):
        ingestor = make_ingestor(columns, evaluator)
        start = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
        for day in range(3):
            for hour in range(2):
                ts = start + timedelta(days=day, hours=hour)
                ingestor.ingest(tech, Reading("S1", city="Buenos Aires", temperature=day * 10 + hour, timestamp=ts))
        ingestor.ingest(tech, Reading("S2", city="Córdoba", temperature=5.0, timestamp=start))
        return ingestor

    def test_sensor_day_newest_first(self, loaded):
        readings = loaded.get_sensor_day("S1", date(2024, 6, 2))
        assert [r.temperature for r in readings] == [11.0, 10.0]

    def test_sensor_day_limit(self, loaded):
        assert len(loaded.get_sensor_day("S1", date(2024, 6, 2), limit=1)) == 1

    def test_city_day(self, loaded):
        readings = loaded.get_city_day("Córdoba", date(2024, 6, 1))
        assert [(r.sensor_id, r.temperature) for r in readings] == [("S2", 5.0)]

    def test_country_day(self, loaded):
        readings = loaded.get_country_day("Argentina", date(2024, 6, 1))
        assert {r.sensor_id for r in readings} == {"S1", "S2"}
        assert readings[0].timestamp >= readings[-1].timestamp

    def test_sensor_range(self, loaded):
        readings = loaded.get_sensor_range("S1", date(2024, 6, 1), date(2024, 6, 3))
        assert [r.temperature for r in readings] == [21.0, 20.0, 11.0, 10.0, 1.0, 0.0]

    def test_sensor_range_limit(self, loaded):
        readings = loaded.get_sensor_range("S1", date(2024, 5, 25), date(2024, 6, 3), limit=3)
        assert [r.temperature for r in readings] == [21.0, 20.0, 11.0]

    def test_sensor_range_rejects_inverted_bounds(self, loaded):
        with pytest.raises(ValidationError):
            loaded.get_sensor_range("S1", date(2024, 6, 3), date(2024, 6, 1))

    def test_latest_unknown_sensor(self, loaded):
        assert loaded.get_latest("S404") is None
