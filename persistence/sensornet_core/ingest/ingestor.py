"""
Measurement ingestor.

Validates readings, authorizes the submitting principal and fans each
reading out into the measurement projections in one logged batch.

Invariants:
    - Validation and authorization complete before anything is written
    - One reading is one logged batch: readers see all projections or none
    - A batch ingest authorizes every distinct city first; a single denial
      writes nothing
    - Storage failures surface whole as StorageError, never partial counts

How to change safely:
    - Keep every write for one call inside a single execute_batch()
    - Large batches may hit the cluster's batch size limits; split them
      at the caller, not here
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any

from cassandra.util import uuid_from_time

from ..authz.evaluator import AuthorizationEvaluator
from ..config import BatchProjections, IngestConfig
from ..errors import AuthorizationError, ValidationError
from ..stores.base import ColumnStore
from .models import Reading, StoredReading, derive_type
from .policy import AuthorizationPolicy, create_policy
from .projections import measurement_tables, projection_rows

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _number(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number", field_name)
    try:
        number = float(value)
    except OverflowError:
        number = math.inf
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be finite", field_name)
    return number


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class MeasurementIngestor:
    """Writes and reads sensor readings.

    Example:
        >>> ingestor = MeasurementIngestor(columns, evaluator)
        >>> ingestor.ingest("p1", Reading("s-1", city="Rosario", temperature=21.5))
        True
    """

    def __init__(
        self,
        columns: ColumnStore,
        evaluator: AuthorizationEvaluator,
        config: IngestConfig | None = None,
        policy: AuthorizationPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.columns = columns
        self.evaluator = evaluator
        self.config = config or IngestConfig()
        self.policy = policy or create_policy(self.config, evaluator)
        self.tables = measurement_tables(self.config.reading_ttl_seconds)
        self._clock = clock

    # =========================================================================
    # Validation and authorization
    # =========================================================================

    def validate(
        self, reading: Reading, countries: dict[str, str | None] | None = None
    ) -> StoredReading:
        """Normalize a reading.

        Args:
            reading: Submitted reading
            countries: City -> country cache shared across a batch

        Raises:
            ValidationError: If a required field is missing or malformed
        """
        sensor_id = _text(reading.sensor_id)
        if sensor_id is None:
            raise ValidationError("sensor_id is required", "sensor_id")

        temperature = _number(reading.temperature, "temperature")
        humidity = _number(reading.humidity, "humidity")
        if temperature is None and humidity is None:
            raise ValidationError("temperature or humidity is required", "temperature")

        city = _text(reading.city)
        if city is None:
            raise ValidationError("city is required", "city")

        country = _text(reading.country)
        if country is None:
            country = self._country_of(city, countries)
            if country is None:
                raise ValidationError(f"country is required, {city} has none", "country")

        timestamp = reading.timestamp or self._clock()
        if not isinstance(timestamp, datetime):
            raise ValidationError("timestamp must be a datetime", "timestamp")
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        else:
            timestamp = timestamp.astimezone(timezone.utc)

        return StoredReading(
            sensor_id=sensor_id,
            ts=uuid_from_time(timestamp),
            timestamp=timestamp,
            day=timestamp.date(),
            city=city,
            country=country,
            temperature=temperature,
            humidity=humidity,
            type=_text(reading.type) or derive_type(temperature, humidity),
        )

    def _country_of(self, city: str, countries: dict[str, str | None] | None) -> str | None:
        if countries is not None and city in countries:
            return countries[city]
        country = self.evaluator.country_of(city)
        if countries is not None:
            countries[city] = country
        return country

    def _authorize(self, principal_id: str, city: str) -> None:
        if not self.policy.authorize(principal_id, city):
            logger.warning(
                f"Principal {principal_id} may not record readings for {city}",
                extra={"principal_id": principal_id, "city": city},
            )
            raise AuthorizationError(
                f"{principal_id} lacks {self.policy.permission} for {city}",
                principal_id=principal_id,
                permission=self.policy.permission,
                scope=city,
            )

    # =========================================================================
    # Writes
    # =========================================================================

    def ingest(self, principal_id: str, reading: Reading) -> bool:
        """Validate, authorize and write one reading to all projections.

        Raises:
            ValidationError: If the reading is malformed
            AuthorizationError: If the principal may not record for the city
            StorageError: If the batch fails (nothing is visible)
        """
        measurement = self.validate(reading)
        self._authorize(principal_id, measurement.city)
        self.columns.execute_batch(projection_rows(measurement, self.tables), logged=True)

        logger.debug(
            f"Ingested reading for sensor {measurement.sensor_id}",
            extra={"sensor_id": measurement.sensor_id, "city": measurement.city},
        )
        return True

    def ingest_batch(self, principal_id: str, readings: Iterable[Reading]) -> bool:
        """Write many readings in one logged batch.

        Invalid readings are dropped and logged. Every distinct city is
        authorized before anything is written.

        Returns:
            False if no valid reading remained

        Raises:
            AuthorizationError: If any city is not authorized (nothing written)
            StorageError: If the batch fails
        """
        countries: dict[str, str | None] = {}
        valid: list[StoredReading] = []
        for index, reading in enumerate(readings):
            try:
                valid.append(self.validate(reading, countries))
            except ValidationError as e:
                logger.warning(
                    f"Dropping invalid reading #{index}: {e.message}",
                    extra={"principal_id": principal_id, "field": e.field_name},
                )

        if not valid:
            logger.info("No valid readings in batch", extra={"principal_id": principal_id})
            return False

        for city in sorted({m.city for m in valid}):
            self._authorize(principal_id, city)

        sensor_only = self.config.batch_projections == BatchProjections.SENSOR
        writes = []
        for measurement in valid:
            writes.extend(projection_rows(measurement, self.tables, sensor_only=sensor_only))
        self.columns.execute_batch(writes, logged=True)

        logger.info(
            f"Ingested {len(valid)} readings",
            extra={"principal_id": principal_id, "projections": self.config.batch_projections.value},
        )
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    def get_latest(self, sensor_id: str) -> StoredReading | None:
        rows = self.columns.select(self.tables.latest, {"sensor_id": sensor_id}, limit=1)
        return StoredReading.from_row(rows[0]) if rows else None

    def get_sensor_day(
        self, sensor_id: str, day: date, limit: int | None = None
    ) -> list[StoredReading]:
        """Readings of a sensor on a day, newest first."""
        rows = self.columns.select(self.tables.by_sensor, {"sensor_id": sensor_id, "day": day}, limit)
        return [StoredReading.from_row(row) for row in rows]

    def get_city_day(self, city: str, day: date, limit: int | None = None) -> list[StoredReading]:
        rows = self.columns.select(self.tables.by_city, {"city": city, "day": day}, limit)
        return [StoredReading.from_row(row) for row in rows]

    def get_country_day(
        self, country: str, day: date, limit: int | None = None
    ) -> list[StoredReading]:
        rows = self.columns.select(self.tables.by_country, {"country": country, "day": day}, limit)
        return [StoredReading.from_row(row) for row in rows]

    def get_sensor_range(
        self,
        sensor_id: str,
        start: date,
        end: date,
        limit: int | None = None,
    ) -> list[StoredReading]:
        """Readings of a sensor between two days (inclusive), newest first.

        Walks one day partition at a time from end back to start and stops
        once limit readings are collected.

        Raises:
            ValidationError: If start is after end
        """
        if start > end:
            raise ValidationError("start must not be after end", "start")

        result: list[StoredReading] = []
        day = end
        while day >= start:
            remaining = None if limit is None else limit - len(result)
            if remaining is not None and remaining <= 0:
                break
            result.extend(self.get_sensor_day(sensor_id, day, remaining))
            day -= timedelta(days=1)
        return result
