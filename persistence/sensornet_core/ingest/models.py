"""
Reading types for measurement ingestion.

Reading is what callers submit; StoredReading is a validated reading as it
is written to, and read back from, the measurement projections.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from cassandra.util import datetime_from_uuid1

TEMPERATURE = "temperature"
HUMIDITY = "humidity"
COMBINED = "combined"


def derive_type(temperature: float | None, humidity: float | None) -> str:
    """Reading type implied by which values are present."""
    if temperature is not None and humidity is not None:
        return COMBINED
    if temperature is not None:
        return TEMPERATURE
    return HUMIDITY


@dataclass
class Reading:
    """A sensor reading as submitted.

    Attributes:
        sensor_id: Sensor identifier
        city: City the sensor is in (required)
        country: Country of the city (resolved from the graph when absent)
        temperature: Temperature value
        humidity: Humidity value
        timestamp: When the reading was taken (ingestion time when absent)
        type: Reading type (derived from the values when absent)
    """

    sensor_id: str
    city: str | None = None
    country: str | None = None
    temperature: float | None = None
    humidity: float | None = None
    timestamp: datetime | None = None
    type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reading:
        return cls(
            sensor_id=data.get("sensor_id"),
            city=data.get("city"),
            country=data.get("country"),
            temperature=data.get("temperature"),
            humidity=data.get("humidity"),
            timestamp=data.get("timestamp"),
            type=data.get("type"),
        )


@dataclass(frozen=True)
class StoredReading:
    """A validated, immutable reading.

    Attributes:
        sensor_id: Sensor identifier
        ts: Time-based UUID derived from timestamp (clustering key)
        timestamp: UTC time of the reading
        day: UTC day of the reading (partition key)
        city: City
        country: Country
        temperature: Temperature value, if measured
        humidity: Humidity value, if measured
        type: Reading type
    """

    sensor_id: str
    ts: uuid.UUID
    timestamp: datetime
    day: date
    city: str
    country: str
    temperature: float | None
    humidity: float | None
    type: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> StoredReading:
        """Build from a projection row (any of the four tables)."""
        ts = row["ts"]
        timestamp = datetime_from_uuid1(ts).replace(tzinfo=timezone.utc)
        day = row.get("day")
        if day is None:
            day = timestamp.date()
        elif not isinstance(day, date):
            # cassandra.util.Date
            day = day.date()
        return cls(
            sensor_id=row["sensor_id"],
            ts=ts,
            timestamp=timestamp,
            day=day,
            city=row["city"],
            country=row["country"],
            temperature=row.get("temperature"),
            humidity=row.get("humidity"),
            type=row["type"],
        )
