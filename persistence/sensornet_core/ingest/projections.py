"""
Measurement projections.

One reading is written to four tables, each shaped for one query:

    measurements_by_sensor_day   PRIMARY KEY ((sensor_id, day), ts)          ts DESC
    measurements_by_city_day     PRIMARY KEY ((city, day), ts, sensor_id)    ts DESC
    measurements_by_country_day  PRIMARY KEY ((country, day), ts, city, sensor_id)
    last_measurement_by_sensor   PRIMARY KEY (sensor_id)

Invariants:
    - All projections of a reading share the same ts and values
    - History tables expire after the reading TTL; the latest table never does
    - The latest table is overwritten unconditionally

How to change safely:
    - Column or key changes need a matching keyspace migration
    - A new projection must be added to projection_rows() so it is written
      in the same batch as the others
"""

from __future__ import annotations

from dataclasses import dataclass

from ..stores.base import RowWrite, TableSpec
from .models import StoredReading

VALUE_COLUMNS = ("temperature", "humidity", "type")


@dataclass(frozen=True)
class MeasurementTables:
    """The four projection tables for a given TTL."""

    by_sensor: TableSpec
    by_city: TableSpec
    by_country: TableSpec
    latest: TableSpec

    @property
    def all(self) -> tuple[TableSpec, ...]:
        return (self.by_sensor, self.by_city, self.by_country, self.latest)


def measurement_tables(ttl_seconds: int | None) -> MeasurementTables:
    ttl = ttl_seconds or None
    return MeasurementTables(
        by_sensor=TableSpec(
            name="measurements_by_sensor_day",
            partition_keys=("sensor_id", "day"),
            clustering_keys=(("ts", "DESC"),),
            columns=("sensor_id", "day", "ts", *VALUE_COLUMNS, "city", "country"),
            ttl_seconds=ttl,
        ),
        by_city=TableSpec(
            name="measurements_by_city_day",
            partition_keys=("city", "day"),
            clustering_keys=(("ts", "DESC"), ("sensor_id", "ASC")),
            columns=("city", "day", "ts", "sensor_id", *VALUE_COLUMNS, "country"),
            ttl_seconds=ttl,
        ),
        by_country=TableSpec(
            name="measurements_by_country_day",
            partition_keys=("country", "day"),
            clustering_keys=(("ts", "DESC"), ("city", "ASC"), ("sensor_id", "ASC")),
            columns=("country", "day", "ts", "city", "sensor_id", *VALUE_COLUMNS),
            ttl_seconds=ttl,
        ),
        latest=TableSpec(
            name="last_measurement_by_sensor",
            partition_keys=("sensor_id",),
            clustering_keys=(),
            columns=("sensor_id", "ts", *VALUE_COLUMNS, "city", "country"),
        ),
    )


def _row(table: TableSpec, reading: StoredReading) -> RowWrite:
    source = {
        "sensor_id": reading.sensor_id,
        "day": reading.day,
        "ts": reading.ts,
        "temperature": reading.temperature,
        "humidity": reading.humidity,
        "type": reading.type,
        "city": reading.city,
        "country": reading.country,
    }
    return RowWrite(table, {column: source[column] for column in table.columns})


def projection_rows(
    reading: StoredReading,
    tables: MeasurementTables,
    sensor_only: bool = False,
) -> list[RowWrite]:
    """Row writes for a reading: all four projections, or the per-sensor one."""
    if sensor_only:
        return [_row(tables.by_sensor, reading)]
    return [_row(table, reading) for table in tables.all]
