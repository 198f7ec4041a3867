"""
Measurement ingestion for the SensorNet core.

- MeasurementIngestor: validated, authorized fan-out writes and reads
- Authorization policies (strict geo-scoped, relaxed permission-only)
- Projection table definitions
"""

from .ingestor import MeasurementIngestor
from .models import COMBINED, HUMIDITY, TEMPERATURE, Reading, StoredReading, derive_type
from .policy import AuthorizationPolicy, GeoScopedPolicy, PermissionOnlyPolicy, create_policy
from .projections import MeasurementTables, measurement_tables, projection_rows

__all__ = [
    "MeasurementIngestor",
    "Reading",
    "StoredReading",
    "derive_type",
    "TEMPERATURE",
    "HUMIDITY",
    "COMBINED",
    "AuthorizationPolicy",
    "GeoScopedPolicy",
    "PermissionOnlyPolicy",
    "create_policy",
    "MeasurementTables",
    "measurement_tables",
    "projection_rows",
]
