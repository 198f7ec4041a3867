"""
Configuration management for the SensorNet core.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for store credentials
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep authorization-mode and batch-projection defaults conservative
      (strict auth, per-sensor batch projection)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported store backends."""

    LIVE = "live"
    MEMORY = "memory"


class AuthMode(Enum):
    """Authorization mode used when ingesting readings.

    STRICT checks the permission and the principal's geographic coverage of
    the reading's city. RELAXED checks the permission only.
    """

    STRICT = "strict"
    RELAXED = "relaxed"


class BatchProjections(Enum):
    """Projections written by batch ingestion."""

    SENSOR = "sensor"
    ALL = "all"


@dataclass(frozen=True)
class MongoConfig:
    """Document store (MongoDB) configuration.

    Attributes:
        uri: Connection URI
        database: Database name
        collection: Collection holding principals
        timeout_ms: Server selection timeout in milliseconds
    """

    uri: str = "mongodb://localhost:27017"
    database: str = "sensornet"
    collection: str = "principals"
    timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> MongoConfig:
        """Load configuration from environment variables."""
        return cls(
            uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            database=os.getenv("MONGO_DATABASE", "sensornet"),
            collection=os.getenv("MONGO_COLLECTION", "principals"),
            timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class Neo4jConfig:
    """Graph store (Neo4j) configuration.

    Attributes:
        uri: Bolt URI
        user: Username
        password: Password
        database: Database name
    """

    uri: str = "bolt://localhost:7687"
    user: str = "neo4j"
    password: str = "neo4j"
    database: str = "neo4j"

    @classmethod
    def from_env(cls) -> Neo4jConfig:
        """Load configuration from environment variables."""
        return cls(
            uri=os.getenv("NEO4J_URI", "bolt://localhost:7687"),
            user=os.getenv("NEO4J_USER", "neo4j"),
            password=os.getenv("NEO4J_PASSWORD", "neo4j"),
            database=os.getenv("NEO4J_DATABASE", "neo4j"),
        )


@dataclass(frozen=True)
class CassandraConfig:
    """Column store (Cassandra) configuration.

    Attributes:
        hosts: Contact points
        port: Native protocol port
        keyspace: Keyspace holding the measurement tables
        username: Username (optional)
        password: Password (optional)
        local_dc: Local datacenter for load balancing
    """

    hosts: tuple[str, ...] = ("localhost",)
    port: int = 9042
    keyspace: str = "sensornet"
    username: str | None = None
    password: str | None = None
    local_dc: str = "datacenter1"

    @classmethod
    def from_env(cls) -> CassandraConfig:
        """Load configuration from environment variables."""
        hosts = os.getenv("CASSANDRA_HOSTS", "localhost")
        return cls(
            hosts=tuple(h.strip() for h in hosts.split(",") if h.strip()),
            port=int(os.getenv("CASSANDRA_PORT", "9042")),
            keyspace=os.getenv("CASSANDRA_KEYSPACE", "sensornet"),
            username=os.getenv("CASSANDRA_USERNAME") or None,
            password=os.getenv("CASSANDRA_PASSWORD") or None,
            local_dc=os.getenv("CASSANDRA_LOCAL_DC", "datacenter1"),
        )


def _parse_role_map(raw: str) -> dict[str, str]:
    """Parse "unit:role,unit:role" into a mapping keyed by lowercased unit."""
    mapping: dict[str, str] = {}
    for pair in raw.split(","):
        if not pair.strip():
            continue
        if ":" not in pair:
            raise ValueError(f"Invalid org unit role mapping: {pair!r}")
        unit, role = pair.split(":", 1)
        mapping[unit.strip().lower()] = role.strip()
    return mapping


@dataclass(frozen=True)
class IdentityConfig:
    """Identity synchronizer configuration.

    Attributes:
        compensation_attempts: How many times the compensating delete is tried
        default_role: Role assigned when no org unit mapping matches ("" disables)
        org_unit_roles: Lowercased org unit -> role id
        hash_iterations: PBKDF2 iterations for credential hashes
    """

    compensation_attempts: int = 1
    default_role: str = ""
    org_unit_roles: dict[str, str] = field(default_factory=dict)
    hash_iterations: int = 260000

    @classmethod
    def from_env(cls) -> IdentityConfig:
        """Load configuration from environment variables."""
        return cls(
            compensation_attempts=int(os.getenv("IDENTITY_COMPENSATION_ATTEMPTS", "1")),
            default_role=os.getenv("IDENTITY_DEFAULT_ROLE", ""),
            org_unit_roles=_parse_role_map(os.getenv("IDENTITY_ORG_UNIT_ROLES", "")),
            hash_iterations=int(os.getenv("IDENTITY_HASH_ITERATIONS", "260000")),
        )

    def role_for(self, org_unit: str | None) -> str | None:
        """Default role for an org unit, or None when nothing applies."""
        if org_unit and org_unit.lower() in self.org_unit_roles:
            return self.org_unit_roles[org_unit.lower()]
        return self.default_role or None


@dataclass(frozen=True)
class AuthzConfig:
    """Authorization configuration.

    Attributes:
        admin_permission: Permission required to manage grants
    """

    admin_permission: str = "admin-principals"

    @classmethod
    def from_env(cls) -> AuthzConfig:
        """Load configuration from environment variables."""
        return cls(admin_permission=os.getenv("AUTHZ_ADMIN_PERMISSION", "admin-principals"))


@dataclass(frozen=True)
class IngestConfig:
    """Measurement ingestion configuration.

    Attributes:
        auth_mode: Strict (geography-scoped) or relaxed authorization
        permission: Permission required to record readings
        batch_projections: Projections written by ingest_batch
        reading_ttl_seconds: TTL applied to history projections
    """

    auth_mode: AuthMode = AuthMode.STRICT
    permission: str = "record-measurement"
    batch_projections: BatchProjections = BatchProjections.SENSOR
    reading_ttl_seconds: int = 15552000  # 180 days

    @classmethod
    def from_env(cls) -> IngestConfig:
        """Load configuration from environment variables."""
        mode_str = os.getenv("INGEST_AUTH_MODE", "strict").lower()
        try:
            auth_mode = AuthMode(mode_str)
        except ValueError:
            raise ValueError(
                f"Invalid INGEST_AUTH_MODE '{mode_str}'. Must be one of: strict, relaxed"
            )

        projections_str = os.getenv("INGEST_BATCH_PROJECTIONS", "sensor").lower()
        try:
            batch_projections = BatchProjections(projections_str)
        except ValueError:
            raise ValueError(
                f"Invalid INGEST_BATCH_PROJECTIONS '{projections_str}'. Must be one of: sensor, all"
            )

        return cls(
            auth_mode=auth_mode,
            permission=os.getenv("INGEST_PERMISSION", "record-measurement"),
            batch_projections=batch_projections,
            reading_ttl_seconds=int(os.getenv("INGEST_READING_TTL_SECONDS", "15552000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class CoreConfig:
    """Complete core configuration.

    Attributes:
        store_backend: Live drivers or in-memory stores
        mongo: Document store configuration
        neo4j: Graph store configuration
        cassandra: Column store configuration
        identity: Identity synchronizer configuration
        authz: Authorization configuration
        ingest: Ingestion configuration
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.LIVE
    mongo: MongoConfig = field(default_factory=MongoConfig)
    neo4j: Neo4jConfig = field(default_factory=Neo4jConfig)
    cassandra: CassandraConfig = field(default_factory=CassandraConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    authz: AuthzConfig = field(default_factory=AuthzConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> CoreConfig:
        """Load complete configuration from environment variables.

        Returns:
            CoreConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "live").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: live, memory")

        config = cls(
            store_backend=store_backend,
            mongo=MongoConfig.from_env(),
            neo4j=Neo4jConfig.from_env(),
            cassandra=CassandraConfig.from_env(),
            identity=IdentityConfig.from_env(),
            authz=AuthzConfig.from_env(),
            ingest=IngestConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.LIVE:
            if not self.mongo.uri:
                raise ValueError("MONGO_URI is required when STORE_BACKEND=live")
            if not self.neo4j.uri:
                raise ValueError("NEO4J_URI is required when STORE_BACKEND=live")
            if not self.cassandra.hosts:
                raise ValueError("CASSANDRA_HOSTS is required when STORE_BACKEND=live")

        if not 1 <= self.identity.compensation_attempts <= 5:
            raise ValueError("IDENTITY_COMPENSATION_ATTEMPTS must be between 1 and 5")

        if self.ingest.reading_ttl_seconds < 0:
            raise ValueError("INGEST_READING_TTL_SECONDS must not be negative")

        if not self.ingest.permission:
            raise ValueError("INGEST_PERMISSION must not be empty")

        if self.store_backend == StoreBackend.LIVE and self.neo4j.password == "neo4j":
            logger.warning("NEO4J_PASSWORD is the driver default; set an explicit password")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Core configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "mongo_database": self.mongo.database,
                "neo4j_uri": self.neo4j.uri,
                "cassandra_hosts": ",".join(self.cassandra.hosts),
                "cassandra_keyspace": self.cassandra.keyspace,
                "auth_mode": self.ingest.auth_mode.value,
                "batch_projections": self.ingest.batch_projections.value,
                "log_level": self.observability.log_level,
            },
        )
