"""
SensorNet core - lifecycle container and entry point.

Core wires the three store clients and the services built on them:
- IdentitySynchronizer (document store + graph mirror)
- AuthorizationEvaluator and GrantManager (graph)
- MeasurementIngestor (column store)

Usage:
    python -m persistence.sensornet_core.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Services receive their stores explicitly; there are no globals
    - Stores are opened by open() and released by close(), nothing else
    - close() releases every store even when one of them fails

How to change safely:
    - New services are constructed in __init__ from self.stores
    - Test the open/close sequence against the memory backend
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter

from .authz import AuthorizationEvaluator, GrantManager
from .config import CoreConfig
from .identity import IdentitySynchronizer
from .ingest import MeasurementIngestor
from .stores import Stores, create_stores

logger = logging.getLogger(__name__)


def setup_logging(config: CoreConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Core configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("neo4j").setLevel(logging.WARNING)
    logging.getLogger("cassandra").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)


class Core:
    """SensorNet core orchestrator.

    Attributes:
        config: Core configuration
        stores: Document, graph and column store clients
        evaluator: Authorization evaluator
        grants: Grant manager
        identity: Identity synchronizer
        ingestor: Measurement ingestor

    Example:
        >>> with Core(config) as core:
        ...     pid = core.identity.register_principal("Ana", "ana@x.com", "pw")
    """

    def __init__(self, config: CoreConfig | None = None, stores: Stores | None = None) -> None:
        """Initialize the core.

        Args:
            config: Core configuration (loaded from env if not provided)
            stores: Pre-built stores (built from config if not provided)
        """
        self.config = config or CoreConfig.from_env()
        self.stores = stores or create_stores(self.config)
        self._open = False

        self.evaluator = AuthorizationEvaluator(self.stores.graph, self.stores.documents)
        self.grants = GrantManager(
            self.stores.graph,
            self.stores.documents,
            self.evaluator,
            admin_permission=self.config.authz.admin_permission,
        )
        self.identity = IdentitySynchronizer(
            self.stores.documents,
            self.stores.graph,
            self.evaluator,
            config=self.config.identity,
        )
        self.ingestor = MeasurementIngestor(
            self.stores.columns,
            self.evaluator,
            config=self.config.ingest,
        )

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        """Connect all stores.

        Raises:
            StorageError: If any store is unreachable (connected ones are closed)
        """
        if self._open:
            return

        logger.info("Opening SensorNet core")
        try:
            self.stores.connect()
            ensure_indexes = getattr(self.stores.documents, "ensure_indexes", None)
            if ensure_indexes is not None:
                ensure_indexes()
        except Exception:
            logger.error("Failed to open stores", exc_info=True)
            try:
                self.stores.close()
            except Exception as close_error:
                logger.warning(f"Error closing stores after failed open: {close_error}")
            raise

        self._open = True
        logger.info(
            "SensorNet core ready",
            extra={
                "store_backend": self.config.store_backend.value,
                "auth_mode": self.config.ingest.auth_mode.value,
            },
        )

    def close(self) -> None:
        """Close all stores."""
        if not self._open:
            return

        logger.info("Closing SensorNet core")
        self._open = False
        self.stores.close()
        logger.info("SensorNet core closed")

    def __enter__(self) -> Core:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def main() -> None:
    """Main entry point: check configuration and store connectivity."""
    try:
        config = CoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    try:
        with Core(config):
            pass
    except Exception as e:
        logger.error(f"SensorNet core failed to start: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
