"""
Application entry point — composition root and server launcher.

This is the ONLY place where concrete adapters are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog for structured logging
  2. Load and validate configuration from environment
  3. Create concrete adapters (pooled HTTP client, CA clients, storage, CSR generator)
  4. Wire the CertificateService and the lease sweep
  5. Start Uvicorn serving cert_broker.asgi:app
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
import structlog
import uvicorn
from railway.result import Result

from cert_broker.adapters.csr_generator import CryptographyCsrGenerator
from cert_broker.adapters.http_client import (
    HttpEnrollmentClient,
    HttpRevocationClient,
    create_http_client,
)
from cert_broker.adapters.storage import (
    InMemoryKeyValueStorage,
    PsycopgKeyValueStorage,
    StorageRoleStore,
)
from cert_broker.config import AppSettings, StorageSettings
from cert_broker.domain.ports import KeyValueStorage
from cert_broker.leases import sweep_expired_leases
from cert_broker.revocation import InstanceState, RevocationCoordinator
from cert_broker.service import CertificateService

VERSION = "0.1.0"


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured, human-readable console logging.

    Unknown level names fall back to INFO.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass(frozen=True)
class Application:
    """Everything the ASGI layer needs from the composition root."""

    service: CertificateService
    storage: KeyValueStorage
    state: InstanceState
    http_client: httpx.Client

    def sweep(self) -> Result[int]:
        return sweep_expired_leases(self.service, self.storage, datetime.now(UTC))

    def close(self) -> None:
        self.state.taint()
        self.http_client.close()


def create_storage(settings: StorageSettings) -> KeyValueStorage:
    """
    PostgreSQL storage when a DSN is configured, in-memory otherwise.

    Raises RuntimeError when the PostgreSQL table can't be created, so a
    broken database stops startup instead of failing every request.
    """
    log = structlog.get_logger()
    if settings.dsn is None:
        log.warning("storage.in_memory", reason="STORAGE__DSN not set; records are not persisted")
        return InMemoryKeyValueStorage()

    storage = PsycopgKeyValueStorage(
        dsn=settings.dsn.get_secret_value(),
        connect_timeout=settings.connect_timeout_seconds,
        statement_timeout=settings.statement_timeout_seconds,
    )
    schema = storage.ensure_schema()
    if schema.is_failure():
        raise RuntimeError(str(schema.error()))
    return storage


def create_application(
    settings: AppSettings,
    storage: KeyValueStorage | None = None,
) -> Application:
    """
    Instantiate all concrete adapters and wire the service.

    `storage` overrides the configured backend (used by tests).
    """
    state = InstanceState()
    storage = storage if storage is not None else create_storage(settings.storage)
    http_client = create_http_client(
        base_url=settings.ca.url,
        username=settings.ca.username,
        password=settings.ca.password.get_secret_value(),
        timeout=settings.ca.timeout_seconds,
        keepalive_expiry=settings.ca.keepalive_expiry_seconds,
        max_connections=settings.ca.max_connections,
    )
    revocations = RevocationCoordinator(
        storage=storage,
        client=HttpRevocationClient(http_client, settings.ca.api_path),
        state=state,
    )
    service = CertificateService(
        roles=StorageRoleStore(storage),
        storage=storage,
        csr_generator=CryptographyCsrGenerator(),
        enrollment_client=HttpEnrollmentClient(http_client, settings.ca.api_path),
        revocations=revocations,
        defaults=settings.ca.issuance_defaults(),
    )
    return Application(service=service, storage=storage, state=state, http_client=http_client)


def main() -> None:
    """Validate configuration and serve the API."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info(
        "app.starting",
        version=VERSION,
        log_level=settings.log_level,
        ca_url=settings.ca.url,
        lease_sweep=settings.leases.enabled,
        lease_cron=settings.leases.cron,
    )

    try:
        uvicorn.run(
            "cert_broker.asgi:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")


if __name__ == "__main__":
    main()
