"""
FastAPI + Uvicorn ASGI application.

Serves the certificate operations over HTTP and runs the lease-expiry
sweep in a background scheduler.

Architecture:
  - FastAPI: routing and request parsing only; every handler delegates to
    CertificateService and turns the Result into a response exactly once
  - APScheduler: BackgroundScheduler running the lease sweep
  - Shutdown: the instance is tainted first, so revocations still in
    flight become no-ops, then the scheduler and HTTP pool are closed

Entry point for production: uvicorn cert_broker.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, BeforeValidator, Field
from railway import ErrorCode, FailureDescription
from railway.http_support import build_fastapi_response
from railway.result import Result, Success

from cert_broker.config import AppSettings
from cert_broker.domain.models import (
    Found,
    IssueRequest,
    KeyType,
    NoOp,
    NotFound,
    Revoked,
    Role,
    SignRequest,
)
from cert_broker.main import VERSION, Application, configure_structlog, create_application
from cert_broker.scheduler import create_scheduler
from cert_broker.service import CertificateService

# ─────────────────────── Global State ───────────────────────
# Set during app startup; tests assign them directly.

_application: Application | None = None
_scheduler: BackgroundScheduler | None = None
_error_message: str | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Startup: load settings, wire adapters, start the lease sweep.
    Shutdown: taint the instance, stop the scheduler, close the HTTP pool.
    """
    global _application, _scheduler, _error_message

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)

    try:
        _application = create_application(settings)
    except Exception as e:
        _error_message = f"Failed to initialize adapters: {e}"
        log.error("asgi.init_error", error=_error_message)
        raise

    if settings.leases.enabled:
        _scheduler = create_scheduler(_application.sweep, cron=settings.leases.cron)
        _scheduler.start()
        log.info("asgi.lease_sweep_started", cron=settings.leases.cron)

    log.info("asgi.startup_complete", version=VERSION)

    yield

    log.info("asgi.shutdown", reason="SIGTERM or server stop")
    _application.state.taint()
    if _scheduler is not None:
        try:
            _scheduler.shutdown(wait=True)
        except Exception as e:
            log.warning("asgi.scheduler_shutdown_error", error=str(e))
    _application.close()
    log.info("asgi.shutdown_complete")


app = FastAPI(
    title="cert-broker",
    description="Role-governed certificate issuance and revocation through an external CA",
    version=VERSION,
    lifespan=lifespan,
)


# ─────────────────────── Request Bodies ───────────────────────


def _split_names(value: Any) -> Any:
    """Accept "a.com,b.com" as well as ["a.com", "b.com"]; blanks are dropped."""
    if isinstance(value, str):
        value = value.split(",")
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return value


NameList = Annotated[list[str], BeforeValidator(_split_names)]


class IssueBody(BaseModel):
    common_name: str = ""
    dns_sans: NameList = Field(default_factory=list)
    ip_sans: NameList = Field(default_factory=list)
    ca: str = ""
    template: str = ""
    metadata: str = ""


class SignBody(BaseModel):
    csr: str
    ca: str = ""
    template: str = ""
    metadata: str = ""


class RevokeBody(BaseModel):
    serial: str = ""


class RoleBody(BaseModel):
    allowed_domains: NameList = Field(default_factory=list)
    allow_subdomains: bool = False
    key_type: KeyType = KeyType.RSA
    no_store: bool = False


# ─────────────────────── Helpers ───────────────────────


def _service() -> CertificateService:
    if _application is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _application.service


def _log_failure(operation: str, failure: FailureDescription) -> None:
    if failure.code.is_user_error:
        log.info(
            "request.denied", operation=operation, code=failure.code.value, reason=failure.message
        )
    else:
        log.error(
            "request.failed",
            operation=operation,
            code=failure.code.value,
            detail=failure.full_stack_trace(),
        )


def _respond(result: Result[Any], operation: str, success_status: int = 200) -> JSONResponse:
    """Log a failure with full detail, then answer with the mapped status and body."""
    return build_fastapi_response(
        result.peek_failure(lambda err: _log_failure(operation, err)),
        success_status,
    )


def _role_to_dict(role: Role) -> dict[str, Any]:
    return {
        "name": role.name,
        "allowed_domains": list(role.allowed_domains),
        "allow_subdomains": role.allow_subdomains,
        "key_type": role.key_type.value,
        "no_store": role.no_store,
    }


# ─────────────────────── Probes ───────────────────────


@app.get("/health")
def health() -> JSONResponse:
    """Liveness probe — 503 when startup failed or hasn't happened."""
    if _error_message:
        return JSONResponse(
            status_code=503, content={"status": "unhealthy", "error": _error_message}
        )
    if _application is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "lease_sweep_running": _scheduler is not None and _scheduler.running,
        },
    )


# ─────────────────────── Certificates ───────────────────────


@app.post("/issue/{role}")
def issue(role: str, body: IssueBody) -> JSONResponse:
    """Issue a certificate and private key for a CN/SAN set allowed by `role`."""
    request = IssueRequest(
        role=role,
        common_name=body.common_name,
        dns_sans=tuple(body.dns_sans),
        ip_sans=tuple(body.ip_sans),
        ca=body.ca or None,
        template=body.template or None,
        metadata=body.metadata,
    )
    return _respond(_service().issue(request).map(lambda issued: issued.to_dict()), "issue")


@app.post("/sign/{role}")
def sign(role: str, body: SignBody) -> JSONResponse:
    """Enroll a caller-supplied CSR under `role`."""
    request = SignRequest(
        role=role,
        csr_pem=body.csr,
        ca=body.ca or None,
        template=body.template or None,
        metadata=body.metadata,
    )
    return _respond(_service().sign(request).map(lambda issued: issued.to_dict()), "sign")


@app.post("/revoke", response_model=None)
def revoke(body: RevokeBody) -> Response:
    """Revoke by serial; repeating the call returns the original revocation time."""
    if not body.serial:
        return _respond(
            Result.failure(ErrorCode.VALIDATION_ERROR, "The serial number must be provided"),
            "revoke",
        )
    match _service().revoke(body.serial):
        case Success(Revoked(record=record)):
            return JSONResponse(status_code=200, content=record.to_dict())
        case Success(NoOp()):
            return Response(status_code=204)
        case failure:
            return _respond(failure, "revoke")


@app.get("/certs")
def list_certs() -> JSONResponse:
    return _respond(_service().list_certificates().map(lambda keys: {"keys": keys}), "list")


@app.get("/certs/{serial}")
def fetch_cert(serial: str) -> JSONResponse:
    """Fetch a stored certificate and its revocation time (0 when not revoked)."""
    match _service().fetch_certificate(serial):
        case Success(Found() as found):
            return JSONResponse(status_code=200, content=found.to_dict())
        case Success(NotFound(serial=missing)):
            return _respond(
                Result.failure(ErrorCode.NOT_FOUND, f"certificate with serial {missing} not found"),
                "fetch",
            )
        case failure:
            return _respond(failure, "fetch")


# ─────────────────────── Roles ───────────────────────


@app.get("/roles")
def list_roles() -> JSONResponse:
    return _respond(_service().list_roles().map(lambda keys: {"keys": keys}), "list_roles")


@app.get("/roles/{name}")
def read_role(name: str) -> JSONResponse:
    return _respond(_service().get_role(name).map(_role_to_dict), "read_role")


@app.post("/roles/{name}")
def write_role(name: str, body: RoleBody) -> JSONResponse:
    role = Role(
        name=name,
        allowed_domains=tuple(body.allowed_domains),
        allow_subdomains=body.allow_subdomains,
        key_type=body.key_type,
        no_store=body.no_store,
    )
    return _respond(_service().put_role(role).map(_role_to_dict), "write_role")


# ─────────────────────── Configuration ───────────────────────


@app.post("/config/reload")
def reload_config() -> JSONResponse:
    """
    Re-read settings and replace the default CA and template.

    Connection settings (CA URL, credentials, storage) are only read at
    startup; changing those needs a restart.
    """
    service = _service()
    result = Result.from_computation(
        AppSettings,
        ErrorCode.CONFIGURATION_ERROR,
        "Failed to reload configuration",
    ).map(lambda settings: service.reload_defaults(settings.ca.issuance_defaults()))
    return _respond(
        result.map(
            lambda defaults: {"default_ca": defaults.ca, "default_template": defaults.template}
        ),
        "reload_config",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("cert_broker.asgi:app", host="0.0.0.0", port=8000, log_level="info")
