import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from siteguard.db import engine
from siteguard.errors import ApiError, error_response
from siteguard.logging_utils import setup_json_logging
from siteguard.routers import attendance, deployments
from siteguard.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from siteguard.settings import get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
request_logger = logging.getLogger("siteguard.request")
startup_logger = logging.getLogger("siteguard.startup")

HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

app = FastAPI(title=settings.app_name, version="0.1.0")
app.include_router(deployments.router)
app.include_router(attendance.router)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid4().hex
    request.state.request_id = request_id

    started = time.monotonic()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        # Handlers annotate request.state with the person and record they touched.
        request_logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.monotonic() - started) * 1000, 2),
                "actor": getattr(request.state, "actor", "anonymous"),
                "person_id": getattr(request.state, "person_id", None),
                "attendance_id": getattr(request.state, "attendance_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        request_logger.error(
            "api_error",
            extra={"request_id": getattr(request.state, "request_id", None), "code": exc.code},
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {
            "field": ".".join(str(part) for part in item.get("loc", ()) if part != "body"),
            "message": str(item.get("msg", "invalid value")),
        }
        for item in exc.errors()
    ]
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message="Request validation failed.",
        details={"fields": fields},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    request_logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "method": request.method,
            "path": request.url.path,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


@app.on_event("startup")
async def check_schema_on_startup() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError("Database schema is not ready: " + "; ".join(result.issues))


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if schema_guard_result is None:
        schema_guard_result = SchemaGuardResult(
            ok=False,
            checked_at_utc=datetime.now(timezone.utc),
            issues=["SCHEMA_GUARD_NOT_RUN"],
        )
    return {
        "status": "ok" if schema_guard_result.ok else "degraded",
        "schema_guard": schema_guard_result.to_dict(),
        "attendance_timezone": settings.attendance_timezone,
        "geofence": {
            "default_radius_m": settings.default_geofence_radius_m,
            "bypass_unconfigured_sites": settings.geofence_bypass_unconfigured_sites,
        },
        "limits": {
            "max_range_days": settings.max_range_days,
            "max_roster_cells": settings.max_roster_cells,
        },
    }
