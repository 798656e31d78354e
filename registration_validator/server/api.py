from __future__ import annotations

import io
import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from ..agent.capture import screenshot_key
from ..config import settings
from ..handoff.supervisor import ValidationLauncher
from ..storage.base import StorageBackend
from ..storage.minio_store import get_storage
from ..store import ValidationStore


class ValidationRequest(BaseModel):
    identifier: str = Field(pattern=r"^\d+$", max_length=50)
    display_name: str = Field(min_length=1, max_length=200)


class ValidationLaunchResponse(BaseModel):
    identifier: str
    pid: int
    stdout_log: str
    stderr_log: str


class ValidationLogEntry(BaseModel):
    identifier: str
    source_module: str
    result: dict[str, Any]
    context: Optional[dict[str, Any]]
    correlation_id: Optional[str]
    timestamp: datetime


class DeregistrationEntry(BaseModel):
    identifier: str
    reason: str
    source_module: str
    error_message: Optional[str]
    correlation_id: Optional[str]
    deregistered_at: datetime


def get_store(request: Request) -> ValidationStore:
    return request.app.state.store


def get_storage_backend(request: Request) -> StorageBackend:
    return request.app.state.storage


def get_launcher(request: Request) -> ValidationLauncher:
    return request.app.state.launcher


def create_app(
    store: ValidationStore | None = None,
    storage: StorageBackend | None = None,
    launcher: ValidationLauncher | None = None,
) -> FastAPI:
    app = FastAPI(title="Registration validator")
    app.state.store = store or ValidationStore.from_url(settings.database_url)
    app.state.storage = storage or get_storage()
    app.state.launcher = launcher or ValidationLauncher()

    @app.get("/health")
    def health(store: ValidationStore = Depends(get_store)) -> dict[str, Any]:
        try:
            store.ping()
        except SQLAlchemyError as exc:
            logging.warning("health_store_unreachable reason=%s", exc)
            return {"status": "degraded", "store": "unreachable"}
        return {"status": "ok", "store": "reachable"}

    @app.post(
        "/api/validations",
        response_model=ValidationLaunchResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def start_validation(
        payload: ValidationRequest, launcher: ValidationLauncher = Depends(get_launcher)
    ) -> ValidationLaunchResponse:
        try:
            handle = launcher.launch(payload.identifier, payload.display_name)
        except OSError as exc:
            logging.error("validation_launch_failed identifier=%s reason=%s", payload.identifier, exc)
            raise HTTPException(status_code=503, detail="Could not start validation") from exc
        return ValidationLaunchResponse(
            identifier=payload.identifier,
            pid=handle.pid,
            stdout_log=str(handle.stdout_path),
            stderr_log=str(handle.stderr_path),
        )

    @app.get("/api/validations", response_model=List[ValidationLogEntry])
    def list_validations(
        identifier: Optional[str] = None,
        limit: int = Query(50, ge=1, le=500),
        store: ValidationStore = Depends(get_store),
    ):
        return [
            ValidationLogEntry(
                identifier=row.identifier,
                source_module=row.source_module,
                result=row.validation_result,
                context=row.context,
                correlation_id=row.correlation_id,
                timestamp=row.timestamp,
            )
            for row in store.list_validation_logs(identifier=identifier, limit=limit)
        ]

    @app.get("/api/deregistrations", response_model=List[DeregistrationEntry])
    def list_deregistrations(
        limit: int = Query(50, ge=1, le=500),
        store: ValidationStore = Depends(get_store),
    ):
        return [
            DeregistrationEntry(
                identifier=row.identifier,
                reason=row.deregistration_reason,
                source_module=row.source_module,
                error_message=row.error_message,
                correlation_id=row.correlation_id,
                deregistered_at=row.deregistered_at,
            )
            for row in store.list_deregistrations(limit=limit)
        ]

    @app.get("/api/screenshots/{stage}/{identifier}")
    def get_screenshot(
        stage: str,
        identifier: str,
        storage: StorageBackend = Depends(get_storage_backend),
    ) -> StreamingResponse:
        try:
            image_bytes = storage.get_bytes(screenshot_key(stage, identifier))
        except (KeyError, ValueError):
            raise HTTPException(status_code=404, detail="Screenshot not found")
        return StreamingResponse(io.BytesIO(image_bytes), media_type="image/png")

    return app
