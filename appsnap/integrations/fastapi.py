# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap FastAPI Integration - Plugin for FastAPI applications.

This module provides a complete integration with FastAPI including:
- Lifespan management (startup/shutdown)
- Superuser-only backup endpoints
- Token-gated archive downloads
- Scheduled daily backups
"""

from contextlib import asynccontextmanager
from typing import Any, Callable

import structlog
from fastapi import Body, Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from appsnap.auth import Principal, resolve_principal
from appsnap.backup import (
    create_backup,
    delete_backup,
    list_backups,
    open_backup_download,
    schedule_restore,
    upload_backup,
)
from appsnap.config import AppSnapConfig
from appsnap.core import BackupState, initialize_backup_state, shutdown_backup_state
from appsnap.exceptions import (
    AppSnapError,
    AuthorizationError,
    ConflictError,
    ForbiddenError,
    TokenError,
    ValidationError,
)
from appsnap.names import generate_backup_name
from appsnap.storage import BlobStore
from appsnap.tokens import Role

logger = structlog.get_logger()

SUPERUSER_REQUIRED = "The request requires valid superuser authorization token to be set."
AUTH_REQUIRED = "The request requires valid record authorization token to be set."
DOWNLOAD_FORBIDDEN = "Insufficient permissions to access the resource."
INTERNAL_ERROR = "Something went wrong while processing your request."

SCHEDULED_NAME_PREFIX = "@auto_"
SCHEDULED_JOB_ID = "appsnap_scheduled_backup"


class BackupCreateRequest(BaseModel):
    """Body of POST /backups."""

    name: str | None = None


def _error_body(status: int, message: str, data: dict | None = None) -> dict:
    return {"status": status, "message": message, "data": data or {}}


def install_error_handlers(app: FastAPI) -> None:
    """
    Render every error as {"status", "message", "data"}.

    Server-side failures never expose their details to the client.
    """

    @app.exception_handler(AppSnapError)
    async def handle_appsnap_error(request: Request, exc: AppSnapError) -> JSONResponse:
        status = exc.status_code
        if status >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return JSONResponse(status_code=status, content=_error_body(status, INTERNAL_ERROR))

        return JSONResponse(
            status_code=status,
            content=_error_body(status, exc.message, exc.public_data()),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        data = {}
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
            field = loc[-1] if loc else "body"
            data[field] = {
                "code": f"validation_{error.get('type', 'invalid')}".replace(".", "_"),
                "message": error.get("msg", "Invalid value."),
            }
        return JSONResponse(
            status_code=400,
            content=_error_body(400, "Failed to validate the submitted data.", data),
        )


def _superuser_dependency(state: BackupState) -> Callable[..., Any]:
    async def require_superuser(
        authorization: str | None = Header(default=None),
    ) -> Principal:
        principal = resolve_principal(state["session_tokens"], authorization)
        if principal is None or not principal.is_superuser:
            raise AuthorizationError(SUPERUSER_REQUIRED)
        return principal

    return require_superuser


def _auth_dependency(state: BackupState) -> Callable[..., Any]:
    async def require_auth(
        authorization: str | None = Header(default=None),
    ) -> Principal:
        principal = resolve_principal(state["session_tokens"], authorization)
        if principal is None:
            raise AuthorizationError(AUTH_REQUIRED)
        return principal

    return require_auth


def _verify_download_token(state: BackupState, token: str | None) -> None:
    """Only a valid, unexpired superuser file token opens a download."""
    try:
        claims = state["file_tokens"].verify(token)
    except TokenError as e:
        logger.debug("download_token_rejected", reason=e.reason.value)
        raise ForbiddenError(DOWNLOAD_FORBIDDEN) from e

    if claims.role != Role.SUPERUSER:
        logger.debug("download_token_rejected", reason="not_superuser", subject=claims.subject)
        raise ForbiddenError(DOWNLOAD_FORBIDDEN)


def register_backup_routes(
    app: FastAPI,
    state: BackupState,
    prefix: str | None = None,
) -> None:
    """
    Register backup endpoints on a FastAPI app.

    Everything except the download requires a superuser session; the
    download requires a file-access token in the `token` query parameter.

    Args:
        app: FastAPI application
        state: Runtime state
        prefix: URL prefix for endpoints (default: config.api_prefix)
    """
    prefix = state["config"].api_prefix if prefix is None else prefix
    superuser = Depends(_superuser_dependency(state))
    authenticated = _auth_dependency(state)

    @app.get(f"{prefix}/backups", dependencies=[superuser])
    async def list_backups_route() -> list:
        """List all stored backups."""
        backups = await list_backups(state)
        return [backup.to_dict() for backup in backups]

    @app.post(f"{prefix}/backups", status_code=204, dependencies=[superuser])
    async def create_backup_route(
        body: BackupCreateRequest | None = Body(default=None),
    ) -> Response:
        """
        Create a new backup.

        Responds once the archive is stored; the snapshot keeps running
        even if the client disconnects.
        """
        name = body.name if body else None
        await create_backup(state, name or None)
        return Response(status_code=204)

    @app.post(f"{prefix}/backups/upload", status_code=204, dependencies=[superuser])
    async def upload_backup_route(
        file: UploadFile | None = File(default=None),
        name: str | None = Form(default=None),
    ) -> Response:
        """Upload an existing backup archive."""
        if file is None:
            raise ValidationError.for_field(
                "file", "validation_required", "Missing required value."
            )
        try:
            await upload_backup(state, file.file, file.filename, name or None)
        finally:
            await file.close()
        return Response(status_code=204)

    @app.get(f"{prefix}/backups/{{name}}")
    async def download_backup_route(
        name: str,
        token: str | None = Query(default=None),
    ) -> StreamingResponse:
        """
        Download a backup archive.

        The Authorization header is ignored here: only a superuser
        file-access token in the query string is accepted.
        """
        _verify_download_token(state, token)

        blob, reader = await open_backup_download(state, name)
        chunk_size = state["config"].chunk_size

        async def stream():
            try:
                async for chunk in reader.iter_chunks(chunk_size):
                    yield chunk
            finally:
                await reader.close()

        return StreamingResponse(
            stream(),
            media_type="application/zip",
            headers={
                "Content-Disposition": f'attachment; filename="{name}"',
                "Content-Length": str(blob.size),
            },
        )

    @app.delete(f"{prefix}/backups/{{name}}", status_code=204, dependencies=[superuser])
    async def delete_backup_route(name: str) -> Response:
        """Delete a backup that is not in use."""
        await delete_backup(state, name)
        return Response(status_code=204)

    @app.post(f"{prefix}/backups/{{name}}/restore", status_code=204, dependencies=[superuser])
    async def restore_backup_route(name: str) -> Response:
        """
        Restore the server from a backup.

        Only acknowledges the request; the restore continues in the
        background and ends with a process restart.
        """
        await schedule_restore(state, name)
        return Response(status_code=204)

    @app.post(f"{prefix}/files/token")
    async def file_token_route(principal: Principal = Depends(authenticated)) -> dict:
        """Issue a short-lived file-access token for the caller."""
        token = state["file_tokens"].issue(principal.id, principal.role)
        return {"token": token}


def _setup_scheduled_task(state: BackupState) -> None:
    """Set up APScheduler for the daily automatic backup."""
    config = state["config"]
    try:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.cron import CronTrigger

        scheduler = AsyncIOScheduler(timezone="UTC")

        # Parse HH:MM format
        hour, minute = map(int, config.schedule_cron.split(":"))

        async def scheduled_backup():
            """Run the scheduled backup, skipping it if another operation is active."""
            name = SCHEDULED_NAME_PREFIX + generate_backup_name(config.backup_name_prefix)
            logger.info("scheduled_backup_starting", name=name)
            try:
                backup = await create_backup(state, name)
                logger.info("scheduled_backup_completed", name=name, size=backup.size)
            except ConflictError:
                logger.warning(
                    "scheduled_backup_skipped",
                    name=name,
                    active=state["coordinator"].current_name(),
                )
            except Exception as e:
                logger.error("scheduled_backup_failed", name=name, error=str(e))

        scheduler.add_job(
            scheduled_backup,
            trigger=CronTrigger(hour=hour, minute=minute, timezone="UTC"),
            id=SCHEDULED_JOB_ID,
            replace_existing=True,
        )
        scheduler.start()
        state["scheduler"] = scheduler

        logger.info(
            "scheduler_started",
            schedule=config.schedule_cron,
            next_run=scheduler.get_job(SCHEDULED_JOB_ID).next_run_time.isoformat(),
        )

    except ImportError:
        logger.warning(
            "apscheduler_not_installed",
            message="Install apscheduler for scheduled backups",
        )
    except Exception as e:
        logger.error("scheduler_setup_failed", error=str(e))


@asynccontextmanager
async def appsnap_lifespan(
    app: FastAPI,
    config: AppSnapConfig,
    *,
    store: BlobStore | None = None,
    restart_hook: Callable[[], Any] | None = None,
):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: appsnap_lifespan(app, config))

    Args:
        app: FastAPI application
        config: AppSnap configuration
        store: Blob store override
        restart_hook: Restart hook override
    """
    logger.info("appsnap_lifespan_starting", data_dir=str(config.data_dir))

    state = await initialize_backup_state(config, store=store, restart_hook=restart_hook)
    app.state.appsnap_state = state
    app.state.appsnap_config = config

    register_backup_routes(app, state)

    if config.schedule_cron:
        _setup_scheduled_task(state)

    logger.info("appsnap_lifespan_started")

    try:
        yield
    finally:
        logger.info("appsnap_lifespan_stopping")
        await shutdown_backup_state(state)
        logger.info("appsnap_lifespan_stopped")


def create_app(
    config: AppSnapConfig,
    *,
    store: BlobStore | None = None,
    restart_hook: Callable[[], Any] | None = None,
) -> FastAPI:
    """
    Build a FastAPI app serving the backup API.

    Args:
        config: AppSnap configuration
        store: Blob store override
        restart_hook: Restart hook override

    Returns:
        FastAPI application (routes are registered on startup)
    """
    app = FastAPI(
        title="appsnap",
        lifespan=lambda app: appsnap_lifespan(
            app, config, store=store, restart_hook=restart_hook
        ),
    )
    install_error_handlers(app)
    return app


def get_backup_state(app: FastAPI) -> BackupState:
    """
    Get AppSnap state from a FastAPI app.

    Raises:
        RuntimeError: If AppSnap is not initialized
    """
    state = getattr(app.state, "appsnap_state", None)
    if not state:
        raise RuntimeError("AppSnap not initialized. Use appsnap_lifespan or create_app first.")
    return state
