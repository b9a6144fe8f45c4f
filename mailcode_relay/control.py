"""FastAPI control surface: status, manual trigger, search and web setup."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from .errors import AuthorizationError, ConfigurationError, MailboxError

if TYPE_CHECKING:
    from .service import RelayService

logger = structlog.get_logger()

SEARCH_MAX_RESULTS = 10


class SearchRequest(BaseModel):
    query: str = Field(default="", description="Provider-specific search expression")


def _configured(flag: bool) -> str:
    return "configured" if flag else "not_configured"


def create_control_app(service: RelayService) -> FastAPI:
    """Build the control API around a running :class:`RelayService`."""
    app = FastAPI(title="mailcode-relay", docs_url=None, redoc_url=None)

    @app.get("/")
    async def status() -> JSONResponse:
        state = service.tracker.state
        report = service.last_report
        return JSONResponse({
            "status": "running" if service.is_configured else "setup_required",
            "mailbox_backend": service.config.mailbox_backend,
            "poll_interval_seconds": service.config.polling.interval_seconds,
            "configuration": {
                "mailbox": _configured(service.is_configured),
                "notification_sink": _configured(service.sink.configured),
            },
            "ingestion": {
                "down": state.down,
                "last_error": state.last_error,
                "failed_at": state.failed_at.isoformat() if state.failed_at else None,
            },
            "last_cycle": report.model_dump(mode="json") if report else None,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({
            "service": "mailcode-relay",
            "status": service.status.value,
            "uptime_seconds": time.monotonic() - service.start_time,
            "cycles_run": service.scheduler.cycles_run,
            "cycle_in_flight": service.scheduler.busy,
        })

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.is_configured
        return JSONResponse(
            {"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    @app.post("/check")
    async def check() -> JSONResponse:
        if not service.is_configured:
            return JSONResponse(
                {"error": "mailbox is not configured; complete setup first"},
                status_code=400,
            )
        try:
            report = await service.trigger_cycle()
        except Exception as exc:
            logger.exception("manual_check_failed")
            return JSONResponse({"error": str(exc)}, status_code=500)
        return JSONResponse({
            "message": "check complete",
            "report": report.model_dump(mode="json"),
        })

    @app.post("/search")
    async def search(request: SearchRequest) -> JSONResponse:
        if not service.is_configured:
            return JSONResponse(
                {"error": "mailbox is not configured; complete setup first"},
                status_code=400,
            )
        if not request.query.strip():
            return JSONResponse({"error": "query is required"}, status_code=400)
        try:
            message_ids = await service.search(request.query, SEARCH_MAX_RESULTS)
        except MailboxError as exc:
            return JSONResponse({"error": str(exc)}, status_code=502)
        return JSONResponse({
            "count": len(message_ids),
            "query": request.query,
            "message_ids": message_ids,
        })

    @app.get("/setup")
    async def setup():
        try:
            session = service.begin_authorization()
        except ConfigurationError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        return RedirectResponse(session.authorization_url(), status_code=307)

    @app.get("/oauth/callback")
    async def oauth_callback(code: str = "", state: str = "", error: str = "") -> JSONResponse:
        if error:
            return JSONResponse({"error": f"authorization denied: {error}"}, status_code=400)
        try:
            tokens = await service.complete_authorization(code, state)
        except (AuthorizationError, ConfigurationError) as exc:
            logger.warning("oauth_callback_failed", error=str(exc))
            return JSONResponse({"error": str(exc)}, status_code=400)
        return JSONResponse({
            "message": "authorization complete; polling started",
            "refresh_token": tokens.refresh_token,
            "persist_as": "GMAIL_REFRESH_TOKEN",
        })

    return app
