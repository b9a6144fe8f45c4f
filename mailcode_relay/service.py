"""RelayService — wires adapters, pipeline, scheduler and control API."""

from __future__ import annotations

import asyncio
import time

import structlog
import uvicorn
from pydantic import SecretStr

from .config import RelayConfig
from .control import create_control_app
from .discord import DiscordWebhookSink
from .errors import AuthorizationError, ConfigurationError
from .failure_tracker import FailureTracker
from .gmail_client import GmailClient
from .imap_client import ImapMailboxClient
from .interface import MailboxClient, NotificationSink
from .logging import setup_logging
from .models import CycleReport, OAuthTokens, ServiceStatus
from .oauth import AuthorizationSession, GoogleOAuthCredentials
from .pipeline import IngestionPipeline
from .scheduler import PollScheduler
from .shutdown import install_signal_handlers

logger = structlog.get_logger()


def build_mailbox_client(config: RelayConfig) -> MailboxClient:
    """Create the configured mailbox adapter.

    Raises :class:`ConfigurationError` when credentials are missing.
    """
    if config.mailbox_backend == "imap":
        return ImapMailboxClient(config.imap)
    credentials = GoogleOAuthCredentials(config.gmail, config.retry)
    return GmailClient(config.gmail, credentials)


class RelayService:
    """The relay process.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * the poll scheduler, once a mailbox client is available
    * the FastAPI control server

    A missing mailbox configuration leaves the service in
    ``setup_required``; the control API stays up and the web setup flow
    can supply credentials later.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        sink: NotificationSink | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self.sink: NotificationSink = sink or DiscordWebhookSink(config.discord)
        self.tracker = FailureTracker(self.sink)
        self.mailbox: MailboxClient | None = None
        self.pipeline: IngestionPipeline | None = None
        self.scheduler = PollScheduler(self._run_cycle, config.polling.interval_seconds)

        self._shutdown_event = asyncio.Event()
        self._configured_event = asyncio.Event()
        self._auth_session: AuthorizationSession | None = None

    # ------------------------------------------------------------------
    # Status (read by the control API)
    # ------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        return self.pipeline is not None

    @property
    def last_report(self) -> CycleReport | None:
        return self.pipeline.last_report if self.pipeline is not None else None

    # ------------------------------------------------------------------
    # Mailbox installation
    # ------------------------------------------------------------------

    def configure_from_settings(self) -> bool:
        """Try to build the mailbox client from config; False if not configured."""
        try:
            mailbox = build_mailbox_client(self.config)
        except ConfigurationError as exc:
            logger.warning("mailbox_not_configured", reason=str(exc))
            self.status = ServiceStatus.SETUP_REQUIRED
            return False
        self.install_mailbox(mailbox)
        return True

    def install_mailbox(self, mailbox: MailboxClient) -> None:
        """Hand a ready mailbox client to the pipeline and release the scheduler."""
        self.mailbox = mailbox
        self.pipeline = IngestionPipeline(
            mailbox,
            self.sink,
            self.tracker,
            query=self.config.polling.query,
            max_results=self.config.polling.max_results,
        )
        self.status = ServiceStatus.RUNNING
        self._configured_event.set()
        logger.info(
            "mailbox_configured",
            backend=self.config.mailbox_backend,
            query=self.pipeline.query,
        )

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def _run_cycle(self) -> CycleReport:
        if self.pipeline is None:
            raise ConfigurationError("mailbox is not configured")
        report = await self.pipeline.run_cycle(self._shutdown_event)
        logger.info(
            "poll_cycle_completed",
            **report.model_dump(exclude={"started_at", "finished_at"}),
        )
        return report

    async def trigger_cycle(self) -> CycleReport:
        """Run one cycle now, after any cycle already in flight."""
        return await self.scheduler.run_once()

    async def search(self, query: str, max_results: int = 10) -> list[str]:
        if self.mailbox is None:
            raise ConfigurationError("mailbox is not configured")
        return await self.mailbox.search(query, max_results)

    # ------------------------------------------------------------------
    # Web authorization flow (Gmail only)
    # ------------------------------------------------------------------

    def begin_authorization(self) -> AuthorizationSession:
        """Start a fresh consent flow, replacing any pending one."""
        if self.config.mailbox_backend != "gmail":
            raise ConfigurationError("web setup is only available for the gmail backend")
        self._auth_session = AuthorizationSession(self.config.gmail)
        logger.info("oauth_authorization_started")
        return self._auth_session

    async def complete_authorization(self, code: str, state: str) -> OAuthTokens:
        """Exchange the callback code and start polling with the new token."""
        session = self._auth_session
        if session is None:
            raise AuthorizationError("no authorization in progress")
        try:
            tokens = await session.exchange(code, state=state)
        finally:
            if session.completed or session.expired:
                self._auth_session = None

        assert tokens.refresh_token is not None
        gmail_config = self.config.gmail.model_copy(
            update={"refresh_token": SecretStr(tokens.refresh_token)},
        )
        self.config = self.config.model_copy(update={"gmail": gmail_config})
        mailbox = build_mailbox_client(self.config)
        await mailbox.start()
        if self.mailbox is not None:
            await self.mailbox.stop()
        self.install_mailbox(mailbox)
        return tokens

    # ------------------------------------------------------------------
    # Long-running tasks
    # ------------------------------------------------------------------

    async def _run_poll_loop(self) -> None:
        configured = asyncio.create_task(self._configured_event.wait())
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        await asyncio.wait({configured, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        configured.cancel()
        shutdown.cancel()
        if self._shutdown_event.is_set():
            return
        await self.scheduler.run(self._shutdown_event)

    async def _run_control_server(self) -> None:
        """Serve the control API until the shutdown event fires."""
        app = create_control_app(self)
        config = uvicorn.Config(
            app,
            host=self.config.control_host,
            port=self.config.control_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start all subsystems and run until shutdown.

        Usage::

            asyncio.run(RelayService(RelayConfig()).run())
        """
        setup_logging(json=self.config.log_json, level=self.config.log_level)
        main_task = asyncio.current_task()
        assert main_task is not None
        remove_signal_handlers = install_signal_handlers(
            self._shutdown_event,
            on_force=main_task.cancel,
        )
        self.start_time = time.monotonic()

        logger.info(
            "relay_starting",
            backend=self.config.mailbox_backend,
            interval_seconds=self.config.polling.interval_seconds,
            notification_sink=self.sink.configured,
        )

        await self.sink.start()
        if self.configure_from_settings():
            assert self.mailbox is not None
            await self.mailbox.start()

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_poll_loop())
                tg.create_task(self._run_control_server())
        except* Exception:
            logger.exception("relay_task_group_error")
        finally:
            self.status = ServiceStatus.STOPPING
            if self.mailbox is not None:
                await self.mailbox.stop()
            await self.sink.stop()
            self.status = ServiceStatus.STOPPED
            remove_signal_handlers()
            logger.info("relay_stopped")
