"""Tests for mailcode_relay.service."""

from __future__ import annotations

import asyncio
import logging

import pytest

from mailcode_relay.config import PollingConfig, RelayConfig
from mailcode_relay.errors import AuthorizationError, ConfigurationError
from mailcode_relay.gmail_client import DEFAULT_GMAIL_QUERY, GmailClient
from mailcode_relay.imap_client import ImapMailboxClient
from mailcode_relay.models import ServiceStatus
from mailcode_relay.service import RelayService, build_mailbox_client

from tests.conftest import FakeMailbox, RecordingSink, make_fetched


@pytest.fixture
def service(relay_config: RelayConfig, sink: RecordingSink) -> RelayService:
    return RelayService(relay_config, sink=sink)


class TestBuildMailboxClient:
    def test_gmail(self, relay_config: RelayConfig):
        assert isinstance(build_mailbox_client(relay_config), GmailClient)

    def test_imap(self, relay_config: RelayConfig, imap_config):
        config = relay_config.model_copy(update={"mailbox_backend": "imap", "imap": imap_config})
        assert isinstance(build_mailbox_client(config), ImapMailboxClient)

    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            build_mailbox_client(RelayConfig())


class TestConfigure:
    def test_configured_from_settings(self, service: RelayService):
        assert service.configure_from_settings() is True
        assert service.status == ServiceStatus.RUNNING
        assert service.is_configured
        assert service.pipeline.query == DEFAULT_GMAIL_QUERY

    def test_setup_required(self, sink: RecordingSink):
        service = RelayService(RelayConfig(), sink=sink)
        assert service.configure_from_settings() is False
        assert service.status == ServiceStatus.SETUP_REQUIRED
        assert not service.is_configured
        assert service.last_report is None

    def test_configured_query_wins(self, relay_config: RelayConfig, sink: RecordingSink):
        config = relay_config.model_copy(
            update={"polling": PollingConfig(query="label:codes", max_results=5)}
        )
        service = RelayService(config, sink=sink)
        service.install_mailbox(FakeMailbox())
        assert service.pipeline.query == "label:codes"


class TestOperations:
    @pytest.mark.asyncio
    async def test_trigger_cycle(self, service: RelayService, sink: RecordingSink):
        service.install_mailbox(FakeMailbox([make_fetched("m1")]))
        report = await service.trigger_cycle()
        assert report.codes_delivered == 1
        assert service.last_report is report
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_trigger_cycle_unconfigured(self, service: RelayService):
        with pytest.raises(ConfigurationError):
            await service.trigger_cycle()

    @pytest.mark.asyncio
    async def test_search_unconfigured(self, service: RelayService):
        with pytest.raises(ConfigurationError):
            await service.search("x")

    @pytest.mark.asyncio
    async def test_complete_without_pending_session(self, service: RelayService):
        with pytest.raises(AuthorizationError, match="no authorization in progress"):
            await service.complete_authorization("code", "state")

    def test_begin_authorization_replaces_pending(self, service: RelayService):
        first = service.begin_authorization()
        second = service.begin_authorization()
        assert first.state != second.state

    @pytest.mark.asyncio
    async def test_failed_exchange_keeps_session(self, service: RelayService, respx_mock):
        respx_mock.post("https://oauth.test/token").respond(
            200, json={"access_token": "a", "refresh_token": "fresh"}
        )
        session = service.begin_authorization()
        with pytest.raises(AuthorizationError):
            await service.complete_authorization("code", "forged")

        # the genuine callback can still complete the pending session
        tokens = await service.complete_authorization("code", session.state)
        try:
            assert tokens.refresh_token == "fresh"
            assert service.status == ServiceStatus.RUNNING
            with pytest.raises(AuthorizationError, match="no authorization in progress"):
                await service.complete_authorization("code", session.state)
        finally:
            await service.mailbox.stop()


class TestRun:
    @pytest.fixture(autouse=True)
    def _restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    @pytest.mark.asyncio
    async def test_polls_until_shutdown(self, relay_config: RelayConfig, sink, respx_mock):
        respx_mock.post("https://oauth.test/token").respond(
            200, json={"access_token": "tok", "expires_in": 3600}
        )
        messages = respx_mock.get("https://gmail.test/gmail/v1/users/me/messages").respond(
            200, json={"resultSizeEstimate": 0}
        )
        config = relay_config.model_copy(
            update={"control_host": "127.0.0.1", "control_port": 0, "log_json": False}
        )
        service = RelayService(config, sink=sink)

        task = asyncio.create_task(service.run())
        for _ in range(100):
            if service.scheduler.cycles_run:
                break
            await asyncio.sleep(0.02)
        service.request_shutdown()
        await asyncio.wait_for(task, timeout=5.0)

        assert service.status == ServiceStatus.STOPPED
        assert service.scheduler.cycles_run == 1
        assert messages.call_count == 1
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_waits_for_setup_then_stops(self, sink):
        config = RelayConfig(control_host="127.0.0.1", control_port=0, log_json=False)
        service = RelayService(config, sink=sink)

        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.1)
        assert service.status == ServiceStatus.SETUP_REQUIRED
        service.request_shutdown()
        await asyncio.wait_for(task, timeout=5.0)

        assert service.status == ServiceStatus.STOPPED
        assert service.scheduler.cycles_run == 0
