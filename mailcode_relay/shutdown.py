"""SIGTERM / SIGINT handling for the relay process."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable

import structlog

logger = structlog.get_logger()

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_signal_handlers(
    shutdown_event: asyncio.Event,
    *,
    on_force: Callable[[], object] | None = None,
) -> Callable[[], None]:
    """Set *shutdown_event* on the first signal; call *on_force* on the next.

    The first signal lets the current cycle finish the message it is
    working on.  A second one means the operator is done waiting (for
    instance on an IMAP server that stopped answering), so *on_force* is
    invoked, typically to cancel the main task.

    Returns a callable that removes the handlers again.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        if not shutdown_event.is_set():
            logger.info("shutdown_signal_received", signal=sig.name)
            shutdown_event.set()
            return
        if on_force is None:
            logger.info("shutdown_already_requested", signal=sig.name)
            return
        logger.warning("shutdown_forced", signal=sig.name)
        on_force()

    for sig in HANDLED_SIGNALS:
        loop.add_signal_handler(sig, _handle, sig)

    def remove() -> None:
        for sig in HANDLED_SIGNALS:
            loop.remove_signal_handler(sig)

    return remove
