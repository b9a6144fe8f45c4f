"""Entry point for the relay package.

Usage::

    python -m mailcode_relay [run]   # poll the mailbox and serve the control API
    python -m mailcode_relay setup   # terminal OAuth flow for the Gmail backend
"""

from __future__ import annotations

import asyncio
import sys

from .config import RelayConfig
from .errors import AuthorizationError, ConfigurationError, MailboxError


async def run_terminal_setup(config: RelayConfig) -> int:
    """Walk the user through Google consent and print the refresh token.

    Returns the process exit status.
    """
    from pydantic import SecretStr

    from .oauth import AuthorizationSession
    from .service import build_mailbox_client

    try:
        session = AuthorizationSession(config.gmail)
    except ConfigurationError as exc:
        print(f"Setup needs OAuth client credentials: {exc}", file=sys.stderr)
        print("Add GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET to .env and retry.", file=sys.stderr)
        return 1

    print("1. Open this URL in a browser and grant access:\n")
    print(session.authorization_url())
    print(f"\n2. After consent Google redirects to {session.redirect_uri}")
    print("   Copy the 'code' query parameter from that address.\n")
    code = (await asyncio.to_thread(input, "Authorization code: ")).strip()

    try:
        tokens = await session.exchange(code)
    except AuthorizationError as exc:
        print(f"Authorization failed: {exc}", file=sys.stderr)
        return 1

    print("\nAdd this line to .env:\n")
    print(f"GMAIL_REFRESH_TOKEN={tokens.refresh_token}\n")

    assert tokens.refresh_token is not None
    gmail = config.gmail.model_copy(update={"refresh_token": SecretStr(tokens.refresh_token)})
    mailbox = build_mailbox_client(config.model_copy(update={"gmail": gmail}))
    await mailbox.start()
    try:
        address = await mailbox.profile()
    except MailboxError as exc:
        print(f"Connection test failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await mailbox.stop()

    print(f"Connection test passed for {address}.")
    return 0


def main() -> None:
    mode = sys.argv[1] if len(sys.argv) > 1 else "run"
    if mode not in ("run", "setup"):
        print("Usage: python -m mailcode_relay [run|setup]", file=sys.stderr)
        sys.exit(1)

    config = RelayConfig()

    if mode == "run":
        from .service import RelayService

        asyncio.run(RelayService(config).run())

    elif mode == "setup":
        sys.exit(asyncio.run(run_terminal_setup(config)))


if __name__ == "__main__":
    main()
