"""
Main application entry point.

Loads configuration, sets up logging, builds the backend named by
``--backend`` (or ``MAILVIEW_BACKEND``) and runs a :class:`MailSession`
against it until interrupted.
"""
import argparse
import asyncio
import importlib
import logging
import sys
from typing import List, Optional

from mailview import config
from mailview.core.session import MailSession
from mailview.network.backend import LocalPushChannel, MailBackend, PushChannel
from mailview.utils.errors import MailViewError
from mailview.utils.logging_cfg import setup_logging


logger = logging.getLogger(__name__)


def load_backend(factory_path: str, push: PushChannel) -> MailBackend:
    """
    Import and call a backend factory.

    Args:
        factory_path: ``"module:callable"``; the callable receives the push
            channel the backend should publish its events to.
        push: The session's push channel.

    Returns:
        The backend instance.

    Raises:
        MailViewError: If the path is malformed, cannot be imported or does
            not produce a MailBackend.
    """
    module_name, _, attr = factory_path.partition(":")
    if not module_name or not attr:
        raise MailViewError(f"Backend must be given as module:callable, got {factory_path!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise MailViewError(f"Cannot load backend {factory_path}: {e}") from e

    backend = factory(push)
    if not isinstance(backend, MailBackend):
        raise MailViewError(f"{factory_path} returned {type(backend).__name__}, not a MailBackend")
    return backend


async def run(factory_path: str, once: bool = False) -> MailSession:
    """Start a session and keep it alive until cancelled (or right away with ``once``)."""
    push = LocalPushChannel()
    session = MailSession(load_backend(factory_path, push), push)
    await session.start()
    try:
        logger.info(
            f"{len(session.accounts)} account(s), {len(session.mailboxes)} mailbox(es), "
            f"page {session.page.value}"
        )
        if not once:
            await asyncio.Event().wait()
    finally:
        await session.dispose()
    return session


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mailview", description=config.APP_NAME)
    parser.add_argument(
        "--backend",
        default=config.BACKEND_FACTORY,
        help="backend factory as module:callable (default: $MAILVIEW_BACKEND)",
    )
    parser.add_argument("--debug", action="store_true", help="log at DEBUG level")
    parser.add_argument("--log-dir", help="directory for the log file")
    parser.add_argument(
        "--once", action="store_true", help="start the session, log a summary and exit"
    )
    args = parser.parse_args(argv)
    if not args.backend:
        parser.error("no backend given; use --backend or set MAILVIEW_BACKEND")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    # Configuration first so .env values become argument defaults
    config.load_env()
    args = _parse_args(argv)
    setup_logging(debug=args.debug, log_dir=args.log_dir)

    try:
        asyncio.run(run(args.backend, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted; session closed")
    except MailViewError as e:
        logger.error(f"{config.APP_NAME} could not start: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
