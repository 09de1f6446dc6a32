"""
Run a Plume RPC echo server with the default configuration.

Usage:
    python -m plume_rpc
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Any

from plume_rpc.logging import get_logger, setup_logging
from plume_rpc.routing import Responder
from plume_rpc.server import RPCServer

logger = get_logger(__name__)


def echo(args: dict[str, Any], _user: dict[str, Any] | None, respond: Responder) -> None:
    """Respond with the request arguments."""
    respond.send({"result": args}, 200)


async def run() -> None:
    """Start the echo server and serve until SIGINT/SIGTERM."""
    server = RPCServer()
    server.add_rpc("echo", echo)

    logger.warning("starting echo rpc server")
    await server.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(server.stop()))

    try:
        await server.serve_forever()
    finally:
        await server.stop()


def main() -> None:
    """Console script entry point."""
    setup_logging()
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run())


if __name__ == "__main__":
    main()
