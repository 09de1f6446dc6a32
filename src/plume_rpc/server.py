"""
Embeddable Plume RPC server.

RPCServer owns the user store, the token table, the RPC registry, the HTTP
listener and the expiry sweeper. Hosts register their RPCs, start the server,
and stop it when done:

    server = RPCServer()

    @server.rpc("echo")
    def echo(args, user, respond):
        respond.send({"result": args})

    await server.start({"port": 8080})
    await server.serve_forever()
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable, Mapping
from datetime import timedelta
from types import TracebackType
from typing import Any

import uvicorn

from plume_rpc.auth import AuthRPCs
from plume_rpc.config import ServerConfig, merge_config
from plume_rpc.dispatcher import Dispatcher
from plume_rpc.errors import StartupError
from plume_rpc.http import create_app
from plume_rpc.logging import ROOT_LOGGER_NAME, get_logger
from plume_rpc.passwords import BcryptPasswordHasher, PasswordHasher
from plume_rpc.routing import RPCHandler, RPCRegistry
from plume_rpc.sweeper import ExpirySweeper
from plume_rpc.tokens import Clock, TokenTable
from plume_rpc.users import UserStore

logger = get_logger(__name__)

STARTUP_POLL_SECONDS = 0.01
SHUTDOWN_TIMEOUT_SECONDS = 5


def _bind_socket(hostname: str, port: int) -> socket.socket:
    """Bind the listening socket up front so bind errors reach the caller."""
    family = socket.AF_INET6 if ":" in hostname else socket.AF_INET
    return socket.create_server((hostname, port), family=family)


class RPCServer:
    """
    A JSON-over-HTTP RPC server with signup/login and token-gated RPCs.

    Attributes:
        registry: RPCRegistry with built-in and user RPCs.
        tokens: In-memory TokenTable.
    """

    def __init__(
        self,
        config: ServerConfig | Mapping[str, Any] | None = None,
        *,
        hasher: PasswordHasher | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the server. Nothing is loaded or bound until start().

        Args:
            config: Base configuration; start() may override it further.
            hasher: Password hasher (defaults to bcrypt).
            clock: Time source for token issue and expiry (defaults to UTC).
        """
        self._config = merge_config(None, config)
        self._hasher = hasher if hasher is not None else BcryptPasswordHasher()
        self.registry = RPCRegistry()
        self.tokens = TokenTable(clock)
        self._users = UserStore(self._config.users_path)
        self._dispatcher: Dispatcher | None = None
        self._sweeper: ExpirySweeper | None = None
        self._http: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._address: tuple[str, int] | None = None
        self._started = False
        self._stopped = asyncio.Event()

    @property
    def config(self) -> ServerConfig:
        """The effective configuration (merged at start)."""
        return self._config

    @property
    def users(self) -> UserStore:
        """The user store."""
        return self._users

    @property
    def dispatcher(self) -> Dispatcher:
        """
        The request dispatcher.

        Raises:
            RuntimeError: Before the server has started.
        """
        if self._dispatcher is None:
            raise RuntimeError("server not started")
        return self._dispatcher

    @property
    def sweeper(self) -> ExpirySweeper:
        """
        The expired-token sweeper.

        Raises:
            RuntimeError: Before the server has started.
        """
        if self._sweeper is None:
            raise RuntimeError("server not started")
        return self._sweeper

    @property
    def is_running(self) -> bool:
        """Whether the listener is accepting connections."""
        return (
            self._http is not None
            and self._http.started
            and self._serve_task is not None
            and not self._serve_task.done()
        )

    @property
    def address(self) -> tuple[str, int]:
        """
        The bound (host, port), useful when the configured port is 0.

        Raises:
            RuntimeError: If the server is not listening.
        """
        if self._address is None:
            raise RuntimeError("server not started")
        return self._address

    def add_rpc(self, name: str, handler: RPCHandler) -> None:
        """
        Register a user RPC.

        Raises:
            ValueError: If the name is empty or one of "signup"/"login".
            TypeError: If the handler is not callable.
        """
        self.registry.register(name, handler)

    def rpc(self, name: str) -> Callable[[RPCHandler], RPCHandler]:
        """Decorator form of add_rpc()."""
        return self.registry.rpc(name)

    async def start(self, configuration: ServerConfig | Mapping[str, Any] | None = None) -> None:
        """
        Merge configuration, load users, bind the listener and start the sweeper.

        The ``plume_rpc`` logger level is set from the merged ``log_level``.

        Args:
            configuration: Overrides merged over the base configuration.

        Raises:
            StartupError: If already started, if no user RPC has been added,
                or if the users file is unusable.
            ValidationError: If the merged configuration is invalid.
            OSError: If the listener cannot be bound.
        """
        if self._started:
            raise StartupError("already started")
        if self.registry.user_rpc_count == 0:
            raise StartupError("no RPCs added")
        self._started = True

        sock: socket.socket | None = None
        serve_task: asyncio.Task[None] | None = None
        try:
            config = merge_config(self._config, configuration)
            users = UserStore(config.users_path)
            users.load()

            AuthRPCs(config, users, self.tokens, self._hasher).install(self.registry)
            dispatcher = Dispatcher(self.registry, self.tokens, users)
            app = create_app(dispatcher, config.max_request_body_size_bytes)

            sock = _bind_socket(config.hostname, config.port)
            http = uvicorn.Server(
                uvicorn.Config(
                    app,
                    lifespan="off",
                    log_config=None,
                    log_level=config.log_level,
                    access_log=False,
                    timeout_graceful_shutdown=SHUTDOWN_TIMEOUT_SECONDS,
                )
            )
            address = sock.getsockname()[:2]
            serve_task = asyncio.create_task(http.serve(sockets=[sock]))
            while not http.started:
                if serve_task.done():
                    serve_task.result()
                    raise StartupError("http server exited during startup")
                await asyncio.sleep(STARTUP_POLL_SECONDS)
        except BaseException:
            self._started = False
            if serve_task is not None and not serve_task.done():
                serve_task.cancel()
            if sock is not None:
                sock.close()
            raise

        logging.getLogger(ROOT_LOGGER_NAME).setLevel(config.log_level.upper())
        self._config = config
        self._users = users
        self._dispatcher = dispatcher
        self._http = http
        self._address = address
        self._serve_task = serve_task
        serve_task.add_done_callback(lambda _: self._stopped.set())
        self._sweeper = ExpirySweeper(
            self.tokens,
            ttl=timedelta(minutes=config.token_timeout_minutes),
            interval_seconds=config.sweep_interval_seconds,
        )
        await self._sweeper.start()

        host, port = address
        logger.info(
            "ready http://%s:%d",
            host,
            port,
            extra={"hostname": host, "port": port, "rpcs": self.registry.list_rpcs()},
        )

    async def stop(self) -> None:
        """
        Stop the sweeper and shut the listener down. Safe to call repeatedly.

        Idle connections are closed at once; requests in flight get
        SHUTDOWN_TIMEOUT_SECONDS to finish.
        """
        if self._serve_task is None:
            return

        if self._sweeper is not None:
            await self._sweeper.stop()

        task, self._serve_task = self._serve_task, None
        if self._http is not None:
            self._http.should_exit = True
        await task
        self._address = None
        self._stopped.set()
        logger.info("Server stopped")

    async def serve_forever(self) -> None:
        """Wait until the server is stopped or the listener exits."""
        if not self._started:
            raise RuntimeError("server not started")
        await self._stopped.wait()

    async def __aenter__(self) -> RPCServer:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
