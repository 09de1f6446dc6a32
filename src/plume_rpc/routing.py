"""
RPC routing and registration for the Plume RPC server.

This module provides:
- RPCHandler: the handler contract shared by built-in and user RPCs
- Responder: the response-writing capability passed to handlers
- RPCResponse: the response value produced for one request
- RPCRegistry: mapping of canonical RPC names to handlers

Handler contract::

    def handler(args: dict, user: dict | None, respond: Responder) -> Any

``user`` is the authenticated user record, or None for the auth RPCs.
Handlers may be plain functions or coroutine functions.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

RPCHandler = Callable[[dict[str, Any], Any, "Responder"], Any]

SIGNUP_RPC = "signup"
LOGIN_RPC = "login"
AUTH_RPCS = frozenset({SIGNUP_RPC, LOGIN_RPC})


def canonical_rpc_name(name: str) -> str:
    """Trim and lowercase an RPC name."""
    return name.strip().lower()


@dataclass
class RPCResponse:
    """
    The response produced for a single request.

    Attributes:
        status: HTTP status code.
        body: JSON-serializable response body.
    """

    status: int = 200
    body: Any = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """Check if this is an error response."""
        return self.status >= 400


class Responder:
    """
    Response-writing capability handed to RPC handlers.

    A handler writes exactly one response, either with send() or error().

    Example:
        >>> def echo(args, user, respond):
        ...     respond.send({"result": args})
    """

    def __init__(self) -> None:
        self._response: RPCResponse | None = None

    @property
    def responded(self) -> bool:
        """Whether a response has been written."""
        return self._response is not None

    @property
    def response(self) -> RPCResponse | None:
        """The written response, if any."""
        return self._response

    def send(self, value: Any = None, status: int = 200) -> None:
        """
        Write a JSON response.

        Args:
            value: Response body; None is sent as ``{}``.
            status: HTTP status code.

        Raises:
            RuntimeError: If a response was already written.
        """
        if self._response is not None:
            raise RuntimeError("response already sent")
        self._response = RPCResponse(status=status, body={} if value is None else value)

    def error(self, message: str, status: int = 400) -> None:
        """
        Write an error response ``{"error": message}``.

        Raises:
            RuntimeError: If a response was already written.
        """
        self.send({"error": message}, status)


class RPCRegistry:
    """
    Registry mapping RPC names to handler functions.

    Names are canonicalised (trimmed and lowercased) on both registration and
    lookup. The names "signup" and "login" are reserved for the built-in
    auth RPCs and can only be bound through register_builtin().

    Example:
        >>> registry = RPCRegistry()
        >>> registry.register("echo", echo_handler)
        >>> registry.has("ECHO")
        True
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._handlers: dict[str, RPCHandler] = {}

    def register(self, name: str, handler: RPCHandler) -> None:
        """
        Register a user RPC.

        Args:
            name: RPC name (case-insensitive).
            handler: Callable following the handler contract.

        Raises:
            ValueError: If the name is empty, blank or reserved.
            TypeError: If the handler is not callable.
        """
        rpc_name = canonical_rpc_name(name) if isinstance(name, str) else ""
        if not rpc_name or rpc_name in AUTH_RPCS:
            raise ValueError(f"invalid rpc name: {name!r}")
        self._bind(rpc_name, handler)

    def register_builtin(self, name: str, handler: RPCHandler) -> None:
        """Bind one of the reserved auth RPC names."""
        rpc_name = canonical_rpc_name(name)
        if rpc_name not in AUTH_RPCS:
            raise ValueError(f"not a built-in rpc: {name!r}")
        self._bind(rpc_name, handler)

    def _bind(self, rpc_name: str, handler: RPCHandler) -> None:
        if not callable(handler):
            raise TypeError("invalid rpc callback")
        self._handlers[rpc_name] = handler

    def rpc(self, name: str) -> Callable[[RPCHandler], RPCHandler]:
        """
        Decorator form of register().

        Example:
            >>> @registry.rpc("echo")
            ... def echo(args, user, respond):
            ...     respond.send({"result": args})
        """

        def decorator(handler: RPCHandler) -> RPCHandler:
            self.register(name, handler)
            return handler

        return decorator

    def has(self, name: str) -> bool:
        """Check if an RPC is registered."""
        return canonical_rpc_name(name) in self._handlers

    def get(self, name: str) -> RPCHandler | None:
        """Get the handler for an RPC, or None."""
        return self._handlers.get(canonical_rpc_name(name))

    def list_rpcs(self) -> list[str]:
        """List all registered RPC names."""
        return list(self._handlers)

    @property
    def user_rpc_count(self) -> int:
        """Number of registered RPCs that are not built-in auth RPCs."""
        return sum(1 for name in self._handlers if name not in AUTH_RPCS)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __len__(self) -> int:
        return len(self._handlers)


def is_auth_rpc(name: str) -> bool:
    """Check whether a canonical RPC name is one of the open auth RPCs."""
    return name in AUTH_RPCS


async def call_handler(
    handler: RPCHandler,
    args: dict[str, Any],
    user: dict[str, Any] | None,
    respond: Responder,
) -> Any:
    """Invoke a handler, awaiting it when it returns an awaitable."""
    result = handler(args, user, respond)
    if inspect.isawaitable(result):
        result = await result
    return result
