"""
Request dispatch for the Plume RPC server.

The dispatcher takes one parsed request body and turns it into exactly one
RPCResponse:

1. Validate the "rpc" field and canonicalize it (trim + lowercase)
2. Look the RPC up in the registry
3. For every RPC except signup/login, resolve the token and its user
4. Validate "args"
5. Invoke the handler and collect its response, or map its failure

Steps 1-4 never suspend, so the token/user checks observe one consistent
state of the token table and the user store.
"""

from __future__ import annotations

from typing import Any

from plume_rpc.errors import (
    HandlerFailureError,
    MalformedRequestError,
    MissingRPCError,
    NotFoundError,
    RPCError,
    TokenError,
)
from plume_rpc.logging import get_logger
from plume_rpc.routing import (
    Responder,
    RPCHandler,
    RPCRegistry,
    RPCResponse,
    call_handler,
    canonical_rpc_name,
    is_auth_rpc,
)
from plume_rpc.tokens import TokenTable
from plume_rpc.users import UserStore

logger = get_logger(__name__)

SENSITIVE_FIELD_PATTERNS = ("password", "token", "secret")


def mask_sensitive_fields(data: Any) -> Any:
    """
    Mask sensitive values in a request body before logging it.

    Values under keys containing 'password', 'token' or 'secret' are replaced
    with '<masked>', recursively through objects and arrays.
    """
    if isinstance(data, dict):
        masked: dict[str, Any] = {}
        for key, value in data.items():
            if any(pattern in str(key).lower() for pattern in SENSITIVE_FIELD_PATTERNS):
                masked[key] = "<masked>"
            else:
                masked[key] = mask_sensitive_fields(value)
        return masked
    if isinstance(data, list):
        return [mask_sensitive_fields(item) for item in data]
    return data


def error_response(error: RPCError) -> RPCResponse:
    """Render an RPCError as a response."""
    return RPCResponse(status=error.status_code, body=error.to_dict())


class Dispatcher:
    """
    Routes parsed requests to RPC handlers behind the token gate.

    Example:
        >>> dispatcher = Dispatcher(registry, tokens, users)
        >>> response = await dispatcher.dispatch({"rpc": "echo", "token": t})
        >>> response.status
        200
    """

    def __init__(self, registry: RPCRegistry, tokens: TokenTable, users: UserStore) -> None:
        self._registry = registry
        self._tokens = tokens
        self._users = users

    def authorize(
        self, body: Any
    ) -> tuple[str, RPCHandler, dict[str, Any], dict[str, Any] | None]:
        """
        Validate a request body and resolve its handler and caller.

        Args:
            body: The parsed JSON request body.

        Returns:
            Tuple of (rpc name, handler, args, user record or None).

        Raises:
            RPCError: The failure to report to the client.
        """
        if not isinstance(body, dict) or not isinstance(body.get("rpc"), str):
            raise MissingRPCError("rpc required")

        rpc = canonical_rpc_name(body["rpc"])
        if not rpc:
            raise MissingRPCError("no rpc specified")

        handler = self._registry.get(rpc)
        if handler is None:
            raise NotFoundError("rpc unknown", details={"rpc": rpc})

        user: dict[str, Any] | None = None
        if not is_auth_rpc(rpc):
            user = self._authenticate(body.get("token"))

        args = body.get("args", {})
        if not isinstance(args, dict):
            raise MalformedRequestError('invalid "args" -- object required')

        return rpc, handler, args, user

    def _authenticate(self, token: Any) -> dict[str, Any]:
        token = token.strip() if isinstance(token, str) else ""
        if not token:
            raise TokenError("token required")

        record = self._tokens.resolve(token)
        if record is None:
            raise TokenError("token expired or unknown")

        user = self._users.lookup(record.username)
        if user is None:
            raise TokenError("invalid token: zombie", details={"username": record.username})

        return user

    async def dispatch(self, body: Any) -> RPCResponse:
        """
        Process one request body into a response.

        Args:
            body: The parsed JSON request body.

        Returns:
            The response to send. Never raises for client or handler errors.
        """
        logger.debug("Dispatching request", extra={"request": mask_sensitive_fields(body)})

        try:
            rpc, handler, args, user = self.authorize(body)
        except RPCError as e:
            logger.debug(
                "Request rejected",
                extra={"status": e.status_code, "error": e.message, "error_code": e.error_code},
            )
            return error_response(e)

        respond = Responder()
        try:
            result = await call_handler(handler, args, user, respond)
        except Exception as e:
            if respond.response is not None:
                logger.warning(
                    "RPC handler raised after responding",
                    extra={"rpc": rpc, "error": str(e)},
                )
                return respond.response
            failure = HandlerFailureError.from_exception(e)
            logger.warning(
                "RPC handler failed",
                exc_info=True,
                extra={"rpc": rpc, "status": failure.status_code, "error": str(e)},
            )
            return error_response(failure)

        if respond.response is not None:
            return respond.response
        return RPCResponse(status=200, body={} if result is None else result)
