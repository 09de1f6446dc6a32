"""
Built-in auth RPCs: signup and login.

Both RPCs are open (no token required) and respond with a freshly issued
token on success. Password hashing and verification run in a worker thread
so that the event loop keeps serving other requests meanwhile.
"""

from __future__ import annotations

import asyncio
from typing import Any

from plume_rpc.config import ServerConfig
from plume_rpc.errors import ConflictError, InvalidCredentialsError, NotFoundError, RPCError
from plume_rpc.logging import get_logger
from plume_rpc.passwords import PasswordHasher
from plume_rpc.routing import LOGIN_RPC, SIGNUP_RPC, Responder, RPCRegistry
from plume_rpc.tokens import TokenTable
from plume_rpc.users import UserStore

logger = get_logger(__name__)


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _reject(respond: Responder, error: RPCError) -> None:
    respond.error(error.message, error.status_code)


class AuthRPCs:
    """
    Handlers for the signup and login RPCs.

    Example:
        >>> auth = AuthRPCs(config, users, tokens, BcryptPasswordHasher())
        >>> auth.install(registry)
    """

    def __init__(
        self,
        config: ServerConfig,
        users: UserStore,
        tokens: TokenTable,
        hasher: PasswordHasher,
    ) -> None:
        self._config = config
        self._users = users
        self._tokens = tokens
        self._hasher = hasher

    def install(self, registry: RPCRegistry) -> None:
        """Bind signup and login in ``registry``."""
        registry.register_builtin(SIGNUP_RPC, self.signup)
        registry.register_builtin(LOGIN_RPC, self.login)

    def credentials_in_bounds(self, username: str, password: str) -> bool:
        """Check trimmed credentials against the configured length bounds."""
        config = self._config
        return (
            config.min_username_length <= len(username) <= config.max_username_length
            and config.min_password_length <= len(password) <= config.max_password_length
        )

    async def signup(
        self, args: dict[str, Any], _user: dict[str, Any] | None, respond: Responder
    ) -> None:
        """
        Create a user and issue a token.

        Every field of ``args`` is stored with the user record; the password
        is replaced by its hash first.

        Responses:
            201 {"token": ...}; 401 invalid credentials; 409 username taken.
        """
        username = _trimmed(args.get("username"))
        password = _trimmed(args.get("password"))

        if not self.credentials_in_bounds(username, password):
            _reject(respond, InvalidCredentialsError())
            return

        if self._users.exists(username):
            _reject(respond, ConflictError("username taken"))
            return

        password_hash = await asyncio.to_thread(self._hasher.hash_password, password)

        record = dict(args)
        record["username"] = username
        record["password"] = password_hash

        try:
            await self._users.insert(record)
        except ConflictError as e:
            _reject(respond, e)
            return

        token = self._tokens.issue(username)
        logger.info("User signed up", extra={"username": username})
        respond.send({"token": token}, 201)

    async def login(
        self, args: dict[str, Any], _user: dict[str, Any] | None, respond: Responder
    ) -> None:
        """
        Verify credentials and issue a token.

        Responses:
            200 {"token": ...}; 401 invalid credentials; 404 username unknown.
        """
        username = _trimmed(args.get("username"))
        password = _trimmed(args.get("password"))

        if not username or not password:
            _reject(respond, InvalidCredentialsError())
            return

        user = self._users.lookup(username)
        if user is None:
            _reject(respond, NotFoundError("username unknown"))
            return

        password_hash = user.get("password")
        verified = isinstance(password_hash, str) and await asyncio.to_thread(
            self._hasher.verify_password, password=password, password_hash=password_hash
        )
        if not verified:
            logger.warning("Login rejected", extra={"username": username})
            _reject(respond, InvalidCredentialsError())
            return

        token = self._tokens.issue(username)
        logger.info("User logged in", extra={"username": username})
        respond.send({"token": token}, 200)
