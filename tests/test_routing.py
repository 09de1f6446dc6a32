"""
Tests for RPC registration and the Responder.
"""

from __future__ import annotations

from typing import Any

import pytest

from plume_rpc.routing import (
    Responder,
    RPCRegistry,
    RPCResponse,
    call_handler,
    canonical_rpc_name,
    is_auth_rpc,
)


def noop(args: dict[str, Any], user: Any, respond: Responder) -> None:
    respond.send()


# =============================================================================
# Tests for RPCRegistry
# =============================================================================


class TestRPCRegistry:
    """Tests for RPCRegistry class."""

    def test_register_and_get(self) -> None:
        """Test registered handlers are found by canonical name."""
        registry = RPCRegistry()
        registry.register("Echo", noop)

        assert registry.has("echo")
        assert registry.has("  ECHO ")
        assert registry.get("eCHo") is noop
        assert "echo" in registry
        assert registry.list_rpcs() == ["echo"]

    def test_get_unknown(self) -> None:
        """Test unknown names resolve to None."""
        registry = RPCRegistry()

        assert registry.get("missing") is None
        assert 42 not in registry

    def test_reregister_replaces(self) -> None:
        """Test registering a name twice keeps the last handler."""
        registry = RPCRegistry()

        def other(args: dict[str, Any], user: Any, respond: Responder) -> None:
            respond.send({"other": True})

        registry.register("echo", noop)
        registry.register("ECHO", other)

        assert registry.get("echo") is other
        assert len(registry) == 1

    @pytest.mark.parametrize("name", ["", "   ", "signup", "LOGIN", " Login "])
    def test_invalid_names(self, name: str) -> None:
        """Test empty and reserved names are refused."""
        with pytest.raises(ValueError, match="invalid rpc name"):
            RPCRegistry().register(name, noop)

    def test_non_string_name(self) -> None:
        """Test non-string names are refused."""
        with pytest.raises(ValueError):
            RPCRegistry().register(None, noop)  # type: ignore[arg-type]

    def test_non_callable_handler(self) -> None:
        """Test non-callable handlers are refused."""
        with pytest.raises(TypeError, match="invalid rpc callback"):
            RPCRegistry().register("echo", "not callable")  # type: ignore[arg-type]

    def test_builtin_registration(self) -> None:
        """Test reserved names bind only through register_builtin."""
        registry = RPCRegistry()
        registry.register_builtin("signup", noop)
        registry.register_builtin("login", noop)

        assert registry.has("signup")
        assert registry.user_rpc_count == 0

        registry.register("echo", noop)
        assert registry.user_rpc_count == 1
        assert len(registry) == 3

        with pytest.raises(ValueError):
            registry.register_builtin("echo", noop)

    def test_decorator(self) -> None:
        """Test the rpc() decorator registers and returns the handler."""
        registry = RPCRegistry()

        @registry.rpc("greet")
        def greet(args: dict[str, Any], user: Any, respond: Responder) -> None:
            respond.send({"hi": args.get("name")})

        assert registry.get("greet") is greet


def test_canonical_rpc_name() -> None:
    """Test names are trimmed and lowercased."""
    assert canonical_rpc_name("  SignUp\n") == "signup"


def test_is_auth_rpc() -> None:
    """Test only signup and login are open RPCs."""
    assert is_auth_rpc("signup")
    assert is_auth_rpc("login")
    assert not is_auth_rpc("echo")


# =============================================================================
# Tests for Responder
# =============================================================================


class TestResponder:
    """Tests for Responder class."""

    def test_send(self) -> None:
        """Test send() records status and body."""
        respond = Responder()
        assert not respond.responded

        respond.send({"ok": True}, 201)

        assert respond.responded
        assert respond.response == RPCResponse(status=201, body={"ok": True})

    def test_send_defaults(self) -> None:
        """Test send() with no value is an empty 200."""
        respond = Responder()
        respond.send()

        assert respond.response == RPCResponse(status=200, body={})

    def test_send_scalar(self) -> None:
        """Test non-object JSON values are allowed."""
        respond = Responder()
        respond.send([1, 2, 3])

        assert respond.response.body == [1, 2, 3]

    def test_error(self) -> None:
        """Test error() writes the canonical error body."""
        respond = Responder()
        respond.error("nope", 403)

        assert respond.response.status == 403
        assert respond.response.body == {"error": "nope"}
        assert respond.response.is_error

    def test_error_default_status(self) -> None:
        """Test error() defaults to 400."""
        respond = Responder()
        respond.error("bad")

        assert respond.response.status == 400

    def test_second_write_raises(self) -> None:
        """Test a handler can only respond once."""
        respond = Responder()
        respond.send({"first": True})

        with pytest.raises(RuntimeError, match="already sent"):
            respond.error("second")

        assert respond.response.body == {"first": True}


# =============================================================================
# Tests for call_handler
# =============================================================================


class TestCallHandler:
    """Tests for call_handler."""

    @pytest.mark.asyncio
    async def test_sync_handler(self) -> None:
        """Test plain functions are called directly."""
        respond = Responder()

        result = await call_handler(lambda a, u, r: a["x"] * 2, {"x": 21}, None, respond)

        assert result == 42
        assert not respond.responded

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        """Test coroutine functions are awaited."""

        async def handler(args: dict[str, Any], user: Any, respond: Responder) -> None:
            respond.send({"user": user["username"]})

        respond = Responder()
        await call_handler(handler, {}, {"username": "alice"}, respond)

        assert respond.response.body == {"user": "alice"}
