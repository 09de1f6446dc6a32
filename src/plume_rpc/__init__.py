"""
Plume RPC - a small embeddable JSON-over-HTTP RPC server.

This package accepts JSON requests over HTTP POST, dispatches them to named
handlers, and manages a minimal user/session layer (signup, login and
bearer-style tokens with an absolute expiry).
"""

from plume_rpc.errors import RPCError, StartupError
from plume_rpc.routing import Responder
from plume_rpc.server import RPCServer

__version__ = "0.1.0"

__all__ = [
    "RPCError",
    "RPCServer",
    "Responder",
    "StartupError",
]
