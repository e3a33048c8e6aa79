"""
Control Plane

Local control channel between a running daemon and other invocations.
Line-delimited JSON over a Unix domain socket.
"""

from .protocol import Command, Request, Response, ResponseKind
from .client import ControlClient, wait_for_daemon
from .server import ControlServer, probe_socket

__all__ = [
    "Command",
    "Request",
    "Response",
    "ResponseKind",
    "ControlClient",
    "wait_for_daemon",
    "ControlServer",
    "probe_socket",
]
