"""
Control Client

Blocking client for the daemon's control socket. Used by the CLI to
submit, list, pause, resume and stop tasks.
"""

import socket
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..core.config import default_socket_path
from ..core.exceptions import ControlError, DaemonNotRunningError
from .protocol import (
    Command,
    Request,
    Response,
    encode_message,
    decode_message,
    MESSAGE_DELIMITER,
    MAX_MESSAGE_SIZE,
)


class ControlClient:
    """
    Client for the Downzer daemon.

    Usage:
        with ControlClient() as client:
            for task in client.list_tasks():
                print(task["task_id"], task["status"])
    """

    def __init__(self, socket_path: str = None, timeout: float = 30.0):
        """
        Initialize client.

        Args:
            socket_path: Path to Unix socket (default: well-known temp path)
            timeout: Request timeout in seconds
        """
        self.socket_path = Path(socket_path or default_socket_path())
        self.timeout = timeout
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()  # Serialize access to socket

    def _connect(self):
        """Connect to the daemon if not connected."""
        if self._sock is not None:
            return

        if not self.socket_path.exists():
            raise DaemonNotRunningError(str(self.socket_path))

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(str(self.socket_path))
        except (ConnectionRefusedError, FileNotFoundError):
            sock.close()
            raise DaemonNotRunningError(str(self.socket_path))
        self._sock = sock

    def _disconnect(self):
        """Disconnect from the daemon."""
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None

    def request(self, command: Command, params: Dict[str, Any] = None) -> Response:
        """
        Send a request and return the daemon's response (of any kind).

        Thread-safe: uses a lock so concurrent callers cannot interleave
        reads on the shared socket.

        Raises:
            DaemonNotRunningError: nothing is listening on the socket
            ControlError: connection dropped or timed out
            ProtocolError: malformed response
        """
        request = Request(command=command.value, params=params or {})

        with self._lock:
            try:
                self._connect()

                self._sock.sendall(encode_message(request.to_json()))

                data = b""
                while MESSAGE_DELIMITER not in data:
                    chunk = self._sock.recv(4096)
                    if not chunk:
                        raise ControlError("Connection closed by daemon")
                    data += chunk
                    if len(data) > MAX_MESSAGE_SIZE:
                        raise ControlError("Response too large")

                return Response.from_json(decode_message(data))

            except socket.timeout:
                self._disconnect()
                raise ControlError(f"Request timed out: {command.value}")
            except (BrokenPipeError, ConnectionResetError) as e:
                self._disconnect()
                raise ControlError(f"Connection lost: {e}")
            except Exception:
                self._disconnect()
                raise

    def _call(self, command: Command, params: Dict[str, Any] = None) -> Any:
        """Send a request; an Error response raises ControlError."""
        response = self.request(command, params)
        if not response.ok:
            raise ControlError(response.error or "Request failed", command=command.value)
        return response.data

    def close(self):
        """Close the connection."""
        self._disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # =========================================================================
    # Daemon control
    # =========================================================================

    def ping(self) -> bool:
        """Check if the daemon is alive."""
        try:
            return self._call(Command.PING) == "pong"
        except (ControlError, OSError):
            return False

    def shutdown(self) -> bool:
        """Ask the daemon to interrupt its tasks and exit."""
        try:
            self._call(Command.SHUTDOWN)
            return True
        except ControlError:
            return False

    # =========================================================================
    # Tasks
    # =========================================================================

    def list_tasks(self, include_finished: bool = True) -> List[dict]:
        """Snapshot of tasks: id, status, template, mode, progress, total."""
        data = self._call(Command.LIST, {"all": include_finished})
        return data.get("tasks", []) if data else []

    def status(self, task_id: int) -> dict:
        """Full record of one task."""
        return self._call(Command.STATUS, {"id": int(task_id)})

    def submit(self, template: str, mode_config: dict, spec: dict, concurrent: bool = False) -> dict:
        """
        Submit a task.

        Returns:
            {"task_id": ..., "status": "running" | "queued"}
        """
        return self._call(Command.SUBMIT, {
            "template": template,
            "mode_config": mode_config,
            "spec": spec,
            "concurrent": concurrent,
        })

    def pause(self, task_ids: Iterable[int]) -> Response:
        """Pause tasks. An Error response lists unknown ids and illegal transitions."""
        return self.request(Command.PAUSE, {"ids": [int(i) for i in task_ids]})

    def resume(self, task_ids: Iterable[int]) -> Response:
        """Resume paused tasks."""
        return self.request(Command.RESUME, {"ids": [int(i) for i in task_ids]})

    def stop(self, task_ids: Iterable[int]) -> Response:
        """Stop tasks."""
        return self.request(Command.STOP, {"ids": [int(i) for i in task_ids]})


def wait_for_daemon(socket_path: str = None, timeout: float = 10.0, interval: float = 0.1) -> ControlClient:
    """
    Poll until a daemon answers on the socket.

    Returns:
        Connected client

    Raises:
        DaemonNotRunningError: nothing answered within timeout
    """
    client = ControlClient(socket_path)
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if client.ping():
            return client
        time.sleep(interval)
    client.close()
    raise DaemonNotRunningError(str(client.socket_path))
