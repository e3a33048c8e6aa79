"""
Control-Plane Server

Unix socket server run by the daemon. Exposes task state from the store
and relays Submit/Pause/Resume/Stop requests to the TaskManager.
"""

import asyncio
import os
import time
from pathlib import Path
from typing import Optional, Set

from loguru import logger

from ..core.exceptions import DaemonAlreadyRunningError, DownzerError, ProtocolError
from ..core.task_manager import TaskManager
from ..core.utils import serialize_value
from .protocol import (
    Command,
    Request,
    Response,
    encode_message,
    decode_message,
    parse_ids,
    MAX_MESSAGE_SIZE,
)


# The serve loop re-checks its shutdown condition this often
SHUTDOWN_POLL_INTERVAL = 0.1

# Stale-socket probe timeout
PROBE_TIMEOUT = 1.0


async def probe_socket(socket_path: str, timeout: float = PROBE_TIMEOUT) -> bool:
    """True if a daemon answers a ping on socket_path."""
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(socket_path), timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError):
        return False

    try:
        writer.write(encode_message(Request(command=Command.PING.value).to_json()))
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), timeout=timeout)
        return bool(line)
    except (OSError, asyncio.TimeoutError):
        return False
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


class ControlServer:
    """
    Control-plane server.

    Usage:
        server = ControlServer(manager, socket_path)
        await server.start()
        await server.serve()
    """

    def __init__(self, manager: TaskManager, socket_path: str):
        """
        Args:
            manager: TaskManager owning the daemon's tasks
            socket_path: Path of the Unix socket to listen on
        """
        self.manager = manager
        self.socket_path = Path(socket_path)
        self.server: Optional[asyncio.AbstractServer] = None

        self._shutdown_requested = False
        self._clients: Set[asyncio.Task] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """
        Bind the control socket. A stale socket file is removed.

        Raises:
            DaemonAlreadyRunningError: another daemon answers on the socket
        """
        if self.socket_path.exists():
            if await probe_socket(str(self.socket_path)):
                raise DaemonAlreadyRunningError(str(self.socket_path))
            logger.warning(f"[Control] Removing stale socket {self.socket_path}")
            os.unlink(self.socket_path)

        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
            limit=MAX_MESSAGE_SIZE,
        )
        os.chmod(self.socket_path, 0o600)

        logger.info(f"[Control] Listening on {self.socket_path}")

    def request_shutdown(self):
        """Ask the serve loop to exit. Repeated calls are no-ops."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("[Control] Shutdown requested")

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    async def serve(self, exit_when_idle: bool = False, linger: float = 0.0):
        """
        Serve requests until shutdown, then interrupt all tasks and close.

        Args:
            exit_when_idle: Also exit once no task is active and none was
                submitted for `linger` seconds
            linger: Idle grace period in seconds
        """
        if not self.server:
            raise RuntimeError("Server not started")

        idle_since: Optional[float] = None
        try:
            while not self._shutdown_requested:
                if exit_when_idle:
                    if self.manager.is_idle:
                        idle_since = idle_since or time.monotonic()
                        if time.monotonic() - idle_since >= linger:
                            logger.info("[Control] No active tasks, daemon exiting")
                            break
                    else:
                        idle_since = None
                await asyncio.sleep(SHUTDOWN_POLL_INTERVAL)
        finally:
            await self.manager.shutdown()
            await self.close()

    async def close(self):
        """Stop listening, drop clients and remove the socket file."""
        try:
            if self.server:
                self.server.close()
                for client in list(self._clients):
                    client.cancel()
                if self._clients:
                    await asyncio.gather(*self._clients, return_exceptions=True)
                await self.server.wait_closed()
                self.server = None
        finally:
            if self.socket_path.exists():
                os.unlink(self.socket_path)
            logger.info("[Control] Socket closed")

    # =========================================================================
    # Connections
    # =========================================================================

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle a client connection."""
        current = asyncio.current_task()
        self._clients.add(current)
        client_id = id(writer)
        logger.debug(f"[Control] Client {client_id} connected")

        try:
            while True:
                try:
                    data = await reader.readline()
                except ValueError:
                    writer.write(encode_message(Response.err("Message too large").to_json()))
                    await writer.drain()
                    break
                if not data:
                    break

                command = None
                try:
                    request = Request.from_json(decode_message(data))
                    command = request.command
                    response = await self._handle_request(request)
                except ProtocolError as e:
                    response = Response.err(str(e))

                writer.write(encode_message(response.to_json()))
                await writer.drain()

                if command == Command.SHUTDOWN.value:
                    self.request_shutdown()

        except asyncio.CancelledError:
            pass
        except OSError as e:
            logger.debug(f"[Control] Client {client_id} error: {e}")
        finally:
            self._clients.discard(current)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            logger.debug(f"[Control] Client {client_id} disconnected")

    async def _handle_request(self, request: Request) -> Response:
        """Handle a control request."""
        command = request.command
        params = request.params
        req_id = request.request_id

        try:
            if command == Command.PING:
                return Response.ack("pong", req_id)

            elif command == Command.SHUTDOWN:
                return Response.ack("shutting down", req_id)

            elif command == Command.LIST:
                include_finished = bool(params.get("all", True))
                tasks = self.manager.list_tasks(include_finished)
                return Response.snapshot([t.to_summary() for t in tasks], req_id)

            elif command == Command.STATUS:
                if "id" not in params:
                    raise ProtocolError("status requires an id")
                task = self.manager.status(int(params["id"]))
                return Response.ack(serialize_value(task.to_dict()), req_id)

            elif command == Command.SUBMIT:
                if not params.get("template"):
                    raise ProtocolError("submit requires a template")
                task = self.manager.submit(
                    params["template"],
                    params.get("mode_config") or {},
                    params.get("spec") or {},
                    concurrent=bool(params.get("concurrent", False)),
                )
                return Response.ack({"task_id": task.task_id, "status": task.status.value}, req_id)

            elif command == Command.PAUSE:
                ids = parse_ids(params)
                return self._control_reply(ids, self.manager.pause(ids), req_id)

            elif command == Command.RESUME:
                ids = parse_ids(params)
                return self._control_reply(ids, self.manager.resume(ids), req_id)

            elif command == Command.STOP:
                ids = parse_ids(params)
                return self._control_reply(ids, await self.manager.stop(ids), req_id)

            else:
                return Response.err(f"Unknown command: {command}", req_id)

        except DownzerError as e:
            return Response.err(str(e), req_id)
        except (TypeError, ValueError) as e:
            return Response.err(f"Invalid parameters: {e}", req_id)
        except Exception as e:
            logger.exception(f"[Control] Error handling {command}: {e}")
            return Response.err(str(e), req_id)

    @staticmethod
    def _control_reply(ids, errors, req_id: str) -> Response:
        if errors:
            return Response.err("; ".join(errors), req_id)
        return Response.ack({"ids": ids}, req_id)
