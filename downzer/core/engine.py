"""
Engine

Shared handle passed to every mode: daemon configuration, the task store
and a factory for per-task HTTP clients.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, TYPE_CHECKING

import httpx
from loguru import logger

from .config import Config, ModeConfig

if TYPE_CHECKING:
    from ..db import TaskRepository


class Engine:
    """
    Shared engine handle.

    Args:
        config: Daemon configuration
        store: Task store (None for store-less runs, e.g. in tests)
        transport: Optional httpx transport (tests plug httpx.MockTransport here)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional["TaskRepository"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or Config()
        self.store = store
        self.transport = transport

    @asynccontextmanager
    async def http_client(self, mode_config: ModeConfig) -> AsyncIterator[httpx.AsyncClient]:
        """
        HTTP client for one task run. Connections are torn down on exit,
        whatever way the run ends.
        """
        headers = {"User-Agent": mode_config.user_agent or self.config.user_agent}
        limits = httpx.Limits(
            max_connections=mode_config.max_concurrent,
            max_keepalive_connections=mode_config.max_concurrent,
        )
        client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(mode_config.timeout),
            limits=limits,
            proxy=mode_config.proxy,
            follow_redirects=True,
            transport=self.transport,
        )
        logger.debug(f"[Engine] HTTP client opened (timeout={mode_config.timeout}s, proxy={mode_config.proxy})")
        try:
            yield client
        finally:
            await client.aclose()
            logger.debug("[Engine] HTTP client closed")
