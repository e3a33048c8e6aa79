"""
Web Request Mode

Sends one HTTP request per concrete target and tallies 2xx responses as
successes. Response bodies are streamed and discarded unless body capture
is requested.
"""

import asyncio
from pathlib import Path
from typing import Optional

import httpx

from ..core.models import ModeResult
from ..core.utils import target_filename, write_unique_file
from .base import BaseMode, Outcome


class WebRequestMode(BaseMode):
    """HTTP request mode (GET/POST/PUT/DELETE/PATCH/HEAD/OPTIONS)."""

    name = "webrequest"

    def __init__(self):
        super().__init__()
        self._body: Optional[bytes] = None
        self._method = "GET"

    def session(self):
        self._method = self.config.method.upper()
        self._body = self.config.read_body()
        return super().session()

    async def process(self, index: int, target: str, client: httpx.AsyncClient) -> Outcome:
        try:
            async with client.stream(self._method, target, content=self._body) as response:
                status = response.status_code
                if self.config.download_body and self._method != "HEAD":
                    payload = await response.aread()
                    nbytes = len(payload)
                    if payload:
                        name = target_filename(target, index, prefix="response")
                        await asyncio.to_thread(write_unique_file, Path(self.config.outdir), name, payload)
                else:
                    nbytes = 0
                    async for chunk in response.aiter_raw():
                        nbytes += len(chunk)
        except httpx.TimeoutException:
            if self.verbose >= 1:
                self.log_warning(f"[{index + 1}] {target} - Timeout")
            return Outcome.failure(counter="timeouts", message="Timeout")
        except httpx.HTTPError as e:
            if self.verbose >= 1:
                self.log_warning(f"[{index + 1}] {target} - {e}")
            return Outcome.failure(message=str(e))

        success = 200 <= status < 300
        if self.verbose >= 2:
            marker = "✓" if success else "✗"
            self.log_info(f"[{index + 1}] {target} [{status}] {marker}")

        if success:
            return Outcome.success(nbytes, status_code=status)
        return Outcome.failure(counter="http_errors", bytes=nbytes, status_code=status)

    def summarize(self, result: ModeResult):
        result.detail = f"Speed: {result.throughput:.2f} req/s"
        if self.config and self.verbose >= 1 and not self.config.quiet and result.total:
            self.log_info(
                f"Completed in {result.elapsed:.2f}s | "
                f"successful {result.successful} ({result.successful * 100 // result.total}%) | "
                f"failed {result.failed} ({result.failed * 100 // result.total}%) | "
                f"{result.throughput:.2f} req/s"
            )
