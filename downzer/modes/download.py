"""
Download Mode

Fetches every concrete target and stores accepted payloads under the
output directory.

Outcomes:
- downloaded  success, payload written
- ignored     skipped, content type not accepted
- duplicates  skipped, identical payload already stored by this task
- not_found   failure, HTTP 404
- errors      failure, any other HTTP or transport error
"""

import asyncio
import hashlib
import threading
from pathlib import Path
from typing import Set

import httpx

from ..core.models import ModeResult
from ..core.utils import target_filename, write_unique_file
from .base import BaseMode, Outcome


class DownloadMode(BaseMode):
    """File download mode."""

    name = "download"

    def __init__(self):
        super().__init__()
        self._seen: Set[str] = set()
        self._seen_lock = threading.Lock()

    def _accepts(self, content_type: str) -> bool:
        if not self.config.content_types:
            return True
        content_type = content_type.lower()
        return any(ct.lower() in content_type for ct in self.config.content_types)

    def _is_duplicate(self, payload: bytes) -> bool:
        digest = hashlib.sha256(payload).hexdigest()
        with self._seen_lock:
            if digest in self._seen:
                return True
            self._seen.add(digest)
            return False

    async def process(self, index: int, target: str, client: httpx.AsyncClient) -> Outcome:
        self.log_debug(f"Downloading: {target}")

        async with client.stream("GET", target) as response:
            status = response.status_code
            if status == 404:
                return Outcome.failure(counter="not_found", status_code=status)
            if not response.is_success:
                if self.verbose >= 1:
                    self.log_warning(f"[ERROR] {target}: HTTP {status}")
                return Outcome.failure(status_code=status, message=f"HTTP {status}")

            content_type = response.headers.get("content-type", "")
            if not self._accepts(content_type):
                self.log_debug(f"Ignored {target} ({content_type or 'no content type'})")
                return Outcome.skipped(counter="ignored", status_code=status)

            payload = await response.aread()

        if self._is_duplicate(payload):
            self.log_debug(f"Duplicate payload: {target}")
            return Outcome.skipped(counter="duplicates", status_code=status)

        name = target_filename(target, index)
        path = await asyncio.to_thread(write_unique_file, Path(self.config.outdir), name, payload)

        if self.verbose >= 2:
            self.log_info(f"[OK] {path} ({len(payload)} bytes)")

        return Outcome.success(len(payload), counter="downloaded", status_code=status)

    def summarize(self, result: ModeResult):
        c = result.counters
        result.detail = (
            f"Downloaded: {c.get('downloaded', 0)}, "
            f"Ignored: {c.get('ignored', 0)}, "
            f"Duplicates: {c.get('duplicates', 0)}, "
            f"Not found: {c.get('not_found', 0)}, "
            f"Errors: {c.get('errors', 0)}, "
            f"Bytes: {result.bytes}"
        )
