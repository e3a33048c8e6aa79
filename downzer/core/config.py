"""
Downzer Configuration

Handles daemon configuration from environment variables and JSON files,
and the per-task ModeConfig snapshot produced by the CLI.
"""

import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .exceptions import DelayFormatError


DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_MAX_CONCURRENT = 20
DEFAULT_TIMEOUT = 30.0

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


def default_socket_path() -> str:
    """Well-known control socket path in the OS temp directory."""
    return str(Path(tempfile.gettempdir()) / "downzer_ipc.sock")


def default_config_path() -> Path:
    """User config file (~/.config/downzer/config.json)."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "downzer" / "config.json"


@dataclass
class Config:
    """Downzer daemon configuration"""

    # Task store
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "downzer"

    # Control plane
    socket_path: str = field(default_factory=default_socket_path)

    # Logging
    log_dir: Optional[str] = None

    # Scheduling
    progress_flush_interval: float = 1.0
    daemon_linger: float = 2.0

    # HTTP
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_json(cls, json_path: str) -> "Config":
        """Load configuration from JSON file"""
        with open(json_path, "r") as f:
            data = json.load(f)

        return cls(
            mongodb_url=data.get("mongodb_url", "mongodb://localhost:27017"),
            mongodb_db=data.get("mongodb_db", "downzer"),
            socket_path=data.get("socket_path") or default_socket_path(),
            log_dir=data.get("log_dir"),
            progress_flush_interval=float(data.get("progress_flush_interval", 1.0)),
            daemon_linger=float(data.get("daemon_linger", 2.0)),
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        return cls(
            mongodb_url=os.environ.get("MONGODB_URL", "mongodb://localhost:27017"),
            mongodb_db=os.environ.get("DOWNZER_DB", "downzer"),
            socket_path=os.environ.get("DOWNZER_SOCKET") or default_socket_path(),
            log_dir=os.environ.get("DOWNZER_LOG_DIR"),
            progress_flush_interval=float(os.environ.get("DOWNZER_PROGRESS_INTERVAL", "1.0")),
            daemon_linger=float(os.environ.get("DOWNZER_LINGER", "2.0")),
            user_agent=os.environ.get("DOWNZER_USER_AGENT", DEFAULT_USER_AGENT),
        )

    @classmethod
    def load(cls) -> "Config":
        """Environment config, overridden by the user config file if present"""
        config = cls.from_env()
        path = default_config_path()
        if path.exists():
            config.merge(cls.from_json(str(path)))
        return config

    def merge(self, other: "Config") -> "Config":
        """Merge another config into this one (other takes precedence for non-default values)"""
        defaults = Config()
        for field_name in self.__dataclass_fields__:
            other_val = getattr(other, field_name)
            if other_val is not None and other_val != getattr(defaults, field_name):
                setattr(self, field_name, other_val)
        return self

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors"""
        errors = []
        if not self.mongodb_url:
            errors.append("mongodb_url is required")
        if not self.socket_path:
            errors.append("socket_path is required")
        if self.progress_flush_interval <= 0:
            errors.append(f"Invalid progress_flush_interval: {self.progress_flush_interval}")
        if self.daemon_linger < 0:
            errors.append(f"Invalid daemon_linger: {self.daemon_linger}")
        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "mongodb_url": self.mongodb_url,
            "mongodb_db": self.mongodb_db,
            "socket_path": self.socket_path,
            "log_dir": self.log_dir,
            "progress_flush_interval": self.progress_flush_interval,
            "daemon_linger": self.daemon_linger,
            "user_agent": self.user_agent,
        }


# =============================================================================
# Pacing delay
# =============================================================================

_DELAY_RE = re.compile(r"^(\d+(?:\.\d+)?)x(\d+)$")


@dataclass(frozen=True)
class Delay:
    """
    Pacing delay applied by the scheduler between dispatches.

    "<ms>" sleeps the given milliseconds after every operation.
    "<sec>x<N>" sleeps the given seconds after every N operations.
    """

    seconds: float
    every: int = 1

    @classmethod
    def parse(cls, spec: Optional[str]) -> Optional["Delay"]:
        if spec is None or not str(spec).strip():
            return None
        spec = str(spec).strip()

        match = _DELAY_RE.match(spec)
        if match:
            every = int(match.group(2))
            if every < 1:
                raise DelayFormatError(f"Invalid delay: {spec}. N must be >= 1")
            return cls(seconds=float(match.group(1)), every=every)

        try:
            millis = float(spec)
        except ValueError:
            raise DelayFormatError(f"Invalid delay format: {spec}. Expected <ms> or <sec>x<N>")
        if millis < 0:
            raise DelayFormatError(f"Invalid delay: {spec}. Must be >= 0")
        return cls(seconds=millis / 1000.0, every=1)

    def is_due(self, count: int) -> bool:
        """Whether the delay applies after the count-th operation."""
        return self.seconds > 0 and count > 0 and count % self.every == 0

    def to_dict(self) -> dict:
        return {"seconds": self.seconds, "every": self.every}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Delay"]:
        if not data:
            return None
        return cls(seconds=float(data["seconds"]), every=int(data.get("every", 1)))


# =============================================================================
# Mode configuration snapshot
# =============================================================================

@dataclass(frozen=True)
class ModeConfig:
    """Validated, immutable configuration snapshot for a single task"""

    mode: str = "download"

    # HTTP
    method: str = "GET"
    data: Optional[str] = None
    data_file: Optional[str] = None
    download_body: bool = False
    content_types: Tuple[str, ...] = ()
    user_agent: Optional[str] = None
    proxy: Optional[str] = None

    # Scheduling
    timeout: float = DEFAULT_TIMEOUT
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    delay: Optional[Delay] = None

    # Output
    verbose: int = 0
    quiet: bool = False
    outdir: str = "."

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors"""
        errors = []

        if not self.mode:
            errors.append("mode is required")

        if self.method.upper() not in HTTP_METHODS:
            errors.append(f"Invalid HTTP method: {self.method}")

        if self.max_concurrent < 1:
            errors.append(f"Invalid max_concurrent: {self.max_concurrent}")

        if self.timeout <= 0:
            errors.append(f"Invalid timeout: {self.timeout}")

        if self.data is not None and self.data_file is not None:
            errors.append("data and data_file are mutually exclusive")

        if self.data_file is not None and not Path(self.data_file).is_file():
            errors.append(f"data_file not found: {self.data_file}")

        return errors

    def read_body(self) -> Optional[bytes]:
        """Request body from data or data_file."""
        if self.data is not None:
            return self.data.encode("utf-8")
        if self.data_file is not None:
            return Path(self.data_file).read_bytes()
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage"""
        return {
            "mode": self.mode,
            "method": self.method,
            "data": self.data,
            "data_file": self.data_file,
            "download_body": self.download_body,
            "content_types": list(self.content_types),
            "user_agent": self.user_agent,
            "proxy": self.proxy,
            "timeout": self.timeout,
            "max_concurrent": self.max_concurrent,
            "delay": self.delay.to_dict() if self.delay else None,
            "verbose": self.verbose,
            "quiet": self.quiet,
            "outdir": self.outdir,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ModeConfig":
        """Create ModeConfig from dictionary"""
        return cls(
            mode=data.get("mode", "download"),
            method=data.get("method", "GET"),
            data=data.get("data"),
            data_file=data.get("data_file"),
            download_body=data.get("download_body", False),
            content_types=tuple(data.get("content_types") or ()),
            user_agent=data.get("user_agent"),
            proxy=data.get("proxy"),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            max_concurrent=int(data.get("max_concurrent", DEFAULT_MAX_CONCURRENT)),
            delay=Delay.from_dict(data.get("delay")),
            verbose=int(data.get("verbose", 0)),
            quiet=data.get("quiet", False),
            outdir=data.get("outdir", "."),
        )
