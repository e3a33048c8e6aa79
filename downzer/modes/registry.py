"""
Mode Registry

Closed set of mode kinds and the dispatcher that maps a mode name to its
implementation. Resolution happens once per task, before any target is
generated.
"""

from enum import Enum
from typing import Dict, List, Type

from ..core.exceptions import ModeNotImplementedError, UnknownModeError
from .base import BaseMode
from .download import DownloadMode
from .unimplemented import (
    FTPMode,
    IMAPMode,
    POP3Mode,
    PortScanMode,
    SMTPMode,
    SSHMode,
    TelnetMode,
)
from .webrequest import WebRequestMode


class ModeKind(str, Enum):
    """Execution modes"""

    DOWNLOAD = "download"
    WEBREQUEST = "webrequest"
    PORTSCAN = "portscan"
    SSH = "ssh"
    FTP = "ftp"
    TELNET = "telnet"
    IMAP = "imap"
    POP3 = "pop3"
    SMTP = "smtp"


MODE_ALIASES: Dict[str, ModeKind] = {
    "web": ModeKind.WEBREQUEST,
    "port": ModeKind.PORTSCAN,
    "mail": ModeKind.IMAP,
}

MODE_REGISTRY: Dict[ModeKind, Type[BaseMode]] = {
    ModeKind.DOWNLOAD: DownloadMode,
    ModeKind.WEBREQUEST: WebRequestMode,
    ModeKind.PORTSCAN: PortScanMode,
    ModeKind.SSH: SSHMode,
    ModeKind.FTP: FTPMode,
    ModeKind.TELNET: TelnetMode,
    ModeKind.IMAP: IMAPMode,
    ModeKind.POP3: POP3Mode,
    ModeKind.SMTP: SMTPMode,
}


def available_modes() -> List[str]:
    """Names of every registered mode, implemented or not."""
    return [kind.value for kind in ModeKind]


def parse_mode_kind(name: str) -> ModeKind:
    """
    Map a mode name or alias to its kind.

    Raises:
        UnknownModeError: name matches no mode
    """
    key = (name or "").strip().lower()
    if key in MODE_ALIASES:
        return MODE_ALIASES[key]
    try:
        return ModeKind(key)
    except ValueError:
        raise UnknownModeError(name, available=available_modes())


def resolve_mode(name: str) -> Type[BaseMode]:
    """
    Resolve a mode name to an executable mode class.

    Raises:
        UnknownModeError: name matches no mode
        ModeNotImplementedError: mode is registered but lacks its protocol layer
    """
    kind = parse_mode_kind(name)
    mode_cls = MODE_REGISTRY[kind]
    if not mode_cls.implemented:
        raise ModeNotImplementedError(kind.value, mode_cls.requires)
    return mode_cls


def create_mode(name: str) -> BaseMode:
    """Fresh mode instance for one task run."""
    return resolve_mode(name)()
