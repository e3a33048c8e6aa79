"""
Placeholder modes

Registered so they resolve through the same dispatcher, but their
protocol layers are not available. Resolving any of them raises
ModeNotImplementedError naming the missing capability.
"""

from typing import Any

from .base import BaseMode, Outcome


class UnimplementedMode(BaseMode):
    """Mode known to the dispatcher with no working protocol layer."""

    implemented = False
    requires = "protocol support"

    async def process(self, index: int, target: str, ctx: Any) -> Outcome:
        raise NotImplementedError(f"{self.mode_name} mode requires {self.requires}")


class PortScanMode(UnimplementedMode):
    name = "portscan"
    requires = "raw-socket SYN/ACK scanning"


class SSHMode(UnimplementedMode):
    name = "ssh"
    requires = "SSH client"


class FTPMode(UnimplementedMode):
    name = "ftp"
    requires = "FTP client"


class TelnetMode(UnimplementedMode):
    name = "telnet"
    requires = "Telnet client"


class IMAPMode(UnimplementedMode):
    name = "imap"
    requires = "IMAP client"


class POP3Mode(UnimplementedMode):
    name = "pop3"
    requires = "POP3 client"


class SMTPMode(UnimplementedMode):
    name = "smtp"
    requires = "SMTP client"
