#Filename: structures.py
"""
CORE DATA STRUCTURES
Single Source of Truth (SSOT) for the PAC server value types.
Configuration is immutable per server run; a change means stop + start.
"""

import socket
from typing import NamedTuple, Optional, Dict, Any

# -- Constants --

LOOPBACK_V4: str = "127.0.0.1"
LOOPBACK_V6: str = "::1"
ANY_V4: str = "0.0.0.0"
ANY_V6: str = "::"

# -- Types --

class ServerConfig(NamedTuple):
    """
    Read-only snapshot handed to PacServer.start().
    Use ``config._replace(...)`` to derive a changed configuration.
    """
    share_over_lan: bool = False
    ipv6: bool = False
    secure_local_pac: bool = True
    proxy_port: int = 1080
    pac_port: Optional[int] = None
    local_host: Optional[str] = None
    use_socks: bool = False
    resource_name: str = "pac"
    read_timeout: float = 60.0

    @property
    def bind_address(self) -> str:
        """Loopback or any-interface address for the configured family."""
        if self.share_over_lan:
            return ANY_V6 if self.ipv6 else ANY_V4
        return LOOPBACK_V6 if self.ipv6 else LOOPBACK_V4

    @property
    def family(self) -> int:
        return socket.AF_INET6 if self.ipv6 else socket.AF_INET

    @property
    def url_host(self) -> str:
        """Host written into the shareable PAC URL."""
        if self.local_host:
            return self.local_host
        return f"[{LOOPBACK_V6}]" if self.ipv6 else LOOPBACK_V4

class RequestMatch:
    """
    Outcome of matching one raw request against the served resource.
    Optimized __slots__ - one instance per accepted connection.
    """
    __slots__ = ('host_match', 'path_match', 'secret_match')

    def __init__(
        self,
        host_match: bool = False,
        path_match: bool = False,
        secret_match: bool = False
    ) -> None:
        self.host_match = host_match
        self.path_match = path_match
        self.secret_match = secret_match

    @property
    def matched(self) -> bool:
        """Request targets this server and the PAC resource."""
        return self.host_match and self.path_match

    @property
    def should_respond(self) -> bool:
        # Secret mismatch is observably identical to a non-match.
        return self.matched and self.secret_match

    def to_dict(self) -> Dict[str, Any]:
        """Converts the match result to a dictionary for logging."""
        return {
            'host_match': self.host_match,
            'path_match': self.path_match,
            'secret_match': self.secret_match
        }

    def __repr__(self) -> str:
        flags = ", ".join(f"{k}={v}" for k, v in self.to_dict().items())
        return f"<RequestMatch {flags}>"
