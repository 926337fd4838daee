#Filename: pac_common.py
"""
PAC COMMON DEFINITIONS
Shared constants, exceptions and stateless helpers for the PAC server:
content hashing, secret generation, URL assembly and endpoint formatting.
"""

import base64
import hashlib
import ipaddress
import re
import secrets
from typing import Optional, Tuple, Union

__version__ = "1.0.0"

# -- Constants --
RESOURCE_NAME = "pac"
DEFAULT_PAC_PORT = 8123
DEFAULT_PROXY_PORT = 1080
RECV_BUFFER_SIZE = 4096
READ_TIMEOUT = 60.0
PORT_CHECK_TIMEOUT = 0.2
BIND_RETRIES = 3
SECRET_BYTES = 32
LISTEN_BACKLOG = 128
PAC_CONTENT_TYPE = "application/x-ns-proxy-autoconfig"
SERVER_NAME = f"PacServer/{__version__}"

_SECRET_PARAM_PATTERN = re.compile(r'([?&]secret=)[^&]*')

class PacServerError(Exception):
    """Base exception for PAC server startup failures."""

class PortInUseError(PacServerError):
    """Raised when the PAC port is already bound by another listener."""

    def __init__(self, port: int, message: Optional[str] = None):
        super().__init__(message or f"Port {port} already in use")
        self.port = port

class PortReservedError(PacServerError):
    """Raised when binding the PAC port is forbidden by the system."""

    def __init__(self, port: int, message: Optional[str] = None):
        super().__init__(message or f"Port {port} is reserved by system")
        self.port = port

# -- Stateless Helper Functions --

def url_token_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')

def compute_content_hash(content: Union[str, bytes]) -> str:
    """
    Fingerprint of the PAC script used for client-side cache busting.
    Not an authentication primitive.
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    digest = hashlib.md5(content, usedforsecurity=False).digest()
    return url_token_encode(digest)

def generate_secret() -> str:
    """Returns a fresh URL-safe token from 32 random bytes."""
    return url_token_encode(secrets.token_bytes(SECRET_BYTES))

def build_pac_url(
    host: str,
    port: int,
    secret_enabled: bool,
    secret: str,
    content_hash: str,
    resource_name: str = RESOURCE_NAME
) -> str:
    """Assembles the shareable PAC URL. Bare IPv6 hosts are bracketed."""
    used_secret = f"&secret={secret}" if secret_enabled else ""
    return f"http://{format_host(host)}:{port}/{resource_name}?hash={content_hash}{used_secret}"

def redact_secret(url: str) -> str:
    """Masks the secret query value so URLs can be logged."""
    return _SECRET_PARAM_PATTERN.sub(r'\1***', url)

def is_ipv6_address(host: str) -> bool:
    try:
        return ipaddress.ip_address(host.split('%', 1)[0]).version == 6
    except ValueError:
        return False

def format_host(host: str) -> str:
    """Brackets IPv6 literals for use in host:port strings."""
    return f"[{host}]" if is_ipv6_address(host) else host

def format_endpoint(address: object) -> str:
    """
    Textual 'host:port' form of a socket address tuple.
    IPv6 tuples (host, port, flowinfo, scope_id) render as '[host]:port'.
    """
    if not isinstance(address, tuple) or len(address) < 2:
        return ""
    host, port = address[0], address[1]
    return f"{format_host(str(host))}:{int(port)}"

def split_endpoint(address: object) -> Tuple[str, int]:
    """Returns (host, port) from a socket address tuple, or ("", 0)."""
    if isinstance(address, tuple) and len(address) >= 2:
        return str(address[0]), int(address[1])
    return "", 0
