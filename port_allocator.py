#Filename: port_allocator.py
"""
FREE PORT ALLOCATION
Ephemeral bind-to-zero probe plus a best-effort "already listening" check.
Both are racy by nature; the real bind in pac_core stays authoritative.
"""

import logging
import socket

from pac_common import DEFAULT_PAC_PORT, PORT_CHECK_TIMEOUT
from structures import LOOPBACK_V4, LOOPBACK_V6

logger = logging.getLogger(__name__)

def get_free_port(ipv6: bool = False) -> int:
    """
    Asks the TCP stack for an unused loopback port and releases it at once.
    Falls back to DEFAULT_PAC_PORT when the probe is denied.
    """
    family = socket.AF_INET6 if ipv6 else socket.AF_INET
    host = LOOPBACK_V6 if ipv6 else LOOPBACK_V4
    try:
        with socket.socket(family, socket.SOCK_STREAM) as probe:
            probe.bind((host, 0))
            probe.listen(1)
            return int(probe.getsockname()[1])
    except OSError as e:
        logger.warning(f"Free port probe failed ({e}); using default port {DEFAULT_PAC_PORT}")
        return DEFAULT_PAC_PORT

def is_port_in_use(port: int, ipv6: bool = False, timeout: float = PORT_CHECK_TIMEOUT) -> bool:
    """
    Returns True when something already accepts connections on the loopback port.
    Any probe error counts as "not in use"; the bind result decides.
    """
    family = socket.AF_INET6 if ipv6 else socket.AF_INET
    host = LOOPBACK_V6 if ipv6 else LOOPBACK_V4
    try:
        with socket.socket(family, socket.SOCK_STREAM) as probe:
            probe.settimeout(timeout)
            return probe.connect_ex((host, port)) == 0
    except OSError as e:
        logger.debug(f"Port check for {port} skipped: {e}")
        return False
