#Filename: pac_core.py
"""
ASYNC PAC CORE
Listener and per-connection handler for the PAC endpoint.
Each connection gets one bounded read, then either one response or a drop.
"""

import asyncio
import errno
import socket
from typing import Optional, Callable, Protocol

from structures import ServerConfig
from pac_common import (
    PacServerError, PortInUseError, PortReservedError,
    RECV_BUFFER_SIZE, LISTEN_BACKLOG, PAC_CONTENT_TYPE, SERVER_NAME,
    format_endpoint, format_host, split_endpoint
)
from request_matcher import match_request

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, 'WSAEADDRINUSE', errno.EADDRINUSE)}
_ACCESS_DENIED = {errno.EACCES, getattr(errno, 'WSAEACCES', errno.EACCES)}

class PacContentProvider(Protocol):
    """Anything that can hand out the current PAC script."""

    def get_pac_content(self) -> str:
        ...

def format_proxy_directive(local_address: object, proxy_port: int, use_socks: bool = False) -> str:
    """
    Builds 'PROXY host:port;' from the connection's own local address.
    The port is the downstream proxy port, not the PAC port.
    """
    host, _ = split_endpoint(local_address)
    kind = "SOCKS5" if use_socks else "PROXY"
    return f"{kind} {format_host(host)}:{proxy_port};"

def build_response(directive: str, content: str, server_name: str = SERVER_NAME) -> bytes:
    """Wraps the PAC script in the only response this server ever sends."""
    body = (f"var __PROXY__ = '{directive}';\n" + content).encode('utf-8')
    head = (
        "HTTP/1.1 200 OK\r\n"
        f"Server: {server_name}\r\n"
        f"Content-Type: {PAC_CONTENT_TYPE}\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: Close\r\n"
        "\r\n"
    ).encode('ascii')
    return head + body

class PacConnectionHandler:
    """
    Handles a single accepted connection: accept -> read -> match -> respond | drop.
    The writer is closed exactly once on every path.
    """
    __slots__ = (
        'reader', 'writer', 'config', 'content_provider', 'secret', 'callback', 'client_addr'
    )

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: ServerConfig,
        content_provider: PacContentProvider,
        secret: Optional[str],
        manager_callback: Optional[Callable[[str, object], None]] = None
    ):
        self.reader = reader
        self.writer = writer
        self.config = config
        self.content_provider = content_provider
        # None disables the secret check
        self.secret = secret
        self.callback = manager_callback
        self.client_addr = format_endpoint(writer.get_extra_info('peername'))

    def log(self, level: str, msg: object) -> None:
        """Emits a diagnostic via the callback."""
        if self.callback:
            try:
                self.callback(level, msg)
            except Exception: # pylint: disable=broad-exception-caught
                pass

    def _is_tcp(self) -> bool:
        sock = self.writer.get_extra_info('socket')
        if sock is None:
            return True
        return sock.type == socket.SOCK_STREAM

    async def run(self) -> None:
        """Main connection routine."""
        try:
            if not self._is_tcp():
                self.log("DEBUG", f"Rejected non-TCP connection from {self.client_addr}")
                return

            try:
                data = await asyncio.wait_for(
                    self.reader.read(RECV_BUFFER_SIZE), timeout=self.config.read_timeout
                )
            except asyncio.TimeoutError:
                self.log("DEBUG", f"Read timeout from {self.client_addr}")
                return

            if not data:
                return

            local_addr = self.writer.get_extra_info('sockname')
            match = match_request(
                data, self.config.resource_name, format_endpoint(local_addr), self.secret
            )
            if not match.should_respond:
                if match.matched:
                    self.log("DEBUG", f"Secret mismatch from {self.client_addr}, dropping")
                return

            await self._send_response(local_addr, self.config.use_socks)
        except (ConnectionError, OSError) as e:
            self.log("DEBUG", f"Connection error from {self.client_addr}: {e}")
        except Exception as e: # pylint: disable=broad-exception-caught
            self.log("ERROR", f"PAC handler error ({self.client_addr}): {e}")
        finally:
            await self._close()

    async def _send_response(self, local_addr: object, use_socks: bool) -> None:
        """Sends the PAC response, then half-closes the send direction."""
        directive = format_proxy_directive(local_addr, self.config.proxy_port, use_socks)
        content = self.content_provider.get_pac_content()
        self.writer.write(build_response(directive, content))
        await self.writer.drain()
        if self.writer.can_write_eof():
            self.writer.write_eof()
        self.log("SERVED", f"PAC served to {self.client_addr}")

    async def _close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

def translate_bind_error(e: OSError, port: int) -> PacServerError:
    """Maps a bind OSError to the startup error taxonomy."""
    if e.errno in _ADDR_IN_USE:
        return PortInUseError(port)
    if e.errno in _ACCESS_DENIED:
        return PortReservedError(port)
    return PacServerError(f"Failed to bind PAC server on port {port}: {e}")

async def start_pac_listener(
    config: ServerConfig,
    port: int,
    content_provider: PacContentProvider,
    secret: Optional[str],
    manager_callback: Callable[[str, object], None]
) -> asyncio.AbstractServer:
    """
    Binds the listening socket and starts accepting.
    asyncio re-arms the accept loop; every connection runs in its own task.
    """
    async def _handle(r: asyncio.StreamReader, w: asyncio.StreamWriter) -> None:
        await PacConnectionHandler(r, w, config, content_provider, secret, manager_callback).run()

    host = config.bind_address
    try:
        server = await asyncio.start_server(
            _handle, host, port,
            family=config.family,
            backlog=LISTEN_BACKLOG
        )
    except OSError as e:
        raise translate_bind_error(e, port) from e

    manager_callback("SYSTEM", f"PAC server listening on {format_host(host)}:{port}")
    return server
