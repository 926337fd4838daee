# pac_manager.py

"""
PAC Server lifecycle manager.
Owns the listening socket, the per-instance secret and the current PAC URL.
Bridges the core's diagnostic callback to `logging`.
"""

import asyncio
import logging
from typing import Optional, Any, Callable

import pac_core
from pac_common import (
    PacServerError, PortInUseError, BIND_RETRIES,
    compute_content_hash, build_pac_url, generate_secret, redact_secret
)
from port_allocator import get_free_port, is_port_in_use
from structures import ServerConfig

log = logging.getLogger("PacManager")

class PacServer:
    def __init__(self, content_provider: pac_core.PacContentProvider, external_callback: Optional[Callable[[str, Any], None]] = None):
        self.content_provider = content_provider
        self.external_callback = external_callback
        self._config = ServerConfig()
        self._secret: Optional[str] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._port = 0
        self._pac_url = ""

    # -- Read-only state --

    @property
    def secret(self) -> str:
        """Generated on first use, then frozen for the life of this instance."""
        if not self._secret:
            self._secret = generate_secret()
        return self._secret

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def port(self) -> int:
        return self._port

    @property
    def pac_url(self) -> str:
        return self._pac_url

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def current_pac_url(self) -> str:
        return self._pac_url

    # -- Diagnostics --

    def unified_callback(self, level: str, msg: Any) -> None:
        if level == "ERROR":
            log.error(f"[ERROR] {msg}")
        elif level == "SYSTEM":
            log.info(f"[SYSTEM] {msg}")
        elif level == "SERVED":
            log.info(f"[SERVED] {msg}")
        else:
            log.debug(f"[{level}] {msg}")

        if self.external_callback:
            try:
                self.external_callback(level, msg)
            except Exception: # pylint: disable=broad-exception-caught
                pass

    # -- PAC URL --

    def update_pac_url(self, config: Optional[ServerConfig] = None) -> str:
        """Recomputes the URL from the configuration and the current content."""
        if config is not None:
            self._config = config
        cfg = self._config
        try:
            content = self.content_provider.get_pac_content()
        except OSError as e:
            raise PacServerError(f"Cannot read PAC content: {e}") from e
        content_hash = compute_content_hash(content)
        self._pac_url = build_pac_url(
            cfg.url_host, self._port, cfg.secure_local_pac, self.secret,
            content_hash, cfg.resource_name
        )
        log.debug(f"Set PAC URL: {redact_secret(self._pac_url)}")
        if self.external_callback:
            try:
                self.external_callback("PAC_URL", self._pac_url)
            except Exception: # pylint: disable=broad-exception-caught
                pass
        return self._pac_url

    def on_content_changed(self, event: str, path: str) -> None:
        """Content listener: the URL changes, the listener keeps running."""
        log.info(f"{event}: {path}")
        self.update_pac_url()

    # -- Lifecycle --

    def _resolve_port(self, config: ServerConfig) -> int:
        port = config.pac_port if config.pac_port else get_free_port(config.ipv6)
        if is_port_in_use(port, config.ipv6):
            raise PortInUseError(port)
        return port

    async def start(self, config: ServerConfig) -> None:
        """
        Starts (or restarts) the listener for `config`.
        Raises PacServerError subclasses when the server cannot start.
        """
        await self.stop()
        self._config = config
        attempts = 1 if config.pac_port else BIND_RETRIES

        secret = self.secret if config.secure_local_pac else None
        try:
            for attempt in range(1, attempts + 1):
                try:
                    self._port = self._resolve_port(config)
                    # Update the URL before serving so it is valid from the first request
                    self.update_pac_url()
                    self._server = await pac_core.start_pac_listener(
                        config, self._port, self.content_provider, secret, self.unified_callback
                    )
                    return
                except PortInUseError as e:
                    if attempt >= attempts:
                        raise
                    log.warning(f"{e}; retrying with a new port ({attempt}/{attempts})")
        except PacServerError:
            # Nothing is bound, so no URL is published
            self._port = 0
            self._pac_url = ""
            raise

    async def stop(self) -> None:
        """Closes the listening socket. In-flight connections finish on their own."""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        self.unified_callback("SYSTEM", "PAC server stopped")
