# conftest.py
import sys
import os
import pytest
import pytest_asyncio
from unittest.mock import MagicMock, AsyncMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from pac_manager import PacServer

PAC_SCRIPT = "function FindProxyForURL(url, host) { return __PROXY__ + ' DIRECT'; }"

class StaticContentProvider:
    """In-memory PAC content provider."""
    def __init__(self, content: str = PAC_SCRIPT):
        self.content = content
        self.calls = 0

    def get_pac_content(self) -> str:
        self.calls += 1
        return self.content

@pytest.fixture
def pac_content():
    return PAC_SCRIPT

@pytest.fixture
def provider(pac_content):
    return StaticContentProvider(pac_content)

@pytest.fixture
def make_writer():
    """
    Builds a StreamWriter mock: sync methods on MagicMock,
    AsyncMock for drain/wait_closed.
    """
    def _make(sockname=("127.0.0.1", 8123), peername=("127.0.0.1", 50000), sock=None):
        writer = MagicMock()
        writer.drain = AsyncMock()
        writer.wait_closed = AsyncMock()
        writer.is_closing.return_value = False
        writer.can_write_eof.return_value = True
        extra = {"sockname": sockname, "peername": peername, "socket": sock}
        writer.get_extra_info.side_effect = lambda key, default=None: extra.get(key, default)
        return writer
    return _make

@pytest_asyncio.fixture
async def pac_server(provider):
    server = PacServer(provider)
    yield server
    await server.stop()
