# tests/test_pac_integration.py
"""
End-to-end tests over real loopback sockets.
"""
import asyncio
import pytest
import httpx

from structures import ServerConfig

async def exchange(port: int, payload: bytes, host: str = "127.0.0.1") -> bytes:
    """Sends one raw request and reads until the server closes."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        writer.write(payload)
        await writer.drain()
        try:
            return await asyncio.wait_for(reader.read(), timeout=5.0)
        except ConnectionResetError:
            return b""
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

def get_request(port: int, target: str = "/pac", method: str = "GET", host: str = None) -> bytes:
    host = host or f"127.0.0.1:{port}"
    return f"{method} {target} HTTP/1.1\r\nHost: {host}\r\n\r\n".encode()

@pytest.mark.asyncio
async def test_serves_pac_without_secret(pac_server, provider, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))

    raw = await exchange(port, get_request(port))
    head, _, body = raw.partition(b"\r\n\r\n")
    assert head.startswith(b"HTTP/1.1 200 OK\r\n")
    assert f"Content-Length: {len(body)}".encode() in head
    lines = body.decode().split("\n")
    assert lines[0] == "var __PROXY__ = 'PROXY 127.0.0.1:1080;';"
    assert lines[1] == provider.content

@pytest.mark.asyncio
async def test_secret_required_but_missing(pac_server, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=True))

    assert await exchange(port, get_request(port)) == b""
    assert await exchange(port, get_request(port, "/pac?hash=abc&secret=wrong")) == b""

@pytest.mark.asyncio
async def test_secret_present(pac_server, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=True))

    raw = await exchange(port, get_request(port, f"/pac?hash=abc&secret={pac_server.secret}"))
    assert raw.startswith(b"HTTP/1.1 200 OK")

@pytest.mark.asyncio
async def test_post_is_dropped(pac_server, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))
    assert await exchange(port, get_request(port, method="POST")) == b""

@pytest.mark.asyncio
@pytest.mark.parametrize("target, host", [
    ("/pac", "example.com"),
    ("/pac", "localhost:{port}"),
    ("/proxy.pac", None),
    ("/", None),
])
async def test_non_matching_requests_dropped(pac_server, unused_tcp_port, target, host):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))
    host = host.format(port=port) if host else None
    assert await exchange(port, get_request(port, target, host=host)) == b""

@pytest.mark.asyncio
async def test_resource_case_insensitive(pac_server, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))
    raw = await exchange(port, get_request(port, "/PAC"))
    assert raw.startswith(b"HTTP/1.1 200 OK")

@pytest.mark.asyncio
async def test_garbage_then_valid_request(pac_server, unused_tcp_port):
    """A malformed client must not stop the accept loop."""
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))
    assert await exchange(port, b"\x16\x03\x01\x00\xff garbage") == b""
    raw = await exchange(port, get_request(port))
    assert raw.startswith(b"HTTP/1.1 200 OK")

@pytest.mark.asyncio
async def test_idle_client_does_not_block_others(pac_server, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))

    idle_reader, idle_writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        raw = await exchange(port, get_request(port))
        assert raw.startswith(b"HTTP/1.1 200 OK")
    finally:
        idle_writer.close()

@pytest.mark.asyncio
async def test_concurrent_requests(pac_server, provider, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=False))

    results = await asyncio.gather(*(exchange(port, get_request(port)) for _ in range(50)))

    expected = None
    for raw in results:
        head, _, body = raw.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 200 OK")
        assert body.decode().split("\n", 1)[1] == provider.content
        expected = expected or raw
        assert raw == expected

@pytest.mark.asyncio
async def test_httpx_fetches_published_url(pac_server, provider, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=True))

    async with httpx.AsyncClient(trust_env=False, timeout=5.0) as client:
        response = await client.get(pac_server.pac_url)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/x-ns-proxy-autoconfig"
    assert response.text.endswith(provider.content)

@pytest.mark.asyncio
async def test_httpx_without_secret_sees_disconnect(pac_server, unused_tcp_port):
    port = unused_tcp_port
    await pac_server.start(ServerConfig(pac_port=port, secure_local_pac=True))

    async with httpx.AsyncClient(trust_env=False, timeout=5.0) as client:
        with pytest.raises(httpx.TransportError):
            await client.get(f"http://127.0.0.1:{port}/pac")

@pytest.mark.asyncio
async def test_stop_releases_port(pac_server, unused_tcp_port):
    port = unused_tcp_port
    cfg = ServerConfig(pac_port=port, secure_local_pac=False)
    await pac_server.start(cfg)
    await pac_server.stop()

    with pytest.raises(OSError):
        await asyncio.open_connection("127.0.0.1", port)

    await pac_server.start(cfg)
    raw = await exchange(port, get_request(port))
    assert raw.startswith(b"HTTP/1.1 200 OK")
