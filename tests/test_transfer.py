import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from wanxiang_cli.core.filesystem import LocalFileSystem
from wanxiang_cli.core.orchestrator import DownloadOrchestrator
from wanxiang_cli.core.transfer import (
    MAX_CHUNK_SIZE,
    MIN_CHUNK_SIZE,
    StreamingTransfer,
    adapt_chunk_size,
    fetch_content_length,
)
from wanxiang_cli.models.progress import DownloadState

PAYLOAD = bytes(range(256)) * 1200


async def _serve_payload(request):
    return web.Response(body=PAYLOAD)


async def _serve_range(request):
    return web.Response(status=206, body=b"x", headers={"Content-Range": "bytes 0-0/5000"})


def _app(hits: list[str]) -> web.Application:
    async def serve_slow(request):
        # Chunked body a little longer than the size the release declares.
        hits.append(request.path)
        response = web.StreamResponse()
        await response.prepare(request)
        await response.write(b"a" * 1000)
        await asyncio.sleep(0.5)
        await response.write(b"b" * 40)
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_get("/pkg.zip", _serve_payload)
    app.router.add_get("/nohead", _serve_range, allow_head=False)
    app.router.add_get("/slow", serve_slow)
    return app


@pytest.fixture
def hits():
    return []


@pytest.fixture
def server(hits):
    return TestServer(_app(hits))


@pytest.mark.asyncio
async def test_streaming_fetch_writes_the_whole_body(server, tmp_path):
    await server.start_server()
    destination = tmp_path / "dl" / "pkg.zip"
    try:
        async with aiohttp.ClientSession() as session:
            handle = StreamingTransfer(session).start(str(server.make_url("/pkg.zip")), destination)
            await handle.wait()
    finally:
        await server.close()

    status = handle.snapshot()
    assert status.finished
    assert status.error is None
    assert status.received_bytes == status.total_bytes == len(PAYLOAD)
    assert destination.read_bytes() == PAYLOAD
    assert not (tmp_path / "dl" / "pkg.zip.part").exists()


@pytest.mark.asyncio
async def test_http_error_is_reported_on_the_handle(server, tmp_path):
    await server.start_server()
    destination = tmp_path / "missing.zip"
    try:
        async with aiohttp.ClientSession() as session:
            handle = StreamingTransfer(session).start(str(server.make_url("/missing")), destination)
            await handle.wait()
    finally:
        await server.close()

    status = handle.snapshot()
    assert not status.finished
    assert isinstance(status.error, aiohttp.ClientResponseError)
    assert not destination.exists()


@pytest.mark.asyncio
async def test_content_length_from_head(server):
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            size = await fetch_content_length(session, str(server.make_url("/pkg.zip")))
    finally:
        await server.close()

    assert size == len(PAYLOAD)


@pytest.mark.asyncio
async def test_content_length_falls_back_to_range_request(server):
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            size = await fetch_content_length(session, str(server.make_url("/nohead")))
    finally:
        await server.close()

    assert size == 5000


@pytest.mark.asyncio
async def test_orchestrated_streaming_download(server, tmp_path):
    await server.start_server()
    destination = tmp_path / "pkg.zip"
    emitted = []
    try:
        async with aiohttp.ClientSession() as session:
            orchestrator = DownloadOrchestrator(
                LocalFileSystem(),
                StreamingTransfer(session),
                poll_interval=0.05,
                stall_timeout=5.0,
                hard_timeout=30.0,
                throttle_interval=0,
            )
            task = await orchestrator.download(
                str(server.make_url("/pkg.zip")), destination, emitted.append
            )
    finally:
        await server.close()

    assert task.state is DownloadState.COMPLETED
    assert destination.read_bytes() == PAYLOAD
    assert emitted[-1].percent == 1.0


@pytest.mark.asyncio
async def test_low_size_hint_does_not_restart_a_healthy_download(server, hits, tmp_path):
    await server.start_server()
    destination = tmp_path / "pkg.zip"
    events = []
    try:
        async with aiohttp.ClientSession() as session:
            orchestrator = DownloadOrchestrator(
                LocalFileSystem(),
                StreamingTransfer(session),
                poll_interval=0.05,
                stall_timeout=5.0,
                hard_timeout=30.0,
                throttle_interval=0,
            )
            task = await orchestrator.download(
                str(server.make_url("/slow")),
                destination,
                on_event=events.append,
                expected_size=1000,
            )
    finally:
        await server.close()

    assert task.state is DownloadState.COMPLETED
    assert destination.read_bytes() == b"a" * 1000 + b"b" * 40
    assert hits == ["/slow"]
    assert events == []


def test_chunk_size_adapts_to_speed():
    assert adapt_chunk_size(0) == MIN_CHUNK_SIZE
    assert adapt_chunk_size(2 * 1024 * 1024) == 262144
    assert adapt_chunk_size(20 * 1024 * 1024) == MAX_CHUNK_SIZE
