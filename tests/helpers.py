"""Test doubles for transfers, orchestrators and HTTP sessions."""

import shutil
from pathlib import Path

from wanxiang_cli.core.transfer import TransferStatus


class ScriptedHandle:
    """Replays a fixed list of statuses, one per poll, repeating the last one."""

    def __init__(self, destination: Path, steps: list[TransferStatus], write_on_finish: bool):
        self.destination = destination
        self.steps = steps
        self.write_on_finish = write_on_finish
        self.index = 0
        self.cancelled = False

    def snapshot(self) -> TransferStatus:
        step = self.steps[min(self.index, len(self.steps) - 1)]
        self.index += 1
        if step.finished and self.write_on_finish and not self.destination.exists():
            self.destination.parent.mkdir(parents=True, exist_ok=True)
            self.destination.write_bytes(b"x" * (step.received_bytes or 1))
        return step

    async def cancel(self) -> None:
        self.cancelled = True


class ScriptedTransfer:
    """Hands out one scripted handle per ``start`` call."""

    def __init__(self, *scripts: list[TransferStatus], write_on_finish: bool = True):
        self.scripts = list(scripts)
        self.write_on_finish = write_on_finish
        self.handles: list[ScriptedHandle] = []

    def start(self, url: str, destination: Path) -> ScriptedHandle:
        handle = ScriptedHandle(destination, self.scripts.pop(0), self.write_on_finish)
        self.handles.append(handle)
        return handle


def growing(count: int, step: int = 10, total: int | None = None) -> list[TransferStatus]:
    return [TransferStatus(received_bytes=(i + 1) * step, total_bytes=total) for i in range(count)]


class CopyingOrchestrator:
    """Stands in for the download orchestrator by copying local payloads."""

    def __init__(self, payloads: dict[str, Path | bytes]):
        self.payloads = payloads
        self.calls: list[str] = []

    async def download(self, url, destination, on_progress=None, on_event=None,
                       cancel_event=None, expected_size=None):
        self.calls.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        payload = self.payloads[url]
        if isinstance(payload, Path):
            shutil.copyfile(payload, destination)
        else:
            destination.write_bytes(payload)


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, headers: dict | None = None):
        self.status = status
        self.reason = "OK" if status < 400 else "Error"
        self._payload = payload
        self.headers = headers or {}

    async def json(self, content_type=None):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Serves canned responses keyed by URL and records every request."""

    def __init__(self, routes: dict[str, FakeResponse]):
        self.routes = routes
        self.requests: list[tuple[str, dict]] = []

    def get(self, url, headers=None, **kwargs):
        self.requests.append((url, dict(headers or {})))
        return self.routes.get(url) or FakeResponse(404, {"message": "Not Found"})
