"""Shared fixtures: temporary database, fake transcoder, webhook receiver.

Settings are instantiated at import time by several modules, so the required
environment is set before anything from hlsforge is imported.
"""

import json
import os

os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from pathlib import Path
from typing import Optional, Union
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from hlsforge.container import ServiceContainer
from hlsforge.core.config import Settings
from hlsforge.core.errors import TranscodeError
from hlsforge.modules.transcoding.ffmpeg import MANIFEST_NAME, THUMBNAIL_NAME, TranscodeOutput

API_KEY = "test-api-key"


class FakeTranscoder:
    """Writes a tiny HLS output instead of running ffmpeg."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.error: Optional[str] = None
        self.segments = 3

    def transcode(self, input_path: str, output_dir: str) -> TranscodeOutput:
        self.calls.append((input_path, output_dir))
        if self.error is not None:
            raise TranscodeError(self.error)

        output = Path(output_dir)
        output.mkdir(parents=True, exist_ok=True)
        lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:3"]
        for index in range(self.segments):
            (output / f"segment_{index:03d}.ts").write_bytes(b"\x47" * 188)
            lines += ["#EXTINF:3.0,", f"segment_{index:03d}.ts"]
        lines.append("#EXT-X-ENDLIST")
        (output / MANIFEST_NAME).write_text("\n".join(lines) + "\n")
        (output / THUMBNAIL_NAME).write_bytes(b"\xff\xd8\xff\xd9")
        return TranscodeOutput(
            output_dir=str(output),
            manifest_path=str(output / MANIFEST_NAME),
            thumbnail_path=str(output / THUMBNAIL_NAME),
            files=sorted(str(p) for p in output.iterdir()),
        )


class WebhookReceiver:
    """httpx MockTransport handler recording webhook requests.

    ``responses`` is consumed in order; each entry is a status code or an
    httpx exception class to raise. When empty, ``default_status`` is used.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list[Union[int, type]] = []
        self.default_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else self.default_status
        if isinstance(outcome, type):
            raise outcome("simulated failure", request=request)
        return httpx.Response(outcome, text="ok" if outcome == 200 else "nope")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        API_KEY=API_KEY,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'data' / 'videos.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        WORK_DIR=str(tmp_path / "work"),
        STORAGE_BACKEND="local",
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        STORAGE_PUBLIC_URL="https://cdn.example.com/streams",
        TUS_PUBLIC_URL="http://tus.example.com/files/",
        MAX_UPLOAD_SIZE=10 * 1024 * 1024,
        CALLBACK_TIMEOUT_SECONDS=1.0,
        CALLBACK_RETRY_BACKOFF_SECONDS=0,
        LOG_JSON=False,
    )


@pytest.fixture
def celery_mock() -> MagicMock:
    app = MagicMock()
    app.send_task.return_value = MagicMock(id="message-1")
    return app


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def webhook() -> WebhookReceiver:
    return WebhookReceiver()


@pytest_asyncio.fixture
async def container(app_settings, celery_mock, fake_transcoder, webhook):
    services = ServiceContainer(
        app_settings,
        celery_app=celery_mock,
        transcoder=fake_transcoder,
        http_transport=webhook.transport,
    )
    await services.initialize()
    yield services
    await services.shutdown()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {API_KEY}"}


def write_source_file(settings: Settings, upload_id: str) -> str:
    """Simulate tusd's file store: ``<UPLOAD_DIR>/<id>`` plus ``<id>.info``."""
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    source = upload_dir / upload_id
    source.write_bytes(b"not really a video")
    (upload_dir / f"{upload_id}.info").write_text("{}")
    return str(source)


@pytest.fixture
def make_source_file(app_settings):
    def make(upload_id: str) -> str:
        return write_source_file(app_settings, upload_id)

    return make
