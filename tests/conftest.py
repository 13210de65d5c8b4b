"""Shared pytest fixtures for Arqia tests."""

from __future__ import annotations

import asyncio
import io
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from arqia.api.main import create_app
from arqia.core.backends import EchoBackend, GenerationBackend
from arqia.core.config import ArqiaConfig
from arqia.core.images import SourceImage
from arqia.core.jobs import Prediction
from arqia.core.prompt_builder import PromptPayload
from arqia.core.service import RedesignService
from arqia.core.tracker import JobTracker


def make_image_bytes(fmt: str = "JPEG", size: tuple[int, int] = (64, 48)) -> bytes:
    """Encode a small solid-colour picture in *fmt*."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 190, 170)).save(buffer, format=fmt)
    return buffer.getvalue()


class ScriptedBackend(GenerationBackend):
    """In-memory backend that answers status queries from a script.

    Each ``get`` consumes the next scripted entry; the last entry repeats
    once the script runs out.  Entries may be :class:`Prediction` objects
    or exceptions to raise.  Every call is recorded so tests can assert on
    exactly what reached the "network".

    Args:
        script: Status answers, in order.
        job_id: Id returned by ``create``.
        create_status: Status returned by ``create``.
        create_error: Exception raised by ``create`` instead.
        cancel_error: Exception raised by ``cancel`` after recording it.
        cancel_delay: Seconds ``cancel`` waits before answering.
        run_result: Prediction (or exception) returned by ``run``.
        run_delay: Seconds ``run`` waits before answering.
        get_delay: Seconds ``get`` waits before answering.
    """

    name = "scripted"

    def __init__(
        self,
        script: list[Prediction | Exception] | None = None,
        *,
        job_id: str = "job_1",
        create_status: str = "starting",
        create_error: Exception | None = None,
        cancel_error: Exception | None = None,
        cancel_delay: float = 0.0,
        run_result: Prediction | Exception | None = None,
        run_delay: float = 0.0,
        get_delay: float = 0.0,
    ) -> None:
        self.script = list(script or [Prediction(id=job_id, status="processing")])
        self.job_id = job_id
        self.create_status = create_status
        self.create_error = create_error
        self.cancel_error = cancel_error
        self.cancel_delay = cancel_delay
        self.run_result = run_result
        self.run_delay = run_delay
        self.get_delay = get_delay

        self.create_calls: list[PromptPayload] = []
        self.get_calls: list[str] = []
        self.cancel_calls: list[str] = []
        self.run_calls: list[float] = []
        self.closed = False

    @property
    def network_calls(self) -> int:
        return (
            len(self.create_calls)
            + len(self.get_calls)
            + len(self.cancel_calls)
            + len(self.run_calls)
        )

    async def create(self, image: SourceImage, payload: PromptPayload) -> Prediction:
        self.create_calls.append(payload)
        if self.create_error is not None:
            raise self.create_error
        return Prediction(id=self.job_id, status=self.create_status)

    async def get(self, job_id: str) -> Prediction:
        self.get_calls.append(job_id)
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        index = min(len(self.get_calls), len(self.script)) - 1
        entry = self.script[index]
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def cancel(self, job_id: str) -> None:
        self.cancel_calls.append(job_id)
        if self.cancel_delay:
            await asyncio.sleep(self.cancel_delay)
        if self.cancel_error is not None:
            raise self.cancel_error

    async def run(self, image: SourceImage, payload: PromptPayload, timeout: float) -> Prediction:
        self.run_calls.append(timeout)
        if self.run_delay:
            await asyncio.sleep(self.run_delay)
        if isinstance(self.run_result, Exception):
            raise self.run_result
        if self.run_result is None:
            return Prediction(id=self.job_id, status="succeeded", output="https://cdn.test/out.jpg")
        return self.run_result

    async def aclose(self) -> None:
        self.closed = True


def processing(job_id: str = "job_1") -> Prediction:
    return Prediction(id=job_id, status="processing")


def succeeded(output, job_id: str = "job_1") -> Prediction:
    return Prediction(id=job_id, status="succeeded", output=output)


@pytest.fixture
def anyio_backend() -> str:
    """Run async tests on asyncio only; the tracker uses asyncio primitives."""
    return "asyncio"


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small, valid JPEG well under the size limit."""
    return make_image_bytes("JPEG")


@pytest.fixture
def source_image(jpeg_bytes: bytes) -> SourceImage:
    return SourceImage(data=jpeg_bytes, mime_type="image/jpeg")


@pytest.fixture
def test_config(monkeypatch) -> ArqiaConfig:
    """Configuration using the offline backend and no polling delay.

    ``ARQIA_*`` variables from the developer's shell are cleared so they
    cannot leak into test expectations.
    """
    for name in (
        "ARQIA_BACKEND",
        "ARQIA_REPLICATE_API_TOKEN",
        "ARQIA_POLL_INTERVAL",
        "ARQIA_MAX_POLL_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)
    return ArqiaConfig(
        backend="mock",
        poll_interval=0,
        max_poll_attempts=20,
        blocking_timeout=5,
        mock_processing_polls=1,
        _env_file=None,
    )


@pytest.fixture
def test_client(test_config: ArqiaConfig) -> Iterator[TestClient]:
    """FastAPI TestClient running the relay against the echo backend."""
    backend = EchoBackend(processing_polls=test_config.mock_processing_polls)
    tracker = JobTracker(backend, poll_interval=0.01, max_attempts=500)
    service = RedesignService(backend, tracker, max_image_bytes=test_config.max_image_bytes)
    app = create_app(test_config, service)
    with TestClient(app) as client:
        yield client
