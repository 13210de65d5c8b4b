"""Generation backends: the strategies that talk to an inference provider.

Every backend implements :class:`GenerationBackend`, so the submitter and
the tracker behave identically whichever one is injected.

Backends
--------
- :class:`ReplicateBackend` calls the Replicate predictions API directly.
  It needs the API token and therefore belongs on a server.
- :class:`RelayBackend` calls a self-hosted relay (``arqia-relay``), which
  holds the token and exposes the same contract over its own endpoints.
- :class:`EchoBackend` is an offline stand-in that "redesigns" a room by
  returning the source photo after a few polls.  Useful for local UI work.

Outbound Contract
-----------------
===========  =================================  ==========================
Operation    Replicate                          Relay
===========  =================================  ==========================
create       ``POST /predictions``              ``POST /generate``
get          ``GET /predictions/{id}``          ``GET /status/{id}``
cancel       ``POST /predictions/{id}/cancel``  ``POST /cancel/{id}``
run          ``POST /predictions`` + ``Prefer``  ``POST /generate`` (sync)
===========  =================================  ==========================

Error Mapping
-------------
- Network failures and malformed responses → :class:`TransportError`.
- A non-success answer to ``create`` → :class:`SubmissionFailedError`
  carrying the backend's own detail verbatim.
- A non-success answer to ``get`` → :class:`TransportError`.

Nothing here retries: predictions are billed and not idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

import httpx

from arqia.core.config import ArqiaConfig
from arqia.core.errors import SubmissionFailedError, TransportError
from arqia.core.images import SourceImage
from arqia.core.jobs import Prediction
from arqia.core.prompt_builder import PromptPayload

logger = logging.getLogger(__name__)

# Replicate holds a request open for at most this many seconds with
# ``Prefer: wait``.
REPLICATE_MAX_WAIT_SECONDS = 60


def _error_detail(response: httpx.Response) -> str:
    """Extract the backend's error message from a non-success response.

    Looks for ``detail``, ``error`` or ``message`` in a JSON body and falls
    back to the raw text, then to the status line.
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    text = response.text.strip()
    if text:
        return text
    return f"HTTP {response.status_code} {response.reason_phrase}".strip()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError(f"Malformed response from backend: {e}") from e
    if not isinstance(body, dict):
        raise TransportError("Malformed response from backend: expected a JSON object")
    return body


class GenerationBackend(ABC):
    """Abstract interface over an inference provider.

    Backends are async context managers; leaving the context closes any
    underlying HTTP connections.
    """

    name: str = "base"

    @abstractmethod
    async def create(self, image: SourceImage, payload: PromptPayload) -> Prediction:
        """Create a remote job and return its initial status.

        Raises:
            SubmissionFailedError: If the backend rejects the request.
            TransportError: If the backend cannot be reached.
        """

    @abstractmethod
    async def get(self, job_id: str) -> Prediction:
        """Query the current status of *job_id*.

        Raises:
            TransportError: If the status cannot be retrieved.
        """

    @abstractmethod
    async def cancel(self, job_id: str) -> None:
        """Ask the backend to stop *job_id*.

        Raises:
            TransportError: If the request fails.
        """

    @abstractmethod
    async def run(self, image: SourceImage, payload: PromptPayload, timeout: float) -> Prediction:
        """Create a job and wait up to *timeout* seconds for its final status.

        The returned prediction may still be non-terminal if the backend
        gave up waiting first; callers treat that as a timeout.

        Raises:
            SubmissionFailedError: If the backend rejects the request.
            TransportError: If the backend cannot be reached.
        """

    async def aclose(self) -> None:
        """Release held resources."""

    async def __aenter__(self) -> GenerationBackend:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class _HttpBackend(GenerationBackend):
    """Shared httpx plumbing for HTTP JSON backends."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{self.name}: {method} {path} failed: {e}")
            raise TransportError(f"Could not reach {self.name} backend: {e}") from e
        logger.debug(f"{self.name}: {method} {path} -> {response.status_code}")
        return response


class ReplicateBackend(_HttpBackend):
    """Backend that calls the Replicate predictions API directly.

    Args:
        api_token: Replicate API token.
        model_version: Model version hash; an ``owner/model:hash`` reference
            is accepted and reduced to the hash.
        base_url: API base URL.
        timeout: Per-request timeout in seconds.
        transport: Optional custom transport (useful for testing).
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        model_version: str,
        *,
        base_url: str = "https://api.replicate.com/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_token:
            raise ValueError("Replicate API token is required - set ARQIA_REPLICATE_API_TOKEN")
        super().__init__(
            base_url,
            headers={"Authorization": f"Token {api_token}"},
            timeout=timeout,
            transport=transport,
        )
        self.model_version = model_version.rsplit(":", 1)[-1]

    def _body(self, image: SourceImage, payload: PromptPayload) -> dict[str, Any]:
        return {
            "version": self.model_version,
            "input": payload.to_input(image.to_data_url()),
        }

    async def _create(
        self, image: SourceImage, payload: PromptPayload, **kwargs: Any
    ) -> Prediction:
        response = await self._request(
            "POST", "/predictions", json=self._body(image, payload), **kwargs
        )
        if not response.is_success:
            detail = _error_detail(response)
            logger.warning(f"Replicate rejected prediction ({response.status_code}): {detail}")
            raise SubmissionFailedError(detail, status_code=response.status_code)
        return Prediction.from_json(_json_body(response))

    async def create(self, image: SourceImage, payload: PromptPayload) -> Prediction:
        return await self._create(image, payload)

    async def get(self, job_id: str) -> Prediction:
        response = await self._request("GET", f"/predictions/{job_id}")
        if not response.is_success:
            raise TransportError(
                f"Failed to get prediction status ({response.status_code}): "
                f"{_error_detail(response)}"
            )
        return Prediction.from_json(_json_body(response))

    async def cancel(self, job_id: str) -> None:
        response = await self._request("POST", f"/predictions/{job_id}/cancel")
        if not response.is_success:
            raise TransportError(
                f"Failed to cancel prediction ({response.status_code}): {_error_detail(response)}"
            )

    async def run(self, image: SourceImage, payload: PromptPayload, timeout: float) -> Prediction:
        wait = max(1, min(int(timeout), REPLICATE_MAX_WAIT_SECONDS))
        return await self._create(
            image,
            payload,
            headers={"Prefer": f"wait={wait}"},
            timeout=httpx.Timeout(self._timeout + wait),
        )


class RelayBackend(_HttpBackend):
    """Backend that calls a self-hosted ``arqia-relay``.

    The relay composes the prompt itself from the style id, keeping the
    provider credentials and prompt text server-side.

    Args:
        base_url: Base URL of the relay's API routes (e.g.
            ``"https://relay.example.com/api"``).
        timeout: Per-request timeout in seconds.
        transport: Optional custom transport (useful for testing).
    """

    name = "relay"

    # Relay error kinds that describe a finished job rather than a refusal.
    _TERMINAL_KINDS = {
        "generation_failed": "failed",
        "canceled": "canceled",
        "timed_out": "timed_out",
    }

    def _body(self, image: SourceImage, payload: PromptPayload, mode: str) -> dict[str, Any]:
        return {"image": image.to_data_url(), "style": payload.style_id, "mode": mode}

    async def create(self, image: SourceImage, payload: PromptPayload) -> Prediction:
        response = await self._request("POST", "/generate", json=self._body(image, payload, "async"))
        if not response.is_success:
            raise SubmissionFailedError(_error_detail(response), status_code=response.status_code)
        body = _json_body(response)
        return Prediction(id=str(body.get("jobId", "")), status=str(body.get("status", "")))

    async def get(self, job_id: str) -> Prediction:
        response = await self._request("GET", f"/status/{job_id}")
        if not response.is_success:
            raise TransportError(
                f"Failed to get job status ({response.status_code}): {_error_detail(response)}"
            )
        body = _json_body(response)
        return Prediction(
            id=str(body.get("jobId", job_id)),
            status=str(body.get("status", "")),
            output=body.get("imageUrl"),
            error=body.get("error"),
        )

    async def cancel(self, job_id: str) -> None:
        response = await self._request("POST", f"/cancel/{job_id}")
        if not response.is_success:
            raise TransportError(
                f"Failed to cancel job ({response.status_code}): {_error_detail(response)}"
            )

    async def run(self, image: SourceImage, payload: PromptPayload, timeout: float) -> Prediction:
        response = await self._request(
            "POST",
            "/generate",
            json=self._body(image, payload, "sync"),
            timeout=httpx.Timeout(self._timeout + timeout),
        )
        if not response.is_success:
            detail = _error_detail(response)
            kind = None
            try:
                kind = response.json().get("kind")
            except (ValueError, AttributeError):
                pass
            status = self._TERMINAL_KINDS.get(kind)
            if status is not None:
                return Prediction(id="", status=status, error=detail)
            raise SubmissionFailedError(detail, status_code=response.status_code)
        body = _json_body(response)
        return Prediction(
            id=str(body.get("jobId", "")), status="succeeded", output=body.get("imageUrl")
        )


class EchoBackend(GenerationBackend):
    """Offline backend that returns the source photo as the "redesign".

    Each job reports ``processing`` for ``processing_polls`` status queries
    and then ``succeeded`` with the source photo as a ``data:`` URL.  A job is
    forgotten once it is canceled or a status query has reported it
    finished; later queries for it fail like queries for an unknown id.

    Args:
        processing_polls: Status queries answered with ``processing``.
    """

    name = "mock"

    def __init__(self, processing_polls: int = 2) -> None:
        self.processing_polls = processing_polls
        self._jobs: dict[str, dict[str, Any]] = {}

    @property
    def active_jobs(self) -> int:
        """Jobs created and not yet reported finished."""
        return len(self._jobs)

    async def create(self, image: SourceImage, payload: PromptPayload) -> Prediction:
        job_id = f"echo_{uuid.uuid4().hex[:12]}"
        self._jobs[job_id] = {"polls": 0, "output": image.to_data_url()}
        logger.info(f"Echo job {job_id} created for style {payload.style_id}")
        return Prediction(id=job_id, status="starting")

    async def get(self, job_id: str) -> Prediction:
        job = self._jobs.get(job_id)
        if job is None:
            raise TransportError(f"Failed to get job status (404): Unknown job {job_id}")
        job["polls"] += 1
        if job["polls"] <= self.processing_polls:
            return Prediction(id=job_id, status="processing")
        del self._jobs[job_id]
        return Prediction(id=job_id, status="succeeded", output=[job["output"]])

    async def cancel(self, job_id: str) -> None:
        if self._jobs.pop(job_id, None) is None:
            raise TransportError(f"Failed to cancel job (404): Unknown job {job_id}")

    async def run(self, image: SourceImage, payload: PromptPayload, timeout: float) -> Prediction:
        await asyncio.sleep(0)
        return Prediction(
            id=f"echo_{uuid.uuid4().hex[:12]}",
            status="succeeded",
            output=[image.to_data_url()],
        )


def create_backend(
    config: ArqiaConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GenerationBackend:
    """Instantiate the backend selected by ``config.backend``.

    Args:
        config: Application configuration.
        transport: Optional httpx transport for the HTTP backends.

    Returns:
        A ready-to-use :class:`GenerationBackend`.

    Raises:
        ValueError: If the replicate backend is selected without a token.
    """
    if config.backend == "replicate":
        return ReplicateBackend(
            config.replicate_api_token,
            config.replicate_model_version,
            base_url=config.replicate_api_url,
            timeout=config.request_timeout,
            transport=transport,
        )
    if config.backend == "relay":
        return RelayBackend(config.relay_url, timeout=config.request_timeout, transport=transport)
    return EchoBackend(processing_polls=config.mock_processing_polls)
