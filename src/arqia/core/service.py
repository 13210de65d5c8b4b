"""Redesign service: the single entry point for callers.

:class:`RedesignService` wires the pieces together::

    (photo, style id) ──► compose ──► submit ──► track ──► deliver
                          prompt      backend    tracker   result / error

Validation errors (:class:`UnknownStyleError`, :class:`InvalidImageError`)
are raised before any network call.  Nothing is retried.

Usage
-----
::

    from arqia.core.config import config
    from arqia.core.service import RedesignService

    service = RedesignService.from_config(config)
    photo = SourceImage(data=jpeg_bytes, mime_type="image/jpeg")

    result = await service.generate(photo, "minimalista", on_progress=print)
    print(result.image_url)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Literal

from arqia.core.backends import GenerationBackend, create_backend
from arqia.core.config import ArqiaConfig
from arqia.core.delivery import RedesignResult, deliver
from arqia.core.images import SourceImage
from arqia.core.jobs import JobHandle, JobSnapshot, JobStore
from arqia.core.prompt_builder import (
    DEFAULT_PARAMS,
    GenerationRequest,
    PromptPayload,
    TechnicalParams,
)
from arqia.core.styles import StyleCatalog, default_catalog
from arqia.core.submitter import JobSubmitter
from arqia.core.tracker import JobTracker, ProgressCallback, TerminalEvent, TrackerEvent

logger = logging.getLogger(__name__)

GenerationMode = Literal["polling", "blocking"]


class RedesignService:
    """Facade over prompt composition, submission, tracking and delivery.

    Args:
        backend: Generation backend strategy.
        tracker: Job tracker bound to the same backend; built with default
            settings when omitted.
        catalog: Style catalog used to resolve style ids.
        params: Default technical parameters for every request.
        max_image_bytes: Size limit for source photos.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        tracker: JobTracker | None = None,
        *,
        catalog: StyleCatalog = default_catalog,
        params: TechnicalParams = DEFAULT_PARAMS,
        max_image_bytes: int | None = None,
    ) -> None:
        self.backend = backend
        self.tracker = tracker if tracker is not None else JobTracker(backend)
        self.catalog = catalog
        self.params = params
        self.submitter = JobSubmitter(backend, max_image_bytes=max_image_bytes)

    @classmethod
    def from_config(
        cls,
        config: ArqiaConfig,
        backend: GenerationBackend | None = None,
        store: JobStore | None = None,
    ) -> RedesignService:
        """Build a service from configuration.

        Args:
            config: Application configuration.
            backend: Backend to use; created from *config* when omitted.
            store: Shared job store; a private one is created when omitted.
        """
        backend = backend if backend is not None else create_backend(config)
        return cls(
            backend,
            JobTracker.from_config(backend, config, store),
            max_image_bytes=config.max_image_bytes,
        )

    def prepare(
        self,
        image: SourceImage,
        style_id: str,
        params: TechnicalParams | None = None,
    ) -> tuple[GenerationRequest, PromptPayload]:
        """Resolve the style and compose the payload, without network access.

        The photo is not inspected here; the submitter validates it once,
        right before the backend call.

        Raises:
            UnknownStyleError: If *style_id* is not in the catalog.
        """
        request = GenerationRequest.create(image, style_id, params or self.params, self.catalog)
        return request, request.compose(self.catalog)

    async def submit(
        self,
        image: SourceImage,
        style_id: str,
        params: TechnicalParams | None = None,
    ) -> JobHandle:
        """Validate, submit, and start tracking a job without waiting for it.

        Returns:
            Handle of the newly tracked job; drive it with :meth:`wait` or
            let another task call the tracker.
        """
        request, payload = self.prepare(image, style_id, params)
        handle = await self.submitter.submit(request.source_image, payload)
        self.tracker.start(handle, style_id=request.style_id)
        return handle

    async def wait(self, handle: JobHandle, on_progress: ProgressCallback | None = None) -> RedesignResult:
        """Poll a submitted job to completion and deliver its outcome."""
        job = await self.tracker.track(handle, on_progress)
        return deliver(job)

    async def generate(
        self,
        image: SourceImage,
        style_id: str,
        on_progress: ProgressCallback | None = None,
        *,
        mode: GenerationMode = "polling",
        params: TechnicalParams | None = None,
    ) -> RedesignResult:
        """Redesign *image* in the style *style_id*.

        Args:
            image: Source room photo.
            style_id: Catalog key of the selected style.
            on_progress: Optional progress callback (polling mode only).
            mode: ``"polling"`` to query status at a fixed interval, or
                ``"blocking"`` for a single call that waits for the result.
            params: Technical parameter overrides.

        Returns:
            The redesigned image URL.

        Raises:
            UnknownStyleError: Style not in the catalog (no network call).
            InvalidImageError: Photo unusable (no network call).
            SubmissionFailedError: Backend rejected the request.
            GenerationFailedError: Backend reported a failure.
            GenerationCanceledError: Job was canceled.
            GenerationTimedOutError: Time budget exhausted.
            TransportError: Backend unreachable.
        """
        if mode == "blocking":
            request, payload = self.prepare(image, style_id, params)
            self.submitter.validate(request.source_image)
            logger.info(f"Blocking {style_id} redesign via {self.backend.name}")
            job = await self.tracker.run_blocking(request.source_image, payload)
            return deliver(job)
        if mode != "polling":
            raise ValueError(f"Unknown generation mode: {mode!r}")

        handle = await self.submit(image, style_id, params)
        return await self.wait(handle, on_progress)

    async def stream(
        self,
        image: SourceImage,
        style_id: str,
        params: TechnicalParams | None = None,
    ) -> AsyncIterator[TrackerEvent]:
        """Submit and yield progress events, ending with one terminal event.

        The terminal event carries the finished job; pass ``event.job`` to
        :func:`~arqia.core.delivery.deliver` to obtain the outcome.
        """
        handle = await self.submit(image, style_id, params)
        async with aclosing(self.tracker.events(handle)) as events:
            async for event in events:
                yield event
                if isinstance(event, TerminalEvent):
                    return

    async def cancel(self, job_id: str) -> None:
        """Cancel *job_id*; a no-op if it is unknown or already finished."""
        await self.tracker.cancel(job_id)

    async def status(self, job_id: str) -> JobSnapshot:
        return await self.tracker.status(job_id)

    async def aclose(self) -> None:
        await self.backend.aclose()
