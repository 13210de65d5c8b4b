"""Job submission: validate the photo, then create exactly one remote job."""

from __future__ import annotations

import logging

from arqia.core.backends import GenerationBackend
from arqia.core.errors import SubmissionFailedError
from arqia.core.images import SourceImage, validate_image
from arqia.core.jobs import JobHandle
from arqia.core.prompt_builder import PromptPayload

logger = logging.getLogger(__name__)


class JobSubmitter:
    """Sends generation requests to a :class:`GenerationBackend`.

    Submission is never retried here.  Predictions are billed and not
    idempotent, so whether to try again is the caller's decision.

    Args:
        backend: Backend to submit to.
        max_image_bytes: Optional size limit enforced during validation.
    """

    def __init__(self, backend: GenerationBackend, max_image_bytes: int | None = None) -> None:
        self.backend = backend
        self.max_image_bytes = max_image_bytes

    def validate(self, image: SourceImage) -> None:
        """Validate *image* without touching the network.

        Raises:
            InvalidImageError: If the photo cannot be submitted.
        """
        validate_image(image, self.max_image_bytes)

    async def submit(self, image: SourceImage, payload: PromptPayload) -> JobHandle:
        """Create a remote job for *image* with the composed *payload*.

        Args:
            image: Source room photo.
            payload: Composed prompt and parameters.

        Returns:
            Handle carrying the backend-issued job id.

        Raises:
            InvalidImageError: If the photo fails validation (no request sent).
            SubmissionFailedError: If the backend rejects the request.
            TransportError: If the backend cannot be reached.
        """
        self.validate(image)

        logger.info(f"Submitting {payload.style_id} redesign to {self.backend.name}")
        prediction = await self.backend.create(image, payload)
        if not prediction.id:
            raise SubmissionFailedError("Backend accepted the request but returned no job id")

        logger.info(f"Job {prediction.id} created (status={prediction.status})")
        return JobHandle(job_id=prediction.id, status=prediction.status or "submitted")
