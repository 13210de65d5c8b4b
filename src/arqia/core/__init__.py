"""Core functionality for room redesign generation.

This package holds everything between "a photo and a style id" and "an image
URL or a typed error":

- **styles**: Static catalog of decorating styles
- **prompt_builder**: Style prompt + technical qualifiers → request payload
- **images**: Source photo decoding and validation
- **backends**: Inference backend strategies (Replicate, relay, offline echo)
- **submitter**: Validates and submits one job
- **jobs**: Job records, lifecycle states, and the job store
- **tracker**: Polling/blocking state machine with timeout and cancellation
- **delivery**: Terminal job → result or typed error
- **service**: Facade tying the pieces together
- **config**: Pydantic Settings configuration (ARQIA_ prefix)

Usage Example
-------------
    from arqia.core import RedesignService, SourceImage, config

    service = RedesignService.from_config(config)
    result = await service.generate(
        SourceImage(data=photo_bytes, mime_type="image/jpeg"),
        "industrial",
    )
"""

from arqia.core.backends import (
    EchoBackend,
    GenerationBackend,
    RelayBackend,
    ReplicateBackend,
    create_backend,
)
from arqia.core.config import ArqiaConfig, config
from arqia.core.delivery import RedesignResult, deliver
from arqia.core.errors import (
    GenerationCanceledError,
    GenerationFailedError,
    GenerationTimedOutError,
    InvalidImageError,
    RedesignError,
    SubmissionFailedError,
    TransportError,
    UnknownStyleError,
)
from arqia.core.images import SourceImage
from arqia.core.jobs import Job, JobHandle, JobState, JobStore
from arqia.core.prompt_builder import GenerationRequest, TechnicalParams, compose
from arqia.core.service import RedesignService
from arqia.core.styles import StyleCatalog, StyleDefinition, default_catalog
from arqia.core.tracker import JobTracker, ProgressEvent, TerminalEvent

__all__ = [
    "ArqiaConfig",
    "EchoBackend",
    "GenerationBackend",
    "GenerationCanceledError",
    "GenerationFailedError",
    "GenerationRequest",
    "GenerationTimedOutError",
    "InvalidImageError",
    "Job",
    "JobHandle",
    "JobState",
    "JobStore",
    "JobTracker",
    "ProgressEvent",
    "RedesignError",
    "RedesignResult",
    "RedesignService",
    "RelayBackend",
    "ReplicateBackend",
    "SourceImage",
    "StyleCatalog",
    "StyleDefinition",
    "SubmissionFailedError",
    "TechnicalParams",
    "TerminalEvent",
    "TransportError",
    "UnknownStyleError",
    "compose",
    "config",
    "create_backend",
    "default_catalog",
    "deliver",
]
