"""Pydantic request models for the relay API.

These models define the JSON schema for request bodies.  FastAPI uses them
for parsing and OpenAPI documentation; semantic checks (missing image,
unknown style) happen in the route so they can answer with 400 rather than
422.

Models
------
GenerateRequest
    Payload for ``POST /api/generate``: a room photo as a data URL, the
    style id, and the generation mode.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        image: The room photo as a ``data:image/...;base64,`` URL.
        style: Style identifier from ``GET /api/styles``.
        mode: ``"async"`` returns a job id to poll; ``"sync"`` waits for
            the finished image and returns its URL directly.
    """

    image: str | None = Field(
        default=None,
        description="Room photo as a data:image/...;base64 URL.",
    )
    style: str | None = Field(
        default=None,
        description="Style identifier (e.g. 'minimalista').",
    )
    mode: Literal["async", "sync"] = Field(
        default="async",
        description="'async' returns a jobId to poll; 'sync' waits for the result.",
    )
