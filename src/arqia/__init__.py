"""Arqia - AI room redesign: style prompts, generation jobs, and a relay API."""

__version__ = "0.1.0"

from arqia.core.config import ArqiaConfig, config
from arqia.core.delivery import RedesignResult
from arqia.core.images import SourceImage
from arqia.core.service import RedesignService

__all__ = [
    "ArqiaConfig",
    "config",
    "RedesignResult",
    "RedesignService",
    "SourceImage",
]
