"""Prompt composition for room redesign requests.

The prompt sent to the inference backend is composed from two parts: the
selected style's descriptive prompt and a fixed technical qualifier string
that pins the photographic look.  A fixed negative prompt is passed through
unchanged, together with the numeric generation parameters.

Template Structure::

    positive = "[Style Prompt] [Technical Positive Qualifiers]"
    negative = "[Technical Negative Qualifiers]"

Composition is pure and deterministic: identical inputs always produce
byte-identical payloads.

Usage
-----
::

    payload = compose("minimalista")
    payload.prompt            # style prompt + technical qualifiers
    payload.to_input(image)   # backend "input" object
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from arqia.core.images import SourceImage
from arqia.core.styles import StyleCatalog, default_catalog

# ---------------------------------------------------------------------------
# Fixed technical qualifiers.
# These define the photographic quality bar shared by every style; users
# control variation only through the style they pick.
# ---------------------------------------------------------------------------

TECHNICAL_POSITIVE = (
    "highly detailed, 8k resolution, photorealistic, masterpiece, ray tracing, sharp focus, "
    "professional interior photography, unreal engine 5.4 render, architectural digest quality"
)

TECHNICAL_NEGATIVE = (
    "lowres, bad anatomy, bad proportions, blurry, cropped, deformed furniture, distorted "
    "architecture, floating objects, grainy, low quality, messy, out of focus, plastic texture, "
    "ugly, warped walls, watermarks, cartoon, anime, illustration"
)


@dataclass(frozen=True)
class TechnicalParams:
    """Fixed generation parameters, overridable per request.

    Attributes:
        positive: Technical qualifiers appended to the style prompt.
        negative: Negative prompt, passed through unchanged.
        num_inference_steps: Diffusion steps.
        guidance_scale: Classifier-free guidance scale.
        strength: img2img strength; lower keeps more of the source room.
        num_outputs: Images requested from the backend.
        width: Output width in pixels.
        height: Output height in pixels.
    """

    positive: str = TECHNICAL_POSITIVE
    negative: str = TECHNICAL_NEGATIVE
    num_inference_steps: int = 40
    guidance_scale: float = 7.5
    strength: float = 0.45
    num_outputs: int = 1
    width: int = 1024
    height: int = 1024

    def with_overrides(self, **overrides: Any) -> TechnicalParams:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


DEFAULT_PARAMS = TechnicalParams()


@dataclass(frozen=True)
class PromptPayload:
    """Composed prompt plus the parameters that travel with it."""

    style_id: str
    prompt: str
    negative_prompt: str
    params: TechnicalParams = field(default=DEFAULT_PARAMS)

    def to_input(self, image: str) -> dict[str, Any]:
        """Render the backend ``input`` object for an encoded source image.

        Args:
            image: The source photo as a ``data:`` URL or a public URL.

        Returns:
            Dictionary with the keys the predictions API expects.
        """
        return {
            "image": image,
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "num_inference_steps": self.params.num_inference_steps,
            "guidance_scale": self.params.guidance_scale,
            "strength": self.params.strength,
            "num_outputs": self.params.num_outputs,
            "width": self.params.width,
            "height": self.params.height,
        }


def build_prompt(style_prompt: str, positive: str = TECHNICAL_POSITIVE) -> str:
    """Join a style prompt and the technical qualifiers into one prompt.

    Either part may be empty; surrounding whitespace is stripped so the
    result never starts or ends with a space.
    """
    return " ".join(part for part in (style_prompt.strip(), positive.strip()) if part)


def compose(
    style_id: str,
    params: TechnicalParams = DEFAULT_PARAMS,
    catalog: StyleCatalog = default_catalog,
) -> PromptPayload:
    """Compose the request payload for a style.

    Args:
        style_id: Catalog key of the selected style.
        params: Technical parameters; defaults to :data:`DEFAULT_PARAMS`.
        catalog: Style catalog to resolve *style_id* against.

    Returns:
        The composed :class:`PromptPayload`.

    Raises:
        UnknownStyleError: If *style_id* has no catalog entry.
    """
    style = catalog.lookup(style_id)
    return PromptPayload(
        style_id=style.id,
        prompt=build_prompt(style.style_prompt, params.positive),
        negative_prompt=params.negative,
        params=params,
    )


@dataclass(frozen=True)
class GenerationRequest:
    """One redesign request: a photo, a style, and technical parameters.

    Build it with :meth:`create`, which refuses unknown styles, so a request
    that exists always refers to a real catalog entry.
    """

    source_image: SourceImage
    style_id: str
    params: TechnicalParams = field(default=DEFAULT_PARAMS)

    @classmethod
    def create(
        cls,
        source_image: SourceImage,
        style_id: str,
        params: TechnicalParams = DEFAULT_PARAMS,
        catalog: StyleCatalog = default_catalog,
    ) -> GenerationRequest:
        """Validate *style_id* against *catalog* and build the request.

        Raises:
            UnknownStyleError: If *style_id* has no catalog entry.
        """
        catalog.lookup(style_id)
        return cls(source_image=source_image, style_id=style_id, params=params)

    def compose(self, catalog: StyleCatalog = default_catalog) -> PromptPayload:
        return compose(self.style_id, self.params, catalog)
