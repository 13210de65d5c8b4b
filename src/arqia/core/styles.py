"""Style catalog: the decorating styles a user can pick.

Each :class:`StyleDefinition` pairs a stable id with the descriptive prompt
fragment that captures the aesthetic.  Display metadata (name, icon, colours)
is carried for presentation layers and is opaque to the core.

The catalog is static: styles are defined here at import time and never
mutated.  :data:`default_catalog` is what the relay and the service use unless
a different :class:`StyleCatalog` is injected.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from arqia.core.errors import UnknownStyleError


@dataclass(frozen=True)
class StyleDefinition:
    """An immutable decorating style.

    Attributes:
        id: Unique catalog key (e.g. ``"minimalista"``).
        display_name: Name shown to users.
        style_prompt: Free text describing the aesthetic.
        icon: Presentation-only glyph.
        color: Presentation-only accent colour.
        gradient_colors: Presentation-only gradient stops.
    """

    id: str
    display_name: str
    style_prompt: str
    icon: str = ""
    color: str = ""
    gradient_colors: tuple[str, ...] = ()


class StyleCatalog:
    """Read-only mapping from style id to :class:`StyleDefinition`."""

    def __init__(self, styles: Iterable[StyleDefinition]) -> None:
        self._styles: dict[str, StyleDefinition] = {}
        for style in styles:
            if style.id in self._styles:
                raise ValueError(f"Duplicate style id: {style.id}")
            self._styles[style.id] = style

    def lookup(self, style_id: str) -> StyleDefinition:
        """Return the style registered under *style_id*.

        Raises:
            UnknownStyleError: If no such style exists.
        """
        try:
            return self._styles[style_id]
        except KeyError:
            raise UnknownStyleError(style_id) from None

    def ids(self) -> list[str]:
        return list(self._styles)

    def all(self) -> list[StyleDefinition]:
        return list(self._styles.values())

    def __contains__(self, style_id: object) -> bool:
        return style_id in self._styles

    def __iter__(self) -> Iterator[StyleDefinition]:
        return iter(self._styles.values())

    def __len__(self) -> int:
        return len(self._styles)


BUILTIN_STYLES: tuple[StyleDefinition, ...] = (
    StyleDefinition(
        id="minimalista",
        display_name="Minimalista Lux",
        style_prompt=(
            "Minimalist modern interior, high-end materials, neutral palette, oak wood, "
            "large windows, soft natural light, cinematic shadows, clean lines, organized space."
        ),
        icon="◯",
        color="#e8e4db",
        gradient_colors=("#f5f5f0", "#e8e4db"),
    ),
    StyleDefinition(
        id="industrial",
        display_name="Industrial Chic",
        style_prompt=(
            "Industrial loft style, exposed brick, black steel beams, polished concrete, "
            "leather accents, Edison lighting, high ceilings, raw textures."
        ),
        icon="▣",
        color="#2c2c2c",
        gradient_colors=("#3a3a3a", "#1a1a1a"),
    ),
    StyleDefinition(
        id="biofilico",
        display_name="Biofílico",
        style_prompt=(
            "Biophilic design, integrated indoor plants, vertical gardens, sustainable wood, "
            "stone textures, airy atmosphere, maximum sunlight, zen feeling."
        ),
        icon="✦",
        color="#2d5016",
        gradient_colors=("#3d6b1e", "#1a3009"),
    ),
    StyleDefinition(
        id="contemporaneo",
        display_name="Contemporáneo",
        style_prompt=(
            "Contemporary luxury, marble floors, gold detailing, velvet furniture, "
            "ambient LED strip lighting, high-tech appliances, sophisticated art."
        ),
        icon="◆",
        color="#1a1a2e",
        gradient_colors=("#2a2a4e", "#16213e"),
    ),
)

default_catalog = StyleCatalog(BUILTIN_STYLES)
