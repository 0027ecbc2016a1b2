"""
Brief Synthesizer - turns a sanitized request into a structured design brief.

One model call with the creative-director few-shot instruction produces five
lines:

    Brand: ORIGIN - Single-origin specialty coffee roasters, Portland
    Style: Craft, Artisanal, Warm
    Palette: Espresso Brown (#2C1810), Cream (#F5F0E8), Copper (#B87333), Charcoal (#333333)
    Vibe: Artisanal, warm, craft, authentic, cozy
    Brand Type: PRODUCT - Use ASYMMETRIC HERO with floating coffee bag/beans. ...

The parser is strict. Anything it cannot read in full (provider failure,
timeout, truncated or malformed output, unknown brand type) yields
DEFAULT_BRIEF, so synthesize() never raises and generation always has a brief
to work with.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from app.ai.monitoring import generation_logger
from app.ai.prompts.brief_prompts import BRIEF_SYSTEM_PROMPT, build_brief_request
from app.ai.providers import AIProvider, FinishReason, get_provider
from app.core.config import settings

logger = logging.getLogger("genui.generation.brief")


class BrandType(str, Enum):
    PRODUCT = "PRODUCT"
    LIFESTYLE = "LIFESTYLE"
    SERVICE = "SERVICE"
    SAAS = "SAAS"


# Layout rule each brand type commits the HTML pass to
BRAND_TYPE_LAYOUTS: Dict[BrandType, str] = {
    BrandType.PRODUCT: (
        "Use ASYMMETRIC HERO with floating product. Nav CTA should be Cart with counter."
    ),
    BrandType.LIFESTYLE: (
        "Use CENTERED HERO with full-bleed imagery. Nav CTA should be \"Shop\" or "
        "\"Discover\". DO NOT include reservation form."
    ),
    BrandType.SERVICE: (
        "Use CENTERED HERO with photography. Nav CTA should be \"Book\" or \"Reserve\" "
        "or \"Contact\". MUST include BOOKING/RESERVATION FORM."
    ),
    BrandType.SAAS: (
        "Use ASYMMETRIC HERO with abstract/dashboard visual. Nav CTA should be "
        "\"Get Started\" or \"Start Free\". MUST include PRICING section with 3 tiers."
    ),
}


@dataclass(frozen=True)
class PaletteColor:
    name: str
    hex: str

    def __str__(self) -> str:
        return f"{self.name} ({self.hex})"


@dataclass(frozen=True)
class Brief:
    """A parsed design brief. Immutable."""
    brand_name: str
    tagline: str
    style: Tuple[str, ...]
    palette: Tuple[PaletteColor, ...]
    vibe: Tuple[str, ...]
    brand_type: BrandType
    layout: str
    is_fallback: bool = False

    def to_prompt_text(self) -> str:
        """Canonical five-line form, the same grammar the parser accepts."""
        return "\n".join([
            f"Brand: {self.brand_name} - {self.tagline}",
            f"Style: {', '.join(self.style)}",
            f"Palette: {', '.join(str(color) for color in self.palette)}",
            f"Vibe: {', '.join(self.vibe)}",
            f"Brand Type: {self.brand_type.value} - {self.layout}",
        ])


DEFAULT_BRIEF = Brief(
    brand_name="STUDIO",
    tagline="A modern brand with a clear, confident presence",
    style=("Modern", "Clean", "Minimal"),
    palette=(
        PaletteColor("Off White", "#F5F5F4"),
        PaletteColor("Charcoal", "#1C1C1C"),
        PaletteColor("Stone Grey", "#78716C"),
        PaletteColor("Warm Sand", "#D6CFC4"),
    ),
    vibe=("Professional", "calm", "approachable", "trustworthy", "modern"),
    brand_type=BrandType.SERVICE,
    layout=BRAND_TYPE_LAYOUTS[BrandType.SERVICE],
    is_fallback=True,
)


# ---------------------------------------------------------------------------
# PARSER
# ---------------------------------------------------------------------------

_LABELS = ("brand", "style", "palette", "vibe", "brand type")
_LINE = re.compile(r"^\s*(brand type|brand|style|palette|vibe)\s*:\s*(.*?)\s*$", re.IGNORECASE)
_COLOR = r"([^,()]+?)\s*\(\s*(#(?:[0-9A-Fa-f]{6}|[0-9A-Fa-f]{3}))\s*\)"
_PALETTE = re.compile(rf"\s*{_COLOR}(?:\s*,\s*{_COLOR}){{3}}\s*")
_COLOR_ENTRY = re.compile(_COLOR)


def _keywords(value: str) -> Tuple[str, ...]:
    return tuple(word.strip() for word in value.split(",") if word.strip())


def parse_brief(text: Optional[str]) -> Optional[Brief]:
    """
    Strictly parse the five-line brief.

    Returns:
        Brief, or None when any line is missing, duplicated or malformed.
    """
    if not text:
        return None

    fields: Dict[str, str] = {}
    for line in text.splitlines():
        match = _LINE.match(line)
        if not match:
            continue
        label = match.group(1).lower()
        if label in fields:
            return None
        fields[label] = match.group(2)

    if any(label not in fields for label in _LABELS):
        return None

    brand_name, sep, tagline = fields["brand"].partition(" - ")
    if not sep or not brand_name.strip() or not tagline.strip():
        return None

    style = _keywords(fields["style"])
    vibe = _keywords(fields["vibe"])
    if not style or not vibe:
        return None

    if not _PALETTE.fullmatch(fields["palette"]):
        return None
    palette = tuple(
        PaletteColor(name=name.strip(), hex=hex_code.upper())
        for name, hex_code in _COLOR_ENTRY.findall(fields["palette"])
    )

    type_name, _, instruction = fields["brand type"].partition("-")
    try:
        brand_type = BrandType(type_name.strip().upper())
    except ValueError:
        return None

    return Brief(
        brand_name=brand_name.strip(),
        tagline=tagline.strip(),
        style=style,
        palette=palette,
        vibe=vibe,
        brand_type=brand_type,
        layout=instruction.strip() or BRAND_TYPE_LAYOUTS[brand_type],
    )


# ---------------------------------------------------------------------------
# SYNTHESIZER
# ---------------------------------------------------------------------------

class BriefSynthesizer:
    """
    Runs the brief call and applies the fallback policy.

    Usage:
        brief = await brief_synthesizer.synthesize(prompt.sanitized, correlation_id)
    """

    def __init__(self, provider: Optional[AIProvider] = None):
        self._provider = provider

    @property
    def provider(self) -> AIProvider:
        if self._provider is None:
            self._provider = get_provider(settings.BRIEF_PROVIDER)
        return self._provider

    async def synthesize(self, sanitized_request: str, correlation_id: str = "-") -> Brief:
        """Return a parsed brief, or DEFAULT_BRIEF on any failure."""
        try:
            response = await self.provider.generate(
                prompt=build_brief_request(sanitized_request),
                system_prompt=BRIEF_SYSTEM_PROMPT,
                temperature=settings.BRIEF_TEMPERATURE,
                max_tokens=settings.BRIEF_MAX_TOKENS,
            )
        except Exception as e:
            # generate() is not supposed to raise; a provider bug still must
            # not block generation.
            logger.exception(f"Brief provider raised unexpectedly: {e}")
            generation_logger.brief_synthesized(correlation_id, None, fallback=True, reason="provider_raised")
            return DEFAULT_BRIEF

        if not response.success:
            generation_logger.brief_synthesized(correlation_id, response, fallback=True, reason="provider_error")
            return DEFAULT_BRIEF

        if response.metadata.get("finish_reason") == FinishReason.LENGTH.value:
            generation_logger.brief_synthesized(correlation_id, response, fallback=True, reason="truncated")
            return DEFAULT_BRIEF

        brief = parse_brief(response.content)
        if brief is None:
            generation_logger.brief_synthesized(correlation_id, response, fallback=True, reason="unparsable")
            return DEFAULT_BRIEF

        generation_logger.brief_synthesized(correlation_id, response, fallback=False)
        return brief


# Singleton instance
brief_synthesizer = BriefSynthesizer()
