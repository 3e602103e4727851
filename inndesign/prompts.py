"""Prompt construction for interior design generation.

All functions here are pure: the same template always produces the same
prompt, and nothing touches the network.
"""

from typing import Sequence

from inndesign.errors import InvalidPromptError
from inndesign.types import BudgetTier, PromptTemplate, ProviderId

BASE_PROMPT = "Professional interior design photograph of a"
QUALITY_MODIFIERS = "high resolution, architectural visualization, professional lighting, photorealistic"
NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, unrealistic proportions, bad lighting, cluttered, messy, "
    "unprofessional, low resolution, pixelated, oversaturated, dark, gloomy"
)

ROOM_SPECIFICS: dict[str, str] = {
    "living_room": "comfortable seating arrangements, focal point, natural lighting, entertainment area",
    "bedroom": "restful atmosphere, privacy, storage solutions, comfortable bedding",
    "kitchen": "functional workflow, storage, food preparation areas, dining integration",
    "bathroom": "clean lines, moisture resistance, storage, privacy, lighting",
    "dining_room": "entertaining space, table focal point, ambient lighting",
    "home_office": "productivity focus, ergonomic furniture, organization, natural lighting",
    "outdoor": "weather-resistant materials, natural integration, outdoor living comfort",
}

STYLE_KEYWORDS: dict[str, str] = {
    "modern": "clean lines, minimalist, contemporary furniture, neutral colors, geometric shapes",
    "traditional": "classic furniture, rich textures, warm colors, ornate details, timeless elements",
    "scandinavian": "light woods, white and neutral tones, cozy textures, functional design, hygge",
    "industrial": "exposed brick, metal accents, concrete, Edison bulbs, urban aesthetic",
    "bohemian": "eclectic patterns, vibrant colors, layered textures, plants, artistic elements",
    "minimalist": "clean spaces, essential furniture only, monochromatic, uncluttered",
    "rustic": "natural materials, wood beams, stone, earthy colors, cozy atmosphere",
    "contemporary": "current trends, mixed materials, bold accents, innovative design",
}

BUDGET_MATERIALS: dict[BudgetTier, str] = {
    BudgetTier.BUDGET: "affordable materials, laminate, engineered wood, budget-friendly textiles, DIY elements",
    BudgetTier.MID_RANGE: "quality materials, solid wood accents, branded appliances, designer-inspired pieces",
    BudgetTier.LUXURY: "premium materials, natural stone, hardwood floors, high-end appliances, custom furniture",
}

SIZE_OPTIMIZATION: dict[str, str] = {
    "small": "space-saving furniture, multi-functional pieces, vertical storage, light colors to expand space",
    "medium": "balanced proportions, comfortable scale, flexible arrangements",
    "large": "statement pieces, multiple seating areas, grand scale furniture, room zoning",
}

COLOR_ENHANCEMENTS: dict[str, str] = {
    "neutral": "beige, cream, white, gray tones, natural textures",
    "warm": "earth tones, reds, oranges, yellows, cozy atmosphere",
    "cool": "blues, greens, purples, calming palette, serene mood",
    "monochrome": "black and white, grayscale, contrast through texture",
    "bold": "vibrant colors, statement walls, colorful accents, energetic mood",
}

VARIATION_MODIFIERS: tuple[str, ...] = (
    "with different lighting and camera angle",
    "from an alternative perspective with varied furniture arrangement",
    "with alternative color palette and texture combinations",
    "showcasing different decorative elements and accessories",
    "emphasizing different focal points and spatial arrangements",
)

STYLE_ATMOSPHERE: dict[str, str] = {
    "modern": "clean and sophisticated",
    "traditional": "warm and inviting",
    "scandinavian": "cozy and bright",
    "industrial": "edgy and urban",
    "bohemian": "eclectic and artistic",
    "minimalist": "serene and uncluttered",
    "rustic": "cozy and natural",
    "contemporary": "fresh and current",
}

REPLICATE_QUALITY_TOKENS = "masterpiece, best quality, highly detailed, sharp focus"

_REQUIRED_FIELDS = ("room_type", "style_preference", "size", "budget_level")


def parse_budget_tier(value: BudgetTier | str) -> BudgetTier:
    if isinstance(value, BudgetTier):
        return value
    try:
        return BudgetTier(str(value).strip().lower().replace("-", "_"))
    except ValueError:
        raise InvalidPromptError(f"Unsupported budget level: {value!r}", "budget_level") from None


class PromptBuilder:
    def __init__(self, modifiers: Sequence[str] = VARIATION_MODIFIERS):
        self.modifiers = tuple(modifiers)

    def validate(self, template: PromptTemplate) -> None:
        for name in _REQUIRED_FIELDS:
            value = getattr(template, name, None)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise InvalidPromptError(f"Prompt template is missing '{name}'", name)
        parse_budget_tier(template.budget_level)

    def build_prompt(self, template: PromptTemplate) -> str:
        self.validate(template)
        room = template.room_type.strip()
        style = template.style_preference.strip()
        size = template.size.strip()
        budget = parse_budget_tier(template.budget_level)

        room_words = room.replace("_", " ")
        prompt = f"{BASE_PROMPT} {style} {room_words}"

        if size in SIZE_OPTIMIZATION:
            prompt += f", {size} space with {SIZE_OPTIMIZATION[size]}"
        if style in STYLE_KEYWORDS:
            prompt += f", featuring {STYLE_KEYWORDS[style]}"
        if room in ROOM_SPECIFICS:
            prompt += f", incorporating {ROOM_SPECIFICS[room]}"
        prompt += f", using {BUDGET_MATERIALS[budget]}"
        if template.color_scheme and template.color_scheme in COLOR_ENHANCEMENTS:
            prompt += f", with {COLOR_ENHANCEMENTS[template.color_scheme]}"
        if template.material_preferences:
            prompt += f", emphasizing {', '.join(template.material_preferences)}"
        if template.uploaded_image_context:
            prompt += f", {template.uploaded_image_context}"
        if template.additional_requirements:
            prompt += f", {template.additional_requirements}"

        return f"{prompt}, {QUALITY_MODIFIERS}"

    def build_variation_prompts(self, base_prompt: str, count: int) -> list[str]:
        """Base prompt first, then one prompt per modifier.

        The total is capped at the number of modifiers; asking for more
        returns the capped list rather than repeating modifiers.
        """
        total = min(count, len(self.modifiers))
        if total <= 0:
            return []
        return [base_prompt] + [f"{base_prompt}, {m}" for m in self.modifiers[: total - 1]]

    def optimize_for_provider(self, prompt: str, provider_id: ProviderId) -> str:
        if provider_id == ProviderId.REPLICATE:
            # Stable Diffusion responds to stacked quality tokens
            return f"{prompt}, {REPLICATE_QUALITY_TOKENS}"
        if provider_id == ProviderId.OPENAI:
            sentence = prompt[:1].lower() + prompt[1:]
            return f"A beautiful {sentence.rstrip('.')}."
        return prompt

    def negative_prompt(self) -> str:
        return NEGATIVE_PROMPT

    def extract_style_elements(self, template: PromptTemplate) -> dict[str, object]:
        style = (template.style_preference or "modern").strip()
        keywords = STYLE_KEYWORDS.get(style)
        return {
            "dominant_style": style,
            "secondary_elements": keywords.split(", ") if keywords else [],
            "atmosphere": STYLE_ATMOSPHERE.get(style, "comfortable and stylish"),
        }
