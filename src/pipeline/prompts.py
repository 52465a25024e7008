# src/pipeline/prompts.py — v1
"""Prompt templates for garment detection and composite generation.

Pure string construction: no I/O, no failure modes.
"""

from __future__ import annotations

from tryon_engine.core.models import GarmentDescriptor

DETECTION_PROMPT = """Analyze the provided image and find the main piece of clothing in it. \
The user took this photo to see how they would look wearing that piece of clothing. \
Describe that piece of clothing as a single JSON object and nothing else:
{
  "category": "<<ADD>>",
  "color": "<<ADD>>"
}

Examples:
{"category": "shirt", "color": "white"}
{"category": "jacket", "color": "red"}
{"category": "shoes", "color": "blue"}"""

USER_DETECTION_TEMPLATE = """I want to show how this person looks wearing a {product_category} \
in {product_color} color.

Analyze the person in the photo and identify which piece of clothing they are currently \
wearing that should be replaced to make this try-on realistic. Return the type and color \
of that clothing item.

For example:
- If trying on a jacket, identify the person's current jacket or outerwear
- If trying on a shirt, identify the person's current shirt or top
- If trying on shoes, identify the person's current footwear

Describe the clothing to replace as a single JSON object and nothing else:
{{
  "category": "<<ADD>>",
  "color": "<<ADD>>"
}}

Examples:
{{"category": "shirt", "color": "blue"}}
{{"category": "jacket", "color": "black"}}
{{"category": "shoes", "color": "white"}}"""

COMPOSITE_TEMPLATE = """Create a professional e-commerce fashion photo. \
Take the {product} from the first image and let the person from the second image wear it{replacing}. \
Generate a realistic, full-body shot of the person wearing the {product_category}, \
with the lighting and shadows adjusted to match the environment of the second image. \
Keep the same person, pose and background. Ensure the clothing fits naturally on the \
person's body shape and the image looks photorealistic and professional."""


def detection_prompt() -> str:
    """Prompt asking for the ``{category, color}`` of the main garment in an image."""
    return DETECTION_PROMPT


def user_detection_prompt(product_garment: GarmentDescriptor) -> str:
    """Prompt asking which worn garment corresponds to ``product_garment``."""
    return USER_DETECTION_TEMPLATE.format(
        product_category=product_garment.category,
        product_color=product_garment.color,
    )


def composite_prompt(
    product_garment: GarmentDescriptor,
    user_garment: GarmentDescriptor | None = None,
) -> str:
    """Instruction to transplant the product garment onto the person.

    Image order in the request is: product image first, user photo second.
    When the worn garment was identified, the prompt names it as the one to
    replace.
    """
    replacing = ""
    if user_garment is not None and not user_garment.is_sentinel:
        replacing = f", replacing their {user_garment.describe()}"
    return COMPOSITE_TEMPLATE.format(
        product=product_garment.describe(),
        replacing=replacing,
        product_category=product_garment.category,
    )
