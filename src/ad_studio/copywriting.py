"""Local ad copy drafts, used before (or instead of) AI copy generation."""

from typing import Optional

from .models import AdCopy, AdTemplate, BrandTone

DEFAULT_TONE = BrandTone.PROFESSIONAL_CONCISE
DEFAULT_CALL_TO_ACTION = "Buy Now"

# tone -> (headline, subtitle, body); "{product}" is the product title
TONE_TEMPLATES: dict[BrandTone, tuple[str, str, str]] = {
    BrandTone.FRIENDLY_CASUAL: (
        "Hey there! Check out our amazing {product}!",
        "Perfect for everyday use",
        "We think you'll love how easy it is to use {product} in your daily life.",
    ),
    BrandTone.PROFESSIONAL_CONCISE: (
        "Introducing: {product}",
        "Professional Grade Quality",
        "Elevate your experience with our industry-leading {product}.",
    ),
    BrandTone.EDGY_HUMOROUS: (
        "{product}: Because boring is so last season",
        "Stand out from the crowd",
        "Life's too short for ordinary products. Try {product} today!",
    ),
    BrandTone.INSPIRATIONAL_MOTIVATIONAL: (
        "Transform Your Life with {product}",
        "Achieve your dreams",
        "Take the first step towards a better tomorrow with {product}.",
    ),
    BrandTone.SOPHISTICATED_LUXURIOUS: (
        "{product}: The Epitome of Excellence",
        "Crafted for the discerning individual",
        "Experience unparalleled quality and sophistication with our premium {product}.",
    ),
}


def draft_copy(
    template: AdTemplate,
    product_name: str,
    tone: Optional[BrandTone] = None,
    call_to_action: Optional[str] = None,
    existing: Optional[AdCopy] = None,
) -> AdCopy:
    """
    Draft ad copy for a template in the given brand tone.

    Args:
        template: Template the copy is for
        product_name: Product title to weave into the copy
        tone: Brand tone (defaults to professional)
        call_to_action: CTA text (defaults to "Buy Now")
        existing: Copy already written for this template; returned unchanged

    Returns:
        AdCopy for the template
    """
    if existing is not None:
        return existing

    headline, subtitle, body = TONE_TEMPLATES[tone or DEFAULT_TONE]
    return AdCopy(
        template_id=template.id,
        headline=headline.format(product=product_name),
        subtitle=subtitle.format(product=product_name),
        body_text=body.format(product=product_name),
        call_to_action=call_to_action or DEFAULT_CALL_TO_ACTION,
    )
