"""
Blog draft generator client

Thin wrapper around the external text generation model. The engine only asks
for a structured draft for a submission; prompt design and model behaviour are
outside this service.
"""
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from backend.core.config import get_settings

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200


class DraftGenerationError(Exception):
    """The generator could not produce a usable draft"""
    pass


@dataclass
class BlogDraft:
    title: str
    content: str
    slug: str
    meta_title: str
    meta_description: str
    seo_keywords: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    reading_time: int = 1


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:200] or "post"


def estimate_reading_time(content: str) -> int:
    words = len(re.sub(r"<[^>]+>", " ", content or "").split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def draft_from_payload(payload: Dict[str, Any], fallback_title: str) -> BlogDraft:
    """Normalize a generator response into a BlogDraft"""
    content = (payload.get("content") or "").strip()
    if not content:
        raise DraftGenerationError("Generator returned an empty draft")

    title = (payload.get("title") or fallback_title).strip()
    reading_time = payload.get("readingTime") or payload.get("reading_time")
    try:
        reading_time = max(1, int(reading_time))
    except (TypeError, ValueError):
        reading_time = estimate_reading_time(content)

    keywords = payload.get("seoKeywords") or payload.get("seo_keywords") or []
    return BlogDraft(
        title=title,
        content=content,
        slug=slugify(payload.get("slug") or title),
        meta_title=(payload.get("metaTitle") or payload.get("meta_title") or title)[:500],
        meta_description=payload.get("metaDescription") or payload.get("meta_description") or "",
        seo_keywords=sorted({str(k).strip() for k in keywords if str(k).strip()}),
        tags=[str(t) for t in payload.get("tags") or []],
        reading_time=reading_time,
    )


class OpenAIDraftGenerator:
    """Generate SEO blog drafts from school submissions"""

    SYSTEM_PROMPT = (
        "You write blog posts for school websites. Respond with a JSON object with keys "
        "title, slug, metaTitle, metaDescription, seoKeywords (array), tags (array), "
        "content (HTML) and readingTime (minutes)."
    )

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        settings = get_settings()
        if client is None:
            if not settings.openai_api_key:
                logger.warning("OpenAI API key not configured - draft generation unavailable")
            client = AsyncOpenAI(api_key=settings.openai_api_key or "missing")
        self.client = client
        self.model = model or settings.draft_generator_model

    async def generate(self, title: str, description: str, category: str, attachments: List[str]) -> BlogDraft:
        user_prompt = (
            f"Category: {category}\n"
            f"Title: {title}\n"
            f"Story: {description}\n"
            f"Attachments: {', '.join(attachments) if attachments else 'none'}"
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.7,
            )
            raw = response.choices[0].message.content or "{}"
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DraftGenerationError(f"Generator returned invalid JSON: {e}") from e
        except Exception as e:
            logger.error(f"Draft generation failed: {e}")
            raise DraftGenerationError(f"Draft generation failed: {e}") from e

        return draft_from_payload(payload, fallback_title=title)


_generator: Optional[OpenAIDraftGenerator] = None


def get_draft_generator() -> OpenAIDraftGenerator:
    global _generator
    if _generator is None:
        _generator = OpenAIDraftGenerator()
    return _generator
