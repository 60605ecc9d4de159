"""
AI-written summaries: per chart, the core briefing, the proactive insight
and the final executive summary. All of them degrade to a fixed text when
the provider is unavailable or fails.
"""
import logging
from typing import Optional, Sequence, Tuple
from csv_assistant.core.cache import get_summary_cache, generate_summary_cache_key
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import AIUnavailableError, AssistantError
from csv_assistant.core.schemas import AnalysisCard, CardContext, ColumnProfile, Row
from csv_assistant.services import ai_client, prompts
from csv_assistant.services.response_schemas import PROACTIVE_INSIGHT_SCHEMA

logger = logging.getLogger(__name__)

SUMMARIES_DISABLED = "AI Summaries are disabled. No API Key provided."
SUMMARY_FAILED = "Failed to generate AI summary."
FINAL_SUMMARY_FAILED = "Failed to generate the final AI summary."
CORE_SUMMARY_FAILED = "No core analysis summary is available."


def _clean(text: str) -> str:
    # Markdown emphasis is noise in chat bubbles
    return text.replace('**', '').replace('__', '').strip()


async def _text_call(prompt: str, system_prompt: str, failure_text: str, max_tokens: int = 600) -> str:
    try:
        content = await ai_client.call_ai(prompt, system_prompt, json_mode=False, max_tokens=max_tokens)
    except AIUnavailableError:
        return SUMMARIES_DISABLED
    except AssistantError as e:
        logger.warning(f"Summary generation failed: {e}")
        return failure_text
    return _clean(content)


async def generate_summary(title: str, rows: Sequence[Row]) -> str:
    """Summarise one chart's aggregated data; cached by title, language and rows."""
    settings = get_settings()
    cache = get_summary_cache()
    cache_key = generate_summary_cache_key(title, settings.language, list(rows))
    cached = cache.get(cache_key)
    if cached is not None:
        logger.debug(f"Returning cached summary for {title}")
        return cached

    summary = await _text_call(
        prompts.summary_prompt(title, list(rows), settings.language),
        prompts.SYSTEM_SUMMARY,
        SUMMARY_FAILED,
    )
    if summary not in (SUMMARIES_DISABLED, SUMMARY_FAILED):
        cache.set(cache_key, summary)
    return summary


async def generate_core_analysis_summary(cards: Sequence[CardContext], columns: Sequence[ColumnProfile]) -> str:
    return await _text_call(
        prompts.core_summary_prompt(cards, columns, get_settings().language),
        prompts.SYSTEM_STRATEGIST,
        CORE_SUMMARY_FAILED,
    )


async def generate_proactive_insight(cards: Sequence[CardContext]) -> Optional[Tuple[str, str]]:
    """Return (insight, card_id) or None when nothing usable came back."""
    if not cards:
        return None
    try:
        content = await ai_client.call_ai(
            prompts.proactive_insight_prompt(cards, get_settings().language),
            prompts.SYSTEM_STRATEGIST,
            schema=PROACTIVE_INSIGHT_SCHEMA,
        )
        payload = ai_client.parse_json_object(content)
    except AssistantError as e:
        logger.warning(f"Proactive insight generation failed: {e}")
        return None

    insight, card_id = payload.get('insight'), payload.get('cardId')
    if not isinstance(insight, str) or not insight.strip():
        return None
    if card_id not in {c.id for c in cards}:
        logger.info(f"Proactive insight referenced unknown card {card_id!r}, dropping the reference")
        card_id = None
    return _clean(insight), card_id


async def generate_final_summary(cards: Sequence[AnalysisCard]) -> str:
    return await _text_call(
        prompts.final_summary_prompt(cards, get_settings().language),
        prompts.SYSTEM_STRATEGIST,
        FINAL_SUMMARY_FAILED,
    )
