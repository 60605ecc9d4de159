"""
AI client adapter over Groq and Gemini.

Groq runs in JSON-object mode with the response schema described in the
system prompt; Gemini runs in schema-constrained JSON mode. Transport
failures are retried a fixed number of times with a fixed delay, then the
call fails over to the other provider when fallback is enabled.
"""
import os
import re
import json
import asyncio
import logging
from typing import Any, Dict, List, Optional
from groq import AsyncGroq
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import AIUnavailableError, ParseError, TransportError
from csv_assistant.core.performance import timed, track_performance
from csv_assistant.core.sanitization import sanitize_for_logging

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200

# Provider clients (singletons)
_groq_client: Optional[AsyncGroq] = None
_gemini_model = None  # Lazy loaded to avoid import if not needed

_FENCE_RE = re.compile(r'^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$', re.DOTALL)


def get_groq_client() -> Optional[AsyncGroq]:
    """Get or create Groq client singleton."""
    global _groq_client
    if _groq_client is None:
        api_key = os.getenv("GROQ_API_KEY")
        if api_key:
            _groq_client = AsyncGroq(api_key=api_key)
            logger.info("Groq AI client initialized")
    return _groq_client


def get_gemini_model():
    """Get or create Gemini model singleton."""
    global _gemini_model
    if _gemini_model is None:
        api_key = os.getenv("GEMINI_API_KEY")
        if api_key:
            import google.generativeai as genai
            genai.configure(api_key=api_key)
            settings = get_settings()
            _gemini_model = genai.GenerativeModel(settings.gemini_model)
            logger.info(f"Gemini AI client initialized with model: {settings.gemini_model}")
    return _gemini_model


def reset_clients():
    """Drop cached provider clients (for testing and key rotation)."""
    global _groq_client, _gemini_model
    _groq_client = None
    _gemini_model = None


def is_ai_available() -> bool:
    """True when at least one provider in the configured order has a key."""
    getters = {'groq': get_groq_client, 'gemini': get_gemini_model}
    return any(getters[p]() is not None for p in get_settings().provider_order)


async def _call_groq(prompt: str, system_prompt: str, schema: Optional[Dict[str, Any]],
                     json_mode: bool, max_tokens: int) -> Optional[str]:
    client = get_groq_client()
    if not client:
        return None

    settings = get_settings()
    if schema is not None:
        system_prompt = (
            f"{system_prompt}\n\nYour JSON output must conform to this schema:\n"
            f"{json.dumps(schema)}"
        )
    kwargs: Dict[str, Any] = {}
    if json_mode:
        kwargs['response_format'] = {"type": "json_object"}

    response = await client.chat.completions.create(
        model=settings.groq_model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt}
        ],
        max_tokens=max_tokens,
        temperature=0.3,
        timeout=settings.ai_request_timeout_seconds,
        **kwargs
    )
    return response.choices[0].message.content


async def _call_gemini(prompt: str, system_prompt: str, schema: Optional[Dict[str, Any]],
                       json_mode: bool, max_tokens: int) -> Optional[str]:
    model = get_gemini_model()
    if not model:
        return None

    import google.generativeai as genai
    settings = get_settings()
    config: Dict[str, Any] = {"max_output_tokens": max_tokens, "temperature": 0.3}
    if json_mode:
        config["response_mime_type"] = "application/json"
        if schema is not None:
            config["response_schema"] = schema

    response = await model.generate_content_async(
        f"{system_prompt}\n\n{prompt}",
        generation_config=genai.GenerationConfig(**config),
        request_options={"timeout": settings.ai_request_timeout_seconds}
    )
    return response.text


_PROVIDERS = {'groq': _call_groq, 'gemini': _call_gemini}
_CONFIGURED = {'groq': get_groq_client, 'gemini': get_gemini_model}


@track_performance("call_ai")
async def call_ai(
    prompt: str,
    system_prompt: str,
    schema: Optional[Dict[str, Any]] = None,
    provider: Optional[str] = None,
    json_mode: bool = True,
    max_tokens: int = 4096,
) -> str:
    """
    Call the configured provider(s) and return the raw response text.

    Each provider gets ``1 + ai_max_retries`` attempts spaced by a fixed delay.
    Parse and validation problems are the caller's concern; only transport
    failures are retried here.

    Raises:
        AIUnavailableError: no provider in the order has an API key
        TransportError: every configured provider failed
    """
    settings = get_settings()
    order = [provider] if provider else settings.provider_order
    configured = [name for name in order if _CONFIGURED[name]() is not None]
    if not configured:
        raise AIUnavailableError("No AI provider configured (set GROQ_API_KEY or GEMINI_API_KEY)")

    last_error: Optional[BaseException] = None
    for name in configured:
        attempts = 1 + settings.ai_max_retries
        for attempt in range(1, attempts + 1):
            try:
                with timed(f"ai_provider.{name}"):
                    content = await _PROVIDERS[name](prompt, system_prompt, schema, json_mode, max_tokens)
                if content and content.strip():
                    logger.debug(f"AI response from {name} (attempt {attempt})")
                    return content
                last_error = TransportError(f"{name} returned an empty response")
            except Exception as e:
                last_error = e
                error_str = str(e).lower()
                if "rate" in error_str or "limit" in error_str or "429" in error_str:
                    logger.warning(f"{name} rate limited (attempt {attempt}/{attempts}): {sanitize_for_logging(e, 200)}")
                else:
                    logger.warning(f"{name} error (attempt {attempt}/{attempts}): {sanitize_for_logging(e, 200)}")

            if attempt < attempts:
                await asyncio.sleep(settings.ai_retry_delay_seconds)

        if name != configured[-1]:
            logger.info(f"Failing over from {name} to next provider")

    raise TransportError(f"AI provider request failed after retries: {last_error}")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    if text is None:
        return ""
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def _loads(content: str) -> Any:
    cleaned = strip_code_fences(content)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"AI response is not valid JSON: {e}", excerpt=cleaned[:EXCERPT_LENGTH]) from e


def robustly_parse_json_array(content: str) -> List[Any]:
    """
    Extract a JSON array from model output.

    Accepts a bare array, an object whose first array-valued field holds the
    items (``{"plans": [...]}``) or a single plan-shaped object, which is
    wrapped into a one-element list.

    Raises:
        ParseError: with a truncated excerpt of the content
    """
    parsed = _loads(content)
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for value in parsed.values():
            if isinstance(value, list):
                return value
        if 'chartType' in parsed or isinstance(parsed.get('plan'), dict):
            return [parsed]
    raise ParseError(
        "AI response did not contain a JSON array",
        excerpt=strip_code_fences(content)[:EXCERPT_LENGTH]
    )


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse model output that must be a single JSON object."""
    parsed = _loads(content)
    if not isinstance(parsed, dict):
        raise ParseError(
            f"AI response must be a JSON object, got {type(parsed).__name__}",
            excerpt=strip_code_fences(content)[:EXCERPT_LENGTH]
        )
    return parsed
