"""Variant suggestions — asks a chat-completions API for candidate variants."""

import asyncio
import json
import logging
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from abengine.config import get_settings
from abengine.schemas import VariantSuggestion
from abengine.services.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert UX designer and conversion rate optimization specialist. "
    "Generate A/B test variants for web elements that could improve conversion rates. "
    "Only suggest changes that can be applied through CSS and content changes, "
    "no new images, fonts or external resources. Keep colors accessible. "
    "Reply with valid JSON only."
)


def build_prompt(element_selector: str, element_type: str, current_content: Optional[str] = None) -> str:
    content = f' that currently contains: "{current_content}"' if current_content else ""
    return (
        f'Generate 3 A/B test variants for a {element_type} element with selector "{element_selector}"{content}.\n\n'
        "For each variant provide:\n"
        "1. name: a short name (max 25 characters)\n"
        "2. description: what changes and why it might perform better\n"
        "3. changes: a JSON object of properties to apply to the DOM element "
        "(e.g. text, backgroundColor, color, borderRadius, padding)\n\n"
        'Respond with a JSON object of the form {"variants": [{"name": ..., "description": ..., "changes": {...}}]}.'
    )


def fallback_suggestions(element_type: str) -> list[VariantSuggestion]:
    """Static list used whenever the API cannot be used."""
    is_button = element_type.lower() == "button"
    return [
        VariantSuggestion(
            variant_name="Original (Control)",
            description="The original version as baseline",
            changes={},
        ),
        VariantSuggestion(
            variant_name="Bold Variant",
            description="More prominent styling to increase visibility",
            changes=(
                {"backgroundColor": "#FF7043", "color": "#FFFFFF", "fontWeight": "bold"}
                if is_button
                else {"color": "#3B5B9D", "fontWeight": "bold"}
            ),
        ),
        VariantSuggestion(
            variant_name="Minimal Variant",
            description="Simplified design for a cleaner look",
            changes=(
                {"backgroundColor": "transparent", "color": "#00D1D1", "border": "2px solid #00D1D1"}
                if is_button
                else {"fontSize": "1.1em", "color": "#555555"}
            ),
        ),
    ]


def parse_suggestions(content: str) -> list[VariantSuggestion]:
    """Turn the model's reply into suggestions; anything unusable is a failure."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ExternalServiceFailure(f"Suggestion reply is not JSON: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("variants")
    if not isinstance(data, list) or not data:
        raise ExternalServiceFailure("Suggestion reply has no variant list")

    suggestions = []
    for item in data:
        if not isinstance(item, dict):
            raise ExternalServiceFailure("Suggestion entry is not an object")
        changes = item.get("changes") or {}
        if not isinstance(changes, dict):
            raise ExternalServiceFailure("Suggestion changes is not an object")
        try:
            suggestions.append(VariantSuggestion(
                variant_name=str(item.get("name") or item.get("variantName") or "Unnamed Variant"),
                description=str(item.get("description") or ""),
                changes=changes,
            ))
        except ValidationError as exc:
            raise ExternalServiceFailure(f"Suggestion entry is malformed: {exc}") from exc
    return suggestions


class VariantSuggestionGenerator:
    """
    Proposes variant content through an OpenAI-compatible chat API.

    ``suggest`` never raises: a missing key, timeout, transport or HTTP
    error, or an unusable reply all yield ``fallback_suggestions``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = settings.xai_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.xai_base_url).rstrip("/")
        self.model = model or settings.xai_model
        self.timeout = settings.suggestion_timeout_seconds if timeout is None else timeout
        self._transport = transport

    async def _complete(self, prompt: str) -> str:
        if not self.api_key:
            raise ExternalServiceFailure("No API key configured for variant suggestions")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.7,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        start = time.monotonic()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        duration_ms = int((time.monotonic() - start) * 1000)

        if resp.status_code >= 400:
            raise ExternalServiceFailure(f"Suggestion API returned {resp.status_code}")
        logger.info(f"Suggestion API call completed in {duration_ms}ms")

        try:
            return resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceFailure(f"Unexpected suggestion API response: {exc}") from exc

    async def generate(
        self,
        element_selector: str,
        element_type: str,
        current_content: Optional[str] = None,
    ) -> list[VariantSuggestion]:
        """Suggestions from the API; raises ``ExternalServiceFailure`` on any problem."""
        prompt = build_prompt(element_selector, element_type, current_content)
        try:
            content = await asyncio.wait_for(self._complete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ExternalServiceFailure(f"Suggestion API timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceFailure(f"Suggestion API request failed: {exc}") from exc
        return parse_suggestions(content)

    async def suggest(
        self,
        element_selector: str,
        element_type: str,
        current_content: Optional[str] = None,
    ) -> list[VariantSuggestion]:
        try:
            return await self.generate(element_selector, element_type, current_content)
        except ExternalServiceFailure as exc:
            logger.warning(f"Variant suggestions fell back to defaults for {element_selector!r}: {exc.message}")
            return fallback_suggestions(element_type)
