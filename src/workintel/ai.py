"""Summary: AI provider abstraction and implementations.

Importance: Centralizes LLM access for briefs, team reports, and drafts.
Alternatives: Call provider SDKs directly in each service.
"""

from __future__ import annotations

import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from workintel.config import AppConfig
from workintel.oauth import post_json


ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_SYSTEM_PROMPT = "You are Work Intel, an assistant for software engineering teams."


class AiProvider(ABC):
    """Summary: Abstract interface for AI text generation.

    Importance: Allows switching between Anthropic, OpenAI, and the offline mock.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    @abstractmethod
    def generate_text(self, prompt: str, purpose: str, system: str | None = None) -> tuple[str, int]:
        """Summary: Generate a response for a prompt.

        Importance: Returns the text with its latency so callers can audit usage.
        Alternatives: Return provider-specific response objects directly.
        """


class MockAiProvider(AiProvider):
    """Summary: Deterministic AI provider for local runs and tests.

    Importance: Produces well-formed JSON for structured purposes so every flow works offline.
    Alternatives: Load fixture responses from files.
    """

    def generate_text(self, prompt: str, purpose: str, system: str | None = None) -> tuple[str, int]:
        started = time.time()
        if purpose == "daily_brief":
            response = json.dumps(
                {
                    "topFocus": [],
                    "meetings": [],
                    "prsToReview": [],
                    "myPrsWaiting": [],
                    "emailsToActOn": [],
                    "jiraTasks": [],
                    "alerts": [],
                    "summary": "Mock brief: no AI provider configured.",
                }
            )
        elif purpose == "team_report":
            response = json.dumps(
                {
                    "summary": "Mock team summary.",
                    "velocity": "Steady",
                    "keyHighlights": [],
                    "needsAttention": [],
                    "memberSummaries": [],
                }
            )
        elif purpose == "jira_match":
            response = json.dumps({"matches": []})
        elif purpose == "brief_suggestions":
            response = json.dumps({"suggestions": []})
        else:
            response = f"[mock:{purpose}] {prompt[:240]}"
        latency_ms = int((time.time() - started) * 1000)
        return response, latency_ms


class AnthropicProvider(AiProvider):
    """Summary: AI provider using the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 2000) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens

    def generate_text(self, prompt: str, purpose: str, system: str | None = None) -> tuple[str, int]:
        payload = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": 0.2,
            "system": system or DEFAULT_SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION}
        started = time.time()
        try:
            raw = post_json(ANTHROPIC_URL, payload, headers=headers)
        except RuntimeError as exc:
            raise RuntimeError(f"Anthropic request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        text = "\n".join(
            block.get("text", "") for block in raw.get("content", []) if block.get("type") == "text"
        )
        return text, latency_ms


class OpenAiProvider(AiProvider):
    """Summary: AI provider using OpenAI's chat completion API.

    Importance: Offers a second cloud option for teams without Anthropic access.
    Alternatives: Use the responses API.
    """

    def __init__(self, api_key: str, model: str) -> None:
        self._api_key = api_key
        self._model = model

    def generate_text(self, prompt: str, purpose: str, system: str | None = None) -> tuple[str, int]:
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system or f"{DEFAULT_SYSTEM_PROMPT} Task: {purpose}."},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
        }
        started = time.time()
        try:
            raw = post_json(OPENAI_URL, payload, headers={"Authorization": f"Bearer {self._api_key}"})
        except RuntimeError as exc:
            raise RuntimeError(f"OpenAI request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        return raw["choices"][0]["message"]["content"], latency_ms


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting AI providers from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        if self.config.ai_provider == "anthropic":
            if not self.config.anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY is required for anthropic provider")
            return AnthropicProvider(self.config.anthropic_api_key, self.config.anthropic_model)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model)
        return MockAiProvider()


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters.
    """

    return max(1, len(text) // 4)


_FENCED_JSON = re.compile(r"```json\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_OUTER_BRACES = re.compile(r"\{.*\}", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BARE_KEY = re.compile(r"([,{]\s*)([A-Za-z0-9_]+)\s*:")


def extract_json(text: str) -> str:
    """Summary: Pull the JSON object out of a model response.

    Importance: Models often wrap JSON in prose or a fenced block.
    Alternatives: Use a provider's structured output mode.
    """

    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1).strip()
    match = _OUTER_BRACES.search(text)
    if not match:
        raise ValueError("No JSON found in model response")
    return match.group(0)


def parse_model_json(payload: str) -> Any:
    """Summary: Parse JSON from a model, repairing trailing commas and bare keys once.

    Importance: Small syntax slips should not discard an otherwise usable answer.
    Alternatives: Reject anything that is not strict JSON.
    """

    trimmed = payload.strip()
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        cleaned = _BARE_KEY.sub(r'\1"\2":', _TRAILING_COMMA.sub(r"\1", trimmed))
        return json.loads(cleaned)
