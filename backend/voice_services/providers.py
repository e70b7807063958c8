from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

_log = logging.getLogger("migrainelog.providers")

DEFAULT_OPENAI_API_BASE = "https://api.openai.com/v1"
DEFAULT_OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
DEFAULT_ANTHROPIC_API_BASE = "https://api.anthropic.com/v1"


class ProviderError(Exception):
    """An upstream model provider failed; carries the HTTP status to surface."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass(frozen=True)
class ChatProvider:
    provider: str
    base_url: str
    api_key: str
    model: str


def _base_url(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip().rstrip("/")


def provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def extract_json_object(raw_text: str | None) -> dict[str, Any] | None:
    """Parse a JSON object, recovering the first balanced ``{...}`` from chatty output."""
    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass

    for start_idx in [idx for idx, char in enumerate(text) if char == "{"]:
        depth = 0
        for end_idx in range(start_idx, len(text)):
            char = text[end_idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            if depth == 0:
                try:
                    payload = json.loads(text[start_idx : end_idx + 1])
                except json.JSONDecodeError:
                    break
                if isinstance(payload, dict):
                    return payload
                break
    return None


def coerce_completion_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [item["text"] for item in content if isinstance(item, dict) and isinstance(item.get("text"), str)]
        return "\n".join(parts)
    return ""


def coerce_anthropic_text(response_json: dict[str, Any]) -> str:
    content = response_json.get("content")
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for item in content:
        if not isinstance(item, dict) or item.get("type") != "text":
            continue
        text_value = item.get("text")
        if isinstance(text_value, str) and text_value.strip():
            parts.append(text_value.strip())
    return "\n".join(parts).strip()


def chat_provider_candidates() -> list[ChatProvider]:
    """Configured providers, the preferred one (``MIGRAINELOG_CHAT_PROVIDER``) first."""
    preference = (os.getenv("MIGRAINELOG_CHAT_PROVIDER") or "auto").strip().lower()
    candidates: list[ChatProvider] = []

    anthropic_api_key = (os.getenv("ANTHROPIC_API_KEY") or "").strip()
    if anthropic_api_key:
        candidates.append(
            ChatProvider(
                provider="anthropic",
                base_url=_base_url("ANTHROPIC_API_BASE_URL", DEFAULT_ANTHROPIC_API_BASE),
                api_key=anthropic_api_key,
                model=(os.getenv("ANTHROPIC_MODEL") or "claude-3-5-sonnet-latest").strip(),
            )
        )

    openrouter_api_key = (os.getenv("OPENROUTER_API_KEY") or "").strip()
    if openrouter_api_key:
        candidates.append(
            ChatProvider(
                provider="openrouter",
                base_url=_base_url("OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_API_BASE),
                api_key=openrouter_api_key,
                model=(os.getenv("OPENROUTER_MODEL") or "openai/gpt-4o-mini").strip(),
            )
        )

    openai_api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if openai_api_key:
        candidates.append(
            ChatProvider(
                provider="openai",
                base_url=_base_url("OPENAI_API_BASE_URL", DEFAULT_OPENAI_API_BASE),
                api_key=openai_api_key,
                model=(os.getenv("MIGRAINELOG_CHAT_MODEL") or "gpt-4o-mini").strip(),
            )
        )

    if preference in {"", "auto"}:
        return candidates
    aliases = {"claude": "anthropic", "anthropic": "anthropic", "openrouter": "openrouter", "openai": "openai"}
    canonical = aliases.get(preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate.provider == canonical]
    others = [candidate for candidate in candidates if candidate.provider != canonical]
    return preferred + others


class ChatCompletionClient:
    """Asks each configured provider in turn for a JSON object reply."""

    def __init__(
        self,
        providers: list[ChatProvider] | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._providers = providers
        self.timeout_seconds = timeout_seconds or float(os.getenv("MIGRAINELOG_CHAT_TIMEOUT_SECONDS", "60"))
        self._transport = transport

    @property
    def providers(self) -> list[ChatProvider]:
        return self._providers if self._providers is not None else chat_provider_candidates()

    @property
    def available(self) -> bool:
        return bool(self.providers)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(self.timeout_seconds, connect=8.0), transport=self._transport)

    def _openai_compatible(
        self,
        provider: ChatProvider,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int | None,
    ) -> str:
        payload: dict[str, Any] = {
            "model": provider.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        if provider.provider == "openrouter":
            site_url = (os.getenv("OPENROUTER_SITE_URL") or "").strip()
            if site_url:
                headers["HTTP-Referer"] = site_url
            headers["X-Title"] = (os.getenv("OPENROUTER_APP_NAME") or "MigraineLog").strip()
        with self._client() as client:
            response = client.post(f"{provider.base_url}/chat/completions", headers=headers, json=payload)
        if response.status_code >= 400:
            raise ProviderError(502, provider_error_message(response))
        return coerce_completion_text(response.json()).strip()

    def _anthropic(
        self,
        provider: ChatProvider,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int | None,
    ) -> str:
        payload = {
            "model": provider.model,
            "max_tokens": max_tokens or 700,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": provider.api_key,
            "anthropic-version": os.getenv("ANTHROPIC_API_VERSION", "2023-06-01"),
            "Content-Type": "application/json",
        }
        with self._client() as client:
            response = client.post(f"{provider.base_url}/messages", headers=headers, json=payload)
        if response.status_code >= 400:
            raise ProviderError(502, provider_error_message(response))
        return coerce_anthropic_text(response.json())

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> dict[str, Any] | None:
        """Return the first JSON object any provider produces, or None when all fail."""
        providers = self.providers
        if not providers:
            _log.info("chat completion unavailable: no provider key configured")
            return None
        for provider in providers:
            try:
                if provider.provider == "anthropic":
                    text = self._anthropic(provider, system_prompt, user_prompt, temperature, max_tokens)
                else:
                    text = self._openai_compatible(provider, system_prompt, user_prompt, temperature, max_tokens)
            except (httpx.HTTPError, ProviderError, ValueError) as exc:
                _log.warning("chat completion failed (%s): %s", provider.provider, exc)
                continue
            parsed = extract_json_object(text)
            if parsed is not None:
                _log.debug("chat completion provider used (%s)", provider.provider)
                return parsed
            _log.warning("chat completion returned no JSON object (%s)", provider.provider)
        return None
