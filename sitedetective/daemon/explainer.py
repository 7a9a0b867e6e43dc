"""Explainer adapters: turn a findings digest into a narrative answer."""

from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import ExplainerConfig
from .errors import CircuitBreaker, ExplainerError


SYSTEM_PROMPT = """You are a site detective. Given a question about a visible element of a
website and a digest of scan findings, identify the single source that controls
the element and tell the user exactly where to edit it.

RESPONSE FORMAT:
Primary Source: <source type and name>
Location: <file path, menu, widget area, record or builder element>
Edit Link: <edit reference copied from the findings>
Alternative Sources: <other plausible sources, or "None">
Explanation: <two or three sentences>

Only mention multiple sources if they genuinely both control the element."""


def build_user_prompt(query: str, digest: Dict[str, Any]) -> str:
    lines = [
        f"USER QUERY: {query}",
        "",
        f"Total Matches Found: {digest.get('total', 0)}",
        "Source Types: " + ", ".join(
            f"{kind} ({count})" for kind, count in digest.get('by_source_type', {}).items()
        ),
        f"High Confidence Matches: {digest.get('high_confidence', 0)}",
        "",
        "TOP FINDINGS:",
    ]
    for index, finding in enumerate(digest.get('top', []), start=1):
        lines.append(
            f"{index}. [{finding['source_type']}] {finding['location']} "
            f"(confidence {finding['confidence']:.0%}, score {finding['combined_score']:.2f})"
        )
        if finding.get('context'):
            lines.append(f"   Context: {finding['context'][:300]}")
        if finding.get('edit_reference'):
            lines.append(f"   Edit Link: {finding['edit_reference']}")
    return "\n".join(lines)


class NullExplainer:
    """Used when no explanation service is configured; always falls back."""

    async def explain(self, query: str, digest: Dict[str, Any], timeout_ms: int) -> str:
        raise ExplainerError("No explainer configured")


class OpenAICompatibleExplainer:
    """
    Explainer backed by an OpenAI-compatible /chat/completions endpoint.

    Works against OpenAI and against a local Ollama server. Calls go through
    a circuit breaker so a dead endpoint stops costing the full timeout.
    """

    def __init__(self, config: ExplainerConfig,
                 client: Optional[httpx.AsyncClient] = None,
                 breaker: Optional[CircuitBreaker] = None):
        self.config = config
        self.client = client
        self.breaker = breaker or CircuitBreaker(
            name="explainer",
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout_seconds,
        )

    async def explain(self, query: str, digest: Dict[str, Any], timeout_ms: int) -> str:
        try:
            return await self.breaker.call(self._complete, query, digest, timeout_ms)
        except ExplainerError:
            raise
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise ExplainerError(f"Explainer request failed: {e}") from e

    async def _complete(self, query: str, digest: Dict[str, Any], timeout_ms: int) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(query, digest)},
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        url = f"{self.config.resolved_base_url}/chat/completions"
        timeout = min(timeout_ms, self.config.timeout_ms) / 1000

        if self.client is not None:
            response = await self.client.post(url, json=payload, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, json=payload, headers=headers, timeout=timeout)

        response.raise_for_status()
        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            message = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
            raise ExplainerError(message or "No response content received")
        logger.debug(f"Explainer answered in {len(content)} chars")
        return content


def create_explainer(config: ExplainerConfig):
    if config.provider == "none":
        return NullExplainer()
    if config.provider == "openai" and not config.api_key:
        logger.warning("OpenAI explainer selected without api_key; falling back to none")
        return NullExplainer()
    return OpenAICompatibleExplainer(config)

