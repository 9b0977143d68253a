"""OpenAI-compatible gateway for the engine's embedding and reasoning calls."""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from openai import OpenAI

from .prompts import NEURO_REASONING_PROMPT
from .schemas import ReasoningOutcome

logger = logging.getLogger(__name__)

PROVIDER_KEY_ENV = {
    "vllm": "OPENAI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}
SUPPORTED_PROVIDERS = tuple(PROVIDER_KEY_ENV)

DEFAULT_REASONING_CONFIDENCE = 0.85
_CONFIDENCE_PATTERN = re.compile(r"Confidence:\s*\**\s*([0-9]*\.?[0-9]+)", re.IGNORECASE)


def parse_confidence(text: str, default: float = DEFAULT_REASONING_CONFIDENCE) -> float:
    """Read the last ``Confidence: x`` marker of a reasoning trace."""

    matches = _CONFIDENCE_PATTERN.findall(text or "")
    if not matches:
        return default
    try:
        value = float(matches[-1])
    except ValueError:
        return default
    return max(0.0, min(1.0, value))


def resolve_api_key(provider: str, api_key: str | None = None, api_key_env: str | None = None) -> str:
    if api_key is not None:
        return api_key
    return os.environ.get(api_key_env or PROVIDER_KEY_ENV[provider]) or ""


class LLMClient:
    """One model endpoint, used as the reasoning gateway or the embedding gateway.

    :meth:`reason` and :meth:`embed_one` have the call shapes
    :class:`~.core.NeuroSymbolicCore` and :class:`~.vector_store.VectorStore`
    expect. vLLM chat requests run with Qwen3's thinking mode disabled.
    """

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        provider: str = "vllm",
        api_key: str | None = None,
        api_key_env: str | None = None,
        timeout: float | None = 60.0,
        reasoning_prompt: str = NEURO_REASONING_PROMPT,
    ) -> None:
        self.provider = provider.lower()
        if self.provider not in PROVIDER_KEY_ENV:
            raise ValueError(f"Unsupported provider '{provider}'")
        self.model = model
        self.reasoning_prompt = reasoning_prompt
        self._chat_options: Dict[str, Any] = {}
        if self.provider == "vllm":
            self._chat_options["extra_body"] = {"chat_template_kwargs": {"enable_thinking": False}}
        self._client = OpenAI(
            base_url=base_url,
            api_key=resolve_api_key(self.provider, api_key, api_key_env),
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Reasoning gateway
    # ------------------------------------------------------------------
    def chat(self, messages: Sequence[Mapping[str, object]]) -> str:
        logger.debug("Chat request to %s (%s messages)", self.model, len(messages))
        response = self._client.chat.completions.create(
            model=self.model,
            messages=list(messages),
            **self._chat_options,
        )
        if not response.choices:
            logger.warning("Chat response from %s carried no choices", self.model)
            return ""
        return (response.choices[0].message.content or "").strip()

    def reason(self, query: str, context: str) -> ReasoningOutcome:
        trace = self.chat(
            [
                {"role": "system", "content": self.reasoning_prompt},
                {"role": "user", "content": f"Query: {query}\nContext: {context}"},
            ]
        )
        logger.debug("Reasoning trace: %s", trace)
        return ReasoningOutcome(trace=trace, confidence=parse_confidence(trace))

    # ------------------------------------------------------------------
    # Embedding gateway
    # ------------------------------------------------------------------
    def embed(self, texts: Iterable[str]) -> List[List[float]]:
        items = list(texts)
        if not items:
            return []
        response = self._client.embeddings.create(model=self.model, input=items)
        rows = sorted(response.data, key=lambda row: getattr(row, "index", 0))
        vectors = [[float(x) for x in row.embedding] for row in rows if getattr(row, "embedding", None)]
        if len(vectors) != len(items):
            logger.warning("Requested %s embeddings from %s, got %s", len(items), self.model, len(vectors))
        return vectors

    def embed_one(self, text: str) -> List[float]:
        """Embed one text; an empty list means "no embedding"."""

        if not text or not text.strip():
            return []
        vectors = self.embed([text])
        return vectors[0] if vectors else []


__all__ = ["LLMClient", "SUPPORTED_PROVIDERS", "parse_confidence", "resolve_api_key"]
