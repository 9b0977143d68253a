from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence

from .prompts import CLUSTER_SUMMARY_PROMPT
from .schemas import MemoryNode

logger = logging.getLogger(__name__)


class ChatClient(Protocol):
    def chat(self, messages: Sequence[Mapping[str, object]]) -> str:
        ...


@dataclass
class ClusterSummaryTool:
    """Summarise a group of memory nodes before they are compressed."""

    client: ChatClient
    max_entries: int = 20

    def __call__(self, nodes: Sequence[MemoryNode]) -> str:
        entries = [node.content.strip() for node in nodes if node.content.strip()]
        if not entries:
            return ""
        payload = json.dumps(entries[: self.max_entries], ensure_ascii=False)
        messages = [
            {"role": "system", "content": CLUSTER_SUMMARY_PROMPT},
            {"role": "user", "content": payload},
        ]
        try:
            summary = self.client.chat(messages).strip()
        except Exception as exc:
            logger.warning("Summary model unavailable, joining contents instead: %s", exc)
            summary = ""
        return summary or " / ".join(entries)


__all__ = ["ChatClient", "ClusterSummaryTool"]
