from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .prompts import LOGICIAN_PROMPT, SKEPTIC_PROMPT, VISIONARY_PROMPT
from .tools import ChatClient

logger = logging.getLogger(__name__)

DEFAULT_PERSONA_CONFIDENCE = 0.85


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    system_prompt: str
    bias: str


@dataclass
class SimulationResult:
    persona_id: str
    response: str
    confidence: float

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "persona_id": self.persona_id,
            "response": self.response,
            "confidence": self.confidence,
        }


DEFAULT_PERSONAS = (
    Persona(id="skeptic", name="The Skeptic", system_prompt=SKEPTIC_PROMPT, bias="critical"),
    Persona(id="optimist", name="The Visionary", system_prompt=VISIONARY_PROMPT, bias="optimistic"),
    Persona(id="logician", name="The Logician", system_prompt=LOGICIAN_PROMPT, bias="logical"),
)

Responder = Callable[[Persona, str], str]


@dataclass
class PersonaSimulator:
    """Answer one query from several fixed viewpoints."""

    client: Optional[ChatClient] = None
    personas: Sequence[Persona] = field(default_factory=lambda: DEFAULT_PERSONAS)

    def _ask_client(self, persona: Persona, query: str) -> str:
        messages = [
            {"role": "system", "content": persona.system_prompt},
            {"role": "user", "content": query},
        ]
        return self.client.chat(messages).strip()  # type: ignore[union-attr]

    def simulate(self, query: str, responder: Optional[Responder] = None) -> List[SimulationResult]:
        if responder is None and self.client is None:
            raise ValueError("PersonaSimulator needs a chat client or a responder")
        respond = responder or self._ask_client
        results: List[SimulationResult] = []
        for persona in self.personas:
            try:
                response = respond(persona, query)
            except Exception as exc:
                logger.warning("Persona %s could not answer: %s", persona.id, exc)
                continue
            results.append(
                SimulationResult(
                    persona_id=persona.id,
                    response=response,
                    confidence=DEFAULT_PERSONA_CONFIDENCE,
                )
            )
        return results


__all__ = ["DEFAULT_PERSONAS", "Persona", "PersonaSimulator", "SimulationResult"]
