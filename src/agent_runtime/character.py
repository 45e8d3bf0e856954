"""Character configuration: who the agent is and how it talks.

Character files are JSON.  Only the fields the runtime reads are typed;
everything else is preserved as-is, so files written for richer tooling
load without complaint.

Example::

    {
        "name": "Ada",
        "bio": ["Retired compiler engineer.", "Answers in short sentences."],
        "system": "You are Ada. Never pretend to be human.",
        "templates": {"post": "..."},
        "topics": ["compilers", "chess"]
    }
"""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

log = logging.getLogger(__name__)


class Character(BaseModel):
    """Persona definition consumed by providers and templates."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    username: str | None = None
    system: str | None = None
    bio: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    adjectives: list[str] = Field(default_factory=list)
    style: dict[str, list[str]] = Field(default_factory=dict)
    message_examples: list[list[dict[str, Any]]] = Field(default_factory=list, alias="messageExamples")
    templates: dict[str, str] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("bio", "topics", "adjectives", mode="before")
    @classmethod
    def _string_to_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("style", mode="before")
    @classmethod
    def _style_values_to_lists(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: [v] if isinstance(v, str) else v for k, v in value.items()}
        return value

    def bio_text(self, sample: int | None = None) -> str:
        """Bio lines joined into one paragraph, optionally a random subset."""
        lines = list(self.bio)
        if sample is not None and len(lines) > sample:
            lines = random.sample(lines, sample)
        return " ".join(lines)

    def mentioned_in(self, text: str) -> bool:
        """Whether *text* mentions the character by name or username."""
        lowered = text.lower()
        return any(n and n.lower() in lowered for n in (self.name, self.username))


def load_character(path: str | Path) -> Character:
    """Read and validate a character file.

    Raises:
        FileNotFoundError: If *path* does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        pydantic.ValidationError: If a field the runtime reads has the
            wrong type.
    """
    file = Path(path)
    data = json.loads(file.read_text(encoding="utf-8"))
    character = Character.model_validate(data)
    log.info("Loaded character %r from %s.", character.name, file)
    return character
