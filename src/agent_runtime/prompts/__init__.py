"""Prompt templates, rendering and response parsing."""

from agent_runtime.prompts.parsing import (
    normalize_json_string,
    parse_json_object_from_text,
    parse_structured_response,
)
from agent_runtime.prompts.templates import compose_prompt, compose_random_user

__all__ = [
    "compose_prompt",
    "compose_random_user",
    "normalize_json_string",
    "parse_json_object_from_text",
    "parse_structured_response",
]
