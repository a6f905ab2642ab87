"""Prompt loader classes and utilities.

This module provides type-safe loading of LLM prompts defined in YAML
format. The ``User`` field of a prompt file is a ``str.format`` template
whose named placeholders are checked when the file is loaded and filled
by ``LLMPrompt.render``.
"""

import string
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import yaml

ModelType = Literal["instruction", "reasoning"]


def template_placeholders(template: str) -> frozenset[str]:
    """Return the named placeholders of a ``str.format`` *template*.

    Raises:
        ValueError: If the template is malformed or uses positional,
            indexed or attribute placeholders.
    """
    names = set()
    for _, field_name, _, _ in string.Formatter().parse(template):
        if field_name is None:
            continue
        if not field_name.isidentifier():
            raise ValueError(f"Unsupported placeholder '{{{field_name}}}'")
        names.add(field_name)
    return frozenset(names)


@dataclass
class LLMPrompt:
    """Represents an LLM prompt configuration.

    Attributes:
        name: The prompt's display name
        description: A description of the prompt's purpose
        model: The model type to use ('instruction' or 'reasoning')
        system: The system message that sets assistant behavior
        user: The user message template
    """

    name: str
    description: str
    model: ModelType
    system: str
    user: str

    @property
    def placeholders(self) -> frozenset[str]:
        return template_placeholders(self.user)

    def render(self, **values: str) -> str:
        """Fill the user template with *values*.

        Every placeholder must be given and nothing else, so a prompt file
        and its caller cannot drift apart silently.
        """
        expected = self.placeholders
        missing = expected - values.keys()
        if missing:
            raise ValueError(
                f"Prompt '{self.name}' is missing values for: {sorted(missing)}"
            )
        unexpected = values.keys() - expected
        if unexpected:
            raise ValueError(
                f"Prompt '{self.name}' has no placeholders for: {sorted(unexpected)}"
            )
        return self.user.format(**values)


def load_prompt(topic: str, function: str) -> LLMPrompt:
    """Load a prompt from a YAML file.

    Args:
        topic: The category of prompts (e.g., 'pipeline')
        function: The prompt name without extension (e.g., 'intent')

    Returns:
        An LLMPrompt object with the loaded configuration

    Raises:
        FileNotFoundError: If the prompt file doesn't exist
        ValueError: If the YAML is missing required fields or its User
            template is malformed
        yaml.YAMLError: If the YAML is malformed
    """
    prompt_path = Path(__file__).parent / "prompts" / topic / f"{function}.yml"

    if not prompt_path.exists():
        raise FileNotFoundError(
            f"Prompt not found: {topic}/{function}.yml at {prompt_path}"
        )

    with open(prompt_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Invalid prompt file structure in {prompt_path}")

    # Validate required fields
    required_fields = {"Name", "Description", "Model", "System", "User"}
    missing_fields = required_fields - set(data.keys())
    if missing_fields:
        raise ValueError(f"Prompt file missing required fields: {missing_fields}")

    # Validate model type
    model = str(data.get("Model", "")).lower()
    if model not in ("instruction", "reasoning"):
        raise ValueError(
            f"Invalid model type '{model}'. Must be 'instruction' or 'reasoning'"
        )

    # Validate the User template
    try:
        template_placeholders(str(data["User"]))
    except ValueError as e:
        raise ValueError(f"Invalid User template in {prompt_path}: {e}") from e

    return LLMPrompt(
        name=data["Name"],
        description=data["Description"],
        model=model,  # type: ignore
        system=data["System"],
        user=str(data["User"]),
    )
