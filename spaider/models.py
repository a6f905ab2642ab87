"""Record types threaded through every pipeline stage.

``FileContext`` is an internal dataclass. The records the backend produces
(``Intent``, ``ChangeOverview``, ``Change`` and their envelopes) are pydantic
models: they double as the JSON schemas sent to the backend and as the
validators applied to its responses. JSON uses camelCase field names, Python
code uses snake_case attributes.
"""

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

Operation = Literal["new_file", "delete_file", "modify_file"]
ModificationType = Literal["replace_block", "add_block", "remove_block", "none"]


@dataclass
class FileContext:
    """A known file: its path plus lazily loaded content and symbols."""

    path: str
    content: str | None = None
    symbols: list[str] = field(default_factory=list)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Intent(_Record):
    """Structured classification of a user request."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    edit_mode: bool = False
    description: str = ""
    needs_more_context: bool = False
    file_paths: list[str] = []
    search_terms: list[str] = []

    @field_validator("file_paths", "search_terms", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return [] if value is None else value


class ChangeOverview(_Record):
    """High-level plan for one file, produced before any code is generated."""

    file_path: str
    overview: str = ""
    operation: Operation


class ChangeOverviews(_Record):
    overviews: list[ChangeOverview] = []


class Change(_Record):
    """A concrete edit instruction for one file."""

    operation: Operation
    file_path: str
    modification_type: ModificationType | None = None
    modification_description: str = ""
    old_code_block: str = ""
    new_code_block: str = ""

    def is_consistent(self) -> bool:
        """Check the operation/modification-type pairing rules.

        Deletions carry ``none`` and no code; creations carry new code;
        modifications name a type and carry new code unless removing.
        """
        if self.operation == "delete_file":
            return (
                self.modification_type == "none"
                and not self.old_code_block
                and not self.new_code_block
            )
        if self.modification_type == "none":
            return False
        if self.operation == "new_file":
            return bool(self.new_code_block)
        if self.modification_type is None:
            return False
        if self.modification_type == "remove_block":
            return bool(self.old_code_block)
        return bool(self.new_code_block)


class Changes(_Record):
    changes: list[Change] = []


class RelevantFilePaths(_Record):
    file_paths: list[str] = []

    @field_validator("file_paths", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return [] if value is None else value
