"""Conversation and environment state carried through a pipeline run."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """Message in a conversation."""

    role: MessageRole
    content: str
    provider_id: Optional[str] = None


class Context(BaseModel):
    """
    State that flows through every step of one pipeline run.

    A single Context instance is shared by all steps of a run and
    accumulates history and metadata. The executor only ever appends to
    `conversation_history`. A Context must not be shared between
    concurrent runs; use `copy()`.
    """

    conversation_history: List[Message] = Field(default_factory=list)
    current_files: Set[Path] = Field(default_factory=set)
    environment: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def add_message(self, message: Message) -> None:
        self.conversation_history.append(message)

    def add_file(self, path: Path | str) -> None:
        self.current_files.add(Path(path))

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def record_step_error(self, index: int, provider_id: str, error: Exception) -> None:
        """Attach a failed step's error to `metadata["step_errors"]`."""
        errors = self.metadata.setdefault("step_errors", [])
        errors.append(
            {
                "step": index,
                "provider": provider_id,
                "error_type": type(error).__name__,
                "kind": getattr(getattr(error, "kind", None), "value", None),
                "message": str(error),
            }
        )

    def copy(self) -> "Context":
        """Independent deep copy, safe to hand to a concurrent run."""
        return self.model_copy(deep=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to a JSON-compatible dict."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Context":
        return cls.model_validate(data)
