"""Transforms applied to a step's response to produce the next step's input.

Steps never hold callables. They hold a `TransformSpec` (a name plus
parameters), which is resolved through the fixed `TRANSFORMS` registry when
the step runs. A step without a spec passes the raw response content through
unchanged.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from ..errors import TransformError
from ..providers.base import Response
from ..context import Context


@dataclass(frozen=True)
class TransformSpec:
    """Reference to a registered transform, e.g. `TransformSpec.of("truncate", max_length=500)`."""

    name: str
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, name: str, **params: Any) -> "TransformSpec":
        return cls(name=name, params=tuple(sorted(params.items())))

    @property
    def kwargs(self) -> Dict[str, Any]:
        return dict(self.params)


class Transform(ABC):
    """Pure mapping from a response (plus context) to the next prompt input. No I/O."""

    name: str = "transform"

    @abstractmethod
    def apply(self, previous: Response, context: Context) -> str:
        pass


class IdentityTransform(Transform):
    name = "identity"

    def apply(self, previous: Response, context: Context) -> str:
        return previous.content


class FallbackBehavior(str, Enum):
    """What `json_extract` does when the field is missing."""

    KEEP_ORIGINAL = "keep_original"
    RETURN_EMPTY = "return_empty"
    RETURN_ERROR = "return_error"


class JsonExtractTransform(Transform):
    """Parse the response as JSON and pass on a single top-level field."""

    name = "json_extract"

    def __init__(self, field: str, fallback: FallbackBehavior | str = FallbackBehavior.KEEP_ORIGINAL):
        self.field = field
        try:
            self.fallback = FallbackBehavior(fallback)
        except ValueError:
            raise TransformError(self.name, f"unknown fallback behavior: {fallback}")

    def apply(self, previous: Response, context: Context) -> str:
        try:
            data = json.loads(previous.content)
        except json.JSONDecodeError as e:
            raise TransformError(self.name, f"JSON parsing failed: {e}")

        if isinstance(data, dict) and self.field in data:
            value = data[self.field]
            return value if isinstance(value, str) else json.dumps(value)

        if self.fallback == FallbackBehavior.RETURN_EMPTY:
            return ""
        if self.fallback == FallbackBehavior.RETURN_ERROR:
            raise TransformError(self.name, f"Field '{self.field}' not found in JSON")
        return previous.content


class TruncateTransform(Transform):
    """Keep at most `max_length` characters (not bytes) of the response."""

    name = "truncate"

    def __init__(self, max_length: int):
        if int(max_length) < 0:
            raise TransformError(self.name, "max_length must be >= 0")
        self.max_length = int(max_length)

    def apply(self, previous: Response, context: Context) -> str:
        return previous.content[: self.max_length]


class TemplateTransform(Transform):
    """
    Render a str.format template.

    Available fields: `output` (the response content), `provider` (the
    provider that produced it, if recorded in response metadata) and any
    top-level string entry of `context.metadata`.
    """

    name = "template"

    def __init__(self, template: str):
        self.template = template

    def apply(self, previous: Response, context: Context) -> str:
        fields = {k: v for k, v in context.metadata.items() if isinstance(v, str)}
        fields["output"] = previous.content
        fields["provider"] = previous.metadata.get("provider", "")
        try:
            return self.template.format(**fields)
        except (KeyError, IndexError, ValueError) as e:
            raise TransformError(self.name, f"cannot render template: {e!r}")


_FENCE_RE = re.compile(r"```([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)


class CodeBlockTransform(Transform):
    """Pass on the first fenced code block, optionally of a given language."""

    name = "code_block"

    def __init__(self, language: Optional[str] = None):
        self.language = language.lower() if language else None

    def apply(self, previous: Response, context: Context) -> str:
        for lang, body in _FENCE_RE.findall(previous.content):
            if self.language is None or lang.lower() == self.language:
                return body.rstrip("\n")
        wanted = f" ({self.language})" if self.language else ""
        raise TransformError(self.name, f"no fenced code block{wanted} in response")


TRANSFORMS: Dict[str, Type[Transform]] = {
    "identity": IdentityTransform,
    "json_extract": JsonExtractTransform,
    "truncate": TruncateTransform,
    "summarize": TruncateTransform,
    "template": TemplateTransform,
    "code_block": CodeBlockTransform,
}


def resolve_transform(spec: Optional[TransformSpec]) -> Transform:
    """
    Build the transform a spec refers to.

    Args:
        spec: Transform reference, or None for pass-through

    Returns:
        Transform instance

    Raises:
        TransformError: Unknown name or invalid parameters
    """
    if spec is None:
        return IdentityTransform()

    transform_class = TRANSFORMS.get(spec.name)
    if transform_class is None:
        raise TransformError(
            spec.name, f"unknown transform (available: {sorted(TRANSFORMS)})"
        )

    try:
        return transform_class(**spec.kwargs)
    except (TypeError, ValueError) as e:
        raise TransformError(spec.name, f"invalid parameters: {e}")


def apply_transform(
    spec: Optional[TransformSpec], previous: Response, context: Context
) -> str:
    """Resolve `spec` and apply it. Unexpected exceptions become TransformError."""
    transform = resolve_transform(spec)
    try:
        return transform.apply(previous, context)
    except TransformError:
        raise
    except Exception as e:
        raise TransformError(transform.name, f"{type(e).__name__}: {e}")
