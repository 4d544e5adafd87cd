"""Parser and printer for the chain DSL.

Grammar:
    chain := step ("->" step)*
    step  := provider_id ":" action

Whitespace around "->" and ":" is insignificant and runs of whitespace inside
a token collapse to a single space, so equivalent spellings parse to equal
pipelines. Tokens may not contain "->" or ":".

Example:
    >>> parse("claude:design -> codex:implement -> gemini:review").provider_ids
    ('claude', 'codex', 'gemini')
"""

from typing import Iterable, List, Optional, Tuple, Union

from ..errors import ParseError, ParseErrorKind, UnknownProviderError
from .base import ErrorStrategy, FailFast, Pipeline, PipelineStep

ARROW = "->"
SEPARATOR = ":"


def _normalize(token: str) -> str:
    return " ".join(token.split())


def _split_segments(text: str) -> List[Tuple[int, str, Optional[int]]]:
    """Split on arrows, keeping (segment offset, segment text, offset of the arrow after it)."""
    segments = []
    start = 0
    while True:
        arrow = text.find(ARROW, start)
        if arrow == -1:
            segments.append((start, text[start:], None))
            return segments
        segments.append((start, text[start:arrow], arrow))
        start = arrow + len(ARROW)


def _parse_step(segment: str, offset: int) -> PipelineStep:
    colon = segment.find(SEPARATOR)
    if colon == -1:
        leading = len(segment) - len(segment.lstrip())
        raise ParseError(
            ParseErrorKind.MISSING_COLON,
            offset + leading,
            f"Invalid pipeline step format: '{segment.strip()}' (missing ':')",
        )

    provider_id = _normalize(segment[:colon])
    action = _normalize(segment[colon + 1:])

    if not provider_id:
        raise ParseError(
            ParseErrorKind.EMPTY_PROVIDER,
            offset + colon,
            f"Provider cannot be empty in step: '{segment.strip()}'",
        )

    second = segment.find(SEPARATOR, colon + 1)
    if second != -1:
        raise ParseError(
            ParseErrorKind.UNEXPECTED_COLON,
            offset + second,
            f"Unexpected ':' in step: '{segment.strip()}'",
        )

    if not action:
        raise ParseError(
            ParseErrorKind.EMPTY_ACTION,
            offset + colon,
            f"Action cannot be empty in step: '{segment.strip()}'",
        )

    return PipelineStep(provider_id=provider_id, action=action)


def parse(text: str, error_strategy: Optional[ErrorStrategy] = None) -> Pipeline:
    """
    Compile chain text into a Pipeline.

    Parsing is pure and never checks whether providers exist; see
    `validate_providers` and `PipelineExecutor.validate`.

    Args:
        text: Chain text, e.g. "claude:design -> gemini:review"
        error_strategy: Strategy to attach (defaults to FailFast)

    Returns:
        Pipeline with one step per "provider:action" segment, in order

    Raises:
        ParseError: Malformed chain, with the offending offset
    """
    if text is None or not text.strip():
        raise ParseError(ParseErrorKind.EMPTY_CHAIN, 0, "Pipeline string cannot be empty")

    steps = []
    previous_arrow = None
    for offset, segment, next_arrow in _split_segments(text):
        if not segment.strip():
            if next_arrow is None:
                raise ParseError(
                    ParseErrorKind.TRAILING_ARROW,
                    previous_arrow,
                    "Pipeline cannot end with '->'",
                )
            raise ParseError(
                ParseErrorKind.EMPTY_STEP, next_arrow, "Pipeline step cannot be empty"
            )
        steps.append(_parse_step(segment, offset))
        previous_arrow = next_arrow

    return Pipeline(tuple(steps), error_strategy or FailFast())


def format_pipeline(pipeline: Union[Pipeline, Iterable[PipelineStep]]) -> str:
    """Canonical chain text for a pipeline: "p:a -> p:a"."""
    return " -> ".join(f"{step.provider_id}:{step.action}" for step in pipeline)


def validate_providers(pipeline: Pipeline, valid_providers: Iterable[str]) -> None:
    """
    Check that every step targets a known provider.

    Raises:
        UnknownProviderError: First step whose provider is not in `valid_providers`
    """
    valid = list(valid_providers)
    for step in pipeline:
        if step.provider_id not in valid:
            raise UnknownProviderError(step.provider_id, valid)
