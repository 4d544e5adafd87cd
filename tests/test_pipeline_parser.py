"""Tests for the chain DSL parser and printer.

Covers:
- Well-formed chains of one and several steps
- Whitespace normalization
- Every malformed-input error kind and its reported position
- Printing parsed pipelines back to text
- Provider validation against a known set
"""

import pytest

from aichain.errors import ParseError, ParseErrorKind, UnknownProviderError
from aichain.pipeline import (
    ContinueOnError,
    FailFast,
    Pipeline,
    PipelineBuilder,
    PipelineStep,
    format_pipeline,
    parse,
    validate_providers,
)


# ==================== Parsing ====================


class TestParse:
    """Test parsing of well-formed chains."""

    def test_three_step_chain(self):
        """A three-step chain yields three steps in order."""
        pipeline = parse("claude:design -> codex:implement -> gemini:review")

        assert len(pipeline) == 3
        assert pipeline.steps[0] == PipelineStep("claude", "design")
        assert pipeline.steps[1] == PipelineStep("codex", "implement")
        assert pipeline.steps[2] == PipelineStep("gemini", "review")

    def test_single_step(self):
        pipeline = parse("claude:analyze")

        assert pipeline.provider_ids == ("claude",)
        assert pipeline.steps[0].action == "analyze"

    def test_default_strategy_is_fail_fast(self):
        assert parse("claude:a").error_strategy == FailFast()

    def test_strategy_is_attached(self):
        pipeline = parse("claude:a -> gemini:b", ContinueOnError())

        assert pipeline.error_strategy == ContinueOnError()

    def test_whitespace_is_insignificant(self):
        """Spacing around separators does not change the result."""
        compact = parse("claude:design->codex:implement")
        spaced = parse("  claude :  design   ->   codex:  implement  ")

        assert compact == spaced

    def test_inner_whitespace_collapses(self):
        pipeline = parse("claude:write   unit\ttests")

        assert pipeline.steps[0].action == "write unit tests"

    def test_action_may_contain_spaces_and_punctuation(self):
        pipeline = parse("gemini:review the design, then list risks")

        assert pipeline.steps[0].action == "review the design, then list risks"

    def test_steps_have_no_transform_or_context(self):
        step = parse("claude:a").steps[0]

        assert step.transform is None
        assert step.step_context is None


# ==================== Parse Errors ====================


class TestParseErrors:
    """Test that malformed chains report the right error kind and position."""

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_chain(self, text):
        with pytest.raises(ParseError) as exc_info:
            parse(text)

        assert exc_info.value.kind == ParseErrorKind.EMPTY_CHAIN
        assert exc_info.value.position == 0

    def test_trailing_arrow(self):
        """'claude:a ->' reports the dangling arrow."""
        with pytest.raises(ParseError) as exc_info:
            parse("claude:a ->")

        assert exc_info.value.kind == ParseErrorKind.TRAILING_ARROW
        assert exc_info.value.position == 9

    def test_leading_arrow_is_empty_step(self):
        with pytest.raises(ParseError) as exc_info:
            parse("-> claude:a")

        assert exc_info.value.kind == ParseErrorKind.EMPTY_STEP
        assert exc_info.value.position == 0

    def test_empty_step_between_arrows(self):
        text = "claude:a -> -> gemini:b"
        with pytest.raises(ParseError) as exc_info:
            parse(text)

        assert exc_info.value.kind == ParseErrorKind.EMPTY_STEP
        assert exc_info.value.position == text.index("->", 10)

    def test_missing_colon(self):
        with pytest.raises(ParseError) as exc_info:
            parse("claude")

        assert exc_info.value.kind == ParseErrorKind.MISSING_COLON
        assert exc_info.value.position == 0

    def test_missing_colon_in_second_step(self):
        text = "claude:a ->  gemini"
        with pytest.raises(ParseError) as exc_info:
            parse(text)

        assert exc_info.value.kind == ParseErrorKind.MISSING_COLON
        assert exc_info.value.position == text.index("gemini")

    def test_empty_provider(self):
        with pytest.raises(ParseError) as exc_info:
            parse(":action")

        assert exc_info.value.kind == ParseErrorKind.EMPTY_PROVIDER
        assert exc_info.value.position == 0

    def test_empty_action(self):
        with pytest.raises(ParseError) as exc_info:
            parse("claude:")

        assert exc_info.value.kind == ParseErrorKind.EMPTY_ACTION
        assert exc_info.value.position == 6

    def test_unexpected_colon(self):
        text = "claude:a:b"
        with pytest.raises(ParseError) as exc_info:
            parse(text)

        assert exc_info.value.kind == ParseErrorKind.UNEXPECTED_COLON
        assert exc_info.value.position == 8

    def test_error_message_is_readable(self):
        with pytest.raises(ParseError) as exc_info:
            parse("claude")

        assert "missing ':'" in str(exc_info.value)
        assert "at offset 0" in str(exc_info.value)


# ==================== Printing ====================


class TestFormat:
    """Test the canonical printer."""

    @pytest.mark.parametrize(
        "text",
        [
            "claude:design -> codex:implement -> gemini:review",
            "  claude :design->gemini:  review the   plan ",
            "codex:x",
        ],
    )
    def test_print_then_parse_is_stable(self, text):
        """Printing a parsed chain and parsing it again gives the same steps."""
        pipeline = parse(text)

        assert parse(format_pipeline(pipeline)).steps == pipeline.steps

    def test_canonical_spacing(self):
        assert format_pipeline(parse("a:x->b:y")) == "a:x -> b:y"

    def test_formats_step_sequences(self):
        steps = [PipelineStep("claude", "plan"), PipelineStep("codex", "build")]

        assert format_pipeline(steps) == "claude:plan -> codex:build"


# ==================== Validation ====================


class TestValidateProviders:
    def test_known_providers_pass(self):
        validate_providers(parse("claude:a -> gemini:b"), ["claude", "gemini", "codex"])

    def test_unknown_provider_is_reported(self):
        with pytest.raises(UnknownProviderError) as exc_info:
            validate_providers(parse("claude:a -> gpt:b"), ["claude", "gemini"])

        assert exc_info.value.provider_id == "gpt"
        assert "Unknown provider: 'gpt'" in str(exc_info.value)


# ==================== Pipeline Value ====================


class TestPipelineValue:
    def test_empty_pipeline_rejected(self):
        with pytest.raises(ValueError):
            Pipeline(())

    def test_with_step_returns_new_pipeline(self):
        pipeline = parse("claude:a")
        extended = pipeline.with_step(PipelineStep("gemini", "b"))

        assert len(pipeline) == 1
        assert len(extended) == 2

    def test_builder(self):
        pipeline = (
            PipelineBuilder()
            .step("claude", "design", step_context="Keep it small.")
            .step("codex", "implement")
            .on_error(ContinueOnError())
            .build()
        )

        assert format_pipeline(pipeline) == "claude:design -> codex:implement"
        assert pipeline.steps[0].step_context == "Keep it small."
        assert pipeline.error_strategy == ContinueOnError()
