"""Tests for step output transforms."""

import pytest

from aichain.context import Context
from aichain.errors import TransformError
from aichain.pipeline import TRANSFORMS, TransformSpec, apply_transform, resolve_transform
from aichain.pipeline.transform import (
    CodeBlockTransform,
    IdentityTransform,
    JsonExtractTransform,
    TemplateTransform,
    TruncateTransform,
)
from aichain.providers.base import Response


@pytest.fixture
def context() -> Context:
    return Context()


def response(content: str, **metadata) -> Response:
    return Response(content=content, metadata=metadata)


class TestResolve:
    def test_none_is_identity(self):
        assert isinstance(resolve_transform(None), IdentityTransform)

    def test_registered_names(self):
        assert set(TRANSFORMS) >= {"identity", "json_extract", "truncate", "template", "code_block"}

    def test_unknown_name(self):
        with pytest.raises(TransformError) as exc_info:
            resolve_transform(TransformSpec.of("uppercase"))

        assert exc_info.value.transform_name == "uppercase"

    def test_bad_parameters(self):
        with pytest.raises(TransformError):
            resolve_transform(TransformSpec.of("truncate", length=5))

    def test_non_numeric_length(self):
        with pytest.raises(TransformError):
            resolve_transform(TransformSpec.of("truncate", max_length="lots"))

    def test_spec_is_hashable_and_order_independent(self):
        first = TransformSpec.of("template", template="{output}", extra=1)
        second = TransformSpec.of("template", extra=1, template="{output}")

        assert first == second
        assert hash(first) == hash(second)


class TestJsonExtract:
    def test_extracts_string_field(self, context):
        transform = JsonExtractTransform("code")

        assert transform.apply(response('{"code": "x = 1"}'), context) == "x = 1"

    def test_non_string_field_is_serialized(self, context):
        transform = JsonExtractTransform("files")

        assert transform.apply(response('{"files": ["a.py", "b.py"]}'), context) == '["a.py", "b.py"]'

    def test_invalid_json(self, context):
        with pytest.raises(TransformError) as exc_info:
            JsonExtractTransform("code").apply(response("not json"), context)

        assert "JSON parsing failed" in str(exc_info.value)

    @pytest.mark.parametrize(
        "fallback,expected",
        [("keep_original", '{"other": 1}'), ("return_empty", "")],
    )
    def test_missing_field_fallbacks(self, context, fallback, expected):
        transform = JsonExtractTransform("code", fallback=fallback)

        assert transform.apply(response('{"other": 1}'), context) == expected

    def test_missing_field_error(self, context):
        transform = JsonExtractTransform("code", fallback="return_error")

        with pytest.raises(TransformError) as exc_info:
            transform.apply(response('{"other": 1}'), context)

        assert "Field 'code' not found in JSON" in str(exc_info.value)

    def test_unknown_fallback(self):
        with pytest.raises(TransformError):
            JsonExtractTransform("code", fallback="shrug")


class TestTruncate:
    def test_counts_characters(self, context):
        assert TruncateTransform(3).apply(response("héllo"), context) == "hél"

    def test_short_input_unchanged(self, context):
        assert TruncateTransform(100).apply(response("short"), context) == "short"

    def test_negative_length(self):
        with pytest.raises(TransformError):
            TruncateTransform(-1)


class TestTemplate:
    def test_renders_output_provider_and_metadata(self):
        context = Context(metadata={"task": "cache", "attempts": 3})
        transform = TemplateTransform("[{provider}] {task}: {output}")

        assert transform.apply(response("done", provider="claude"), context) == "[claude] cache: done"

    def test_unknown_field(self, context):
        with pytest.raises(TransformError):
            TemplateTransform("{missing}").apply(response("x"), context)


class TestCodeBlock:
    CONTENT = "Here:\n```text\nnotes\n```\nand\n```python\nprint('hi')\n```\n"

    def test_first_block(self, context):
        assert CodeBlockTransform().apply(response(self.CONTENT), context) == "notes"

    def test_block_by_language(self, context):
        assert CodeBlockTransform("Python").apply(response(self.CONTENT), context) == "print('hi')"

    def test_no_block(self, context):
        with pytest.raises(TransformError):
            CodeBlockTransform().apply(response("no code here"), context)


class TestApplyTransform:
    def test_identity_when_no_spec(self, context):
        assert apply_transform(None, response("raw"), context) == "raw"

    def test_applies_named_transform(self, context):
        spec = TransformSpec.of("truncate", max_length=2)

        assert apply_transform(spec, response("abc"), context) == "ab"
