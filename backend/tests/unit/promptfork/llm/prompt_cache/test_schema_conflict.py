"""Tests for structured-output shape conflict detection."""

from typing import Literal

import pytest
from pydantic import BaseModel
from pydantic import Field

from promptfork.llm.prompt_cache.exceptions import SchemaConflictViolation
from promptfork.llm.prompt_cache.models import SchemaConflictResult
from promptfork.llm.prompt_cache.schema_conflict import are_schemas_compatible
from promptfork.llm.prompt_cache.schema_conflict import compute_schema_signature
from promptfork.llm.prompt_cache.schema_conflict import describe_schemas_difference
from promptfork.llm.prompt_cache.schema_conflict import detect_schema_conflict
from promptfork.llm.prompt_cache.schema_conflict import handle_schema_conflict
from promptfork.llm.prompt_cache.schema_conflict import SchemaConflictBehavior


class Summary(BaseModel):
    title: str
    points: list[str]


class Sentiment(BaseModel):
    label: Literal["positive", "negative", "neutral"]
    score: float


class Entities(BaseModel):
    names: list[str]
    count: int


class RenamedSummary(BaseModel):
    title: str
    points: list[str]


class Node(BaseModel):
    value: int
    children: list["Node"] = []


class TestComputeSchemaSignature:
    """Tests for the structural signature."""

    def test_stable(self) -> None:
        assert compute_schema_signature(Summary) == compute_schema_signature(Summary)

    def test_class_name_ignored(self) -> None:
        assert compute_schema_signature(Summary) == compute_schema_signature(
            RenamedSummary
        )

    def test_field_rename_changes_signature(self) -> None:
        class Renamed(BaseModel):
            heading: str
            points: list[str]

        assert compute_schema_signature(Summary) != compute_schema_signature(Renamed)

    def test_field_type_change_changes_signature(self) -> None:
        class Retyped(BaseModel):
            title: str
            points: list[int]

        assert compute_schema_signature(Summary) != compute_schema_signature(Retyped)

    def test_field_order_is_significant(self) -> None:
        class Reordered(BaseModel):
            points: list[str]
            title: str

        assert compute_schema_signature(Summary) != compute_schema_signature(Reordered)

    def test_description_is_significant(self) -> None:
        class Described(BaseModel):
            title: str = Field(description="Short headline")
            points: list[str]

        assert compute_schema_signature(Summary) != compute_schema_signature(Described)

    def test_optional_differs_from_required(self) -> None:
        class OptionalTitle(BaseModel):
            title: str | None = None
            points: list[str]

        assert compute_schema_signature(Summary) != compute_schema_signature(
            OptionalTitle
        )

    def test_type_adapter_shapes(self) -> None:
        assert compute_schema_signature(list[int]) == compute_schema_signature(
            list[int]
        )
        assert compute_schema_signature(list[int]) != compute_schema_signature(
            list[str]
        )
        assert compute_schema_signature(dict[str, int]) != compute_schema_signature(
            dict[str, str]
        )
        assert compute_schema_signature(tuple[int, str]) != compute_schema_signature(
            tuple[str, int]
        )

    def test_json_schema_dict_matches_model(self) -> None:
        assert compute_schema_signature(
            Summary.model_json_schema()
        ) == compute_schema_signature(Summary)

    def test_recursive_model(self) -> None:
        signature = compute_schema_signature(Node)

        assert not signature.startswith("unknown-")
        assert signature == compute_schema_signature(Node)

    def test_unknown_node_never_matches(self) -> None:
        shape = {"not": {"type": "string"}}

        first = compute_schema_signature(shape)
        second = compute_schema_signature(shape)

        assert first.startswith("unknown-")
        assert first != second

    @pytest.mark.parametrize(
        "shape",
        [
            {"anyOf": [True, {"type": "string"}]},
            {"oneOf": [{"type": "integer"}, False]},
            {"anyOf": "string"},
        ],
    )
    def test_malformed_union_is_unknown(self, shape: dict) -> None:
        assert compute_schema_signature(shape).startswith("unknown-")

    def test_malformed_union_still_detects_conflict(self) -> None:
        shape = {"anyOf": [True, {"type": "string"}]}

        result = detect_schema_conflict([shape, shape], provider="anthropic")

        assert result.has_conflict is True


class TestDetectSchemaConflict:
    """Tests for grouping branches by shape."""

    def test_three_distinct_shapes_conflict(self) -> None:
        result = detect_schema_conflict(
            [Summary, Sentiment, Entities], provider="anthropic"
        )

        assert result.has_conflict is True
        assert len(result.schema_groups) == 3
        assert result.conflicting_branches == [[0], [1], [2]]
        assert "3 different schemas" in result.message
        assert len(result.suggestions) == 4

    def test_automatic_provider_never_conflicts(self) -> None:
        result = detect_schema_conflict(
            [Summary, Sentiment, Entities], provider="openai"
        )

        assert result.has_conflict is False
        assert result.suggestions == []

    def test_identical_shapes(self) -> None:
        result = detect_schema_conflict([Summary, Summary, RenamedSummary])

        assert result.has_conflict is False
        assert len(result.schema_groups) == 1
        assert [info.branch_index for info in result.schema_groups[0]] == [0, 1, 2]

    def test_groups_branches_by_shape(self) -> None:
        result = detect_schema_conflict([Summary, Sentiment, Summary])

        assert result.conflicting_branches == [[0, 2], [1]]
        assert "Branches are grouped by schema: [0, 2], [1]" in result.message

    def test_details_only_when_requested(self) -> None:
        without = detect_schema_conflict([Summary, Sentiment])
        with_details = detect_schema_conflict(
            [Summary, Sentiment], include_details=True
        )

        assert without.schema_groups[0][0].shape is None
        assert with_details.schema_groups[0][0].shape is Summary

    def test_no_shapes(self) -> None:
        result = detect_schema_conflict([])

        assert result.has_conflict is False
        assert result.schema_groups == []


class TestHandleSchemaConflict:
    """Tests for the conflict policy."""

    @pytest.fixture
    def conflict(self) -> SchemaConflictResult:
        return detect_schema_conflict([Summary, Sentiment], provider="anthropic")

    def test_error_raises(self, conflict: SchemaConflictResult) -> None:
        with pytest.raises(SchemaConflictViolation) as exc_info:
            handle_schema_conflict(conflict, SchemaConflictBehavior.ERROR)

        assert str(exc_info.value).startswith("Schema conflict detected:")
        assert exc_info.value.conflict is conflict

    def test_warn_returns_message(self, conflict: SchemaConflictResult) -> None:
        message = handle_schema_conflict(conflict, "warn")

        assert message is not None
        assert message.startswith("Warning: 2 different schemas")

    def test_allow_is_silent(self, conflict: SchemaConflictResult) -> None:
        assert handle_schema_conflict(conflict, "allow") is None
        assert conflict.has_conflict is True

    def test_no_conflict_never_raises(self) -> None:
        result = detect_schema_conflict([Summary, Summary])
        assert handle_schema_conflict(result, "error") is None


class TestSchemaHelpers:
    """Tests for the compatibility helpers."""

    def test_are_schemas_compatible(self) -> None:
        assert are_schemas_compatible([]) is True
        assert are_schemas_compatible([Summary, RenamedSummary]) is True
        assert are_schemas_compatible([Summary, Sentiment]) is False

    def test_describe_schemas_difference(self) -> None:
        assert describe_schemas_difference([]) == "No schemas provided"
        assert describe_schemas_difference([Summary]) == "Only one schema provided"
        assert (
            describe_schemas_difference([Summary, RenamedSummary])
            == "All schemas are identical"
        )
        assert describe_schemas_difference([Summary, Sentiment, Summary]) == (
            "Branches [0, 2]: Group 1\nBranches [1]: Group 2"
        )
