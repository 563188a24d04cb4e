"""Detection of structured-output shape conflicts across fork branches.

With Anthropic the structured-output schema is sent as part of the request
prefix, so branches asking for different shapes never share a cache entry,
even after a warmup. The request still succeeds, the cache just never hits.

Shapes are compared through a structural signature computed from their JSON
Schema. Shapes may be given as pydantic models, anything `pydantic.TypeAdapter`
accepts (e.g. `list[int]`, a TypedDict) or a JSON Schema dict.
"""

import json
import uuid
from collections.abc import Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import TypeAdapter

from promptfork.llm.constants import CacheProvider
from promptfork.llm.prompt_cache.capabilities import coerce_cache_provider
from promptfork.llm.prompt_cache.exceptions import SchemaConflictViolation
from promptfork.llm.prompt_cache.models import SchemaConflictResult
from promptfork.llm.prompt_cache.models import SchemaInfo
from promptfork.utils.logger import setup_logger

logger = setup_logger()

# Whether the provider's cache key includes the structured-output schema
SCHEMA_SENSITIVE_CACHE_KEYS: dict[CacheProvider, bool] = {
    CacheProvider.ANTHROPIC: True,
    CacheProvider.OPENAI: False,
    CacheProvider.GOOGLE: False,
    CacheProvider.OTHER: False,
}

PRIMITIVE_TYPES = {"string", "number", "integer", "boolean", "null"}
REF_PREFIX = "#/$defs/"

CONFLICT_SUGGESTIONS = [
    "Consider using a universal schema that covers all branches",
    "Use unstructured generation + local post-processing instead of structured output",
    "Accept that branches with different schemas won't share cache",
    "Split into separate fork calls grouped by schema",
]
CONFLICT_HINT = (
    "Consider: (1) universal schema, (2) unstructured generation + post-process, "
    "(3) accept no cache sharing"
)


class SchemaConflictBehavior(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    ERROR = "error"


class _UnknownSchemaNode(Exception):
    """Raised by the visitor for a node kind it does not know how to compare."""


def to_json_schema(shape: Any) -> dict[str, Any]:
    if isinstance(shape, dict):
        return shape
    if isinstance(shape, type) and issubclass(shape, BaseModel):
        return shape.model_json_schema()
    return TypeAdapter(shape).json_schema()


class _SchemaShapeVisitor:
    """Canonical, title-free structure of a JSON Schema.

    Covers a closed set of node kinds: object, array, primitive, enum, literal,
    union, optional, nullable, default, record and tuple. Anything else raises
    _UnknownSchemaNode.
    """

    def __init__(self, defs: dict[str, Any]) -> None:
        self.defs = defs
        self._resolving: list[str] = []

    def visit(self, node: Any) -> dict[str, Any]:
        if not isinstance(node, dict):
            raise _UnknownSchemaNode(f"schema node is not an object: {node!r}")

        shape = self._visit_kind(node)
        if node.get("description"):
            shape["description"] = node["description"]
        return shape

    def _visit_kind(self, node: dict[str, Any]) -> dict[str, Any]:
        if "$ref" in node:
            return self._visit_ref(node["$ref"])
        if "enum" in node:
            return {"kind": "enum", "values": list(node["enum"])}
        if "const" in node:
            return {"kind": "literal", "value": node["const"]}
        if "anyOf" in node or "oneOf" in node:
            return self._visit_union(node.get("anyOf") or node.get("oneOf") or [])
        if "allOf" in node and len(node["allOf"]) == 1:
            return self.visit(node["allOf"][0])

        node_type = node.get("type")
        if isinstance(node_type, list):
            return self._visit_union([{**node, "type": t} for t in node_type])
        if node_type == "object":
            return self._visit_object(node)
        if node_type == "array":
            return self._visit_array(node)
        if node_type in PRIMITIVE_TYPES:
            primitive: dict[str, Any] = {"kind": "primitive", "type": node_type}
            if "format" in node:
                primitive["format"] = node["format"]
            return primitive
        if node_type is None and not (set(node) - {"title", "description", "default"}):
            return {"kind": "primitive", "type": "any"}

        raise _UnknownSchemaNode(f"unsupported schema node: {sorted(node)}")

    def _visit_ref(self, ref: str) -> dict[str, Any]:
        if not ref.startswith(REF_PREFIX) or ref[len(REF_PREFIX) :] not in self.defs:
            raise _UnknownSchemaNode(f"unresolvable $ref: {ref}")
        name = ref[len(REF_PREFIX) :]
        # Recursive models reference themselves
        if name in self._resolving:
            return {"kind": "recursive", "depth": self._resolving.index(name)}
        self._resolving.append(name)
        try:
            return self.visit(self.defs[name])
        finally:
            self._resolving.pop()

    def _visit_union(self, options: Any) -> dict[str, Any]:
        if not isinstance(options, list) or not all(
            isinstance(option, dict) for option in options
        ):
            raise _UnknownSchemaNode(f"unsupported union options: {options!r}")
        non_null = [option for option in options if option.get("type") != "null"]
        if len(non_null) < len(options):
            inner = (
                self.visit(non_null[0])
                if len(non_null) == 1
                else {"kind": "union", "options": [self.visit(o) for o in non_null]}
            )
            return {"kind": "nullable", "inner": inner}
        return {"kind": "union", "options": [self.visit(o) for o in options]}

    def _visit_object(self, node: dict[str, Any]) -> dict[str, Any]:
        properties = node.get("properties")
        additional = node.get("additionalProperties")
        if not properties and isinstance(additional, dict):
            return {"kind": "record", "value": self.visit(additional)}

        required = set(node.get("required", []))
        fields: list[list[Any]] = []
        # Pairs keep the declared field order
        for name, field_node in (properties or {}).items():
            field_shape = self.visit(field_node)
            if "default" in field_node:
                field_shape = {
                    "kind": "default",
                    "value": field_node["default"],
                    "inner": field_shape,
                }
            if name not in required:
                field_shape = {"kind": "optional", "inner": field_shape}
            fields.append([name, field_shape])
        return {"kind": "object", "properties": fields}

    def _visit_array(self, node: dict[str, Any]) -> dict[str, Any]:
        if "prefixItems" in node:
            return {
                "kind": "tuple",
                "items": [self.visit(item) for item in node["prefixItems"]],
            }
        items = node.get("items")
        return {
            "kind": "array",
            "items": (
                self.visit(items)
                if items is not None
                else {"kind": "primitive", "type": "any"}
            ),
        }


def _unknown_signature() -> str:
    # Never equal to anything, including another call for the same shape
    return f"unknown-{uuid.uuid4().hex[:12]}"


def _signature_and_description(shape: Any) -> tuple[str, str | None]:
    try:
        schema = to_json_schema(shape)
    except Exception as e:
        logger.debug(f"Could not build a JSON schema for {shape!r}: {e}")
        return _unknown_signature(), None

    try:
        canonical = _SchemaShapeVisitor(schema.get("$defs", {})).visit(schema)
    except _UnknownSchemaNode as e:
        logger.debug(f"Falling back to a unique schema signature: {e}")
        return _unknown_signature(), schema.get("description")
    return json.dumps(canonical, default=str), schema.get("description")


def compute_schema_signature(shape: Any) -> str:
    """Structural signature of an output shape.

    Field names, field order, nesting and descriptions are part of the
    signature. Titles (model class names) are not.
    """
    signature, _ = _signature_and_description(shape)
    return signature


def _no_conflict(message: str, groups: list[list[SchemaInfo]]) -> SchemaConflictResult:
    return SchemaConflictResult(
        has_conflict=False,
        message=message,
        conflicting_branches=[],
        schema_groups=groups,
        suggestions=[],
    )


def detect_schema_conflict(
    shapes: Sequence[Any],
    provider: CacheProvider | str | None = None,
    include_details: bool = False,
) -> SchemaConflictResult:
    """Group branch shapes by signature and report a conflict when more than one group exists.

    Providers whose cache key ignores the output schema never conflict. Without a
    provider the check is always run.
    """
    if (
        provider is not None
        and not SCHEMA_SENSITIVE_CACHE_KEYS[coerce_cache_provider(provider)]
    ):
        return _no_conflict(
            f"Schema conflict detection does not apply to {provider}, "
            "its cache key does not include the output schema",
            [],
        )

    infos: list[SchemaInfo] = []
    for index, shape in enumerate(shapes):
        signature, description = _signature_and_description(shape)
        infos.append(
            SchemaInfo(
                branch_index=index,
                signature=signature,
                shape=shape if include_details else None,
                description=description,
            )
        )

    groups: dict[str, list[SchemaInfo]] = {}
    for info in infos:
        groups.setdefault(info.signature, []).append(info)

    if len(groups) <= 1:
        return _no_conflict(
            "All branches use compatible schemas", [infos] if infos else []
        )

    schema_groups = list(groups.values())
    conflicting_branches = [
        [info.branch_index for info in group] for group in schema_groups
    ]
    grouped = ", ".join(
        f"[{', '.join(str(index) for index in group)}]"
        for group in conflicting_branches
    )
    message = (
        f"{len(groups)} different schemas detected across {len(shapes)} branches. "
        "Different schemas in fork branches break Anthropic cache reuse. "
        f"Branches are grouped by schema: {grouped}"
    )

    return SchemaConflictResult(
        has_conflict=True,
        message=message,
        conflicting_branches=conflicting_branches,
        schema_groups=schema_groups,
        suggestions=list(CONFLICT_SUGGESTIONS),
    )


def handle_schema_conflict(
    conflict: SchemaConflictResult,
    behavior: SchemaConflictBehavior | str,
) -> str | None:
    """Apply the caller's conflict policy. Never changes whether a conflict was found.

    Returns:
        A warning message under `warn`, otherwise None

    Raises:
        SchemaConflictViolation: under `error` when there is a conflict
    """
    if not conflict.has_conflict:
        return None

    behavior = SchemaConflictBehavior(behavior)
    if behavior == SchemaConflictBehavior.ERROR:
        raise SchemaConflictViolation(
            f"Schema conflict detected: {conflict.message}\n{CONFLICT_HINT}",
            conflict,
        )
    if behavior == SchemaConflictBehavior.WARN:
        return f"Warning: {conflict.message}\n{CONFLICT_HINT}"
    return None


def are_schemas_compatible(shapes: Sequence[Any]) -> bool:
    if len(shapes) <= 1:
        return True
    first_signature = compute_schema_signature(shapes[0])
    return all(
        compute_schema_signature(shape) == first_signature for shape in shapes[1:]
    )


def describe_schemas_difference(shapes: Sequence[Any]) -> str:
    if not shapes:
        return "No schemas provided"
    if len(shapes) == 1:
        return "Only one schema provided"

    result = detect_schema_conflict(shapes, include_details=True)
    if not result.has_conflict:
        return "All schemas are identical"

    descriptions = []
    for group_index, group in enumerate(result.schema_groups):
        branch_indices = ", ".join(str(info.branch_index) for info in group)
        description = group[0].description or f"Group {group_index + 1}"
        descriptions.append(f"Branches [{branch_indices}]: {description}")
    return "\n".join(descriptions)
