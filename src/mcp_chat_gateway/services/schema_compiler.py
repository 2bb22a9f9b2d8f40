"""Compile tool input schemas into runtime validators.

Tool servers publish JSON Schema documents of very uneven quality. The
compiler first rewrites a schema into the supported subset (see
``SchemaCompiler._rewrite``), recording a ``SchemaCompileWarning`` for every
construct it has to relax, and then hands the result to ``jsonschema``.
Compilation never raises: anything the compiler cannot make sense of accepts
any value.
"""

import logging
import re
from typing import Any, Dict, List
from urllib.parse import urlparse

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, Field

from .error_handler import SchemaCompileWarning

logger = logging.getLogger(__name__)

KNOWN_TYPES = {"string", "number", "integer", "boolean", "null", "array", "object"}

_STRING_KEYWORDS = ("minLength", "maxLength", "format")
_NUMBER_KEYWORDS = ("minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum", "multipleOf")
_ARRAY_KEYWORDS = ("minItems", "maxItems", "uniqueItems")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

format_checker = FormatChecker(formats=())


@format_checker.checks("email")
def _is_email(instance: Any) -> bool:
    if not isinstance(instance, str):
        return True
    return bool(_EMAIL_RE.match(instance))


@format_checker.checks("uri")
def _is_uri(instance: Any) -> bool:
    if not isinstance(instance, str):
        return True
    parsed = urlparse(instance)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


class SchemaViolation(BaseModel):
    """One reason a value failed validation."""

    path: str = Field(default="", description="Slash separated location, empty for the root")
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}" if self.path else self.reason


class ValidationResult(BaseModel):
    """Outcome of validating a value against a compiled schema."""

    is_valid: bool
    value: Any = None
    errors: List[SchemaViolation] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ToolValidator:
    """A compiled, reusable validator for one schema."""

    def __init__(self, schema: Dict[str, Any], diagnostics: List[SchemaCompileWarning]):
        self.schema = schema
        self.diagnostics = diagnostics
        self._validator = Draft202012Validator(schema, format_checker=format_checker)

    def validate(self, value: Any) -> ValidationResult:
        violations = [_to_violation(err) for err in self._validator.iter_errors(value)]
        violations.sort(key=lambda v: v.path)
        return ValidationResult(
            is_valid=not violations,
            value=value,
            errors=violations,
            warnings=[str(d) for d in self.diagnostics],
        )


def _to_violation(err) -> SchemaViolation:
    parts = [str(p) for p in err.absolute_path]
    if err.validator == "required" and isinstance(err.instance, dict):
        # Point at the missing property rather than its parent object
        for name in err.validator_value:
            if name not in err.instance and repr(name) in err.message:
                parts.append(str(name))
                return SchemaViolation(path="/".join(parts), reason=err.message)
    return SchemaViolation(path="/".join(parts), reason=err.message)


class SchemaCompiler:
    """Turns declarative tool schemas into ``ToolValidator`` instances."""

    def compile(self, schema: Any) -> ToolValidator:
        diagnostics: List[SchemaCompileWarning] = []
        rewritten = self._rewrite(schema, "", diagnostics)

        try:
            Draft202012Validator.check_schema(rewritten)
        except SchemaError as e:
            self._warn(diagnostics, "", f"schema rejected ({e.message}); accepting any value")
            rewritten = {}

        return ToolValidator(rewritten, diagnostics)

    def _warn(self, diagnostics: List[SchemaCompileWarning], path: str, message: str) -> None:
        warning = SchemaCompileWarning(path=path, message=message)
        diagnostics.append(warning)
        logger.warning(f"Schema compile warning: {warning}")

    def _rewrite(self, node: Any, path: str, diagnostics: List[SchemaCompileWarning]) -> Dict[str, Any]:
        if node is True or node is None:
            return {}
        if not isinstance(node, dict):
            self._warn(diagnostics, path, f"malformed schema node {node!r}; accepting any value")
            return {}

        if "$ref" in node:
            self._warn(diagnostics, path, f"$ref {node['$ref']!r} is not resolved; accepting any value")
            return {}

        # enum is an exact-match check that replaces every other constraint
        if isinstance(node.get("enum"), list):
            return {"enum": list(node["enum"])}

        out: Dict[str, Any] = {}

        node_type = node.get("type")
        if node_type is None and isinstance(node.get("properties"), dict):
            node_type = "object"
        if isinstance(node_type, list):
            kept = [t for t in node_type if t in KNOWN_TYPES]
            if kept:
                out["type"] = kept
            node_types = set(kept)
        elif isinstance(node_type, str):
            if node_type not in KNOWN_TYPES:
                self._warn(diagnostics, path, f"unknown type {node_type!r}; accepting any value")
                return {}
            out["type"] = node_type
            node_types = {node_type}
        else:
            node_types = set()

        if "const" in node:
            out["const"] = node["const"]

        if not node_types or "string" in node_types:
            self._copy(node, out, _STRING_KEYWORDS)
            pattern = node.get("pattern")
            if isinstance(pattern, str):
                try:
                    re.compile(pattern)
                    out["pattern"] = pattern
                except re.error as e:
                    self._warn(diagnostics, _join(path, "pattern"), f"invalid pattern dropped: {e}")

        if not node_types or node_types & {"number", "integer"}:
            self._copy(node, out, _NUMBER_KEYWORDS)

        if not node_types or "array" in node_types:
            self._copy(node, out, _ARRAY_KEYWORDS)
            items = node.get("items")
            if isinstance(items, list) or "prefixItems" in node:
                self._warn(
                    diagnostics, _join(path, "items"),
                    "per-position item schemas are not supported; accepting any array items",
                )
            elif items is not None:
                out["items"] = self._rewrite(items, _join(path, "items"), diagnostics)

        if not node_types or "object" in node_types:
            properties = node.get("properties")
            if isinstance(properties, dict):
                out["properties"] = {
                    name: self._rewrite(sub, _join(path, name), diagnostics)
                    for name, sub in properties.items()
                }
            required = node.get("required")
            if isinstance(required, list):
                out["required"] = [r for r in required if isinstance(r, str)]

        for key, target in (("anyOf", "anyOf"), ("oneOf", "anyOf"), ("allOf", "allOf")):
            branches = node.get(key)
            if isinstance(branches, list) and branches:
                compiled = [
                    self._rewrite(b, _join(path, f"{key}/{i}"), diagnostics) for i, b in enumerate(branches)
                ]
                if target == "allOf":
                    out.setdefault("allOf", []).extend(compiled)
                elif "anyOf" in out:
                    # anyOf and oneOf on one node must both hold
                    out.setdefault("allOf", []).append({"anyOf": compiled})
                else:
                    out["anyOf"] = compiled

        return out

    @staticmethod
    def _copy(node: Dict[str, Any], out: Dict[str, Any], keys) -> None:
        for key in keys:
            if key in node:
                out[key] = node[key]


def _join(path: str, segment: str) -> str:
    return f"{path}/{segment}" if path else segment
