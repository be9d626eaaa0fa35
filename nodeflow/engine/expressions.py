"""
Expression resolution for dynamic node settings.

String settings may embed expressions delimited by double braces. Before a
node executes, its raw settings are walked and every expression is
replaced with text computed from runtime data:

    {{$result.<nodeId>.<path>}}   output of an upstream node
    {{$input.<path>}}             the node's gathered inputs
    {{$context.<path>}}           execution context (ids + run metadata)
    {{$settings.<path>}}          the node's own raw settings

Missing values resolve to an empty string. A string whose expressions
cannot be evaluated is left exactly as it was.
"""

from typing import Any, Dict, List, Mapping, Optional, Set
import json
import logging
import re

from nodeflow.engine.errors import ExpressionError


logger = logging.getLogger(__name__)


EXPRESSION_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
RESULT_REFERENCE_PATTERN = re.compile(r"\{\{\s*\$result\.([^.}\s]+)")

_MISSING = object()


def has_expression(value: Any) -> bool:
    """Check whether a value is a string containing an expression."""
    return isinstance(value, str) and EXPRESSION_PATTERN.search(value) is not None


def get_value_by_path(data: Any, path: List[str]) -> Any:
    """
    Walk a dotted path through nested dicts and lists.

    Returns the _MISSING sentinel as soon as an intermediate value is
    absent or not a container.
    """
    current = data
    for key in path:
        if isinstance(current, Mapping):
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
    return current


def to_text(value: Any) -> str:
    """Render a resolved value as the text that replaces its expression."""
    if value is _MISSING or value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple, bool)):
        return json.dumps(value, default=str)
    return str(value)


def extract_dependencies(value: Any) -> Set[str]:
    """Collect the node ids referenced through $result in a settings tree."""
    found: Set[str] = set()
    if isinstance(value, str):
        found.update(RESULT_REFERENCE_PATTERN.findall(value))
    elif isinstance(value, Mapping):
        for item in value.values():
            found |= extract_dependencies(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= extract_dependencies(item)
    return found


class ExpressionResolver:
    """
    Resolves expressions against one node's runtime data.

    Attributes:
        results: Upstream node id -> produced output
        inputs: The node's gathered inputs
        settings: The node's raw settings
        context: Context values (workflow/node/execution ids and metadata)
    """

    def __init__(
        self,
        results: Optional[Mapping[str, Any]] = None,
        inputs: Optional[Mapping[str, Any]] = None,
        settings: Optional[Mapping[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None,
    ):
        self.results = results or {}
        self.inputs = inputs or {}
        self.settings = settings or {}
        self.context = context or {}

    def resolve(self, value: Any) -> Any:
        """Return a resolved copy of a settings tree."""
        if isinstance(value, str):
            return self.resolve_string(value)
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        return value

    def resolve_string(self, text: str) -> str:
        """Replace every expression in a string, or keep it unchanged on failure."""
        if not has_expression(text):
            return text
        try:
            return EXPRESSION_PATTERN.sub(
                lambda match: to_text(self.evaluate(match.group(1))),
                text,
            )
        except ExpressionError as e:
            logger.warning(f"Failed to resolve expression in '{text}': {e}")
            return text

    def evaluate(self, expression: str) -> Any:
        """Evaluate the inside of a single {{ }} span."""
        expression = expression.strip()

        if expression.startswith("$result."):
            parts = expression[len("$result."):].split(".")
            if len(parts) < 2 or not parts[0]:
                return _MISSING
            node_id, path = parts[0], parts[1:]
            if node_id not in self.results:
                return _MISSING
            return get_value_by_path(self.results[node_id], path)

        for prefix, source in (
            ("$input", self.inputs),
            ("$context", self.context),
            ("$settings", self.settings),
        ):
            if expression == prefix:
                return dict(source)
            if expression.startswith(prefix + "."):
                return get_value_by_path(source, expression[len(prefix) + 1:].split("."))

        raise ExpressionError(f"Unsupported expression '{expression}'")

