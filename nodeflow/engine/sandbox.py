"""
Restricted execution of user-supplied Python snippets.

A snippet is the body of a function receiving ``inputs``:

    total = sum(item["price"] for item in inputs["items"])
    return {"total": total}

Snippets see a small set of builtins plus the json and math modules.
Imports, global statements and dunder attribute access are rejected
before anything runs.
"""

from typing import Any, Callable, Dict
import ast
import builtins
import json
import math
import textwrap


SAFE_BUILTINS: Dict[str, Any] = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "enumerate", "filter", "float",
        "int", "isinstance", "len", "list", "map", "max", "min", "range",
        "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
        "print", "ValueError", "TypeError", "KeyError", "Exception",
    )
}

SNIPPET_NAME = "__snippet__"


def check_snippet(tree: ast.AST) -> None:
    """Reject constructs that could escape the sandbox."""
    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            raise ValueError("Imports are not allowed in code snippets")
        if isinstance(node, (ast.Global, ast.Nonlocal)):
            raise ValueError("global/nonlocal statements are not allowed in code snippets")
        if isinstance(node, ast.Attribute) and node.attr.startswith("__"):
            raise ValueError(f"Access to '{node.attr}' is not allowed in code snippets")
        if isinstance(node, ast.Name) and node.id.startswith("__") and node.id != SNIPPET_NAME:
            raise ValueError(f"Access to '{node.id}' is not allowed in code snippets")


def compile_snippet(code: str, filename: str = "<snippet>") -> Callable[[Dict[str, Any]], Any]:
    """
    Compile a snippet into a callable taking the inputs dict.

    Raises:
        SyntaxError: If the snippet does not parse
        ValueError: If the snippet uses disallowed constructs
    """
    source = f"def {SNIPPET_NAME}(inputs):\n" + textwrap.indent(code.strip() or "pass", "    ")
    tree = ast.parse(source, filename=filename)
    check_snippet(tree)

    namespace: Dict[str, Any] = {
        "__builtins__": dict(SAFE_BUILTINS),
        "json": json,
        "math": math,
    }
    exec(compile(tree, filename, "exec"), namespace)
    return namespace[SNIPPET_NAME]
