"""Build test-case filter expressions for the test runner.

Grammar: ``Field=Value`` matches exactly, ``Field~Value`` matches when the
field contains the value, and clauses are OR-joined with ``|``. Commas
separate clauses in the runner's grammar, so literal commas (generic type
arguments, parameter lists) are percent-encoded as ``%2C``.
"""

from collections.abc import Iterable

from dotnet_test_explorer.models.tree import TestNode

FILTER_FIELD = "FullyQualifiedName"


def encode_filter_value(value: str) -> str:
    """Percent-encode commas in a filter value."""
    return value.replace(",", "%2C")


def decode_filter_value(value: str) -> str:
    """Reverse ``encode_filter_value``."""
    return value.replace("%2C", ",")


def filter_clause(node: TestNode) -> str | None:
    """Build the clause selecting ``node``, or None for whole groups.

    Methods and parameterized cases match their qualified name exactly;
    a case cannot be selected on its own, so it selects its method.
    Namespaces and classes match by containment.
    """
    name = node.qualified_name
    if node.kind == "group" or not name:
        return None

    operator = "=" if node.kind in ("method", "case") else "~"
    return f"{FILTER_FIELD}{operator}{encode_filter_value(name)}"


def build_filter(nodes: Iterable[TestNode]) -> str:
    """OR-combine one clause per node, dropping duplicates."""
    clauses: dict[str, None] = {}
    for node in nodes:
        if (clause := filter_clause(node)) is not None:
            clauses.setdefault(clause)
    return "|".join(clauses)
