"""Test tree supplied by discovery.

The tree structure is owned upstream. The runtime core reads it to decide
what to run and writes run state only through a ``TestRun`` sink.
"""

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import Field

from dotnet_test_explorer.models.base import Model

type NodeKind = Literal["group", "container", "method", "case"]


class SourceLocation(Model):
    """A file position used for navigation."""

    path: Path
    line: int = Field(..., ge=1, description="1-based line number")


class TestMetadata(Model):
    """Discovery metadata attached to a tree item."""

    __test__ = False

    qualified_name: str = Field(default="", description="Fully qualified name")
    owning_group_id: str = Field(..., description="Id of the owning group node")
    kind: NodeKind = Field(..., description="Structural kind of the node")
    is_parameterized: bool = False
    display_name: str = ""


@dataclass(eq=False, kw_only=True)
class TestNode:
    """A single item in the discovered test tree."""

    __test__ = False

    id: str
    label: str
    metadata: TestMetadata | None = None
    location: SourceLocation | None = None
    children: list["TestNode"] = field(default_factory=list)

    @property
    def kind(self) -> NodeKind | None:
        """Return the metadata kind, if any."""
        return self.metadata.kind if self.metadata else None

    @property
    def is_leaf_runnable(self) -> bool:
        """Check if the node is a directly runnable leaf.

        Leaves are childless method nodes and parameterized case nodes.
        """
        if self.kind == "case":
            return True
        return self.kind == "method" and not self.children

    @property
    def qualified_name(self) -> str:
        """Return the qualified name, derived from the id when metadata lacks it."""
        if self.metadata and self.metadata.qualified_name:
            return self.metadata.qualified_name
        _, sep, name = self.id.partition("|")
        return name if sep else ""


class NodePayload(Model):
    """Serialized form of a tree node."""

    id: str
    label: str
    metadata: TestMetadata | None = None
    location: SourceLocation | None = None
    children: Sequence["NodePayload"] = Field(default_factory=list)

    def to_node(self) -> TestNode:
        """Convert the payload (recursively) into a mutable tree node."""
        return TestNode(
            id=self.id,
            label=self.label,
            metadata=self.metadata,
            location=self.location,
            children=[child.to_node() for child in self.children],
        )


class TestTree:
    """Indexed view over the discovered roots."""

    __test__ = False

    def __init__(self, roots: Sequence[TestNode]) -> None:
        self.roots: Sequence[TestNode] = list(roots)
        self._by_id: dict[str, TestNode] = {}
        self._parents: dict[str, TestNode] = {}

        for root in self.roots:
            self._index(root, None)

    @classmethod
    def from_payload(cls, data: Sequence[Mapping[str, Any]]) -> Self:
        """Build a tree from a list of serialized root nodes."""
        return cls([NodePayload.model_validate(item).to_node() for item in data])

    def _index(self, node: TestNode, parent: TestNode | None) -> None:
        if node.id in self._by_id:
            raise ValueError(f"Duplicate test node id: {node.id}")
        self._by_id[node.id] = node
        if parent is not None:
            self._parents[node.id] = parent
        for child in node.children:
            self._index(child, node)

    def get(self, node_id: str) -> TestNode | None:
        """Look up a node by id."""
        return self._by_id.get(node_id)

    def parent(self, node: TestNode) -> TestNode | None:
        """Return the parent of a node, or None for roots."""
        return self._parents.get(node.id)

    def walk(self) -> Iterator[TestNode]:
        """Iterate every node in pre-order."""
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def leaves_under(self, node: TestNode) -> list[TestNode]:
        """Return the runnable leaves at or below ``node`` in tree order."""
        if node.is_leaf_runnable:
            return [node]
        leaves: list[TestNode] = []
        for child in node.children:
            leaves.extend(self.leaves_under(child))
        return leaves

    def ancestors(self, node: TestNode) -> Iterator[TestNode]:
        """Iterate the ancestors of a node, nearest first."""
        current = self.parent(node)
        while current is not None:
            yield current
            current = self.parent(current)

    def owning_group(self, node: TestNode) -> TestNode | None:
        """Resolve the group node that owns ``node``.

        Metadata wins; otherwise the nearest ``group`` ancestor, and finally
        the root the node hangs under.
        """
        if node.metadata is not None:
            if (group := self.get(node.metadata.owning_group_id)) is not None:
                return group

        if node.kind == "group":
            return node

        root = node
        for ancestor in self.ancestors(node):
            if ancestor.kind == "group":
                return ancestor
            root = ancestor
        return root
