"""
tokstat schema inference

Folds a batch of parsed JSON documents into one SchemaNode tree describing the
union shape of the corpus:

  - every object field becomes a child keyed by field name
  - every array gets exactly one "[]" child; all elements, whatever their
    index, are merged into it
  - each node counts how often it could have appeared (instance_count) and
    how often it held a non-null value (present_count)

Two passes run after all documents are merged, never interleaved with it:
type resolution (pick one non-null type per node, see TYPE_POLICIES) and
instance-count repair (a field missing from some instances of its parent still
counts as an instance there).
"""

import logging
from dataclasses import dataclass, field

from tokstat_errors import InputError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROOT = "root"
ITEMS = "[]"

# How a node's `type` is chosen when more than one non-null type was observed:
#   first_seen     the first non-null type registered at that path
#   most_frequent  the non-null type observed most often (ties: first seen)
TYPE_POLICIES = ("first_seen", "most_frequent")
DEFAULT_TYPE_POLICY = "first_seen"


def json_type(value) -> str:
    """JSON type name of a parsed Python value."""
    if value is None:
        return "null"
    # bool before int: True is an int in Python
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    raise TypeError(f"Unexpected JSON value type: {type(value).__name__}")


def child_path(parent_path: str, key: str) -> str:
    if key == ITEMS:
        return f"{parent_path}{ITEMS}"
    return f"{parent_path}.{key}"


# ---------------------------------------------------------------------------
# Schema tree
# ---------------------------------------------------------------------------

@dataclass
class SchemaNode:
    name: str
    path: str
    depth: int
    type: str = "null"
    # insertion order is first-seen order
    type_counts: dict[str, int] = field(default_factory=dict)
    instance_count: int = 0
    present_count: int = 0
    array_item_counts: list[int] = field(default_factory=list)
    children: dict[str, "SchemaNode"] = field(default_factory=dict)

    @property
    def observed_types(self) -> set[str]:
        return set(self.type_counts)

    @property
    def fill_rate(self) -> float:
        if self.instance_count == 0:
            return 0.0
        return self.present_count / self.instance_count

    def child(self, key: str) -> "SchemaNode":
        node = self.children.get(key)
        if node is None:
            node = SchemaNode(
                name=key,
                path=child_path(self.path, key),
                depth=self.depth + 1,
            )
            self.children[key] = node
        return node

    def walk(self):
        """Pre-order traversal of this node and its descendants."""
        yield self
        for node in self.children.values():
            yield from node.walk()

    def find(self, path: str) -> "SchemaNode":
        for node in self.walk():
            if node.path == path:
                return node
        raise KeyError(path)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def _observe(node: SchemaNode, type_name: str):
    node.type_counts[type_name] = node.type_counts.get(type_name, 0) + 1


def merge_value(node: SchemaNode, value):
    """Fold one value observed at `node` into the tree."""
    node.instance_count += 1
    t = json_type(value)
    _observe(node, t)

    if value is None:
        return

    node.present_count += 1

    if t == "object":
        for key, child_value in value.items():
            merge_value(node.child(key), child_value)
    elif t == "array":
        node.array_item_counts.append(len(value))
        if value:
            items = node.child(ITEMS)
            for item in value:
                merge_value(items, item)


# ---------------------------------------------------------------------------
# Finalization passes
# ---------------------------------------------------------------------------

def resolve_type(node: SchemaNode, policy: str = DEFAULT_TYPE_POLICY) -> str:
    non_null = [(t, n) for t, n in node.type_counts.items() if t != "null"]
    if not non_null:
        return "null"
    if policy == "first_seen":
        return non_null[0][0]
    # max() keeps the first maximal element, i.e. the first seen on ties
    return max(non_null, key=lambda item: item[1])[0]


def resolve_types(root: SchemaNode, policy: str = DEFAULT_TYPE_POLICY):
    for node in root.walk():
        node.type = resolve_type(node, policy)
        if node.type != "array":
            node.array_item_counts = []


def repair_instance_counts(node: SchemaNode):
    """
    Raise every object field's instance_count to its parent's present_count.
    Counts are never lowered. A "[]" child counts one instance per element,
    even under a node resolved to object.
    """
    if node.type == "object":
        for key, child in node.children.items():
            if key == ITEMS:
                continue
            if child.instance_count < node.present_count:
                child.instance_count = node.present_count
    for child in node.children.values():
        repair_instance_counts(child)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def infer_schema(documents: list, type_policy: str = DEFAULT_TYPE_POLICY) -> SchemaNode:
    """
    Merge every document into one SchemaNode tree rooted at "root".

    Raises InputError for an empty batch or a document whose top-level value
    is not a JSON object.
    """
    if type_policy not in TYPE_POLICIES:
        raise ValueError(
            f"Unknown type policy: {type_policy}. "
            f"Valid policies are: {', '.join(TYPE_POLICIES)}"
        )
    if not documents:
        raise InputError("No JSON documents provided")

    root = SchemaNode(name=ROOT, path=ROOT, depth=0)
    for i, doc in enumerate(documents):
        if not isinstance(doc, dict):
            raise InputError(
                f"Top-level JSON must be an object, got {json_type(doc)}",
                document=f"document {i}",
            )
        merge_value(root, doc)

    resolve_types(root, type_policy)
    repair_instance_counts(root)

    logger.debug(
        "inferred schema: %d documents, %d paths, policy=%s",
        len(documents), sum(1 for _ in root.walk()), type_policy,
    )
    return root
