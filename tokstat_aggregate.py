"""
tokstat aggregation

Turns per-file token maps and value maps into one AnalysisNode tree with
corpus-wide statistics, then prices it.

For every schema node and every file, the node's own tokens plus all of its
descendants' tokens form that file's subtree total. Token Stats are computed
over those per-file totals; the three components (schema overhead, value
payload, null waste) are averaged independently across files.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Optional

from tokstat_pricing import ModelPricing
from tokstat_schema import SchemaNode
from tokstat_tokens import FileTokens

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_COUNT = 5


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def percentile(sorted_values: list, p: float) -> float:
    """Linear-interpolation percentile of an ascending list, p in [0, 100]."""
    if not sorted_values:
        return 0
    if len(sorted_values) == 1:
        return sorted_values[0]
    idx = (p / 100) * (len(sorted_values) - 1)
    lower = int(idx)
    upper = min(lower + 1, len(sorted_values) - 1)
    if idx == lower:
        return sorted_values[lower]
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * (idx - lower)


def mean(values: list) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


@dataclass
class Stats:
    avg: float = 0.0
    min: float = 0
    max: float = 0
    p50: float = 0
    p95: float = 0

    @classmethod
    def of(cls, values: list) -> "Stats":
        if not values:
            return cls()
        ordered = sorted(values)
        return cls(
            avg=mean(ordered),
            min=ordered[0],
            max=ordered[-1],
            p50=percentile(ordered, 50),
            p95=percentile(ordered, 95),
        )

    def to_dict(self) -> dict:
        return {
            "avg": self.avg,
            "min": self.min,
            "max": self.max,
            "p50": self.p50,
            "p95": self.p95,
        }


def reservoir_sample(values: list, k: int, rng: Optional[random.Random] = None) -> list:
    """
    Uniform sample of up to k values in one pass: keep the first k, then value
    i (0-based, i >= k) replaces a random slot with probability k / (i + 1).
    """
    if k <= 0 or not values:
        return []
    rng = rng or random.Random()
    reservoir = list(values[:k])
    for i in range(k, len(values)):
        j = rng.randrange(i + 1)
        if j < k:
            reservoir[j] = values[i]
    return reservoir


# ---------------------------------------------------------------------------
# Analysis tree
# ---------------------------------------------------------------------------

@dataclass
class TokenBreakdown:
    total: Stats = field(default_factory=Stats)
    schema_overhead: float = 0.0
    value_payload: float = 0.0
    null_waste: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total.to_dict(),
            "schema_overhead": self.schema_overhead,
            "value_payload": self.value_payload,
            "null_waste": self.null_waste,
        }


@dataclass
class ArrayStats:
    avg_items: float
    min_items: int
    max_items: int
    p95_items: float

    def to_dict(self) -> dict:
        return {
            "avg_items": self.avg_items,
            "min_items": self.min_items,
            "max_items": self.max_items,
            "p95_items": self.p95_items,
        }


@dataclass
class StringStats:
    avg_length: float
    value_diversity: float
    unique_count: int

    def to_dict(self) -> dict:
        return {
            "avg_length": self.avg_length,
            "value_diversity": self.value_diversity,
            "unique_count": self.unique_count,
        }


@dataclass
class Cost:
    per_instance: float = 0.0
    total_corpus: float = 0.0

    def to_dict(self) -> dict:
        return {"per_instance": self.per_instance, "total_corpus": self.total_corpus}


@dataclass
class AnalysisNode:
    name: str
    path: str
    depth: int
    type: str
    observed_types: list[str]
    tokens: TokenBreakdown
    fill_rate: float
    instance_count: int
    present_count: int
    array_stats: Optional[ArrayStats] = None
    string_stats: Optional[StringStats] = None
    examples: list = field(default_factory=list)
    children: list["AnalysisNode"] = field(default_factory=list)
    cost: Cost = field(default_factory=Cost)

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, path: str) -> "AnalysisNode":
        for node in self.walk():
            if node.path == path:
                return node
        raise KeyError(path)

    def child(self, name: str) -> Optional["AnalysisNode"]:
        for c in self.children:
            if c.name == name:
                return c
        return None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "depth": self.depth,
            "type": self.type,
            "observed_types": list(self.observed_types),
            "tokens": self.tokens.to_dict(),
            "fill_rate": self.fill_rate,
            "instance_count": self.instance_count,
            "present_count": self.present_count,
            "array_stats": self.array_stats.to_dict() if self.array_stats else None,
            "string_stats": self.string_stats.to_dict() if self.string_stats else None,
            "examples": list(self.examples),
            "children": [c.to_dict() for c in self.children],
            "cost": self.cost.to_dict(),
        }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _fold_file(
    node: SchemaNode,
    file_tokens: dict[str, FileTokens],
    series: dict[str, list[list]],
) -> tuple[int, int, int]:
    """Append this file's subtree totals for every node; return the root's."""
    own = file_tokens.get(node.path)
    schema = own.schema_overhead if own else 0
    value = own.value_payload if own else 0
    null = own.null_waste if own else 0

    for child in node.children.values():
        s, v, n = _fold_file(child, file_tokens, series)
        schema += s
        value += v
        null += n

    totals, schemas, values, nulls = series[node.path]
    totals.append(schema + value + null)
    schemas.append(schema)
    values.append(value)
    nulls.append(null)
    return schema, value, null


def _string_stats(values: list) -> Optional[StringStats]:
    strings = [v for v in values if isinstance(v, str)]
    if not strings:
        return None
    unique = len(set(strings))
    # 0 when every value is identical, 1 when every value is distinct
    if len(strings) > 1:
        diversity = (unique - 1) / (len(strings) - 1)
    else:
        diversity = 1.0
    return StringStats(
        avg_length=mean([len(s) for s in strings]),
        value_diversity=diversity,
        unique_count=unique,
    )


def _array_stats(counts: list[int]) -> Optional[ArrayStats]:
    if not counts:
        return None
    ordered = sorted(counts)
    return ArrayStats(
        avg_items=mean(counts),
        min_items=ordered[0],
        max_items=ordered[-1],
        p95_items=percentile(ordered, 95),
    )


def _build_node(
    schema: SchemaNode,
    series: dict[str, list[list]],
    all_values: dict[str, list],
    sample_count: int,
    rng: random.Random,
) -> AnalysisNode:
    totals, schemas, values, nulls = series[schema.path]
    leaf_values = all_values.get(schema.path, [])

    string_stats = None
    if schema.type == "string":
        string_stats = _string_stats(leaf_values)

    array_stats = None
    if schema.type == "array":
        array_stats = _array_stats(schema.array_item_counts)

    return AnalysisNode(
        name=schema.name,
        path=schema.path,
        depth=schema.depth,
        type=schema.type,
        observed_types=list(schema.type_counts),
        tokens=TokenBreakdown(
            total=Stats.of(totals),
            schema_overhead=mean(schemas),
            value_payload=mean(values),
            null_waste=mean(nulls),
        ),
        fill_rate=schema.fill_rate,
        instance_count=schema.instance_count,
        present_count=schema.present_count,
        array_stats=array_stats,
        string_stats=string_stats,
        examples=reservoir_sample(leaf_values, sample_count, rng),
        children=[
            _build_node(child, series, all_values, sample_count, rng)
            for child in schema.children.values()
        ],
    )


def aggregate(
    schema: SchemaNode,
    per_file_tokens: list[dict[str, FileTokens]],
    per_file_values: list[dict[str, list]],
    sample_count: int = DEFAULT_SAMPLE_COUNT,
    rng: Optional[random.Random] = None,
) -> AnalysisNode:
    """
    Build the AnalysisNode tree. Waits for every per-file map: statistics are
    cross-file and cannot be computed incrementally.
    """
    series = {node.path: [[], [], [], []] for node in schema.walk()}
    for file_tokens in per_file_tokens:
        _fold_file(schema, file_tokens, series)

    all_values: dict[str, list] = {}
    for file_values in per_file_values:
        for path, values in file_values.items():
            all_values.setdefault(path, []).extend(values)

    tree = _build_node(schema, series, all_values, sample_count, rng or random.Random())
    logger.debug("aggregated %d files into %d nodes", len(per_file_tokens), len(series))
    return tree


# ---------------------------------------------------------------------------
# Cost
# ---------------------------------------------------------------------------

def apply_cost(tree: AnalysisNode, pricing: ModelPricing, file_count: int):
    """Fill in cost on every node, in place."""
    price_per_token = pricing.output_per_1m / 1_000_000
    for node in tree.walk():
        per_instance = node.tokens.total.avg * price_per_token
        node.cost = Cost(
            per_instance=per_instance,
            total_corpus=per_instance * file_count,
        )


# ---------------------------------------------------------------------------
# Ignore patterns
# ---------------------------------------------------------------------------

def matches_ignore_pattern(path: str, pattern: str) -> bool:
    """
    Match a schema path against one ignore pattern, segment by segment:

      root.pmid           exactly that path
      root.metadata.*     one segment below root.metadata
      root.**.timestamp   "timestamp" at any depth under root
    """
    return _match_parts(path.split("."), 0, pattern.split("."), 0)


def _match_parts(path: list[str], pi: int, pattern: list[str], qi: int) -> bool:
    if qi == len(pattern):
        return pi == len(path)
    if pi == len(path):
        return False

    seg = pattern[qi]
    if seg == "**":
        return any(
            _match_parts(path, pi + skip, pattern, qi + 1)
            for skip in range(len(path) - pi + 1)
        )
    if seg == "*" or seg == path[pi]:
        return _match_parts(path, pi + 1, pattern, qi + 1)
    return False


def is_ignored(path: str, patterns) -> bool:
    return any(matches_ignore_pattern(path, p) for p in patterns)


def prune_schema(schema: SchemaNode, patterns) -> tuple[SchemaNode, int]:
    """
    Copy of the schema without subtrees matching any ignore pattern, and the
    number of nodes removed. The root is never removed. Aggregating against
    the pruned tree drops the ignored tokens from every ancestor's totals.
    """
    patterns = [p.strip() for p in patterns if p and p.strip()]
    if not patterns:
        return schema, 0

    removed = 0

    def copy(node: SchemaNode) -> SchemaNode:
        nonlocal removed
        kept = {}
        for key, child in node.children.items():
            if is_ignored(child.path, patterns):
                removed += sum(1 for _ in child.walk())
                continue
            kept[key] = copy(child)
        return replace(node, children=kept)

    pruned = copy(schema)
    logger.info("ignore patterns removed %d schema nodes", removed)
    return pruned, removed
