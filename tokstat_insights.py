"""
tokstat insights

A fixed set of heuristics scanned over the priced analysis tree. Each
detector looks at one node at a time and emits at most one finding:

  null_tax              mostly-null field still paying for its key and null
  hollow_object         object whose tokens are mostly names and braces
  array_repetition_tax  array of objects re-emitting the same keys per item
  boilerplate           string field with almost no distinct values
  length_variance       string field whose long tail dwarfs its median

Savings are modeled per document (instance). Findings with non-positive
savings are dropped; the rest are ranked by savings_tokens, largest first.
"""

import logging
from dataclasses import dataclass

from tokstat_aggregate import AnalysisNode
from tokstat_schema import ITEMS, ROOT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

NULL_TAX_MAX_FILL = 0.5
NULL_TAX_MIN_SAVINGS = 1
NULL_TAX_MEDIUM_FILL = 0.35
NULL_TAX_HIGH_FILL = 0.2

HOLLOW_MIN_TOKENS = 5
HOLLOW_MIN_RATIO = 0.7
HOLLOW_MEDIUM_RATIO = 0.78
HOLLOW_HIGH_RATIO = 0.85
# share of overhead a restructuring is assumed to recover
HOLLOW_SAVINGS_FRACTION = 0.3

REPETITION_MIN_ITEM_COST = 1
REPETITION_MEDIUM_TOKENS = 15
REPETITION_HIGH_TOKENS = 50

BOILERPLATE_MIN_FILL = 0.5
BOILERPLATE_MAX_DIVERSITY = 0.1
BOILERPLATE_HIGH_DIVERSITY = 0.03
# share of payload saved by an enum or short code
BOILERPLATE_SAVINGS_FRACTION = 0.7

LENGTH_VARIANCE_MIN_RATIO = 5
LENGTH_VARIANCE_MEDIUM_RATIO = 10
LENGTH_VARIANCE_HIGH_RATIO = 20
# only the tail of instances hits the long case
LENGTH_VARIANCE_TAIL_SHARE = 0.05

INSIGHT_TYPES = (
    "null_tax",
    "hollow_object",
    "array_repetition_tax",
    "boilerplate",
    "length_variance",
)


@dataclass(frozen=True)
class Insight:
    type: str
    path: str
    severity: str
    message: str
    detail: str
    savings_tokens: float
    savings_usd_per_10k: float

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "path": self.path,
            "severity": self.severity,
            "message": self.message,
            "detail": self.detail,
            "savings_tokens": round(self.savings_tokens, 3),
            "savings_usd_per_10k": round(self.savings_usd_per_10k, 4),
        }


def _insight(kind, node, severity, message, detail, savings, price_per_token) -> Insight:
    return Insight(
        type=kind,
        path=node.path,
        severity=severity,
        message=message,
        detail=detail,
        savings_tokens=savings,
        savings_usd_per_10k=savings * price_per_token * 10_000,
    )


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

def detect_null_tax(node: AnalysisNode, price_per_token: float, ctx: dict):
    if node.path == ROOT or node.name == ITEMS:
        return None
    if node.instance_count == 0 or node.fill_rate >= NULL_TAX_MAX_FILL:
        return None

    t = node.tokens
    savings = t.schema_overhead * (1 - node.fill_rate) + t.null_waste
    if savings < NULL_TAX_MIN_SAVINGS:
        return None

    if node.fill_rate < NULL_TAX_HIGH_FILL:
        severity = "high"
    elif node.fill_rate < NULL_TAX_MEDIUM_FILL:
        severity = "medium"
    else:
        severity = "low"

    null_pct = round((1 - node.fill_rate) * 100)
    return _insight(
        "null_tax", node, severity,
        f"{node.name} is null or absent {null_pct}% of the time. "
        f"Making it optional saves ~{savings:.1f} tok/instance.",
        f"This field is empty in {null_pct}% of instances, yet each emitted "
        f"instance costs {t.schema_overhead:.1f} tokens of key overhead plus "
        f"{t.null_waste:.1f} tokens of null literals on average. Omitting it "
        f"when there is no value removes most of that cost.",
        savings, price_per_token,
    )


def detect_hollow_object(node: AnalysisNode, price_per_token: float, ctx: dict):
    if node.type != "object" or node.path == ROOT:
        return None
    total = node.tokens.total.avg
    if total < HOLLOW_MIN_TOKENS:
        return None

    ratio = node.tokens.schema_overhead / total
    if ratio <= HOLLOW_MIN_RATIO:
        return None

    if ratio > HOLLOW_HIGH_RATIO:
        severity = "high"
    elif ratio > HOLLOW_MEDIUM_RATIO:
        severity = "medium"
    else:
        severity = "low"

    overhead = node.tokens.schema_overhead
    savings = overhead * HOLLOW_SAVINGS_FRACTION
    return _insight(
        "hollow_object", node, severity,
        f"{node.name} is {round(ratio * 100)}% structural overhead. "
        f"{round(overhead)} of {round(total)} tokens are field names and braces.",
        f"Field names, braces, colons and commas make up {round(ratio * 100)}% "
        f"of this object's cost; the values carry only "
        f"{node.tokens.value_payload:.1f} tokens. Flattening or collapsing the "
        f"shape would recover part of the overhead.",
        savings, price_per_token,
    )


def detect_array_repetition_tax(node: AnalysisNode, price_per_token: float, ctx: dict):
    if node.type != "array" or node.array_stats is None:
        return None
    avg_items = node.array_stats.avg_items
    if avg_items <= 1:
        return None
    items = node.child(ITEMS)
    if items is None or not items.children or items.instance_count == 0:
        return None

    # children's overhead is per document, summed over every element
    items_per_doc = items.instance_count / ctx["file_count"]
    key_cost_per_doc = sum(c.tokens.schema_overhead for c in items.children)
    per_item = key_cost_per_doc / items_per_doc
    if per_item < REPETITION_MIN_ITEM_COST:
        return None
    savings = per_item * (avg_items - 1)

    if savings > REPETITION_HIGH_TOKENS:
        severity = "high"
    elif savings > REPETITION_MEDIUM_TOKENS:
        severity = "medium"
    else:
        severity = "low"

    return _insight(
        "array_repetition_tax", node, severity,
        f"Field names in {node.name} repeat {avg_items:.1f}x per instance, "
        f"costing ~{savings:.1f} tokens in repetition.",
        f"Each item repeats {len(items.children)} field names at ~{per_item:.1f} "
        f"tokens per item. With {avg_items:.1f} items on average, the names are "
        f"re-emitted {avg_items - 1:.1f} extra times. A header-plus-rows layout "
        f"states them once.",
        savings, price_per_token,
    )


def detect_boilerplate(node: AnalysisNode, price_per_token: float, ctx: dict):
    stats = node.string_stats
    if node.type != "string" or stats is None or stats.unique_count == 0:
        return None
    if node.fill_rate <= BOILERPLATE_MIN_FILL:
        return None
    if stats.value_diversity >= BOILERPLATE_MAX_DIVERSITY:
        return None

    savings = node.tokens.value_payload * BOILERPLATE_SAVINGS_FRACTION
    severity = "high" if stats.value_diversity < BOILERPLATE_HIGH_DIVERSITY else "medium"
    return _insight(
        "boilerplate", node, severity,
        f"{node.name} has {stats.unique_count} unique values across "
        f"{node.present_count} instances. Consider an enum or short code.",
        f"Value diversity is {stats.value_diversity * 100:.1f}%, so the "
        f"~{node.tokens.value_payload:.1f} payload tokens per instance mostly "
        f"repeat the same phrases.",
        savings, price_per_token,
    )


def detect_length_variance(node: AnalysisNode, price_per_token: float, ctx: dict):
    if node.type != "string":
        return None
    p50 = node.tokens.total.p50
    p95 = node.tokens.total.p95
    if p50 <= 0:
        return None
    ratio = p95 / p50
    if ratio <= LENGTH_VARIANCE_MIN_RATIO:
        return None

    savings = (p95 - p50) * LENGTH_VARIANCE_TAIL_SHARE
    if ratio > LENGTH_VARIANCE_HIGH_RATIO:
        severity = "high"
    elif ratio > LENGTH_VARIANCE_MEDIUM_RATIO:
        severity = "medium"
    else:
        severity = "low"

    return _insight(
        "length_variance", node, severity,
        f"{node.name} length varies {ratio:.0f}x (p50: {p50:.0f} tok, "
        f"p95: {p95:.0f} tok). Consider adding length guidance.",
        f"The median instance costs {p50:.1f} tokens but the 95th percentile "
        f"costs {p95:.1f}. A max-length instruction would trim the tail.",
        savings, price_per_token,
    )


DETECTORS = (
    detect_null_tax,
    detect_hollow_object,
    detect_array_repetition_tax,
    detect_boilerplate,
    detect_length_variance,
)


def detect_insights(tree: AnalysisNode, price_per_token: float) -> list[Insight]:
    """All findings over the tree, sorted by savings_tokens descending."""
    ctx = {"file_count": max(tree.instance_count, 1)}
    insights = []
    for node in tree.walk():
        for detector in DETECTORS:
            insight = detector(node, price_per_token, ctx)
            if insight is not None and insight.savings_tokens > 0:
                insights.append(insight)

    insights.sort(key=lambda i: i.savings_tokens, reverse=True)
    logger.debug("detected %d insights", len(insights))
    return insights
