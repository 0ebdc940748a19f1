#!/usr/bin/env python3
"""
tokstat: per-field token cost audit for a corpus of LLM-generated JSON

Answers, for every field path in the union schema of the corpus: how many
tokens does it cost per generated document, how much of that is structure
(field names, braces, commas) versus real payload versus explicit nulls, and
which fields are the best targets for a schema redesign.

Pipeline:

  documents -> schema inference -> per-document span tagging + token
  attribution + value collection -> aggregation -> cost -> insights

With --cohorts the corpus is also split into groups of similar shape and each
group is analyzed on its own, next to the combined analysis.

Token counts use tiktoken encodings (o200k_base by default). Pass
--tokenizer approx_json_lex for an offline estimate that needs no encoding
download.

Usage:
    python tokstat_analyzer.py "<glob>" [--model gpt-4o] [--format report|json|llm]
    python tokstat_analyzer.py "data/*.json" --cohorts --format json --out audit.json
    python tokstat_analyzer.py --test
    python tokstat_analyzer.py --help

Exit codes:
    0  success
    1  self-test failure
    2  usage, input or configuration error
"""

import argparse
import glob
import json
import logging
import os
import random
import sys
from dataclasses import dataclass, field
from typing import Optional

from tokstat_aggregate import (
    DEFAULT_SAMPLE_COUNT,
    AnalysisNode,
    aggregate,
    apply_cost,
    prune_schema,
)
from tokstat_cohorts import (
    DEFAULT_THRESHOLD,
    Cohort,
    detect_cohorts,
    detect_cohorts_exact,
)
from tokstat_errors import InputError, TokstatError
from tokstat_insights import Insight, detect_insights
from tokstat_pricing import (
    DEFAULT_MODEL,
    MODELS,
    ModelPricing,
    resolve_pricing,
    validate_pricing,
)
from tokstat_schema import DEFAULT_TYPE_POLICY, ITEMS, ROOT, TYPE_POLICIES, infer_schema
from tokstat_tokens import (
    APPROX_TOKENIZER,
    JsonLexTokenizer,
    encoding_name,
    get_tokenizer,
    measure_corpus,
)

logger = logging.getLogger("tokstat")

OUTPUT_SCHEMA = "tokstat/v1"
BUNDLE_SCHEMA = "tokstat/corpus-bundle/v1"

TOP_INSIGHTS = 5

SCALES = {
    "1k": 1_000,
    "10k": 10_000,
    "100k": 100_000,
    "1m": 1_000_000,
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class AnalysisSummary:
    file_count: int
    source: Optional[str]
    model: str
    tokenizer: str
    output_price_per_1m: float
    avg_tokens_per_instance: float
    cost_per_instance: float
    corpus_total_tokens: float
    corpus_total_cost: float
    overhead_ratio: float
    null_waste_ratio: float
    cost_at_1k: float
    cost_at_10k: float
    cost_at_100k: float
    cost_at_1m: float
    top_insights: list[Insight] = field(default_factory=list)
    ignored_fields: int = 0

    def to_dict(self) -> dict:
        return {
            "file_count": self.file_count,
            "source": self.source,
            "model": self.model,
            "tokenizer": self.tokenizer,
            "output_price_per_1m": self.output_price_per_1m,
            "avg_tokens_per_instance": self.avg_tokens_per_instance,
            "cost_per_instance": self.cost_per_instance,
            "corpus_total_tokens": self.corpus_total_tokens,
            "corpus_total_cost": self.corpus_total_cost,
            "overhead_ratio": self.overhead_ratio,
            "null_waste_ratio": self.null_waste_ratio,
            "cost_at_1k": self.cost_at_1k,
            "cost_at_10k": self.cost_at_10k,
            "cost_at_100k": self.cost_at_100k,
            "cost_at_1m": self.cost_at_1m,
            "top_insights": [i.to_dict() for i in self.top_insights],
            "ignored_fields": self.ignored_fields,
        }


@dataclass
class AnalysisOutput:
    summary: AnalysisSummary
    tree: AnalysisNode
    insights: list[Insight]
    schema: str = OUTPUT_SCHEMA

    def to_dict(self) -> dict:
        return {
            "schema": self.schema,
            "summary": self.summary.to_dict(),
            "tree": self.tree.to_dict(),
            "insights": [i.to_dict() for i in self.insights],
        }


@dataclass
class CorpusBundle:
    combined: AnalysisOutput
    cohorts: list[Cohort]
    threshold: Optional[float]
    strategy: str = "similarity"
    schema: str = BUNDLE_SCHEMA

    @property
    def per_cohort(self) -> dict[str, AnalysisOutput]:
        return {c.id: c.report for c in self.cohorts}

    @property
    def mixed_schema_detected(self) -> bool:
        return len(self.cohorts) > 1

    def to_dict(self) -> dict:
        return {
            "schema": self.schema,
            "combined": self.combined.to_dict(),
            "cohorts": [c.to_dict() for c in self.cohorts],
            "cohorting": {
                "enabled": True,
                "strategy": self.strategy,
                "file_count": self.combined.summary.file_count,
                "cohort_count": len(self.cohorts),
                "threshold": self.threshold,
                "mixed_schema_detected": self.mixed_schema_detected,
            },
        }


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def build_summary(
    tree: AnalysisNode,
    insights: list[Insight],
    pricing: ModelPricing,
    file_count: int,
    tokenizer: str,
    source: Optional[str] = None,
    ignored_fields: int = 0,
) -> AnalysisSummary:
    avg_tokens = tree.tokens.total.avg
    cost_per_instance = avg_tokens * pricing.price_per_token

    def ratio(part: float) -> float:
        return part / avg_tokens if avg_tokens > 0 else 0.0

    return AnalysisSummary(
        file_count=file_count,
        source=source,
        model=pricing.model_id,
        tokenizer=tokenizer,
        output_price_per_1m=pricing.output_per_1m,
        avg_tokens_per_instance=avg_tokens,
        cost_per_instance=cost_per_instance,
        corpus_total_tokens=avg_tokens * file_count,
        corpus_total_cost=cost_per_instance * file_count,
        overhead_ratio=ratio(tree.tokens.schema_overhead),
        null_waste_ratio=ratio(tree.tokens.null_waste),
        cost_at_1k=cost_per_instance * SCALES["1k"],
        cost_at_10k=cost_per_instance * SCALES["10k"],
        cost_at_100k=cost_per_instance * SCALES["100k"],
        cost_at_1m=cost_per_instance * SCALES["1m"],
        top_insights=insights[:TOP_INSIGHTS],
        ignored_fields=ignored_fields,
    )


def analyze(
    documents: list,
    pricing: ModelPricing,
    tokenizer,
    sample_count: int = DEFAULT_SAMPLE_COUNT,
    *,
    source: Optional[str] = None,
    tokenizer_name: Optional[str] = None,
    ignore=(),
    type_policy: str = DEFAULT_TYPE_POLICY,
    rng: Optional[random.Random] = None,
) -> AnalysisOutput:
    """
    Full analysis of one batch of parsed documents.

    tokenizer is any object with encode/decode (see tokstat_tokens). Raises
    InputError, ConfigError or InternalConsistencyError; nothing is returned
    for a failed run.
    """
    if not documents:
        raise InputError("No JSON documents provided")
    validate_pricing(pricing)

    schema = infer_schema(documents, type_policy)
    per_file_tokens, per_file_values = measure_corpus(documents, schema, tokenizer)

    # tokens are attributed against the full schema; ignored subtrees are
    # dropped only from what gets aggregated
    measured, ignored_fields = prune_schema(schema, ignore)
    tree = aggregate(measured, per_file_tokens, per_file_values, sample_count, rng)
    apply_cost(tree, pricing, len(documents))
    insights = detect_insights(tree, pricing.price_per_token)

    summary = build_summary(
        tree, insights, pricing,
        file_count=len(documents),
        tokenizer=tokenizer_name or encoding_name(tokenizer) or pricing.tokenizer,
        source=source,
        ignored_fields=ignored_fields,
    )
    logger.info(
        "analyzed %d documents: %.1f tok/instance, %d insights",
        len(documents), summary.avg_tokens_per_instance, len(insights),
    )
    return AnalysisOutput(summary=summary, tree=tree, insights=insights)


def run_cohorted(
    documents: list,
    pricing: ModelPricing,
    tokenizer,
    sample_count: int = DEFAULT_SAMPLE_COUNT,
    *,
    identifiers: Optional[list[str]] = None,
    threshold: float = DEFAULT_THRESHOLD,
    strategy: str = "similarity",
    source: Optional[str] = None,
    ignore=(),
    type_policy: str = DEFAULT_TYPE_POLICY,
    rng: Optional[random.Random] = None,
) -> CorpusBundle:
    """Combined analysis plus one independent analysis per cohort."""
    options = dict(ignore=ignore, type_policy=type_policy, rng=rng)
    combined = analyze(documents, pricing, tokenizer, sample_count, source=source, **options)

    if strategy == "exact":
        cohorts = detect_cohorts_exact(documents)
        threshold = None
    elif strategy == "similarity":
        cohorts = detect_cohorts(documents, identifiers, threshold)
    else:
        raise ValueError(f"Unknown cohort strategy: {strategy}")

    for cohort in cohorts:
        members = [documents[i] for i in cohort.indices]
        if identifiers is not None:
            names = [identifiers[i] for i in cohort.indices]
            label = ", ".join(names[:2]) + (", ..." if len(names) > 2 else "")
            cohort_source = f"{len(members)} files ({label})"
        else:
            cohort_source = f"{len(members)} documents"
        cohort.report = analyze(
            members, pricing, tokenizer, sample_count, source=cohort_source, **options
        )

    return CorpusBundle(
        combined=combined, cohorts=cohorts, threshold=threshold, strategy=strategy
    )


# ---------------------------------------------------------------------------
# Document loading
# ---------------------------------------------------------------------------

def load_documents(patterns: list[str]) -> tuple[list[str], list]:
    """
    Expand glob patterns, read each matched file as one JSON document.
    Returns (paths, documents), sorted by path.
    """
    paths = set()
    for pattern in patterns:
        if os.path.isfile(pattern):
            paths.add(pattern)
        else:
            paths.update(p for p in glob.glob(pattern, recursive=True) if os.path.isfile(p))
    if not paths:
        raise InputError(f"No files matched: {' '.join(patterns)}")

    ordered = sorted(paths)
    documents = []
    for path in ordered:
        try:
            with open(path, encoding="utf-8") as f:
                documents.append(json.load(f))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InputError(f"Failed to parse JSON: {e}", document=path) from e
        except OSError as e:
            raise InputError(f"Failed to read file: {e}", document=path) from e
    logger.info("loaded %d documents", len(documents))
    return ordered, documents


# ---------------------------------------------------------------------------
# Output formats
# ---------------------------------------------------------------------------

def format_json(result) -> str:
    """Serialize an AnalysisOutput or CorpusBundle."""
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)


def _overhead_hotspots(tree: AnalysisNode) -> list[str]:
    hotspots = []
    for node in tree.walk():
        if node.type == "array" and node.array_stats and node.array_stats.avg_items > 1:
            items = node.child(ITEMS)
            if items and items.children:
                fields = len(items.children)
                avg_items = node.array_stats.avg_items
                hotspots.append((
                    fields * avg_items,
                    f"{node.path} items: {fields} field names x {avg_items:.1f} avg items "
                    f"= {fields * avg_items:.1f} key emissions/inst",
                ))
        if node.type == "object" and node.tokens.total.avg > 0 and len(node.children) > 2:
            ratio = node.tokens.schema_overhead / node.tokens.total.avg
            if ratio > 0.6:
                hotspots.append((
                    node.tokens.schema_overhead,
                    f"{node.path} object: {len(node.children)} field names, "
                    f"{round(ratio * 100)}% overhead ratio",
                ))
    hotspots.sort(key=lambda h: h[0], reverse=True)
    return [text for _, text in hotspots]


def _high_waste_fields(tree: AnalysisNode) -> list[str]:
    fields = []
    for node in tree.walk():
        if node.path == ROOT or node.tokens.total.avg <= 0:
            continue
        if 0 < node.fill_rate < 0.5:
            fields.append((
                node.tokens.total.avg * (1 - node.fill_rate),
                f"{node.path}: {round(node.tokens.total.avg)} tok avg, "
                f"{round(node.fill_rate * 100)}% fill",
            ))
    fields.sort(key=lambda f: f[0], reverse=True)
    return [text for _, text in fields]


def format_llm(output: AnalysisOutput) -> str:
    """Compact plain-text summary meant to be pasted into an LLM conversation."""
    s = output.summary
    lines = [
        f"tokstat analysis: {s.file_count} files, {s.model} ({s.tokenizer})",
        "",
        f"HEADLINE: ${s.cost_per_instance:.4f}/instance, "
        f"{round(s.overhead_ratio * 100)}% schema overhead, "
        f"{round(s.null_waste_ratio * 100)}% null waste",
        "",
        "SCALE:",
        f"  1K: ${s.cost_at_1k:.2f}",
        f"  10K: ${s.cost_at_10k:.2f}",
        f"  100K: ${s.cost_at_100k:.2f}",
        f"  1M: ${s.cost_at_1m:.2f}",
        "",
    ]

    if output.insights:
        lines.append("TOP SAVINGS:")
        for n, insight in enumerate(output.insights[:TOP_INSIGHTS], start=1):
            headline = insight.message.split(". ")[0]
            lines.append(
                f"  {n}. {insight.path}: {headline}, saves "
                f"{round(insight.savings_tokens)} tok/inst "
                f"(${insight.savings_usd_per_10k:.2f}/10K)"
            )
        lines.append("")

    for title, entries in (
        ("SCHEMA OVERHEAD HOTSPOTS:", _overhead_hotspots(output.tree)),
        ("HIGH WASTE (low fill, high cost):", _high_waste_fields(output.tree)),
    ):
        if entries:
            lines.append(title)
            lines.extend(f"  {e}" for e in entries[:5])
            lines.append("")

    boilerplate = [i for i in output.insights if i.type == "boilerplate"]
    if boilerplate:
        lines.append("BOILERPLATE:")
        lines.extend(f"  {i.message}" for i in boilerplate[:3])
        lines.append("")

    return "\n".join(lines)


W = 76


def print_report(output: AnalysisOutput, label: str = ""):
    s = output.summary
    sep = "-" * W

    if label:
        print(f"\n{'=' * W}")
        print(f"  {label}")
        print(f"{'=' * W}")

    print(f"\n  Files: {s.file_count}   Model: {s.model}   Tokenizer: {s.tokenizer}   "
          f"Price: ${s.output_price_per_1m:g}/1M output tokens")
    if s.ignored_fields:
        print(f"  Ignored fields: {s.ignored_fields}")
    print()

    print(sep)
    print(f"  {'Field':<36}  {'Tokens':>7}  {'Schema':>7}  {'Value':>7}  "
          f"{'Null':>6}  {'Fill':>5}")
    print(sep)
    for node in output.tree.walk():
        t = node.tokens
        name = "  " * node.depth + (node.name if node.path != ROOT else ROOT)
        print(f"  {name[:36]:<36}  {t.total.avg:>7.1f}  {t.schema_overhead:>7.1f}  "
              f"{t.value_payload:>7.1f}  {t.null_waste:>6.1f}  "
              f"{node.fill_rate * 100:>4.0f}%")
    print(sep)

    print(f"  {'Avg tokens per instance':<45}  {s.avg_tokens_per_instance:>12,.1f}")
    print(f"  {'Schema overhead':<45}  {s.overhead_ratio * 100:>11.1f}%")
    print(f"  {'Null waste':<45}  {s.null_waste_ratio * 100:>11.1f}%")
    print(f"  {'Cost per instance (USD)':<45}  ${s.cost_per_instance:>11.6f}")
    print(f"  {'Corpus cost (USD)':<45}  ${s.corpus_total_cost:>11.6f}")
    print()
    print("  At scale:")
    for key, n in SCALES.items():
        cost = getattr(s, f"cost_at_{key}")
        print(f"    {n:>10,} instances   ${cost:>12,.2f}")
    print()

    if not output.insights:
        print("  No insights: nothing in this schema crosses a waste threshold.\n")
        return

    print(sep)
    print(f"  Insights ({len(output.insights)})")
    print(sep)
    for insight in output.insights[:10]:
        print(f"  [{insight.severity.upper():<6}] {insight.type:<21} {insight.path}")
        print(f"           {insight.message}")
        print(f"           saves {insight.savings_tokens:.1f} tok/instance "
              f"(${insight.savings_usd_per_10k:.4f} per 10K)")
    if len(output.insights) > 10:
        print(f"  ... {len(output.insights) - 10} more (use --format json for all)")
    print()


def print_cohorts(bundle: CorpusBundle):
    sep = "-" * W
    print(f"\n{'=' * W}")
    note = "mixed schema detected" if bundle.mixed_schema_detected else "single schema"
    print(f"  Cohorts: {len(bundle.cohorts)} ({note})")
    print(f"{'=' * W}")
    print(f"  {'Cohort':<12}  {'Files':>6}  {'Tok/inst':>9}  {'USD/inst':>10}  Top-level keys")
    print(sep)
    for cohort in bundle.cohorts:
        s = cohort.report.summary
        print(f"  {cohort.id:<12}  {cohort.file_count:>6,}  "
              f"{s.avg_tokens_per_instance:>9.1f}  {s.cost_per_instance:>10.6f}  "
              f"{cohort.label}")
    print()


# ---------------------------------------------------------------------------
# Built-in test suite
# ---------------------------------------------------------------------------

TEST_PRICING = ModelPricing("test", "test", 10.0, APPROX_TOKENIZER)

NULL_HEAVY = [
    {"a": "x", "b": None},
    {"a": "x", "b": None},
    {"a": "x", "b": "y"},
]

REPEATED_ITEMS = [
    {"items": [{"x": 1, "y": 2, "z": 3}, {"x": 4, "y": 5, "z": 6}, {"x": 7, "y": 8, "z": 9}]}
    for _ in range(4)
]

CONSTANT_STATUS = [{"status": "completed", "n": i} for i in range(20)]

MIXED_SHAPES = (
    [{"id": i, "title": f"t{i}", "tags": ["a", "b"]} for i in range(5)]
    + [{"event": "click", "ts": i, "meta": {"x": 1, "y": 2}} for i in range(3)]
)


def _run(docs):
    return analyze(docs, TEST_PRICING, JsonLexTokenizer(), rng=random.Random(0))


def _has_insight(output, kind, path):
    return any(i.type == kind and i.path == path for i in output.insights)


TESTS = [
    {
        "name": "Field b is null in 2 of 3 documents",
        "check": lambda: abs(_run(NULL_HEAVY).tree.find("root.b").fill_rate - 1 / 3) < 1e-9,
        "description": "fill_rate(root.b) == 1/3",
    },
    {
        "name": "Always-present field has full fill rate",
        "check": lambda: _run(NULL_HEAVY).tree.find("root.a").fill_rate == 1,
        "description": "fill_rate(root.a) == 1",
    },
    {
        "name": "Null tax fires on mostly-null field",
        "check": lambda: _has_insight(_run(NULL_HEAVY), "null_tax", "root.b"),
        "description": "null_tax insight on root.b",
    },
    {
        "name": "Array repetition tax fires on repeated item keys",
        "check": lambda: _has_insight(_run(REPEATED_ITEMS), "array_repetition_tax", "root.items"),
        "description": "array_repetition_tax insight on root.items",
    },
    {
        "name": "Constant string is boilerplate",
        "check": lambda: _has_insight(_run(CONSTANT_STATUS), "boilerplate", "root.status"),
        "description": "boilerplate insight on root.status",
    },
    {
        "name": "Insights sorted by savings",
        "check": lambda: all(
            a.savings_tokens >= b.savings_tokens
            for out in (_run(NULL_HEAVY + REPEATED_ITEMS),)
            for a, b in zip(out.insights, out.insights[1:])
        ),
        "description": "savings_tokens non-increasing",
    },
    {
        "name": "Percentiles ordered on every node",
        "check": lambda: all(
            n.tokens.total.min <= n.tokens.total.p50 <= n.tokens.total.p95 <= n.tokens.total.max
            for n in _run(NULL_HEAVY + REPEATED_ITEMS).tree.walk()
        ),
        "description": "min <= p50 <= p95 <= max",
    },
    {
        "name": "Two shapes produce two cohorts",
        "check": lambda: [c.file_count for c in detect_cohorts(MIXED_SHAPES)] == [5, 3],
        "description": "cohort sizes [5, 3]",
    },
    {
        "name": "Empty corpus is rejected",
        "check": lambda: _raises(InputError, _run, []),
        "description": "InputError for []",
    },
]


def _raises(exc_type, fn, *args) -> bool:
    try:
        fn(*args)
    except exc_type:
        return True
    return False


def run_tests() -> int:
    passed = 0
    failed = 0

    print("Running tokstat test suite...\n")

    for test in TESTS:
        try:
            ok = bool(test["check"]())
            err = None
        except Exception as e:
            ok = False
            err = f"{type(e).__name__}: {e}"

        status = "PASS" if ok else "FAIL"
        print(f"  [{status}] {test['name']}")
        if not ok:
            print(f"         Expected: {test['description']}")
            if err:
                print(f"         Error: {err}")
            failed += 1
        else:
            passed += 1

    print(f"\n{passed}/{passed + failed} tests passed.")
    return 0 if failed == 0 else 1


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="tokstat: per-field token cost audit for a corpus of JSON documents.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="See module docstring for full details.",
    )
    parser.add_argument(
        "patterns", nargs="*", metavar="GLOB",
        help="JSON files or glob patterns (quote patterns to keep the shell from expanding them)",
    )
    parser.add_argument(
        "--model", default=DEFAULT_MODEL,
        help=f"Model for cost estimation (default: {DEFAULT_MODEL}; known: {', '.join(MODELS)})",
    )
    parser.add_argument(
        "--tokenizer", default=None, metavar="ENCODING",
        help=f"Tokenizer encoding, e.g. o200k_base, cl100k_base, {APPROX_TOKENIZER} "
             f"(default: the model's encoding)",
    )
    parser.add_argument(
        "--cost-per-1k", type=float, default=None, metavar="USD",
        help="Custom output price per 1K tokens (overrides the model's price)",
    )
    parser.add_argument(
        "--sample-values", type=int, default=DEFAULT_SAMPLE_COUNT, metavar="N",
        help=f"Example values kept per field (default: {DEFAULT_SAMPLE_COUNT})",
    )
    parser.add_argument(
        "--ignore", action="append", default=[], metavar="PATTERN",
        help="Drop a schema path from the analysis, e.g. root.meta.* or root.**.ts "
             "(repeatable)",
    )
    parser.add_argument(
        "--type-policy", default=DEFAULT_TYPE_POLICY, choices=TYPE_POLICIES,
        help=f"How mixed-type fields pick their type (default: {DEFAULT_TYPE_POLICY})",
    )
    parser.add_argument(
        "--cohorts", action="store_true",
        help="Also split the corpus into schema cohorts and analyze each one",
    )
    parser.add_argument(
        "--cohort-strategy", default="similarity", choices=["similarity", "exact"],
        help="Cohort detection strategy (default: similarity)",
    )
    parser.add_argument(
        "--threshold", type=float, default=DEFAULT_THRESHOLD,
        help=f"Cohort similarity threshold (default: {DEFAULT_THRESHOLD})",
    )
    parser.add_argument(
        "--format", default="report", choices=["report", "json", "llm"],
        help="Output format (default: report)",
    )
    parser.add_argument(
        "--out", metavar="PATH",
        help="Write json/llm output to a file instead of stdout",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for example-value sampling",
    )
    parser.add_argument("--test", action="store_true", help="Run the built-in test suite")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline progress")
    return parser


def run(args) -> int:
    pricing = resolve_pricing(args.model, args.cost_per_1k, args.tokenizer)
    tokenizer = get_tokenizer(pricing.tokenizer)
    paths, documents = load_documents(args.patterns)
    source = " ".join(args.patterns)
    rng = random.Random(args.seed) if args.seed is not None else None
    options = dict(source=source, ignore=args.ignore, type_policy=args.type_policy, rng=rng)

    if args.cohorts:
        result = run_cohorted(
            documents, pricing, tokenizer, args.sample_values,
            identifiers=paths, threshold=args.threshold,
            strategy=args.cohort_strategy, **options,
        )
        output = result.combined
    else:
        result = output = analyze(documents, pricing, tokenizer, args.sample_values, **options)

    if args.format == "report":
        print_report(output, label=source)
        if args.cohorts:
            print_cohorts(result)
        return 0

    text = format_json(result) if args.format == "json" else format_llm(output)
    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Output written to {args.out}")
    else:
        print(text)
    return 0


def main():
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.test:
        sys.exit(run_tests())

    if not args.patterns:
        parser.print_usage(sys.stderr)
        print("Error: provide at least one JSON file or glob pattern", file=sys.stderr)
        sys.exit(2)

    try:
        sys.exit(run(args))
    except TokstatError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
