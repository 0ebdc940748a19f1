"""
tokstat cohort detection

Partitions a corpus into groups of documents with comparable shape, so a
mixed-schema corpus is not forced into one misleading merged tree. Cohorts
are disjoint and together cover every input document.

Two strategies:

  exact        group by the sorted top-level key set (optionally with each
               key's JSON type). Fast, but one optional field present or
               absent splits otherwise identical documents.

  similarity   greedy online clustering on a weighted structural profile.
               Each document joins the existing cohort with the best blended
               score, or seeds a new one when the best score is below the
               threshold. Order-sensitive, so documents are visited in
               identifier order.
"""

import hashlib
import logging
import statistics
from dataclasses import dataclass, field
from typing import Any, Optional

from tokstat_errors import InputError
from tokstat_schema import ROOT, json_type

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_THRESHOLD = 0.72

TOP_KEY_WEIGHT = 0.6
STRUCTURE_WEIGHT = 0.4
DEPTH_PENALTY_PER_LEVEL = 0.04
MAX_DEPTH_PENALTY = 0.2

# Array elements inspected per array when profiling
ARRAY_SAMPLE = 3

# Base feature weight by depth; deeper levels use the last entry
DEPTH_WEIGHTS = (4.0, 3.0, 2.0, 1.0)

PATH_TYPE_SCALE = 1.2
ARRAY_ITEMS_SCALE = 0.8
SHALLOW_KEYSET_SCALE = 1.5
DEEP_KEYSET_SCALE = 0.5

LABEL_KEYS = 3


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass
class Cohort:
    id: str
    label: str
    file_count: int
    indices: list[int]
    top_level_keys: list[str] = field(default_factory=list)
    fingerprint: str = ""
    note: str = ""
    # AnalysisOutput for the member documents, filled in by run_cohorted
    report: Any = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "file_count": self.file_count,
            "indices": list(self.indices),
            "top_level_keys": list(self.top_level_keys),
            "fingerprint": self.fingerprint,
            "note": self.note,
            "report": self.report.to_dict() if self.report is not None else None,
        }


@dataclass
class StructuralProfile:
    features: dict[str, float]
    top_keys: set[str]
    max_depth: int


def _require_object(doc, index: int):
    if not isinstance(doc, dict):
        raise InputError(
            f"Top-level JSON must be an object for cohorting, got {json_type(doc)}",
            document=f"document {index}",
        )


def cohort_label(keys: list[str]) -> str:
    """First three sorted keys, plus a count of the rest."""
    keys = sorted(keys)
    if not keys:
        return "(empty object)"
    if len(keys) <= LABEL_KEYS:
        return ", ".join(keys)
    return ", ".join(keys[:LABEL_KEYS]) + f" +{len(keys) - LABEL_KEYS}"


def _finalize(groups: list[dict]) -> list[Cohort]:
    # stable sort: equal-sized cohorts keep their creation order
    groups = sorted(groups, key=lambda g: len(g["indices"]), reverse=True)
    cohorts = []
    for n, g in enumerate(groups, start=1):
        keys = sorted(g["top_keys"])
        cohorts.append(Cohort(
            id=f"cohort-{n}",
            label=cohort_label(keys),
            file_count=len(g["indices"]),
            indices=sorted(g["indices"]),
            top_level_keys=keys,
            fingerprint=g["fingerprint"],
            note=g["note"],
        ))
    return cohorts


# ---------------------------------------------------------------------------
# Strategy 1: exact fingerprint
# ---------------------------------------------------------------------------

def fingerprint(doc: dict, with_types: bool = False) -> str:
    """
    Sorted top-level keys joined by "|", e.g. "cast|rating|title". With
    with_types each key carries its JSON type ("rating:null"), which splits
    documents on null-vs-value differences.
    """
    keys = sorted(doc)
    if with_types:
        return "|".join(f"{k}:{json_type(doc[k])}" for k in keys)
    return "|".join(keys)


def detect_cohorts_exact(documents: list, with_types: bool = False) -> list[Cohort]:
    if not documents:
        raise InputError("No JSON documents provided")

    groups: dict[str, dict] = {}
    for i, doc in enumerate(documents):
        _require_object(doc, i)
        fp = fingerprint(doc, with_types)
        group = groups.get(fp)
        if group is None:
            digest = hashlib.sha1(fp.encode("utf-8")).hexdigest()[:12]
            group = groups[fp] = {
                "indices": [],
                "top_keys": set(doc),
                "fingerprint": digest,
                "note": f"exact key set: {fp or '(none)'}",
            }
        group["indices"].append(i)

    return _finalize(list(groups.values()))


# ---------------------------------------------------------------------------
# Strategy 2: weighted similarity clustering
# ---------------------------------------------------------------------------

def _depth_weight(depth: int) -> float:
    return DEPTH_WEIGHTS[min(depth, len(DEPTH_WEIGHTS) - 1)]


def structural_profile(doc: dict) -> StructuralProfile:
    """
    Weighted feature set for one document:
      "<path>:<type>"            every visited value
      "<path>:array_items"       every non-null array
      "<path>:{k1|k2|...}"       every object's sorted key set
    A feature seen at several places keeps its largest weight.
    """
    features: dict[str, float] = {}
    max_depth = 0

    def add(feature: str, depth: int, scale: float):
        weight = _depth_weight(depth) * scale
        if weight > features.get(feature, 0.0):
            features[feature] = weight

    def walk(value, path: str, depth: int):
        nonlocal max_depth
        max_depth = max(max_depth, depth)
        add(f"{path}:{json_type(value)}", depth, PATH_TYPE_SCALE)

        if isinstance(value, list):
            add(f"{path}:array_items", depth, ARRAY_ITEMS_SCALE)
            for item in value[:ARRAY_SAMPLE]:
                walk(item, f"{path}[]", depth + 1)
        elif isinstance(value, dict):
            keys = sorted(value)
            scale = SHALLOW_KEYSET_SCALE if depth <= 1 else DEEP_KEYSET_SCALE
            add(f"{path}:{{{'|'.join(keys)}}}", depth, scale)
            for key in keys:
                walk(value[key], f"{path}.{key}", depth + 1)

    walk(doc, ROOT, 0)
    return StructuralProfile(features=features, top_keys=set(doc), max_depth=max_depth)


def jaccard(a: set, b: set) -> float:
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


def weighted_jaccard(a: dict[str, float], b: dict[str, float]) -> float:
    min_sum = 0.0
    max_sum = 0.0
    for key in a.keys() | b.keys():
        av = a.get(key, 0.0)
        bv = b.get(key, 0.0)
        min_sum += min(av, bv)
        max_sum += max(av, bv)
    if max_sum == 0:
        return 1.0
    return min_sum / max_sum


class _Group:
    def __init__(self, index: int, profile: StructuralProfile):
        self.indices = [index]
        self.features = dict(profile.features)
        self.top_keys = set(profile.top_keys)
        self.depths = [profile.max_depth]
        seed_keys = ", ".join(sorted(profile.top_keys)[:4])
        self.note = f"seed top keys: {seed_keys or '(none)'}"

    def score(self, profile: StructuralProfile) -> float:
        top = jaccard(profile.top_keys, self.top_keys)
        struct = weighted_jaccard(profile.features, self.features)
        depth_delta = abs(profile.max_depth - statistics.median(self.depths))
        penalty = min(MAX_DEPTH_PENALTY, depth_delta * DEPTH_PENALTY_PER_LEVEL)
        return TOP_KEY_WEIGHT * top + STRUCTURE_WEIGHT * struct - penalty

    def add(self, index: int, profile: StructuralProfile):
        self.indices.append(index)
        for feature, weight in profile.features.items():
            if weight > self.features.get(feature, 0.0):
                self.features[feature] = weight
        self.top_keys |= profile.top_keys
        self.depths.append(profile.max_depth)

    def as_dict(self) -> dict:
        digest = hashlib.sha1(
            "|".join(sorted(self.features)).encode("utf-8")
        ).hexdigest()[:12]
        return {
            "indices": self.indices,
            "top_keys": self.top_keys,
            "fingerprint": digest,
            "note": self.note,
        }


def detect_cohorts(
    documents: list,
    identifiers: Optional[list[str]] = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> list[Cohort]:
    """
    Cluster documents by structural similarity. Documents are visited in
    identifier order (input order when no identifiers are given), so the
    result is reproducible. Cohorts come back largest first.
    """
    if not documents:
        raise InputError("No JSON documents provided")
    if identifiers is not None and len(identifiers) != len(documents):
        raise ValueError(
            f"Got {len(identifiers)} identifiers for {len(documents)} documents"
        )

    order = list(range(len(documents)))
    if identifiers is not None:
        order.sort(key=lambda i: (identifiers[i], i))

    groups: list[_Group] = []
    for i in order:
        doc = documents[i]
        _require_object(doc, i)
        profile = structural_profile(doc)

        best: Optional[_Group] = None
        best_score = float("-inf")
        for group in groups:
            score = group.score(profile)
            if score > best_score:
                best, best_score = group, score

        if best is None or best_score < threshold:
            groups.append(_Group(i, profile))
        else:
            best.add(i, profile)

    logger.info(
        "cohorting: %d documents -> %d cohorts (threshold %.2f)",
        len(documents), len(groups), threshold,
    )
    return _finalize([g.as_dict() for g in groups])
