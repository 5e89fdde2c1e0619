"""
Scope Matcher

Groups extracted items from different contractors into scope buckets and
computes gap accounting and per-contractor rollups.

Descriptions are normalized (lowercased, punctuation stripped, trade
abbreviations expanded) and compared with RapidFuzz. Clustering is greedy
in document order; a bucket never holds two items from the same document.
"""

import logging
import re
from collections import Counter
from typing import Iterable, Optional, Sequence

from rapidfuzz import fuzz

from config.settings import settings
from schemas.breakdown import BreakdownStructure
from schemas.comparison import ScopeBucket, ContractorSummary, ComparisonSummary
from schemas.extraction import NormalizedGroup

logger = logging.getLogger("bidvet.services.matcher")


ABBREVIATIONS = {
    "demo": "demolition",
    "sf": "square feet",
    "sqft": "square feet",
    "sy": "square yards",
    "lf": "linear feet",
    "cy": "cubic yards",
    "ea": "each",
    "ls": "lump sum",
    "qty": "quantity",
    "instl": "installation",
    "inst": "installation",
    "install": "installation",
    "installed": "installation",
    "elec": "electrical",
    "mech": "mechanical",
    "plumb": "plumbing",
    "equip": "equipment",
    "matl": "material",
    "matls": "materials",
    "misc": "miscellaneous",
    "temp": "temporary",
    "conc": "concrete",
    "fdn": "foundation",
    "gyp": "gypsum",
    "bd": "board",
    "clg": "ceiling",
    "flr": "floor",
    "ext": "exterior",
    "int": "interior",
    "mtl": "metal",
    "gc": "general contractor",
    "nic": "not in contract",
    "allow": "allowance",
    "alt": "alternate",
}

STOPWORDS = {"a", "an", "the", "of", "and", "for", "to", "at", "on", "per", "all"}

UNIT_ALIASES = {
    "sf": "sf", "sqft": "sf", "sqf": "sf", "squarefeet": "sf", "squarefoot": "sf", "ft2": "sf",
    "sy": "sy", "squareyards": "sy", "squareyard": "sy",
    "lf": "lf", "linearfeet": "lf", "linearfoot": "lf", "linft": "lf",
    "cy": "cy", "cubicyards": "cy", "cubicyard": "cy", "yd3": "cy",
    "ea": "ea", "each": "ea", "pc": "ea", "pcs": "ea",
    "ls": "ls", "lumpsum": "ls", "lot": "ls",
    "hr": "hr", "hrs": "hr", "hour": "hr", "hours": "hr",
    "ton": "ton", "tons": "ton",
    "gal": "gal", "gallon": "gal", "gallons": "gal",
}

_PUNCT = re.compile(r"[^a-z0-9\s]")

# Words found on only one side must resemble each other ("carpet" vs "tile" is new scope)
DISTINCT_TOKEN_FLOOR = 60.0


def normalize_description(text: Optional[str]) -> str:
    """Canonical comparison form of an item description."""
    if not text:
        return ""
    text = text.lower()
    text = text.replace("w/o", " without ").replace("w/", " with ").replace("&", " and ")
    text = re.sub(r"(\d),(\d)", r"\1\2", text)
    text = _PUNCT.sub(" ", text)
    expanded = " ".join(ABBREVIATIONS.get(token, token) for token in text.split())
    return " ".join(t for t in expanded.split() if t not in STOPWORDS)


def canonical_unit(unit: Optional[str]) -> Optional[str]:
    """Map a unit of measure onto a canonical token; None when absent."""
    if not unit:
        return None
    key = re.sub(r"[^a-z0-9]", "", unit.lower())
    if not key:
        return None
    return UNIT_ALIASES.get(key, key)


def units_compatible(a: Optional[str], b: Optional[str]) -> bool:
    """Same canonical unit, or either side missing."""
    a, b = canonical_unit(a), canonical_unit(b)
    return a is None or b is None or a == b


def similarity(a: str, b: str) -> float:
    """
    Similarity of two normalized descriptions on a 0-100 scale.

    Uses token_set_ratio, falling back to token_sort_ratio when one side
    has less than half the tokens of the other, so short generic lines do
    not absorb detailed ones by subset. When both sides carry words the
    other lacks, the score is capped by how alike those words are, so a
    shared prefix cannot hide a different key noun.
    """
    if not a or not b:
        return 0.0
    tokens_a, tokens_b = set(a.split()), set(b.split())
    small, large = sorted((len(tokens_a), len(tokens_b)))
    if small / large < 0.5:
        score = fuzz.token_sort_ratio(a, b)
    else:
        score = fuzz.token_set_ratio(a, b)

    only_a, only_b = tokens_a - tokens_b, tokens_b - tokens_a
    if only_a and only_b:
        distinct = fuzz.ratio(" ".join(sorted(only_a)), " ".join(sorted(only_b)))
        if distinct < DISTINCT_TOKEN_FLOOR:
            return min(score, distinct)
    return score


def item_price(item) -> Optional[float]:
    """Total price, or quantity x unit price when only those are given."""
    if item.total_price is not None:
        return float(item.total_price)
    if item.quantity is not None and item.unit_price is not None:
        return float(item.quantity) * float(item.unit_price)
    return None


class _Cluster:
    """Mutable bucket under construction."""

    def __init__(self, document_id: str, item):
        self.members = {document_id: item}
        self.keys = {document_id: normalize_description(item.description)}
        self.unit = canonical_unit(item.unit)

    def score(self, key: str) -> float:
        return max(similarity(key, other) for other in self.keys.values())

    def add(self, document_id: str, item, key: str):
        self.members[document_id] = item
        self.keys[document_id] = key
        if self.unit is None:
            self.unit = canonical_unit(item.unit)


def _rank_key(item):
    """Higher confidence first, then earlier insertion order."""
    return (-(item.confidence_score or 0.0), item.position or 0)


def _doc_id(document) -> str:
    return str(document.id)


def _items_by_document(documents: Sequence, items: Iterable) -> dict[str, list]:
    grouped = {_doc_id(d): [] for d in documents}
    for item in items:
        doc_id = str(item.bid_document_id)
        if doc_id in grouped:
            grouped[doc_id].append(item)
    for doc_items in grouped.values():
        doc_items.sort(key=lambda i: i.position or 0)
    return grouped


def _cluster(documents: Sequence, items: Iterable, threshold: float, unit_override: float) -> list[_Cluster]:
    clusters: list[_Cluster] = []
    grouped = _items_by_document(documents, items)

    for document in documents:
        doc_id = _doc_id(document)
        doc_items = grouped[doc_id]
        claims: dict[int, list] = {}
        unmatched = []

        for item in doc_items:
            key = normalize_description(item.description)
            best_index, best_score = None, 0.0
            for index, cluster in enumerate(clusters):
                score = cluster.score(key)
                if score < threshold:
                    continue
                if score < unit_override and not units_compatible(cluster.unit, item.unit):
                    continue
                if best_index is None or score > best_score:
                    best_index, best_score = index, score
            if best_index is None:
                unmatched.append(item)
            else:
                claims.setdefault(best_index, []).append((item, key))

        new_clusters = []
        for index in sorted(claims):
            candidates = sorted(claims[index], key=lambda pair: _rank_key(pair[0]))
            winner, winner_key = candidates[0]
            clusters[index].add(doc_id, winner, winner_key)
            for displaced, _ in candidates[1:]:
                new_clusters.append(_Cluster(doc_id, displaced))

        for item in unmatched:
            new_clusters.append(_Cluster(doc_id, item))

        new_clusters.sort(key=lambda c: c.members[doc_id].position or 0)
        clusters.extend(new_clusters)

    return clusters


def _label(cluster: _Cluster) -> str:
    best = sorted(cluster.members.values(), key=_rank_key)[0]
    return " ".join(best.description.split())


def _to_bucket(cluster: _Cluster, document_ids: list[str]) -> ScopeBucket:
    included = [d for d in document_ids if d in cluster.members and not cluster.members[d].is_exclusion]
    if not included:
        # Exclusion-only bucket: valued from the contractors who priced it
        included = [d for d in document_ids if d in cluster.members]
    missing = [d for d in document_ids if d not in included]

    prices = [p for p in (item_price(cluster.members[d]) for d in included) if p is not None]
    categories = Counter(i.category for i in cluster.members.values() if i.category)

    return ScopeBucket(
        normalized_description=_label(cluster),
        category=categories.most_common(1)[0][0] if categories else None,
        unit=cluster.unit,
        item_ids=[str(cluster.members[d].id) for d in document_ids if d in cluster.members],
        present_in=included,
        missing_from=missing,
        estimated_value=min(prices) if prices else None,
        is_scope_gap=bool(missing),
    )


def build_scope_buckets(
    documents: Sequence,
    items: Iterable,
    threshold: Optional[float] = None,
    unit_override: Optional[float] = None
) -> list[ScopeBucket]:
    """
    Cluster items across documents into scope buckets.

    Args:
        documents: Bid documents in comparison order (objects with id)
        items: Extracted items (objects with bid_document_id, description, unit,
            quantity, unit_price, total_price, is_exclusion, confidence_score, position)
        threshold: Minimum similarity (0-100) to join a bucket
        unit_override: Similarity at which incompatible units are ignored

    Returns:
        Buckets in order of first appearance
    """
    threshold = settings.matching_threshold if threshold is None else threshold
    unit_override = settings.matching_unit_override if unit_override is None else unit_override
    items = list(items)
    document_ids = [_doc_id(d) for d in documents]

    clusters = _cluster(documents, items, threshold, unit_override)
    buckets = [_to_bucket(c, document_ids) for c in clusters]
    logger.debug(f"Clustered {len(items)} items into {len(buckets)} buckets")
    return buckets


def buckets_from_groups(
    documents: Sequence,
    items: Iterable,
    groups: Sequence[NormalizedGroup]
) -> list[ScopeBucket]:
    """
    Build buckets from an externally supplied grouping (the normalization agent).

    Unknown ids are ignored, an item claimed twice stays in its first group,
    a group keeps one item per document (highest confidence, then earliest),
    and every item left over forms its own bucket.
    """
    items = list(items)
    document_ids = [_doc_id(d) for d in documents]
    by_id = {str(i.id): i for i in items if str(i.bid_document_id) in document_ids}
    used: set[str] = set()
    clusters: list[tuple[Optional[str], _Cluster]] = []

    for group in groups:
        per_doc: dict[str, list] = {}
        for item_id in group.item_ids:
            item = by_id.get(str(item_id))
            if item is None or str(item.id) in used:
                continue
            used.add(str(item.id))
            per_doc.setdefault(str(item.bid_document_id), []).append(item)
        if not per_doc:
            continue

        cluster = None
        for doc_id in document_ids:
            if doc_id not in per_doc:
                continue
            ranked = sorted(per_doc[doc_id], key=_rank_key)
            if cluster is None:
                cluster = _Cluster(doc_id, ranked[0])
            else:
                cluster.add(doc_id, ranked[0], normalize_description(ranked[0].description))
            for displaced in ranked[1:]:
                clusters.append((None, _Cluster(doc_id, displaced)))
        clusters.append((group.normalized_description, cluster))

    for doc_id, doc_items in _items_by_document(documents, items).items():
        for item in doc_items:
            if str(item.id) not in used:
                clusters.append((None, _Cluster(doc_id, item)))

    buckets = []
    for label, cluster in clusters:
        bucket = _to_bucket(cluster, document_ids)
        if label:
            bucket.normalized_description = " ".join(label.split())
        buckets.append(bucket)
    return buckets


def assign_breakdown_nodes(buckets: list[ScopeBucket], structure: BreakdownStructure) -> None:
    """Tag every bucket with its best-matching breakdown node."""
    nodes = structure.flatten()
    if not nodes:
        return
    keyed = [(node, normalize_description(node.name)) for node in nodes]
    for bucket in buckets:
        key = normalize_description(bucket.normalized_description)
        if bucket.category:
            key = f"{key} {normalize_description(bucket.category)}"
        best_node, best_score = keyed[0][0], -1.0
        for node, node_key in keyed:
            score = fuzz.token_set_ratio(key, node_key) if node_key else 0.0
            if score > best_score:
                best_node, best_score = node, score
        bucket.breakdown_node_id = best_node.id


def summarize(documents: Sequence, items: Iterable, buckets: list[ScopeBucket]) -> ComparisonSummary:
    """
    Per-contractor rollup plus project-level price statistics.

    total_bid is the base bid plus the estimated value of every scope gap
    the contractor is missing from.
    """
    grouped = _items_by_document(documents, items)
    contractors = []

    for document in documents:
        doc_id = _doc_id(document)
        doc_items = grouped[doc_id]
        exclusions = [i for i in doc_items if i.is_exclusion]
        inclusions = [i for i in doc_items if not i.is_exclusion]
        gaps = [b for b in buckets if doc_id in b.missing_from]

        base_bid = sum(item_price(i) or 0.0 for i in inclusions)
        gap_value = sum(b.estimated_value or 0.0 for b in gaps)
        confidence = [i.confidence_score or 0.0 for i in doc_items]

        contractors.append(ContractorSummary(
            id=doc_id,
            name=document.contractor_name,
            item_count=len(doc_items),
            exclusion_count=len(exclusions),
            exclusions_value=round(sum(item_price(i) or 0.0 for i in exclusions), 2),
            base_bid=round(base_bid, 2),
            total_bid=round(base_bid + gap_value, 2),
            confidence_avg=round(sum(confidence) / len(confidence), 3) if confidence else 0.0,
            needs_review_count=sum(1 for i in doc_items if i.needs_review),
            scope_gap_count=len(gaps),
        ))

    prices = [c.base_bid for c in contractors if c.base_bid > 0]
    gap_buckets = [b for b in buckets if b.is_scope_gap]

    return ComparisonSummary(
        contractors=contractors,
        scope_gaps=gap_buckets,
        total_scope_items=len(buckets),
        common_items=len(buckets) - len(gap_buckets),
        gap_items=len(gap_buckets),
        price_low=min(prices) if prices else None,
        price_high=max(prices) if prices else None,
        price_average=round(sum(prices) / len(prices), 2) if prices else None,
    )
