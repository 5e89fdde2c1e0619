"""Tests for services.matcher - scope bucketing and contractor rollups."""

import uuid
from types import SimpleNamespace

import pytest

from schemas.breakdown import BreakdownStructure
from schemas.extraction import NormalizedGroup
from services.matcher import (
    normalize_description,
    canonical_unit,
    units_compatible,
    similarity,
    item_price,
    build_scope_buckets,
    buckets_from_groups,
    assign_breakdown_nodes,
    summarize,
)


def doc(name):
    return SimpleNamespace(id=uuid.uuid4(), contractor_name=name)


def item(document, description, position=0, **fields):
    values = {
        "id": uuid.uuid4(),
        "bid_document_id": document.id,
        "description": description,
        "position": position,
        "category": None,
        "unit": None,
        "quantity": None,
        "unit_price": None,
        "total_price": None,
        "is_exclusion": False,
        "confidence_score": 0.9,
        "needs_review": False,
    }
    values.update(fields)
    return SimpleNamespace(**values)


class TestNormalization:
    """Description and unit canonicalization."""

    def test_expands_abbreviations_and_drops_stopwords(self):
        assert normalize_description("Demo existing flooring") == "demolition existing flooring"
        assert normalize_description("Demolition of Existing Flooring") == "demolition existing flooring"

    def test_handles_shorthand_and_thousands(self):
        assert normalize_description("Conduit w/ wire, 1,200 LF") == "conduit with wire 1200 linear feet"

    def test_empty(self):
        assert normalize_description(None) == ""
        assert normalize_description("") == ""

    def test_canonical_unit_aliases(self):
        assert canonical_unit("Sq. Ft.") == "sf"
        assert canonical_unit("SF") == "sf"
        assert canonical_unit("each") == "ea"
        assert canonical_unit("Lump Sum") == "ls"
        assert canonical_unit("") is None
        assert canonical_unit(None) is None

    def test_units_compatible_when_missing(self):
        assert units_compatible("SF", None)
        assert units_compatible("sqft", "SF")
        assert not units_compatible("LF", "EA")


class TestSimilarity:
    """RapidFuzz scoring with the subset guard."""

    def test_identical(self):
        assert similarity("demolition existing flooring", "demolition existing flooring") == 100

    def test_short_generic_line_does_not_absorb_detailed_one(self):
        score = similarity("wiring", "wiring conduit panels fixtures devices")
        assert score < 82

    def test_empty_scores_zero(self):
        assert similarity("", "anything") == 0.0

    def test_shared_prefix_with_different_key_noun_stays_apart(self):
        score = similarity(
            normalize_description("Install new carpet"),
            normalize_description("Install new tile"),
        )
        assert score < 82

    def test_inflected_word_still_matches(self):
        score = similarity(
            normalize_description("Install new carpet tiles"),
            normalize_description("Install new carpet tile"),
        )
        assert score >= 82


class TestItemPrice:

    def test_total_price_wins(self):
        assert item_price(SimpleNamespace(total_price=950.0, quantity=10, unit_price=100)) == 950.0

    def test_falls_back_to_quantity_times_unit_price(self):
        assert item_price(SimpleNamespace(total_price=None, quantity=500, unit_price=2.0)) == 1000.0

    def test_none_when_unpriced(self):
        assert item_price(SimpleNamespace(total_price=None, quantity=500, unit_price=None)) is None


class TestBuildScopeBuckets:
    """Greedy clustering across documents."""

    def test_identical_items_share_one_bucket_with_no_gap(self):
        a, b, c = doc("Acme Electric"), doc("Bolt Electrical"), doc("Current Co")
        items = [
            item(a, "Demo existing flooring", quantity=500, unit="SF", unit_price=2.00),
            item(b, "Demo existing flooring", quantity=500, unit="SF", unit_price=2.50),
            item(c, "Demo existing flooring", quantity=500, unit="SF", unit_price=1.80),
        ]

        buckets = build_scope_buckets([a, b, c], items)

        assert len(buckets) == 1
        bucket = buckets[0]
        assert bucket.present_in == [str(a.id), str(b.id), str(c.id)]
        assert bucket.missing_from == []
        assert not bucket.is_scope_gap
        assert bucket.estimated_value == pytest.approx(900.0)
        assert bucket.unit == "sf"

    def test_different_wording_matches(self):
        a, b = doc("A"), doc("B")
        items = [
            item(a, "Demo existing flooring"),
            item(b, "Demolition of existing flooring"),
        ]
        buckets = build_scope_buckets([a, b], items)
        assert len(buckets) == 1

    def test_different_materials_keep_their_own_gaps(self):
        a, b = doc("A"), doc("B")
        items = [
            item(a, "Install new carpet", unit="SF", total_price=5000.0),
            item(b, "Install new tile", unit="SF", total_price=9000.0),
        ]

        buckets = build_scope_buckets([a, b], items)

        assert len(buckets) == 2
        assert [bucket.missing_from for bucket in buckets] == [[str(b.id)], [str(a.id)]]
        assert [bucket.estimated_value for bucket in buckets] == [5000.0, 9000.0]

    def test_unmatched_item_is_singleton_gap(self):
        a, b, c = doc("A"), doc("B"), doc("C")
        items = [
            item(a, "Lighting fixtures", total_price=1000.0),
            item(b, "Lighting fixtures", total_price=1100.0),
            item(c, "Lighting fixtures", total_price=900.0),
            item(b, "Temporary power", position=1, total_price=400.0),
        ]

        buckets = build_scope_buckets([a, b, c], items)

        gaps = [bucket for bucket in buckets if bucket.is_scope_gap]
        assert len(buckets) == 2
        assert len(gaps) == 1
        assert gaps[0].present_in == [str(b.id)]
        assert gaps[0].missing_from == [str(a.id), str(c.id)]
        assert gaps[0].estimated_value == 400.0

    def test_exclusion_only_item_forms_gap_valued_from_its_owner(self):
        a, b, c = doc("A"), doc("B"), doc("C")
        items = [
            item(a, "Lighting fixtures", total_price=1000.0),
            item(a, "Fire alarm system", position=1, total_price=5000.0, is_exclusion=True),
            item(b, "Lighting fixtures", total_price=1100.0),
            item(c, "Lighting fixtures", total_price=900.0),
        ]

        buckets = build_scope_buckets([a, b, c], items)

        fire_alarm = next(bkt for bkt in buckets if bkt.normalized_description == "Fire alarm system")
        assert fire_alarm.present_in == [str(a.id)]
        assert fire_alarm.missing_from == [str(b.id), str(c.id)]
        assert fire_alarm.estimated_value == 5000.0
        assert fire_alarm.is_scope_gap

    def test_exclusion_matched_by_another_contractor_counts_as_missing(self):
        a, b = doc("A"), doc("B")
        items = [
            item(a, "Fire alarm system", total_price=5000.0),
            item(b, "Fire alarm system", is_exclusion=True),
        ]

        buckets = build_scope_buckets([a, b], items)

        assert len(buckets) == 1
        assert buckets[0].present_in == [str(a.id)]
        assert buckets[0].missing_from == [str(b.id)]

    def test_same_document_tie_prefers_higher_confidence(self):
        a, b = doc("A"), doc("B")
        reference = item(b, "Demo existing flooring")
        weak = item(a, "Demo existing flooring", position=0, confidence_score=0.6)
        strong = item(a, "Demo existing flooring", position=1, confidence_score=0.95)

        buckets = build_scope_buckets([b, a], [reference, weak, strong])

        assert len(buckets) == 2
        assert buckets[0].item_ids == [str(reference.id), str(strong.id)]
        assert buckets[1].item_ids == [str(weak.id)]
        assert buckets[1].missing_from == [str(b.id)]

    def test_same_confidence_tie_prefers_insertion_order(self):
        a, b = doc("A"), doc("B")
        reference = item(a, "Panel board")
        first = item(b, "Panel board", position=0)
        second = item(b, "Panel board", position=1)

        buckets = build_scope_buckets([a, b], [reference, first, second])

        assert buckets[0].item_ids == [str(reference.id), str(first.id)]

    def test_a_bucket_never_holds_two_items_from_one_document(self):
        a = doc("A")
        items = [item(a, "Panel board", position=0), item(a, "Panel board", position=1)]
        buckets = build_scope_buckets([a], items)
        assert len(buckets) == 2

    def test_incompatible_units_stay_apart_below_override(self):
        a, b = doc("A"), doc("B")
        items = [item(a, "EMT conduit", unit="LF"), item(b, "EMT conduit", unit="EA")]

        assert len(build_scope_buckets([a, b], items, unit_override=101)) == 2
        assert len(build_scope_buckets([a, b], items, unit_override=95)) == 1


class TestBucketsFromGroups:
    """Grouping supplied by the normalization agent."""

    def test_groups_and_leftovers(self):
        a, b = doc("A"), doc("B")
        a1 = item(a, "Demo flooring", total_price=1000.0)
        b1 = item(b, "Remove existing floor finishes", total_price=1200.0)
        b2 = item(b, "Temporary lighting", position=1, total_price=300.0)
        groups = [NormalizedGroup(
            normalized_description="Flooring demolition",
            item_ids=[str(a1.id), str(b1.id), "not-an-item"],
        )]

        buckets = buckets_from_groups([a, b], [a1, b1, b2], groups)

        assert len(buckets) == 2
        assert buckets[0].normalized_description == "Flooring demolition"
        assert buckets[0].present_in == [str(a.id), str(b.id)]
        assert buckets[1].item_ids == [str(b2.id)]
        assert buckets[1].missing_from == [str(a.id)]

    def test_item_claimed_twice_stays_in_first_group(self):
        a = doc("A")
        a1 = item(a, "Panel board")
        groups = [
            NormalizedGroup(normalized_description="Panels", item_ids=[str(a1.id)]),
            NormalizedGroup(normalized_description="Distribution", item_ids=[str(a1.id)]),
        ]
        buckets = buckets_from_groups([a], [a1], groups)
        assert [bkt.normalized_description for bkt in buckets] == ["Panels"]


class TestBreakdownAssignment:

    def test_buckets_tagged_with_best_node(self):
        a = doc("A")
        items = [item(a, "Lighting fixtures"), item(a, "Fire alarm devices", position=1)]
        buckets = build_scope_buckets([a], items)
        structure = BreakdownStructure.model_validate({
            "type": "by_system",
            "nodes": [
                {"id": "lighting", "name": "Lighting"},
                {"id": "life-safety", "name": "Life Safety", "children": [
                    {"id": "fire-alarm", "name": "Fire Alarm"},
                ]},
            ],
        })

        assign_breakdown_nodes(buckets, structure)

        assert buckets[0].breakdown_node_id == "lighting"
        assert buckets[1].breakdown_node_id == "fire-alarm"


class TestSummarize:
    """Per-contractor rollups and project price statistics."""

    def test_rollup_with_gap(self):
        a, b, c = doc("Acme Electric"), doc("Bolt Electrical"), doc("Current Co")
        items = [
            item(a, "Lighting fixtures", total_price=1000.0, confidence_score=0.8),
            item(a, "Fire alarm system", position=1, total_price=5000.0, is_exclusion=True,
                 confidence_score=0.6, needs_review=True),
            item(b, "Lighting fixtures", total_price=1100.0),
            item(c, "Lighting fixtures", total_price=900.0),
        ]
        buckets = build_scope_buckets([a, b, c], items)

        summary = summarize([a, b, c], items, buckets)

        acme, bolt, current = summary.contractors
        assert acme.base_bid == 1000.0
        assert acme.total_bid == 1000.0
        assert acme.exclusion_count == 1
        assert acme.exclusions_value == 5000.0
        assert acme.confidence_avg == pytest.approx(0.7)
        assert acme.needs_review_count == 1
        assert bolt.base_bid == 1100.0
        assert bolt.total_bid == 6100.0
        assert bolt.scope_gap_count == 1
        assert current.total_bid == 5900.0

        assert summary.total_scope_items == 2
        assert summary.common_items == 1
        assert summary.gap_items == 1
        assert summary.price_low == 900.0
        assert summary.price_high == 1100.0
        assert summary.price_average == 1000.0
