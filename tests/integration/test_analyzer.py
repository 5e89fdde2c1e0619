"""Integration tests for the analysis pipeline (services.analyzer).

The LLM is replaced by a scripted FakeCrew; everything else runs against an
in-memory database.
"""

import asyncio
import threading
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from config.settings import settings
from database.models import (
    AIPipelineMetric, BidDocument, ComparisonResult, ExtractedItem, TradeConfidenceThreshold
)
from schemas.project import ProjectStatus, DocumentStatus
from services.analyzer import analyze_project, start_analysis
from services.exceptions import ConflictError, NotFound, Forbidden, ExtractionFailed
from services.item_extractor import extract_items_for_document
from services.calibration import ConfidenceThresholds


async def items_of(db, document):
    result = await db.execute(
        select(ExtractedItem)
        .where(ExtractedItem.bid_document_id == document.id)
        .order_by(ExtractedItem.position)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_three_identical_items_share_one_bucket(db_session, project, add_document, fake_crew, make_line):
    """Same description, different prices: one bucket, no gaps, lowest bidder recommended."""
    a = await add_document(project, "Acme Electric", raw_text="ACME BID")
    b = await add_document(project, "Bolt Electrical", raw_text="BOLT BID")
    c = await add_document(project, "Current Co", raw_text="CURRENT BID")
    crew = fake_crew(
        extractions={
            "ACME BID": {"items": [make_line("Demo existing flooring", 500, "SF", 2.00, 1000.0)]},
            "BOLT BID": {"items": [make_line("Demo existing flooring", 500, "SF", 2.50, 1250.0)]},
            "CURRENT BID": {"items": [make_line("Demo existing flooring", 500, "SF", 1.80, 900.0)]},
        },
        recommendation={"recommended_contractor_id": str(c.id), "confidence": "high", "reasoning": "Lowest price"},
    )

    outcome = await analyze_project(db_session, project.id, crew)

    assert outcome["status"] == "complete"
    assert outcome["documents_processed"] == 3
    assert outcome["items_extracted"] == 3
    assert outcome["scope_items"] == 1
    assert outcome["gap_items"] == 0
    assert project.status == ProjectStatus.COMPLETE.value

    result = (await db_session.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one()
    assert result.total_bids == 3
    assert result.common_items == 1
    assert result.scope_gaps == []
    assert result.price_low == 900.0
    assert result.price_high == 1250.0
    assert result.recommendation_json["recommended_contractor_id"] == str(c.id)
    assert result.recommendation_json["recommended_contractor_name"] == "Current Co"

    for document in (a, b, c):
        [item] = await items_of(db_session, document)
        assert item.normalized_description == "Demo existing flooring"
        assert document.upload_status == DocumentStatus.PROCESSED.value


@pytest.mark.asyncio
async def test_exclusion_forms_scope_gap(db_session, project, add_document, fake_crew, make_line):
    a = await add_document(project, "Acme Electric", raw_text="ACME BID")
    b = await add_document(project, "Bolt Electrical", raw_text="BOLT BID")
    c = await add_document(project, "Current Co", raw_text="CURRENT BID")
    crew = fake_crew(extractions={
        "ACME BID": {"items": [
            make_line("Lighting fixtures", total_price=18000.0),
            make_line("Fire alarm system", total_price=6500.0, is_exclusion=True),
        ]},
        "BOLT BID": {"items": [make_line("Lighting fixtures", total_price=17500.0)]},
        "CURRENT BID": {"items": [make_line("Lighting fixtures", total_price=19000.0)]},
    })

    outcome = await analyze_project(db_session, project.id, crew)

    assert outcome["status"] == "complete"
    result = (await db_session.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one()
    [gap] = result.scope_gaps
    assert gap["normalized_description"] == "Fire alarm system"
    assert gap["present_in"] == [str(a.id)]
    assert gap["missing_from"] == [str(b.id), str(c.id)]
    assert gap["estimated_value"] == 6500.0


@pytest.mark.asyncio
async def test_rate_limit_on_one_document_fails_project_keeps_other_items(
    db_session, project, add_document, fake_crew, make_line
):
    a = await add_document(project, "Acme Electric", raw_text="ACME BID")
    b = await add_document(project, "Bolt Electrical", raw_text="BOLT BID")
    c = await add_document(project, "Current Co", raw_text="CURRENT BID")
    crew = fake_crew(extractions={
        "ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]},
        "BOLT BID": RuntimeError("Rate limit exceeded, retry after 20s"),
        "CURRENT BID": {"items": [
            make_line("Lighting fixtures", total_price=19000.0),
            make_line("Temporary power", total_price=900.0),
        ]},
    })

    outcome = await analyze_project(db_session, project.id, crew)

    assert outcome["status"] == "error"
    assert project.status == ProjectStatus.ERROR.value
    assert project.error_message == "Rate limit exceeded, retry after 20s"
    assert b.upload_status == DocumentStatus.ERROR.value
    assert b.error_message == "Rate limit exceeded, retry after 20s"
    assert b.raw_text == "BOLT BID"

    assert len(await items_of(db_session, a)) == 1
    assert len(await items_of(db_session, c)) == 2
    assert await items_of(db_session, b) == []
    assert not any(call[0] == "recommend" for call in crew.calls)


@pytest.mark.asyncio
async def test_reanalysis_replaces_items(db_session, project, add_document, fake_crew, make_line):
    document = await add_document(project, "Acme Electric", raw_text="ACME BID")
    first = fake_crew(extractions={"ACME BID": {"items": [
        make_line("Lighting fixtures", total_price=18000.0),
        make_line("Panel board", total_price=4000.0),
    ]}})
    await analyze_project(db_session, project.id, first)

    second = fake_crew(extractions={"ACME BID": {"items": [make_line("Lighting fixtures", total_price=17000.0)]}})
    outcome = await analyze_project(db_session, project.id, second)

    assert outcome["status"] == "complete"
    items = await items_of(db_session, document)
    assert [(i.description, i.total_price) for i in items] == [("Lighting fixtures", 17000.0)]


@pytest.mark.asyncio
async def test_failed_reextraction_keeps_previous_items(db_session, project, add_document, fake_crew, make_line):
    document = await add_document(project, "Acme Electric", raw_text="ACME BID")
    await analyze_project(db_session, project.id, fake_crew(extractions={
        "ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]},
    }))

    outcome = await analyze_project(db_session, project.id, fake_crew(extractions={
        "ACME BID": RuntimeError("Request timed out"),
    }))

    assert outcome["status"] == "error"
    assert len(await items_of(db_session, document)) == 1


@pytest.mark.asyncio
async def test_unreadable_document_is_skipped(db_session, project, add_document, fake_crew, make_line, tmp_path):
    from services.storage import DocumentStore

    store = DocumentStore(root=tmp_path)
    ref = await store.put_file(b"not really a workbook", "bolt.xlsx", str(project.id))
    await add_document(project, "Acme Electric", raw_text="ACME BID")
    broken = await add_document(project, "Bolt Electrical", file_name="bolt.xlsx", file_ref=ref,
                                file_type="application/vnd.ms-excel")
    crew = fake_crew(extractions={"ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]}})

    outcome = await analyze_project(db_session, project.id, crew, store=store)

    assert outcome["status"] == "complete"
    assert outcome["documents_processed"] == 1
    assert broken.upload_status == DocumentStatus.ERROR.value
    assert broken.error_message


@pytest.mark.asyncio
async def test_no_documents_sets_error(db_session, project, fake_crew):
    outcome = await analyze_project(db_session, project.id, fake_crew())

    assert outcome["status"] == "error"
    assert project.status == ProjectStatus.ERROR.value
    assert project.error_message == "No documents found for this project"


@pytest.mark.asyncio
async def test_unknown_recommended_contractor_falls_back_to_lowest_bid(
    db_session, project, add_document, fake_crew, make_line
):
    await add_document(project, "Acme Electric", raw_text="ACME BID")
    bolt = await add_document(project, "Bolt Electrical", raw_text="BOLT BID")
    crew = fake_crew(
        extractions={
            "ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]},
            "BOLT BID": {"items": [make_line("Lighting fixtures", total_price=17500.0)]},
        },
        recommendation={"recommended_contractor_id": "Sparky LLC", "confidence": "high", "reasoning": "?"},
    )

    await analyze_project(db_session, project.id, crew)

    result = (await db_session.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one()
    assert result.recommendation_json["recommended_contractor_id"] == str(bolt.id)
    assert result.recommendation_json["confidence"] == "low"


@pytest.mark.asyncio
async def test_recommendation_failure_is_an_llm_failure(db_session, project, add_document, fake_crew, make_line):
    await add_document(project, "Acme Electric", raw_text="ACME BID")
    crew = fake_crew(
        extractions={"ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]}},
        recommendation=RuntimeError("You exceeded your current quota"),
    )

    outcome = await analyze_project(db_session, project.id, crew)

    assert outcome["status"] == "error"
    assert project.error_message == "You exceeded your current quota"


@pytest.mark.asyncio
async def test_llm_normalization_groups_items(db_session, project, add_document, fake_crew, make_line, monkeypatch):
    monkeypatch.setattr(settings, "llm_normalization", True)
    await add_document(project, "Acme Electric", raw_text="ACME BID")
    await add_document(project, "Bolt Electrical", raw_text="BOLT BID")

    class GroupingCrew(fake_crew):
        def normalize(self, trade_type, contractors):
            self.calls.append(("normalize", contractors))
            ids = [item["id"] for contractor in contractors for item in contractor["items"]]
            return {"groups": [{"normalized_description": "Flooring demolition", "item_ids": ids}]}

    crew = GroupingCrew(extractions={
        "ACME BID": {"items": [make_line("Demo flooring", total_price=1000.0)]},
        "BOLT BID": {"items": [make_line("Remove existing floor finishes", total_price=1200.0)]},
    })

    outcome = await analyze_project(db_session, project.id, crew)

    assert outcome["scope_items"] == 1
    assert outcome["gap_items"] == 0
    items = (await db_session.execute(select(ExtractedItem))).scalars().all()
    assert {i.normalized_description for i in items} == {"Flooring demolition"}


@pytest.mark.asyncio
async def test_llm_normalization_failure_falls_back_to_matcher(
    db_session, project, add_document, fake_crew, make_line, monkeypatch
):
    monkeypatch.setattr(settings, "llm_normalization", True)
    await add_document(project, "Acme Electric", raw_text="ACME BID")
    await add_document(project, "Bolt Electrical", raw_text="BOLT BID")
    crew = fake_crew(extractions={
        "ACME BID": {"items": [make_line("Demo existing flooring", total_price=1000.0)]},
        "BOLT BID": {"items": [make_line("Demolition of existing flooring", total_price=1200.0)]},
    })

    outcome = await analyze_project(db_session, project.id, crew)

    assert outcome["status"] == "complete"
    assert outcome["scope_items"] == 1


@pytest.mark.asyncio
async def test_missing_project(db_session, fake_crew):
    with pytest.raises(NotFound):
        await analyze_project(db_session, "6f1c1d7e-8d2b-4bb5-9a35-3c0d3f1ad9a1", fake_crew())


class TestStatusGate:
    """start_analysis serializes runs per project."""

    @pytest.mark.asyncio
    async def test_moves_project_to_processing(self, db_session, project, user):
        started = await start_analysis(db_session, project.id, user)
        assert started.status == ProjectStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_refuses_second_run(self, db_session, project, user):
        await start_analysis(db_session, project.id, user)
        with pytest.raises(ConflictError):
            await start_analysis(db_session, project.id, user)

    @pytest.mark.asyncio
    async def test_other_users_project(self, db_session, project, other_user):
        with pytest.raises(Forbidden):
            await start_analysis(db_session, project.id, other_user)

    @pytest.mark.asyncio
    async def test_abandoned_run_is_taken_over(self, db_session, project, user):
        project.status = ProjectStatus.PROCESSING.value
        project.updated_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
        await db_session.commit()

        started = await start_analysis(db_session, project.id, user)

        assert started.status == ProjectStatus.PROCESSING.value
        with pytest.raises(ConflictError):
            await start_analysis(db_session, project.id, user)

    @pytest.mark.asyncio
    async def test_cancelled_run_leaves_project_in_error(
        self, db_session, project, user, add_document, fake_crew, make_line
    ):
        await add_document(project, "Acme Electric", raw_text="ACME BID")
        entered = threading.Event()

        class SlowCrew(fake_crew):
            def extract_items(self, trade_type, raw_text):
                entered.set()
                time.sleep(0.2)
                return super().extract_items(trade_type, raw_text)

        crew = SlowCrew(extractions={"ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]}})
        await start_analysis(db_session, project.id, user)

        task = asyncio.create_task(analyze_project(db_session, project.id, crew))
        assert await asyncio.to_thread(entered.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await db_session.refresh(project)
        assert project.status == ProjectStatus.ERROR.value
        assert "interrupted" in project.error_message

        restarted = await start_analysis(db_session, project.id, user)
        assert restarted.status == ProjectStatus.PROCESSING.value


class TestReviewTiers:
    """Extracted items are tiered by the trade's thresholds."""

    @pytest.mark.asyncio
    async def test_items_tagged_by_confidence(self, db_session, project, add_document, fake_crew, make_line):
        document = await add_document(project, "Acme Electric", raw_text="ACME BID")
        crew = fake_crew(extractions={"ACME BID": {"items": [
            make_line("Lighting fixtures", confidence_score=0.95),
            make_line("Panel board", confidence_score=0.7),
            make_line("Misc devices", confidence_score=0.3),
            make_line("Allowance", confidence_score=1.7),
        ]}})

        items = await extract_items_for_document(
            db_session, document, project.trade_type, crew, ConfidenceThresholds(low=0.6, medium=0.8)
        )

        assert [i.review_tier for i in items] == ["high", "medium", "low", "high"]
        assert [i.needs_review for i in items] == [False, True, True, False]
        assert items[3].confidence_score == 1.0

    @pytest.mark.asyncio
    async def test_calibrated_thresholds_are_used(self, db_session, project, add_document, fake_crew, make_line):
        db_session.add(TradeConfidenceThreshold(trade_type="Electrical", low_threshold=0.75, medium_threshold=0.95))
        await db_session.commit()
        document = await add_document(project, "Acme Electric", raw_text="ACME BID")
        crew = fake_crew(extractions={"ACME BID": {"items": [make_line("Lighting fixtures", confidence_score=0.9)]}})

        await analyze_project(db_session, project.id, crew)

        [item] = await items_of(db_session, document)
        assert item.review_tier == "medium"

    @pytest.mark.asyncio
    async def test_document_without_text(self, db_session, project, add_document, fake_crew):
        document = await add_document(project, "Acme Electric")
        with pytest.raises(ExtractionFailed):
            await extract_items_for_document(
                db_session, document, project.trade_type, fake_crew(), ConfidenceThresholds(low=0.6, medium=0.8)
            )


@pytest.mark.asyncio
async def test_documents_listed_in_upload_order(db_session, project, add_document):
    from services.text_extraction import list_project_documents

    names = ["Acme Electric", "Bolt Electrical", "Current Co"]
    for name in names:
        await add_document(project, name, raw_text=name)

    documents = await list_project_documents(db_session, project.id)
    assert [d.contractor_name for d in documents] == names
    assert all(isinstance(d, BidDocument) for d in documents)


class TestPipelineMetrics:
    """Each run leaves one anonymized metrics row."""

    @staticmethod
    async def metric_rows(db):
        return list((await db.execute(select(AIPipelineMetric))).scalars().all())

    @pytest.mark.asyncio
    async def test_successful_run(self, db_session, project, add_document, fake_crew, make_line):
        await add_document(project, "Acme Electric", raw_text="ACME BID")
        await add_document(project, "Bolt Electrical", raw_text="BOLT BID")
        crew = fake_crew(extractions={
            "ACME BID": {"items": [
                make_line("Lighting fixtures", total_price=18000.0, confidence_score=0.95),
                make_line("Temporary power", total_price=900.0, confidence_score=0.4),
            ]},
            "BOLT BID": {"items": [make_line("Lighting fixtures", total_price=17500.0, confidence_score=0.7)]},
        })

        await analyze_project(db_session, project.id, crew)

        [row] = await self.metric_rows(db_session)
        assert row.trade_type == "Electrical"
        assert row.document_type == "pdf"
        assert row.document_count == 2
        assert row.extraction_success is True
        assert row.extraction_items_count == 3
        assert row.min_confidence_score == pytest.approx(0.4)
        assert row.max_confidence_score == pytest.approx(0.95)
        assert row.avg_confidence_score == pytest.approx(0.6833, abs=1e-4)
        assert row.low_confidence_items_count == 1
        assert row.items_needing_review_count == 2
        assert row.normalization_success is True
        assert row.normalization_match_rate == pytest.approx(0.5)
        assert row.normalization_scope_gaps_count == 1
        assert row.recommendation_success is True
        assert row.recommendation_confidence == "medium"
        assert row.error_code is None
        assert not hasattr(row, "project_id")

    @pytest.mark.asyncio
    async def test_failed_run_records_error_code(self, db_session, project, add_document, fake_crew, make_line):
        await add_document(project, "Acme Electric", raw_text="ACME BID")
        crew = fake_crew(extractions={"ACME BID": RuntimeError("Rate limit exceeded, retry after 20s")})

        outcome = await analyze_project(db_session, project.id, crew)

        assert outcome["status"] == ProjectStatus.ERROR.value
        [row] = await self.metric_rows(db_session)
        assert row.extraction_success is False
        assert row.failed_stage == "extraction"
        assert row.error_code == "RATE_LIMIT"
        assert row.recommendation_success is None

    @pytest.mark.asyncio
    async def test_metrics_write_failure_keeps_result(
        self, db_session, project, add_document, fake_crew, make_line, monkeypatch
    ):
        def broken_metric(**values):
            raise RuntimeError("metrics table unavailable")

        monkeypatch.setattr("services.metrics.AIPipelineMetric", broken_metric)
        await add_document(project, "Acme Electric", raw_text="ACME BID")
        crew = fake_crew(extractions={"ACME BID": {"items": [make_line("Lighting fixtures", total_price=18000.0)]}})

        outcome = await analyze_project(db_session, project.id, crew)

        assert outcome["status"] == ProjectStatus.COMPLETE.value
        await db_session.refresh(project)
        assert project.status == ProjectStatus.COMPLETE.value
        assert await self.metric_rows(db_session) == []
