"""Integration tests for services.edit_ledger - item edits, reverts and history."""

import json

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from config.settings import settings
from database.models import ItemEditHistory, TrainingContribution
from schemas.project import ProjectStatus
from services.edit_ledger import edit_item, revert_item, get_item_history, values_equal
from services.exceptions import NotFound, Forbidden, ValidationError, ConflictError


@pytest_asyncio.fixture()
async def item(project, add_document, add_item):
    document = await add_document(project, "Acme Electric", raw_text="ACME BID")
    return await add_item(
        document,
        "Lighting fixtures",
        quantity=120.0,
        unit="EA",
        unit_price=150.0,
        total_price=18000.0,
        confidence_score=0.72,
        needs_review=True,
        review_tier="medium",
    )


async def history_rows(db, item):
    result = await db.execute(
        select(ItemEditHistory).where(ItemEditHistory.item_id == item.id)
    )
    return list(result.scalars().all())


def test_values_equal():
    assert values_equal(2, 2.0)
    assert values_equal(None, None)
    assert not values_equal(True, 1)
    assert not values_equal(0, None)
    assert values_equal("EA", "EA")


class TestEditItem:

    @pytest.mark.asyncio
    async def test_history_failure_keeps_the_edit(self, db_session, user, item, monkeypatch):
        def broken_history(**values):
            raise RuntimeError("history table unavailable")

        monkeypatch.setattr("services.edit_ledger.ItemEditHistory", broken_history)

        outcome = await edit_item(db_session, item.id, user, {"unit_price": 3})

        assert outcome["changed"] is True
        await db_session.refresh(item)
        assert item.unit_price == 3.0
        assert item.user_modified is True
        assert await history_rows(db_session, item) == []

    @pytest.mark.asyncio
    async def test_unchanged_values_write_nothing(self, db_session, user, item):
        outcome = await edit_item(db_session, item.id, user, {"quantity": 120, "unit": "EA"})

        assert outcome["changed"] is False
        assert outcome["batch_id"] is None
        assert await history_rows(db_session, item) == []
        assert item.user_modified is False

    @pytest.mark.asyncio
    async def test_one_history_row_per_changed_field(self, db_session, user, item):
        outcome = await edit_item(
            db_session, item.id, user,
            {"unit_price": 160, "total_price": 19200, "unit": "EA"},
            reason="Revised quote",
        )

        assert outcome["changed_fields"] == ["unit_price", "total_price"]
        assert item.unit_price == 160.0
        assert item.total_price == 19200.0
        assert item.user_modified is True

        rows = await history_rows(db_session, item)
        assert len(rows) == 2
        assert {str(r.batch_id) for r in rows} == {outcome["batch_id"]}
        by_field = {r.field_name: r for r in rows}
        assert by_field["unit_price"].old_value == 150.0
        assert by_field["unit_price"].new_value == 160.0
        assert by_field["total_price"].change_reason == "Revised quote"
        assert by_field["total_price"].user_id == user.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [
        {"confidence_score": 1.0},
        {"description": "   "},
        {"is_exclusion": "yes"},
        {"quantity": "lots"},
    ])
    async def test_invalid_edits(self, db_session, user, item, fields):
        with pytest.raises(ValidationError):
            await edit_item(db_session, item.id, user, fields)
        assert await history_rows(db_session, item) == []

    @pytest.mark.asyncio
    async def test_other_user(self, db_session, other_user, item):
        with pytest.raises(Forbidden):
            await edit_item(db_session, item.id, other_user, {"quantity": 100})

    @pytest.mark.asyncio
    async def test_missing_item(self, db_session, user):
        with pytest.raises(NotFound):
            await edit_item(db_session, "not-a-uuid", user, {"quantity": 100})

    @pytest.mark.asyncio
    async def test_refused_while_processing(self, db_session, user, project, item):
        project.status = ProjectStatus.PROCESSING.value
        await db_session.commit()

        with pytest.raises(ConflictError):
            await edit_item(db_session, item.id, user, {"quantity": 100})


class TestTrainingContributions:

    @pytest.mark.asyncio
    async def test_opted_in_edit_is_anonymized(self, db_session, user, item):
        user.training_data_opt_in = True
        await db_session.commit()

        await edit_item(db_session, item.id, user, {
            "description": "Smith Electric lighting fixtures",
            "total_price": 19200,
        })

        rows = (await db_session.execute(select(TrainingContribution))).scalars().all()
        by_type = {r.correction_type: r for r in rows}
        assert set(by_type) == {"description", "price"}
        assert all(r.moderation_status == "pending" for r in rows)
        assert all(r.trade_type == "Electrical" and r.document_type == "pdf" for r in rows)
        assert by_type["price"].confidence_score_original == pytest.approx(0.72)
        assert by_type["price"].was_marked_needs_review is True
        assert json.loads(by_type["price"].original_value) == {"total_price": "10K-25K"}
        assert "Smith" not in by_type["description"].corrected_value

    @pytest.mark.asyncio
    async def test_auto_approve(self, db_session, user, item, monkeypatch):
        monkeypatch.setattr(settings, "training_auto_approve", True)
        user.training_data_opt_in = True
        await db_session.commit()

        await edit_item(db_session, item.id, user, {"is_exclusion": True})

        row = (await db_session.execute(select(TrainingContribution))).scalar_one()
        assert row.correction_type == "exclusion_flag"
        assert row.moderation_status == "approved"

    @pytest.mark.asyncio
    async def test_not_opted_in(self, db_session, user, item):
        await edit_item(db_session, item.id, user, {"total_price": 19200})

        count = (await db_session.execute(select(func.count(TrainingContribution.id)))).scalar_one()
        assert count == 0


class TestRevert:

    @pytest.mark.asyncio
    async def test_revert_batch_restores_and_logs_new_batch(self, db_session, user, item):
        edit = await edit_item(db_session, item.id, user, {"unit_price": 160, "total_price": 19200})

        outcome = await revert_item(db_session, item.id, user, batch_id=edit["batch_id"])

        assert set(outcome["reverted_fields"]) == {"unit_price", "total_price"}
        assert item.unit_price == 150.0
        assert item.total_price == 18000.0

        rows = await history_rows(db_session, item)
        assert len(rows) == 4
        revert_rows = [r for r in rows if str(r.batch_id) == outcome["revert_batch_id"]]
        assert {(r.field_name, r.old_value, r.new_value) for r in revert_rows} == {
            ("unit_price", 160.0, 150.0),
            ("total_price", 19200.0, 18000.0),
        }

    @pytest.mark.asyncio
    async def test_revert_of_revert(self, db_session, user, item):
        edit = await edit_item(db_session, item.id, user, {"quantity": 100})
        revert = await revert_item(db_session, item.id, user, batch_id=edit["batch_id"])

        await revert_item(db_session, item.id, user, batch_id=revert["revert_batch_id"])

        assert item.quantity == 100.0

    @pytest.mark.asyncio
    async def test_revert_field_undoes_latest_change_only(self, db_session, user, item):
        await edit_item(db_session, item.id, user, {"quantity": 100, "unit": "LOT"})
        await edit_item(db_session, item.id, user, {"quantity": 110})

        outcome = await revert_item(db_session, item.id, user, field_name="quantity")

        assert outcome["reverted_fields"] == ["quantity"]
        assert item.quantity == 100.0
        assert item.unit == "LOT"

    @pytest.mark.asyncio
    async def test_nothing_to_revert(self, db_session, user, item):
        with pytest.raises(NotFound):
            await revert_item(db_session, item.id, user, field_name="quantity")
        with pytest.raises(NotFound):
            await revert_item(db_session, item.id, user, batch_id="6f1c1d7e-8d2b-4bb5-9a35-3c0d3f1ad9a1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("selectors", [
        {},
        {"batch_id": "6f1c1d7e-8d2b-4bb5-9a35-3c0d3f1ad9a1", "field_name": "quantity"},
        {"field_name": "confidence_score"},
    ])
    async def test_selector_validation(self, db_session, user, item, selectors):
        with pytest.raises(ValidationError):
            await revert_item(db_session, item.id, user, **selectors)


class TestHistory:

    @pytest.mark.asyncio
    async def test_grouped_by_batch_newest_first(self, db_session, user, item):
        first = await edit_item(db_session, item.id, user, {"quantity": 100, "unit": "LOT"}, reason="Takeoff")
        second = await edit_item(db_session, item.id, user, {"total_price": 17000})

        page = await get_item_history(db_session, item.id, user)

        assert page.total == 3
        assert [b.batch_id for b in page.batches] == [second["batch_id"], first["batch_id"]]
        assert {c.field_name for c in page.batches[1].changes} == {"quantity", "unit"}
        assert page.batches[1].change_reason == "Takeoff"

    @pytest.mark.asyncio
    async def test_paging(self, db_session, user, item):
        await edit_item(db_session, item.id, user, {"quantity": 100, "unit": "LOT"})
        await edit_item(db_session, item.id, user, {"total_price": 17000})

        page = await get_item_history(db_session, item.id, user, limit=1, offset=1)

        assert page.total == 3
        assert page.limit == 1
        assert len(page.batches) == 1
        assert len(page.batches[0].changes) == 1

    @pytest.mark.asyncio
    async def test_other_user(self, db_session, other_user, item):
        with pytest.raises(Forbidden):
            await get_item_history(db_session, item.id, other_user)
