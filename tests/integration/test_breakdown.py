"""Integration tests for services.breakdown - AI options, selection and templates."""

import pytest
from sqlalchemy import select

from database.models import BreakdownTemplate
from schemas.breakdown import BreakdownSelectRequest, TemplateCreateRequest
from services.breakdown import (
    generate_breakdown_options,
    clear_breakdown_options,
    get_breakdown,
    select_breakdown,
    list_templates,
    create_template,
    delete_template,
)
from services.exceptions import ValidationError, ConflictError, NotFound

FLOORS = {
    "type": "by_floor",
    "nodes": [
        {"id": "l1", "name": "Level 1"},
        {"id": "l2", "name": "Level 2", "children": [{"id": "l2-core", "name": "Core"}]},
    ],
}

SCRIPTED = {
    "options": [
        {
            "type": "by_floor",
            "structure": FLOORS,
            "confidence": 0.82,
            "explanation": "Bids price each level separately",
            "is_recommended": True,
        },
        {
            "type": "by_system",
            "structure": {"type": "by_system", "nodes": [
                {"id": "lighting", "name": "Lighting"},
                {"id": "power", "name": "Power Distribution"},
            ]},
            "confidence": 0.6,
        },
    ],
    "analysis_notes": "Two of three bids break out floors",
}


class TestGenerateOptions:

    @pytest.mark.asyncio
    async def test_scripted_options_are_cached(self, db_session, project, user, add_document, fake_crew):
        await add_document(project, "Acme Electric", raw_text="Level 1 lighting ... Level 2 power")
        crew = fake_crew(breakdowns=SCRIPTED)

        first = await generate_breakdown_options(db_session, project.id, user, crew)
        second = await generate_breakdown_options(db_session, project.id, user, crew)

        assert first["cached"] is False
        assert [o["type"] for o in first["options"]] == ["by_floor", "by_system"]
        assert first["options"][0]["is_recommended"] is True
        assert first["analysis_notes"] == "Two of three bids break out floors"
        assert second["cached"] is True
        assert [o["id"] for o in second["options"]] == [o["id"] for o in first["options"]]
        assert sum(1 for call in crew.calls if call[0] == "generate_breakdowns") == 1

    @pytest.mark.asyncio
    async def test_samples_are_truncated(self, db_session, project, user, add_document, fake_crew):
        await add_document(project, "Acme Electric", raw_text="x" * 5000)
        crew = fake_crew(breakdowns=SCRIPTED)

        await generate_breakdown_options(db_session, project.id, user, crew)

        [(_, samples)] = crew.calls
        assert samples == [{"contractor_name": "Acme Electric", "text_sample": "x" * 2000}]

    @pytest.mark.asyncio
    async def test_llm_failure_uses_default_breakdown(self, db_session, project, user, add_document, fake_crew):
        await add_document(project, "Acme Electric", raw_text="ACME BID")

        result = await generate_breakdown_options(db_session, project.id, user, fake_crew())

        [option] = result["options"]
        assert option["type"] == "by_material"
        assert option["confidence"] == 0.5
        assert [n["id"] for n in option["structure"]["nodes"]] == [
            "labor", "materials", "equipment", "general", "other"
        ]

    @pytest.mark.asyncio
    async def test_regenerate_after_clear(self, db_session, project, user, add_document, fake_crew):
        await add_document(project, "Acme Electric", raw_text="ACME BID")
        await generate_breakdown_options(db_session, project.id, user, fake_crew())

        await clear_breakdown_options(db_session, project.id, user)
        result = await generate_breakdown_options(db_session, project.id, user, fake_crew(breakdowns=SCRIPTED))

        assert result["cached"] is False
        assert len(result["options"]) == 2

    @pytest.mark.asyncio
    async def test_requires_processed_documents(self, db_session, project, user, add_document, fake_crew):
        await add_document(project, "Acme Electric")

        with pytest.raises(ValidationError):
            await generate_breakdown_options(db_session, project.id, user, fake_crew(breakdowns=SCRIPTED))


class TestSelect:

    @pytest.mark.asyncio
    async def test_select_option(self, db_session, project, user, add_document, fake_crew):
        await add_document(project, "Acme Electric", raw_text="ACME BID")
        options = (await generate_breakdown_options(
            db_session, project.id, user, fake_crew(breakdowns=SCRIPTED)
        ))["options"]

        result = await select_breakdown(db_session, project.id, user, BreakdownSelectRequest(
            option_id=options[1]["id"]
        ))

        assert result["breakdown"]["type"] == "by_system"
        selection = await get_breakdown(db_session, project.id, user)
        assert selection["has_selection"] is True
        assert selection["source"] == "ai"
        assert [n["name"] for n in selection["structure"]["nodes"]] == ["Lighting", "Power Distribution"]

    @pytest.mark.asyncio
    async def test_custom_structure_saved_as_template(self, db_session, project, user):
        result = await select_breakdown(db_session, project.id, user, BreakdownSelectRequest(
            custom_structure=FLOORS,
            save_as_template=True,
            template_name="Per floor",
        ))

        assert result["template_saved"] is True
        assert result["breakdown"]["source"] == "custom"
        [template] = await list_templates(db_session, user)
        assert template["name"] == "Per floor"
        assert template["use_count"] == 1

    @pytest.mark.asyncio
    async def test_template_name_clash_is_reported(self, db_session, project, user):
        await create_template(db_session, user, TemplateCreateRequest(
            trade_type="Electrical", name="Per floor", breakdown_structure=FLOORS
        ))

        result = await select_breakdown(db_session, project.id, user, BreakdownSelectRequest(
            custom_structure=FLOORS,
            save_as_template=True,
            template_name="Per floor",
        ))

        assert result["success"] is True
        assert result["template_saved"] is False

    @pytest.mark.asyncio
    async def test_select_template_counts_use(self, db_session, project, user):
        template = await create_template(db_session, user, TemplateCreateRequest(
            trade_type="Electrical", name="Per floor", breakdown_structure=FLOORS
        ))

        result = await select_breakdown(db_session, project.id, user, BreakdownSelectRequest(
            template_id=template["id"]
        ))

        assert result["breakdown"]["source"] == "template"
        assert result["breakdown"]["type"] == "by_floor"
        row = (await db_session.execute(select(BreakdownTemplate))).scalar_one()
        assert row.use_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_body", [
        BreakdownSelectRequest(),
        BreakdownSelectRequest(custom_structure={"nodes": []}),
        BreakdownSelectRequest(custom_structure={"nodes": [{"id": "a", "name": "A"}, {"id": "a", "name": "B"}]}),
    ])
    async def test_invalid_selection(self, db_session, project, user, request_body):
        with pytest.raises(ValidationError):
            await select_breakdown(db_session, project.id, user, request_body)

    @pytest.mark.asyncio
    async def test_unknown_option(self, db_session, project, user):
        with pytest.raises(NotFound):
            await select_breakdown(db_session, project.id, user, BreakdownSelectRequest(
                option_id="6f1c1d7e-8d2b-4bb5-9a35-3c0d3f1ad9a1"
            ))


class TestTemplates:

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, db_session, user):
        request = TemplateCreateRequest(trade_type="Electrical", name="Per floor", breakdown_structure=FLOORS)
        await create_template(db_session, user, request)

        with pytest.raises(ConflictError):
            await create_template(db_session, user, request)

    @pytest.mark.asyncio
    async def test_list_filters_and_orders_by_use(self, db_session, user, other_user):
        await create_template(db_session, user, TemplateCreateRequest(
            trade_type="Electrical", name="Rarely used", breakdown_structure=FLOORS
        ))
        await create_template(db_session, user, TemplateCreateRequest(
            trade_type="Electrical", name="Favourite", breakdown_structure=FLOORS
        ), use_count=4)
        await create_template(db_session, user, TemplateCreateRequest(
            trade_type="Plumbing", name="Risers", breakdown_structure=FLOORS
        ))
        await create_template(db_session, other_user, TemplateCreateRequest(
            trade_type="Electrical", name="Not mine", breakdown_structure=FLOORS
        ))

        templates = await list_templates(db_session, user, trade_type="Electrical")

        assert [t["name"] for t in templates] == ["Favourite", "Rarely used"]

    @pytest.mark.asyncio
    async def test_delete_only_own_templates(self, db_session, user, other_user):
        template = await create_template(db_session, user, TemplateCreateRequest(
            trade_type="Electrical", name="Per floor", breakdown_structure=FLOORS
        ))

        with pytest.raises(NotFound):
            await delete_template(db_session, template["id"], other_user)
        assert await delete_template(db_session, template["id"], user) == {"success": True}
        assert await list_templates(db_session, user) == []
