"""
Breakdown Service

AI-suggested scope breakdowns (cached per project), breakdown selection
and the user's reusable breakdown templates.
"""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User, Project, BidDocument, BreakdownOption, BreakdownTemplate
from schemas.breakdown import (
    BreakdownNode,
    BreakdownStructure,
    BreakdownOptionResult,
    BreakdownGenerationResult,
    BreakdownSelectRequest,
    TemplateCreateRequest,
)
from schemas.project import BreakdownType, DocumentStatus
from services.access import as_uuid, get_owned_project
from services.exceptions import LLMError, NotFound, ValidationError, ConflictError
from services.item_extractor import call_llm

logger = logging.getLogger("bidvet.services.breakdown")

MAX_SAMPLE_CHARS = 2000

DEFAULT_CATEGORIES = [
    ("labor", "Labor"),
    ("materials", "Materials"),
    ("equipment", "Equipment"),
    ("general", "General Conditions"),
    ("other", "Other"),
]


def parse_structure(data) -> BreakdownStructure:
    """Validate a user-supplied structure; failures surface as ValidationError."""
    if not isinstance(data, dict) or not isinstance(data.get("nodes"), list):
        raise ValidationError("Invalid breakdown structure: nodes array required")
    try:
        return BreakdownStructure.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid breakdown structure: {e.errors()[0]['msg']}") from e


def default_breakdown(trade_type: str) -> BreakdownGenerationResult:
    """Cost-category breakdown used when the AI suggestion is unavailable."""
    structure = BreakdownStructure(
        type=BreakdownType.BY_MATERIAL,
        nodes=[BreakdownNode(id=node_id, name=name) for node_id, name in DEFAULT_CATEGORIES],
    )
    return BreakdownGenerationResult(
        options=[
            BreakdownOptionResult(
                type=BreakdownType.BY_MATERIAL,
                structure=structure,
                confidence=0.5,
                explanation=f"Default breakdown by cost category for {trade_type}. AI analysis was not available.",
                is_recommended=True,
            )
        ],
        analysis_notes="Using default breakdown structure. AI-powered analysis was not available.",
    )


def _option_out(option: BreakdownOption) -> dict:
    return {
        "id": str(option.id),
        "type": option.breakdown_type,
        "structure": option.breakdown_structure,
        "confidence": option.confidence_score,
        "explanation": option.explanation,
        "is_recommended": option.is_recommended,
    }


def template_out(template: BreakdownTemplate) -> dict:
    return {
        "id": str(template.id),
        "trade_type": template.trade_type,
        "name": template.name,
        "description": template.description,
        "breakdown_structure": template.breakdown_structure,
        "use_count": template.use_count,
        "created_at": template.created_at,
    }


# ============================================================================
# AI OPTIONS
# ============================================================================

async def _cached_options(db: AsyncSession, project: Project) -> list[BreakdownOption]:
    result = await db.execute(
        select(BreakdownOption)
        .where(BreakdownOption.project_id == project.id)
        .order_by(BreakdownOption.option_index)
    )
    return list(result.scalars().all())


async def generate_breakdown_options(db: AsyncSession, project_id, user: User, llm) -> dict:
    """
    Suggested breakdown structures for a project.

    Options are cached; call clear_breakdown_options() to regenerate.
    An AI failure falls back to the default cost-category breakdown.

    Returns:
        Dict with options, analysis_notes, cached

    Raises:
        ValidationError: No processed documents with text
    """
    project = await get_owned_project(db, project_id, user)

    cached = await _cached_options(db, project)
    if cached:
        return {"options": [_option_out(o) for o in cached], "analysis_notes": None, "cached": True}

    documents = (await db.execute(
        select(BidDocument)
        .where(
            BidDocument.project_id == project.id,
            BidDocument.upload_status == DocumentStatus.PROCESSED.value,
            BidDocument.raw_text.is_not(None)
        )
        .order_by(BidDocument.created_at)
    )).scalars().all()
    documents = [d for d in documents if d.raw_text]
    if not documents:
        raise ValidationError(
            "No processed documents available. Please upload and process bid documents first."
        )

    samples = [
        {"contractor_name": d.contractor_name, "text_sample": d.raw_text[:MAX_SAMPLE_CHARS]}
        for d in documents
    ]
    try:
        data = await call_llm(llm.generate_breakdowns, project.trade_type, samples)
        result = BreakdownGenerationResult.model_validate(data)
    except (LLMError, PydanticValidationError) as e:
        logger.warning(f"Breakdown generation failed for project {project.id}, using default: {e}")
        result = default_breakdown(project.trade_type)

    options = []
    for index, option in enumerate(result.options):
        row = BreakdownOption(
            project_id=project.id,
            option_index=index,
            breakdown_type=option.type.value,
            breakdown_structure=option.structure.model_dump(mode="json"),
            confidence_score=option.confidence,
            explanation=option.explanation,
            is_recommended=option.is_recommended,
        )
        db.add(row)
        options.append(row)
    await db.commit()

    logger.info(f"Generated {len(options)} breakdown options for project {project.id}")
    return {
        "options": [_option_out(o) for o in options],
        "analysis_notes": result.analysis_notes,
        "cached": False,
    }


async def clear_breakdown_options(db: AsyncSession, project_id, user: User) -> dict:
    """Drop the cached AI options so the next request regenerates them."""
    project = await get_owned_project(db, project_id, user)
    await db.execute(delete(BreakdownOption).where(BreakdownOption.project_id == project.id))
    await db.commit()
    return {"success": True}


# ============================================================================
# SELECTION
# ============================================================================

async def _get_template(db: AsyncSession, template_id, user: User) -> BreakdownTemplate:
    template = await db.get(BreakdownTemplate, as_uuid(template_id, "Template"))
    if template is None or template.user_id != user.id:
        raise NotFound("Template not found")
    return template


async def get_breakdown(db: AsyncSession, project_id, user: User) -> dict:
    """The project's selected breakdown, if any."""
    project = await get_owned_project(db, project_id, user)
    return {
        "type": project.breakdown_type,
        "structure": project.breakdown_structure,
        "source": project.breakdown_source,
        "has_selection": project.breakdown_type is not None,
    }


async def select_breakdown(
    db: AsyncSession,
    project_id,
    user: User,
    request: BreakdownSelectRequest
) -> dict:
    """
    Store a breakdown on the project from a cached option, a template or a custom structure.

    Selecting a template increments its use_count. With save_as_template the
    chosen structure is also saved as a new template (name clashes are logged
    and reported, not raised).

    Raises:
        ValidationError: No selector, or an invalid custom structure
        NotFound: Option or template missing
    """
    project = await get_owned_project(db, project_id, user)
    template: Optional[BreakdownTemplate] = None

    if request.option_id:
        option = await db.get(BreakdownOption, as_uuid(request.option_id, "Breakdown option"))
        if option is None or option.project_id != project.id:
            raise NotFound("Breakdown option not found")
        structure = parse_structure(option.breakdown_structure)
        breakdown_type = option.breakdown_type
        source = request.source
    elif request.template_id:
        template = await _get_template(db, request.template_id, user)
        structure = parse_structure(template.breakdown_structure)
        breakdown_type = structure.type.value
        source = "template"
    elif request.custom_structure is not None:
        structure = parse_structure(request.custom_structure)
        breakdown_type = structure.type.value
        source = request.source if request.source != "ai" else "custom"
    else:
        raise ValidationError("Either option_id, template_id or custom_structure must be provided")

    structure_json = structure.model_dump(mode="json")
    project.breakdown_type = breakdown_type
    project.breakdown_structure = structure_json
    project.breakdown_source = source
    if template is not None:
        template.use_count = (template.use_count or 0) + 1
    await db.commit()

    template_saved = False
    if request.save_as_template and request.template_name:
        try:
            await create_template(db, user, TemplateCreateRequest(
                trade_type=project.trade_type,
                name=request.template_name,
                breakdown_structure=structure_json,
            ), use_count=1)
            template_saved = True
        except ConflictError as e:
            logger.warning(f"Breakdown template not saved for project {project.id}: {e.message}")

    logger.info(f"Breakdown selected for project {project.id}: {breakdown_type} ({source})")
    return {
        "success": True,
        "breakdown": {"type": breakdown_type, "structure": structure_json, "source": source},
        "template_saved": template_saved,
    }


# ============================================================================
# TEMPLATES
# ============================================================================

async def list_templates(db: AsyncSession, user: User, trade_type: Optional[str] = None) -> list[dict]:
    """User's templates, most used first."""
    query = (
        select(BreakdownTemplate)
        .where(BreakdownTemplate.user_id == user.id)
        .order_by(BreakdownTemplate.use_count.desc(), BreakdownTemplate.created_at.desc())
    )
    if trade_type:
        query = query.where(BreakdownTemplate.trade_type == trade_type)
    result = await db.execute(query)
    return [template_out(t) for t in result.scalars().all()]


async def create_template(
    db: AsyncSession,
    user: User,
    request: TemplateCreateRequest,
    use_count: int = 0
) -> dict:
    """
    Save a reusable breakdown.

    Raises:
        ValidationError: Structure without nodes or with duplicate node ids
        ConflictError: Name already used for this trade
    """
    structure = parse_structure(request.breakdown_structure)

    existing = (await db.execute(
        select(BreakdownTemplate.id).where(
            BreakdownTemplate.user_id == user.id,
            BreakdownTemplate.trade_type == request.trade_type,
            BreakdownTemplate.name == request.name
        )
    )).first()
    if existing is not None:
        raise ConflictError("A template with this name already exists for this trade type")

    template = BreakdownTemplate(
        user_id=user.id,
        trade_type=request.trade_type,
        name=request.name,
        description=request.description,
        breakdown_structure=structure.model_dump(mode="json"),
        use_count=use_count,
    )
    db.add(template)
    await db.commit()
    logger.info(f"Created breakdown template '{template.name}' ({template.trade_type})")
    return template_out(template)


async def delete_template(db: AsyncSession, template_id, user: User) -> dict:
    """Delete one of the user's templates."""
    template = await _get_template(db, template_id, user)
    await db.delete(template)
    await db.commit()
    return {"success": True}
