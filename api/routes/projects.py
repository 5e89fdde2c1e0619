"""
Projects Router (v1)

Bid comparison projects: documents, text extraction, analysis, leveling,
breakdowns and export.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database.connection import get_db
from database.models import User, Project, BidDocument, ComparisonResult
from api.auth.dependencies import get_current_user, get_crew
from api.middleware.rate_limit import limiter
from schemas.breakdown import BreakdownSelectRequest
from schemas.comparison import LevelingResponse, LevelingUpdateResponse
from schemas.project import ProjectStatus, DocumentStatus, TRADE_TYPES
from services.access import get_owned_project
from services.analyzer import start_analysis
from services.breakdown import (
    generate_breakdown_options,
    clear_breakdown_options,
    get_breakdown,
    select_breakdown
)
from services.document_processor import detect_format
from services.exceptions import NotFound, ValidationError
from services.export import export_comparison_csv
from services.leveling import get_leveling, set_leveling, clear_leveling
from services.storage import get_store
from services.text_extraction import extract_project_text, list_project_documents
from workers.queue import enqueue_analysis_job

logger = logging.getLogger("bidvet.api.projects")

router = APIRouter(prefix="/projects", tags=["Projects"])


# ============================================================================
# Request / Response Models
# ============================================================================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    trade_type: str = Field(..., min_length=1, max_length=100)
    location: Optional[str] = None


class DocumentOut(BaseModel):
    id: str
    contractor_name: str
    file_name: str
    file_type: Optional[str] = None
    file_size: int = 0
    upload_status: str
    error_message: Optional[str] = None
    has_text: bool = False


class ProjectOut(BaseModel):
    id: str
    name: str
    trade_type: str
    location: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    breakdown_type: Optional[str] = None
    documents: List[DocumentOut] = []


class AnalyzeResponse(BaseModel):
    started: bool
    project_id: str
    job_id: Optional[str] = None


def _document_out(document: BidDocument) -> DocumentOut:
    return DocumentOut(
        id=str(document.id),
        contractor_name=document.contractor_name,
        file_name=document.file_name,
        file_type=document.file_type,
        file_size=document.file_size or 0,
        upload_status=document.upload_status,
        error_message=document.error_message,
        has_text=bool(document.raw_text),
    )


def _project_out(project: Project, documents: list[BidDocument]) -> ProjectOut:
    return ProjectOut(
        id=str(project.id),
        name=project.name,
        trade_type=project.trade_type,
        location=project.location,
        status=project.status,
        error_message=project.error_message,
        breakdown_type=project.breakdown_type,
        documents=[_document_out(d) for d in documents],
    )


# ============================================================================
# Projects & Documents
# ============================================================================

@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create an empty comparison project."""
    if body.trade_type not in TRADE_TYPES:
        raise ValidationError(f"Unknown trade type: {body.trade_type}")

    project = Project(
        user_id=current_user.id,
        name=body.name,
        trade_type=body.trade_type,
        location=body.location,
        status=ProjectStatus.DRAFT.value,
    )
    db.add(project)
    await db.commit()
    logger.info(f"Created project {project.id} ({project.trade_type})")
    return _project_out(project, [])


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    project = await get_owned_project(db, project_id, current_user)
    documents = await list_project_documents(db, project.id)
    return _project_out(project, documents)


@router.post("/{project_id}/documents", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def upload_document(
    project_id: str,
    file: UploadFile = File(...),
    contractor_name: str = Form(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload one contractor's bid (PDF, Excel or Word).

    Text is extracted later, by extract-text or by the analysis run.
    """
    project = await get_owned_project(db, project_id, current_user)
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")
    if not contractor_name.strip():
        raise ValidationError("Contractor name is required")

    detect_format(file.filename, file.content_type)
    content = await file.read()
    ref = await get_store().put_file(content, file.filename, str(project.id))

    document = BidDocument(
        project_id=project.id,
        contractor_name=contractor_name.strip(),
        file_name=file.filename,
        file_ref=ref,
        file_type=file.content_type,
        file_size=len(content),
        upload_status=DocumentStatus.UPLOADED.value,
    )
    db.add(document)
    if project.status == ProjectStatus.DRAFT.value:
        project.status = ProjectStatus.UPLOADING.value
    await db.commit()

    logger.info(f"Uploaded {file.filename} ({len(content)} bytes) for project {project.id}")
    return _document_out(document)


# ============================================================================
# Pipeline
# ============================================================================

@router.post("/{project_id}/extract-text")
async def extract_text(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Extract raw text from every document not yet processed."""
    return await extract_project_text(db, project_id, current_user)


@router.post("/{project_id}/analyze", response_model=AnalyzeResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.rate_limit_analyze)
async def analyze(
    request: Request,
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Queue the analysis run. Poll GET /status for the outcome.

    Returns 409 while an analysis is already in progress.
    """
    project = await start_analysis(db, project_id, current_user)
    try:
        job_id = await enqueue_analysis_job(str(project.id))
    except Exception as e:
        logger.error(f"Failed to queue analysis for project {project.id}: {e}")
        project.status = ProjectStatus.ERROR.value
        project.error_message = "Failed to queue analysis"
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis queue unavailable"
        )
    return AnalyzeResponse(started=True, project_id=str(project.id), job_id=job_id)


@router.get("/{project_id}/status", response_model=ProjectOut)
async def get_status(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Project status and per-document status."""
    project = await get_owned_project(db, project_id, current_user)
    documents = await list_project_documents(db, project.id)
    return _project_out(project, documents)


@router.get("/{project_id}/comparison")
async def get_comparison(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The persisted comparison result."""
    project = await get_owned_project(db, project_id, current_user)
    result = (await db.execute(
        select(ComparisonResult).where(ComparisonResult.project_id == project.id)
    )).scalar_one_or_none()
    if result is None:
        raise NotFound("No comparison result for this project")
    return {
        "project_id": str(project.id),
        "status": project.status,
        "total_bids": result.total_bids,
        "price_low": result.price_low,
        "price_high": result.price_high,
        "price_average": result.price_average,
        "total_scope_items": result.total_scope_items,
        "common_items": result.common_items,
        "gap_items": result.gap_items,
        "summary": result.summary_json,
        "recommendation": result.recommendation_json,
        "leveling": result.leveling_json,
        "scope_gaps": result.scope_gaps,
        "generated_at": result.generated_at,
    }


# ============================================================================
# Leveling
# ============================================================================

@router.get("/{project_id}/leveling", response_model=LevelingResponse)
async def read_leveling(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return LevelingResponse(leveling=await get_leveling(db, project_id, current_user))


@router.patch("/{project_id}/leveling", response_model=LevelingUpdateResponse)
async def update_leveling(
    project_id: str,
    body: LevelingResponse,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Replace baselines and recompute leveled prices. Body: {"leveling": {"baselines": [...]}}."""
    if body.leveling is None:
        raise ValidationError("Missing leveling configuration")
    result = await set_leveling(db, project_id, current_user, body.leveling)
    return LevelingUpdateResponse(**result)


@router.delete("/{project_id}/leveling")
async def delete_leveling(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await clear_leveling(db, project_id, current_user)


# ============================================================================
# Breakdown
# ============================================================================

@router.post("/{project_id}/breakdown/generate")
async def generate_breakdown(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    crew=Depends(get_crew)
):
    """AI-suggested breakdown options (cached per project)."""
    return await generate_breakdown_options(db, project_id, current_user, crew)


@router.delete("/{project_id}/breakdown/generate")
async def reset_breakdown_options(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await clear_breakdown_options(db, project_id, current_user)


@router.get("/{project_id}/breakdown/select")
async def read_breakdown(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await get_breakdown(db, project_id, current_user)


@router.post("/{project_id}/breakdown/select")
async def choose_breakdown(
    project_id: str,
    body: BreakdownSelectRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await select_breakdown(db, project_id, current_user, body)


# ============================================================================
# Export
# ============================================================================

@router.get("/{project_id}/export/csv")
async def export_csv(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """CSV report of a completed comparison."""
    filename, content = await export_comparison_csv(db, project_id, current_user)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
