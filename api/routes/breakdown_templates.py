"""
Breakdown Templates Router (v1)

Saved breakdown structures, reusable across projects of the same trade.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from database.models import User
from api.auth.dependencies import get_current_user
from schemas.breakdown import TemplateCreateRequest
from services.breakdown import list_templates, create_template, delete_template

router = APIRouter(prefix="/breakdown-templates", tags=["Breakdown Templates"])


@router.get("")
async def get_templates(
    trade_type: Optional[str] = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the user's templates, most used first."""
    return {"templates": await list_templates(db, current_user, trade_type)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_template(
    body: TemplateCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Save a template. 409 when the name is taken for that trade."""
    return await create_template(db, current_user, body)


@router.delete("/{template_id}")
async def remove_template(
    template_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await delete_template(db, template_id, current_user)
