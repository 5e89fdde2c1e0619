"""
Access Control

Row-level ownership checks for projects, documents and items.
"""

import uuid
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    User, Project, BidDocument, ExtractedItem, OrganizationMember
)
from schemas.project import ProjectStatus
from services.exceptions import NotFound, Forbidden, ConflictError


def as_uuid(value: Union[str, uuid.UUID], label: str = "id") -> uuid.UUID:
    """Parse an id, treating malformed values as missing rows."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise NotFound(f"{label} not found")


async def can_access_project(db: AsyncSession, project: Project, user: User) -> bool:
    """Owner, or a member of the project's organization."""
    if project.user_id == user.id:
        return True
    if project.organization_id is None:
        return False
    result = await db.execute(
        select(OrganizationMember.id).where(
            OrganizationMember.organization_id == project.organization_id,
            OrganizationMember.user_id == user.id
        )
    )
    return result.first() is not None


async def get_owned_project(db: AsyncSession, project_id, user: User) -> Project:
    """
    Load a project the user may read and write.

    Raises:
        NotFound: No such project
        Forbidden: Project belongs to someone else
    """
    project = await db.get(Project, as_uuid(project_id, "Project"))
    if project is None:
        raise NotFound("Project not found")
    if not await can_access_project(db, project, user):
        raise Forbidden("Not authorized to access this project")
    return project


async def get_owned_item(
    db: AsyncSession,
    item_id,
    user: User
) -> tuple[ExtractedItem, BidDocument, Project]:
    """Load an item along with its document and project, enforcing ownership."""
    item = await db.get(ExtractedItem, as_uuid(item_id, "Item"))
    if item is None:
        raise NotFound("Item not found")

    document = await db.get(BidDocument, item.bid_document_id)
    project = await db.get(Project, document.project_id) if document else None
    if project is None:
        raise NotFound("Item not found")
    if not await can_access_project(db, project, user):
        raise Forbidden("Not authorized to modify this item")
    return item, document, project


def ensure_not_processing(project: Project, action: str = "modify"):
    """Refuse mutations while an analysis run owns the project."""
    if project.status == ProjectStatus.PROCESSING.value:
        raise ConflictError(f"Cannot {action} while analysis is in progress")
