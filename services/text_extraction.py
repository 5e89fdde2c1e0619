"""
Text Extraction Service

Pulls raw text out of a project's bid documents, one document at a time.
A failing document is marked as errored and its siblings carry on.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User, BidDocument
from schemas.project import DocumentStatus
from services.access import get_owned_project
from services.document_processor import extract_document_text
from services.exceptions import NotFound, BidVetError
from services.storage import DocumentStore, get_store

logger = logging.getLogger("bidvet.services.text_extraction")


async def list_project_documents(db: AsyncSession, project_id) -> list[BidDocument]:
    """Documents of a project in upload order."""
    result = await db.execute(
        select(BidDocument)
        .where(BidDocument.project_id == project_id)
        .order_by(BidDocument.created_at, BidDocument.id)
    )
    return list(result.scalars().all())


async def extract_document(
    db: AsyncSession,
    document: BidDocument,
    store: Optional[DocumentStore] = None
) -> dict:
    """
    Extract and persist one document's text.

    Documents that already have text are skipped. Failures are recorded on
    the document (status error, message) and reported, never raised.

    Returns:
        Per-document result: document_id, file_name, status, char_count or error
    """
    if document.raw_text:
        return {
            "document_id": str(document.id),
            "file_name": document.file_name,
            "status": "skipped",
            "char_count": len(document.raw_text),
        }

    store = store or get_store()
    try:
        content = await store.get_file(document.file_ref)
        extracted = extract_document_text(content, document.file_name, document.file_type)
    except Exception as e:
        message = e.message if isinstance(e, BidVetError) else str(e) or "Unknown error"
        if not isinstance(e, BidVetError):
            logger.exception(f"Unexpected error extracting {document.file_name}")
        else:
            logger.warning(f"Text extraction failed for {document.file_name}: {message}")

        document.upload_status = DocumentStatus.ERROR.value
        document.error_message = message
        await db.commit()
        return {
            "document_id": str(document.id),
            "file_name": document.file_name,
            "status": "error",
            "error": message,
        }

    document.raw_text = extracted.text
    document.text_positions = extracted.positions()
    document.upload_status = DocumentStatus.PROCESSED.value
    document.error_message = None
    await db.commit()

    for warning in extracted.warnings:
        logger.info(f"{document.file_name}: {warning}")

    return {
        "document_id": str(document.id),
        "file_name": document.file_name,
        "status": "success",
        "char_count": len(extracted.text),
    }


async def extract_project_text(
    db: AsyncSession,
    project_id,
    user: User,
    store: Optional[DocumentStore] = None
) -> dict:
    """
    Extract text from every document in a project, sequentially.

    Args:
        db: Database session
        project_id: Project to process
        user: Requesting user (must own the project)
        store: Document store (defaults to the module store)

    Returns:
        Dict with project_id, total_documents, processed, skipped, errors, results

    Raises:
        NotFound: Project missing or without documents
        Forbidden: Project belongs to someone else
    """
    project = await get_owned_project(db, project_id, user)
    documents = await list_project_documents(db, project.id)
    if not documents:
        raise NotFound("No documents found for this project")

    results = []
    for document in documents:
        results.append(await extract_document(db, document, store))

    summary = {
        "project_id": str(project.id),
        "total_documents": len(documents),
        "processed": sum(1 for r in results if r["status"] == "success"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
        "errors": sum(1 for r in results if r["status"] == "error"),
        "results": results,
    }
    logger.info(
        f"Extracted text for project {project.id}: "
        f"{summary['processed']} processed, {summary['skipped']} skipped, {summary['errors']} errors"
    )
    return summary
