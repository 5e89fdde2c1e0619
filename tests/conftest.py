"""Pytest configuration and fixtures for BidVet tests.

Provides an in-memory async database, row factories and a scripted stand-in
for the LLM crew.
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.models import Base, User, Project, BidDocument, ExtractedItem
from schemas.project import ProjectStatus, DocumentStatus


class FakeCrew:
    """
    Scripted LLM collaborator with the same call surface as BidCrew.

    extractions maps a document's raw text to the dict the agent would
    return, or to an exception it should raise.
    """

    def __init__(self, extractions=None, recommendation=None, normalization=None, breakdowns=None):
        self.extractions = extractions or {}
        self.recommendation = recommendation
        self.normalization = normalization
        self.breakdowns = breakdowns
        self.calls = []

    @staticmethod
    def _outcome(value):
        if isinstance(value, Exception):
            raise value
        return value

    def extract_items(self, trade_type, raw_text):
        self.calls.append(("extract_items", raw_text))
        return self._outcome(self.extractions[raw_text])

    def normalize(self, trade_type, contractors):
        self.calls.append(("normalize", contractors))
        if self.normalization is None:
            raise RuntimeError("normalization not scripted")
        return self._outcome(self.normalization)

    def recommend(self, trade_type, summary):
        self.calls.append(("recommend", summary))
        if self.recommendation is None:
            first = summary["contractors"][0]
            return {
                "recommended_contractor_id": first["id"],
                "confidence": "medium",
                "reasoning": "Most complete scope",
            }
        return self._outcome(self.recommendation)

    def generate_breakdowns(self, trade_type, samples):
        self.calls.append(("generate_breakdowns", samples))
        if self.breakdowns is None:
            raise RuntimeError("breakdowns not scripted")
        return self._outcome(self.breakdowns)


def line(description, quantity=None, unit=None, unit_price=None, total_price=None, **extra):
    """One line item as the extraction agent returns it."""
    item = {
        "description": description,
        "quantity": quantity,
        "unit": unit,
        "unit_price": unit_price,
        "total_price": total_price,
        "confidence_score": 0.9,
    }
    item.update(extra)
    return item


@pytest.fixture
def fake_crew():
    """FakeCrew class, so tests can script their own responses."""
    return FakeCrew


@pytest.fixture
def make_line():
    return line


@pytest_asyncio.fixture()
async def db_session() -> AsyncSession:
    """Create in-memory database for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def user(db_session: AsyncSession) -> User:
    user = User(email="estimator@example.com", full_name="Test Estimator")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture()
async def other_user(db_session: AsyncSession) -> User:
    user = User(email="someone.else@example.com", full_name="Other Estimator")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture()
async def project(db_session: AsyncSession, user: User) -> Project:
    project = Project(
        user_id=user.id,
        name="Riverside Medical Office",
        trade_type="Electrical",
        status=ProjectStatus.DRAFT.value,
    )
    db_session.add(project)
    await db_session.commit()
    return project


@pytest.fixture
def add_document(db_session: AsyncSession):
    """Factory adding a bid document; upload order follows call order."""
    order = count()
    base = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    async def _add(project, contractor_name, raw_text=None, file_name=None, **fields):
        index = next(order)
        document = BidDocument(
            project_id=project.id,
            contractor_name=contractor_name,
            file_name=file_name or f"{contractor_name.split()[0].lower()}_bid.pdf",
            file_ref=fields.pop("file_ref", f"{project.id}/doc{index}.pdf"),
            file_type=fields.pop("file_type", "application/pdf"),
            raw_text=raw_text,
            upload_status=DocumentStatus.PROCESSED.value if raw_text else DocumentStatus.UPLOADED.value,
            created_at=base + timedelta(minutes=index),
            **fields,
        )
        db_session.add(document)
        await db_session.commit()
        return document

    return _add


@pytest.fixture
def add_item(db_session: AsyncSession):
    """Factory adding an extracted item directly, bypassing the LLM."""
    positions = count()

    async def _add(document, description, **fields):
        fields.setdefault("position", next(positions))
        fields.setdefault("confidence_score", 0.9)
        item = ExtractedItem(bid_document_id=document.id, description=description, **fields)
        db_session.add(item)
        await db_session.commit()
        return item

    return _add


FLOORING_BIDS = [
    ("Acme Flooring", "ACME BID", 2.00),
    ("Bolt Interiors", "BOLT BID", 2.50),
    ("Current Floors", "CURRENT BID", 1.80),
]


@pytest_asyncio.fixture()
async def flooring_bids(db_session: AsyncSession, project: Project, add_document):
    """Three analyzed bids for 500 SF of flooring demolition; returns the documents."""
    from services.analyzer import analyze_project

    documents = []
    extractions = {}
    for name, text, unit_price in FLOORING_BIDS:
        documents.append(await add_document(project, name, raw_text=text))
        extractions[text] = {"items": [line("Demo existing flooring", 500, "SF", unit_price)]}

    outcome = await analyze_project(db_session, project.id, FakeCrew(extractions=extractions))
    assert outcome["status"] == ProjectStatus.COMPLETE.value
    return documents
