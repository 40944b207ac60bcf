"""
Pytest configuration and shared fixtures for testing.
"""
import sys
from pathlib import Path

# Add project root to path so libs/ is importable (matches CI PYTHONPATH config)
# This must happen before importing from app/ which may import from libs/
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from contextlib import asynccontextmanager  # noqa: E402
from typing import Callable, Generator, List  # noqa: E402

import pytest  # noqa: E402
from fastapi import Depends  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from app.api.v1.cat import get_cat_service  # noqa: E402
from app.core.cat.engine import CATConfig  # noqa: E402
from app.core.cat.item_bank import InMemoryItemBank, Item  # noqa: E402
from app.core.cat.service import CATService  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base, get_db  # noqa: E402
from app.models.models import Item as ItemRecord  # noqa: E402
from libs.domain_types import ItemType, NclexCategory  # noqa: E402

CATEGORIES = [c.value for c in NclexCategory]

# Difficulty grid of the test bank: -4.0 to 4.0 in steps of 0.2
BANK_DIFFICULTIES = [round(-4.0 + 0.2 * k, 1) for k in range(41)]

OPTIONS = (("a", "Option A"), ("b", "Option B"), ("c", "Option C"), ("d", "Option D"))


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests; tables are managed by the db_session fixture."""
    yield


# Neutralize the production lifespan on the singleton app so TestClient does
# not create tables in the configured DATABASE_URL.
app.router.lifespan_context = _test_lifespan


# Use SQLite for tests; the path is relative to this file so the .db lands
# inside tests/ regardless of the working directory.
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_item(
    item_id: int,
    category: str = NclexCategory.MANAGEMENT_OF_CARE.value,
    difficulty: float = 0.0,
    discrimination: float = 1.0,
    guessing: float = 0.0,
    item_type: ItemType = ItemType.SINGLE_SELECT,
    correct_options=("a",),
    exposure_count: int = 0,
) -> Item:
    """Build an engine Item with four options."""
    return Item(
        id=item_id,
        category=category,
        difficulty=difficulty,
        discrimination=discrimination,
        guessing=guessing,
        item_type=item_type,
        options=OPTIONS,
        correct_options=frozenset(correct_options),
        stem=f"Question {item_id}",
        explanation=f"Rationale {item_id}",
        exposure_count=exposure_count,
    )


def build_bank_items(discrimination: float = 1.2) -> List[Item]:
    """Eight categories x 41 difficulties spanning [-4, 4]; answer "a" is correct."""
    items = []
    item_id = 1
    for category in CATEGORIES:
        for b in BANK_DIFFICULTIES:
            items.append(
                make_item(
                    item_id,
                    category=category,
                    difficulty=b,
                    discrimination=discrimination,
                )
            )
            item_id += 1
    return items


def item_record(item: Item) -> ItemRecord:
    return ItemRecord(
        id=item.id,
        category=NclexCategory(item.category),
        item_type=item.item_type,
        stem=item.stem,
        options=[{"id": oid, "text": text} for oid, text in item.options],
        correct_options=sorted(item.correct_options),
        explanation=item.explanation,
        difficulty=item.difficulty,
        discrimination=item.discrimination,
        guessing=item.guessing,
        exposure_count=item.exposure_count,
        is_active=True,
    )


@pytest.fixture
def item_factory() -> Callable[..., Item]:
    """Factory for engine Items (see ``make_item``)."""
    return make_item


@pytest.fixture
def bank_items() -> List[Item]:
    """A 328-item calibrated bank covering every category and difficulty."""
    return build_bank_items()


@pytest.fixture
def item_bank(bank_items) -> InMemoryItemBank:
    return InMemoryItemBank(bank_items)


@pytest.fixture
def short_config() -> CATConfig:
    """A short test so sessions finish in a handful of answers."""
    return CATConfig(min_items=5, max_items=12, time_limit_seconds=600)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session_factory(db_session) -> Callable[[], Session]:
    """Open additional sessions on the test database (caller closes them)."""
    return TestingSessionLocal


@pytest.fixture
def seeded_items(db_session, bank_items) -> List[Item]:
    """Persist the calibrated bank and return the engine items."""
    db_session.add_all(item_record(item) for item in bank_items)
    db_session.commit()
    return bank_items


@pytest.fixture
def cat_service_factory(short_config) -> Callable[[Session], CATService]:
    """Build CATService instances over independent database sessions."""

    def factory(db: Session) -> CATService:
        return CATService(db, config=short_config)

    return factory


@pytest.fixture(scope="function")
def client(db_session, short_config):
    """
    Create a test client with database and service dependency overrides.

    Every request gets its own session on the test database, like
    production; the CAT service runs with the short test configuration.
    """

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    def override_get_cat_service(db: Session = Depends(get_db)) -> CATService:
        return CATService(db, config=short_config)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cat_service] = override_get_cat_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
