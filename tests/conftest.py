import os
import sys
from pathlib import Path

os.environ.setdefault("TRACING_ENABLED", "false")


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from loyalty_ledger import models  # noqa: E402,F401
from loyalty_ledger.app import create_app  # noqa: E402
from loyalty_ledger.db.base import Base  # noqa: E402
from loyalty_ledger.db.session import build_engine, get_session  # noqa: E402
from loyalty_ledger.models import Customer  # noqa: E402
from loyalty_ledger.observability.ledger import get_ledger_store  # noqa: E402


async def _prepare(engine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:", echo=False)
    factory = await _prepare(engine)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file database so sessions get separate connections."""

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    factory = await _prepare(engine)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def make_customer(session_factory):
    async def _create(**overrides) -> Customer:
        async with session_factory() as session:
            customer = Customer(
                email=overrides.pop("email", f"{uuid4().hex[:12]}@example.com"),
                display_name=overrides.pop("display_name", "Loyal Customer"),
                **overrides,
            )
            session.add(customer)
            await session.commit()
            return customer

    return _create


@pytest.fixture(autouse=True)
def reset_ledger_store():
    get_ledger_store().reset()
    yield
    get_ledger_store().reset()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
