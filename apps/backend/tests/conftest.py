from __future__ import annotations

import os
import tempfile
from decimal import Decimal
from typing import Generator, Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cardbill.core.database import Base, get_db
from cardbill.main import app
from cardbill import models


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # temp file SQLite so the developer database is never touched
    fd, path = tempfile.mkstemp(prefix="cardbill_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    # threads in the limit tests wait on the file lock instead of failing fast
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False, "timeout": 15})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="session")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    # seed: demo user(1) and a couple of categories
    user = models.User(email="demo@example.com", name="Demo", is_active=True)
    session.add(user)
    session.flush()
    session.add(models.Category(user_id=user.id, name="Groceries", type=models.CategoryType.EXPENSE))
    session.add(models.Category(user_id=user.id, name="Salary", type=models.CategoryType.INCOME))
    session.commit()

    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def demo_user(db_session) -> models.User:
    return db_session.query(models.User).filter_by(email="demo@example.com").one()


@pytest.fixture()
def make_invoice(db_session, demo_user):
    def _make(**overrides) -> models.Invoice:
        data = {
            "user_id": demo_user.id,
            "name": "Main Card",
            "closing_day": 5,
            "due_day": 10,
            "credit_limit": Decimal("1000.00"),
            "used_limit": Decimal("0"),
        }
        data.update(overrides)
        invoice = models.Invoice(**data)
        db_session.add(invoice)
        db_session.commit()
        db_session.refresh(invoice)
        return invoice

    return _make


@pytest.fixture()
def make_card(db_session, demo_user):
    def _make(invoice: models.Invoice | None = None, **overrides) -> models.PaymentMethod:
        data = {
            "user_id": demo_user.id,
            "name": "Visa Gold",
            "type": models.PaymentMethodType.CREDIT_CARD,
            "last_four_digits": "1234",
            "invoice_id": invoice.id if invoice is not None else None,
        }
        data.update(overrides)
        card = models.PaymentMethod(**data)
        db_session.add(card)
        db_session.commit()
        db_session.refresh(card)
        return card

    return _make
