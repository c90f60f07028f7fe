from __future__ import annotations

import os
from decimal import Decimal

os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite://")
os.environ.setdefault("EXPENSES_TOKEN_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import enable_sqlite_pragmas, init_db
from main import app, get_db
from models import Category
from schemas import ExpenseIn, RegisterIn
from services import ExpenseService, UserService


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_pragmas(test_engine)
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as db:
        yield db


@pytest.fixture()
def client(engine):
    TestingSessionLocal = sessionmaker(
        bind=engine, autoflush=False, expire_on_commit=False
    )

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(session):
    def _make(name: str = "Ann", email: str = "ann@example.com", password: str = "password123"):
        return UserService(session).register(
            RegisterIn(name=name, email=email, password=password)
        )

    return _make


@pytest.fixture()
def defaults(session) -> dict[str, int]:
    rows = session.execute(
        select(Category.name, Category.id).where(Category.is_default.is_(True))
    )
    return {name: category_id for name, category_id in rows}


@pytest.fixture()
def add_expense(session):
    def _add(
        user_id: int,
        title: str,
        amount: str,
        on: str,
        categories: list[int],
        at: str = "09:30 AM",
    ):
        return ExpenseService(session, user_id).create(
            ExpenseIn(
                title=title,
                amount=Decimal(amount),
                date=on,
                time=at,
                categories=categories,
            )
        )

    return _add
