"""Shared fixtures: an in-memory store, a scripted provider and builders."""

from __future__ import annotations

from datetime import date
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import DocumentStore, init_db
from models import DeltaPage, RangePage, SyncState, Transaction


def make_txn(
    id: str,
    amount: float,
    day: str = "2025-01-01",
    *,
    name: str | None = None,
    merchant: str | None = None,
    category: list[str] | None = None,
    account_id: str = "acc_1",
    pending: bool = False,
) -> Transaction:
    return Transaction(
        id=id,
        account_id=account_id,
        amount=amount,
        date=date.fromisoformat(day),
        name=name or merchant or f"Txn {id}",
        merchant_name=merchant,
        pending=pending,
        category=category or [],
    )


class FakeProvider:
    """Replays scripted delta pages; an Exception entry is raised instead."""

    def __init__(self, pages: list[Any] | None = None, range_pages: list[RangePage] | None = None):
        self.pages = list(pages or [])
        self.range_pages = list(range_pages or [])
        self.cursors: list[str | None] = []
        self.offsets: list[int] = []
        self.exchanged: list[str] = []

    def fetch_delta(self, access_token: str, cursor: str | None = None) -> DeltaPage:
        self.cursors.append(cursor)
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    def fetch_range(self, access_token, start_date, end_date, count=None, offset=0) -> RangePage:
        self.offsets.append(offset)
        return self.range_pages.pop(0)

    def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        self.exchanged.append(public_token)
        return f"access-{public_token}", f"item-{public_token}"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> DocumentStore:
    return DocumentStore(session_factory)


@pytest.fixture
def linked_store(store: DocumentStore) -> DocumentStore:
    store.set_sync_state("user-1", SyncState(user_id="user-1", access_token="access-sandbox", cursor="c0"))
    return store


class OpenAIStub:
    """Matches the ``client.chat.completions.create`` shape of ``openai.OpenAI``."""

    def __init__(self, reply: str = "ok", error: Exception | None = None):
        self.calls: list[dict[str, Any]] = []
        outer = self

        class _Completions:
            def create(self, **kwargs):
                outer.calls.append(kwargs)
                if error is not None:
                    raise error
                message = SimpleNamespace(content=reply)
                return SimpleNamespace(choices=[SimpleNamespace(message=message)])

        self.chat = SimpleNamespace(completions=_Completions())
