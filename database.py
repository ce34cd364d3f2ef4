import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

import config
from models import Account, Balances, SyncState, Transaction

logger = logging.getLogger(__name__)

# Database Setup
engine = create_engine(
    config.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in config.DATABASE_URL else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# --- Models ---

class TransactionRecord(Base):
    __tablename__ = "transactions"

    user_id = Column(String, primary_key=True)
    id = Column(String, primary_key=True)  # provider transaction_id
    account_id = Column(String, index=True)
    amount = Column(Float)  # provider sign: negative = income
    date = Column(Date, index=True)
    name = Column(String)
    merchant_name = Column(String, nullable=True)
    pending = Column(Boolean, default=False)
    category = Column(JSON, default=list)  # ordered, primary first
    location = Column(JSON, nullable=True)
    payment_channel = Column(String, nullable=True)

    synced_at = Column(DateTime, default=datetime.utcnow)


class AccountRecord(Base):
    __tablename__ = "accounts"

    user_id = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    name = Column(String)
    type = Column(String, nullable=True)
    subtype = Column(String, nullable=True)
    balance_current = Column(Float, nullable=True)
    balance_available = Column(Float, nullable=True)
    currency = Column(String, nullable=True)
    mask = Column(String, nullable=True)

    synced_at = Column(DateTime, default=datetime.utcnow)


class SyncStateRecord(Base):
    __tablename__ = "sync_state"

    user_id = Column(String, primary_key=True)
    access_token = Column(String, nullable=True)
    cursor = Column(String, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)


# --- Init DB ---
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# --- Record conversion ---

def _latest_by_id(records):
    # merge() cannot see an unflushed pending row, so one row per id per session
    latest = {}
    for r in records:
        latest[r.id] = r
    return list(latest.values())


def _to_transaction(row: TransactionRecord) -> Transaction:
    return Transaction(
        id=row.id,
        account_id=row.account_id or "",
        amount=row.amount,
        date=row.date,
        name=row.name or "",
        merchant_name=row.merchant_name,
        pending=bool(row.pending),
        category=list(row.category or []),
        location=row.location,
        payment_channel=row.payment_channel,
    )


def _to_account(row: AccountRecord) -> Account:
    return Account(
        id=row.id,
        name=row.name or "",
        type=row.type,
        subtype=row.subtype,
        balances=Balances(
            current=row.balance_current,
            available=row.balance_available,
            currency=row.currency,
        ),
        mask=row.mask,
    )


class DocumentStore:
    """Per-user transaction, account and sync-state storage.

    All writes are keyed on (user, provider id), so replaying the same page is
    a no-op. When a batch carries the same id more than once the last copy wins. Each method runs in its own session and commits or rolls back as a
    unit.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def upsert_transactions(self, user_id: str, transactions: Iterable[Transaction]) -> int:
        db = self._session_factory()
        count = 0
        try:
            now = datetime.utcnow()
            for t in _latest_by_id(transactions):
                db.merge(
                    TransactionRecord(
                        id=t.id,
                        user_id=user_id,
                        account_id=t.account_id,
                        amount=t.amount,
                        date=t.date,
                        name=t.name,
                        merchant_name=t.merchant_name,
                        pending=t.pending,
                        category=list(t.category),
                        location=t.location,
                        payment_channel=t.payment_channel,
                        synced_at=now,
                    )
                )
                count += 1
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return count

    def remove_transactions(self, user_id: str, transaction_ids: Iterable[str]) -> int:
        ids = list(transaction_ids)
        if not ids:
            return 0
        db = self._session_factory()
        try:
            deleted = (
                db.query(TransactionRecord)
                .filter(TransactionRecord.user_id == user_id, TransactionRecord.id.in_(ids))
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def upsert_accounts(self, user_id: str, accounts: Iterable[Account]) -> int:
        db = self._session_factory()
        count = 0
        try:
            now = datetime.utcnow()
            for a in _latest_by_id(accounts):
                db.merge(
                    AccountRecord(
                        id=a.id,
                        user_id=user_id,
                        name=a.name,
                        type=a.type,
                        subtype=a.subtype,
                        balance_current=a.balances.current,
                        balance_available=a.balances.available,
                        currency=a.balances.currency,
                        mask=a.mask,
                        synced_at=now,
                    )
                )
                count += 1
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return count

    def list_transactions(self, user_id: str) -> List[Transaction]:
        db = self._session_factory()
        try:
            rows = (
                db.query(TransactionRecord)
                .filter(TransactionRecord.user_id == user_id)
                .order_by(TransactionRecord.date, TransactionRecord.id)
                .all()
            )
            return [_to_transaction(r) for r in rows]
        finally:
            db.close()

    def list_accounts(self, user_id: str) -> List[Account]:
        db = self._session_factory()
        try:
            rows = db.query(AccountRecord).filter(AccountRecord.user_id == user_id).all()
            return [_to_account(r) for r in rows]
        finally:
            db.close()

    def get_sync_state(self, user_id: str) -> SyncState:
        db = self._session_factory()
        try:
            row: Optional[SyncStateRecord] = db.get(SyncStateRecord, user_id)
            if not row:
                return SyncState(user_id=user_id)
            return SyncState(user_id=user_id, access_token=row.access_token, cursor=row.cursor)
        finally:
            db.close()

    def set_sync_state(self, user_id: str, state: SyncState) -> None:
        db = self._session_factory()
        try:
            row = db.get(SyncStateRecord, user_id)
            if not row:
                row = SyncStateRecord(user_id=user_id)
                db.add(row)
            row.access_token = state.access_token
            row.cursor = state.cursor
            row.last_synced_at = datetime.utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
