"""Typed records for synced data and derived analytics."""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# --- Synced records ---

class Transaction(BaseModel):
    # Provider sign convention: negative = money in, positive = money out
    id: str
    account_id: str = ""
    amount: float
    date: date
    name: str = ""
    merchant_name: Optional[str] = None
    pending: bool = False
    category: List[str] = Field(default_factory=list)  # primary first
    location: Optional[dict] = None
    payment_channel: Optional[str] = None

    @property
    def merchant_key(self) -> str:
        return self.merchant_name or self.name

    @property
    def primary_category(self) -> Optional[str]:
        return self.category[0] if self.category else None


class Balances(BaseModel):
    current: Optional[float] = None
    available: Optional[float] = None
    currency: Optional[str] = None


class Account(BaseModel):
    id: str
    name: str = ""
    type: Optional[str] = None
    subtype: Optional[str] = None
    balances: Balances = Field(default_factory=Balances)
    mask: Optional[str] = None


class SyncState(BaseModel):
    user_id: str
    access_token: Optional[str] = None
    cursor: Optional[str] = None


# --- Provider pages ---

class DeltaPage(BaseModel):
    added: List[Transaction] = Field(default_factory=list)
    modified: List[Transaction] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


class RangePage(BaseModel):
    transactions: List[Transaction] = Field(default_factory=list)
    accounts: List[Account] = Field(default_factory=list)
    total_count: int = 0


# --- Derived analytics ---

class PeerStat(BaseModel):
    total_abs_amount: float
    count: int
    average_abs_amount: float
    first_date: Optional[date] = None
    days_since_first: int
    monthly_average: float
    annual_pacing: float
    percent_of_income: float = 0.0
    rank: Optional[int] = None
    total_peers: int = 0


class MerchantStat(PeerStat):
    merchant_name: str


class CategoryStat(PeerStat):
    category: str


class IncomeSource(BaseModel):
    amount: float
    count: int
    monthly_average: float
    annual_pace: float
    percent_of_total: float


class IncomeProfile(BaseModel):
    monthly_income: float
    annual_income: float
    by_source: Dict[str, IncomeSource] = Field(default_factory=dict)
    is_fallback: bool = False


class Stats(BaseModel):
    transaction_id: str
    is_income: bool
    merchant: MerchantStat
    category: Optional[CategoryStat] = None
    income: IncomeProfile


class Alert(BaseModel):
    kind: str  # 'large_transaction' or 'low_balance'
    message: str
    transaction_id: Optional[str] = None
    account_id: Optional[str] = None
