"""Spending and income analytics over a snapshot of synced transactions.

Everything here is read-only over the list it is given, so calls can run in
parallel. Peer sets and rankings never mix sign classes: income is compared
with income and spending with spending.

Pacing differs by sign class. Expenses extrapolate the daily rate
(``total / days * 365``); income extrapolates the monthly rate
(``monthly_average * 12``). The two do not agree for identical inputs and
callers should not assume they do.
"""

import math
from datetime import datetime
from typing import Iterable, List, Optional, Union

import pandas as pd

import config
from income import is_income
from models import CategoryStat, IncomeProfile, IncomeSource, MerchantStat, Stats, Transaction

COLUMNS = ["ID", "Date", "Amount", "AbsAmount", "Merchant", "Category", "IsIncome"]


def transactions_to_df(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Flatten transactions into a frame, preserving input order."""
    rows = [
        {
            "ID": t.id,
            "Date": t.date,
            "Amount": t.amount,
            "AbsAmount": abs(t.amount),
            "Merchant": t.merchant_key,
            "Category": t.primary_category,
            "IsIncome": is_income(t.amount),
        }
        for t in transactions
    ]
    if not rows:
        df = pd.DataFrame(columns=COLUMNS)
        df["Date"] = pd.to_datetime(df["Date"])
        return df

    df = pd.DataFrame(rows, columns=COLUMNS)
    df["Date"] = pd.to_datetime(df["Date"])
    return df


def _now(now: Optional[datetime]) -> pd.Timestamp:
    ts = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    # Transaction dates are naive calendar days
    return ts.tz_convert(None) if ts.tzinfo is not None else ts


def days_since(first: pd.Timestamp, now: pd.Timestamp) -> int:
    """Whole days elapsed, rounded up and never below one."""
    days = math.ceil((now - first).total_seconds() / 86400)
    return max(days, 1)


def pacing(total: float, days: int, income: bool) -> tuple[float, float]:
    """Return (monthly_average, annual_pacing) for a peer set."""
    monthly = total / days * 30
    annual = monthly * 12 if income else (total / days) * 365
    return monthly, annual


def _percent(amount: float, annual_income: float) -> float:
    return amount / annual_income * 100 if annual_income else 0.0


def _peer_fields(peers: pd.DataFrame, now: pd.Timestamp, income: bool, annual_income: float) -> dict:
    total = float(peers["AbsAmount"].sum())
    count = int(len(peers))
    if count:
        first = peers["Date"].min()
        days = days_since(first, now)
        first_date = first.date()
    else:
        days, first_date = 1, None
    monthly, annual = pacing(total, days, income)
    return {
        "total_abs_amount": total,
        "count": count,
        "average_abs_amount": total / count if count else 0.0,
        "first_date": first_date,
        "days_since_first": days,
        "monthly_average": monthly,
        "annual_pacing": annual,
        "percent_of_income": _percent(annual, annual_income),
    }


def _ranked_groups(df: pd.DataFrame, key: str, now: pd.Timestamp) -> pd.DataFrame:
    """Group by ``key`` and order by monthly average, ties in first-seen order."""
    grouped = (
        df.groupby(key, sort=False)
        .agg(Total=("AbsAmount", "sum"), Count=("AbsAmount", "size"), First=("Date", "min"))
        .reset_index()
    )
    if grouped.empty:
        return grouped.assign(Days=pd.Series(dtype=int), MonthlyAverage=pd.Series(dtype=float))
    grouped["Days"] = grouped["First"].apply(lambda first: days_since(first, now))
    grouped["MonthlyAverage"] = grouped["Total"] / grouped["Days"] * 30
    return grouped.sort_values("MonthlyAverage", ascending=False, kind="stable").reset_index(drop=True)


def _expense_summary(transactions, key: str, now, annual_income: Optional[float]) -> List[dict]:
    df = transactions_to_df(transactions)
    now = _now(now)
    if annual_income is None:
        annual_income = build_income_profile(transactions, now).annual_income

    expenses = df[~df["IsIncome"].astype(bool)]
    ranked = _ranked_groups(expenses, key, now)
    total_peers = len(ranked)
    rows = []
    for position, row in enumerate(ranked.itertuples(index=False), start=1):
        total = float(row.Total)
        monthly, annual = pacing(total, int(row.Days), income=False)
        rows.append(
            {
                "key": getattr(row, key),
                "total_abs_amount": total,
                "count": int(row.Count),
                "average_abs_amount": total / row.Count if row.Count else 0.0,
                "first_date": row.First.date(),
                "days_since_first": int(row.Days),
                "monthly_average": monthly,
                "annual_pacing": annual,
                "percent_of_income": _percent(annual, annual_income),
                "rank": position,
                "total_peers": total_peers,
            }
        )
    return rows


def merchant_summary(
    transactions: List[Transaction],
    now: Optional[datetime] = None,
    annual_income: Optional[float] = None,
) -> List[MerchantStat]:
    """All expense merchants ranked by monthly average spend."""
    return [
        MerchantStat(merchant_name=row.pop("key"), **row)
        for row in _expense_summary(transactions, "Merchant", now, annual_income)
    ]


def category_summary(
    transactions: List[Transaction],
    now: Optional[datetime] = None,
    annual_income: Optional[float] = None,
) -> List[CategoryStat]:
    """All expense primary categories ranked by monthly average spend."""
    return [
        CategoryStat(category=row.pop("key"), **row)
        for row in _expense_summary(transactions, "Category", now, annual_income)
    ]


def build_income_profile(transactions: List[Transaction], now: Optional[datetime] = None) -> IncomeProfile:
    """
    Summarize income by source. Falls back to DEFAULT_ANNUAL_INCOME when
    there is no income at all so percent-of-income stays defined.
    """
    df = transactions_to_df(transactions)
    now = _now(now)
    income = df[df["IsIncome"].astype(bool)]

    if income.empty:
        return IncomeProfile(
            monthly_income=config.DEFAULT_ANNUAL_INCOME / 12,
            annual_income=config.DEFAULT_ANNUAL_INCOME,
            is_fallback=True,
        )

    grand_total = float(income["AbsAmount"].sum())
    by_source = {}
    for row in _ranked_groups(income, "Merchant", now).itertuples(index=False):
        total = float(row.Total)
        monthly, annual = pacing(total, int(row.Days), income=True)
        by_source[row.Merchant] = IncomeSource(
            amount=total,
            count=int(row.Count),
            monthly_average=monthly,
            annual_pace=annual,
            percent_of_total=_percent(total, grand_total) if grand_total else 0.0,
        )

    monthly_income = sum(s.monthly_average for s in by_source.values())
    return IncomeProfile(
        monthly_income=monthly_income,
        annual_income=monthly_income * 12,
        by_source=by_source,
    )


def _find(reference: Union[str, Transaction, None], transactions: List[Transaction]) -> Optional[Transaction]:
    if reference is None or isinstance(reference, Transaction):
        return reference
    return next((t for t in transactions if t.id == reference), None)


def compute_stats(
    reference: Union[str, Transaction, None],
    transactions: List[Transaction],
    now: Optional[datetime] = None,
) -> Optional[Stats]:
    """
    Compare one transaction against its merchant and category peers.

    ``reference`` is a transaction or a transaction id looked up in
    ``transactions``. Returns None when it cannot be resolved. Ranks are
    filled in for expenses only.
    """
    ref = _find(reference, transactions)
    if ref is None:
        return None

    now = _now(now)
    income = is_income(ref.amount)
    profile = build_income_profile(transactions, now)
    annual_income = profile.annual_income
    df = transactions_to_df(transactions)
    same_sign = df[df["IsIncome"].astype(bool) == income]

    category_stat = None
    if income:
        merchant_peers = same_sign[same_sign["Merchant"] == ref.merchant_key]
        merchant_stat = MerchantStat(
            merchant_name=ref.merchant_key,
            **_peer_fields(merchant_peers, now, True, annual_income),
            total_peers=int(same_sign["Merchant"].nunique()),
        )
        if ref.primary_category:
            category_peers = same_sign[same_sign["Category"] == ref.primary_category]
            category_stat = CategoryStat(
                category=ref.primary_category,
                **_peer_fields(category_peers, now, True, annual_income),
                total_peers=int(same_sign["Category"].nunique()),
            )
    else:
        merchants = merchant_summary(transactions, now, annual_income)
        merchant_stat = next((m for m in merchants if m.merchant_name == ref.merchant_key), None)
        if merchant_stat is None:
            # Reference passed in directly but not part of the snapshot
            merchant_peers = same_sign[same_sign["Merchant"] == ref.merchant_key]
            merchant_stat = MerchantStat(
                merchant_name=ref.merchant_key,
                **_peer_fields(merchant_peers, now, False, annual_income),
                total_peers=len(merchants),
            )
        if ref.primary_category:
            categories = category_summary(transactions, now, annual_income)
            category_stat = next((c for c in categories if c.category == ref.primary_category), None)

    return Stats(
        transaction_id=ref.id,
        is_income=income,
        merchant=merchant_stat,
        category=category_stat,
        income=profile,
    )
