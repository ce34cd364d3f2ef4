from __future__ import annotations

import math
from datetime import datetime

import pytest

import config
from conftest import make_txn
from income import is_income
from insights import build_income_profile, category_summary, compute_stats, merchant_summary

NOW = datetime(2025, 1, 31)


def sample_transactions():
    return [
        make_txn("c1", 4.5, "2025-01-01", merchant="Starbucks", category=["Food and Drink", "Coffee Shop"]),
        make_txn("c2", 5.5, "2025-01-16", merchant="Starbucks", category=["Food and Drink", "Coffee Shop"]),
        make_txn("u1", 30.0, "2025-01-11", merchant="Uber", category=["Travel", "Taxi"]),
        make_txn("g1", 120.0, "2025-01-01", merchant="Whole Foods", category=["Food and Drink", "Groceries"]),
        make_txn("p1", -2000.0, "2025-01-01", name="ACME PAYROLL", category=["Transfer", "Payroll"]),
        make_txn("r1", -5.5, "2025-01-20", merchant="Starbucks", category=["Food and Drink"]),
    ]


def test_expense_pacing_uses_daily_rate():
    txns = [make_txn("a", 300.0, "2025-01-01", merchant="Gym", category=["Recreation"])]
    stats = compute_stats("a", txns, now=NOW)

    assert stats.merchant.days_since_first == 30
    assert stats.merchant.monthly_average == pytest.approx(300.0)
    assert stats.merchant.annual_pacing == pytest.approx(3650.0)


def test_income_pacing_uses_monthly_rate():
    txns = [make_txn("a", -300.0, "2025-01-01", name="Side Gig", category=["Transfer"])]
    stats = compute_stats("a", txns, now=NOW)

    assert stats.is_income
    assert stats.merchant.monthly_average == pytest.approx(300.0)
    assert stats.merchant.annual_pacing == pytest.approx(3600.0)
    assert stats.merchant.rank is None


def test_days_since_first_rounds_up():
    txns = [make_txn("a", 10.0, "2025-01-01", merchant="Shop")]
    stats = compute_stats("a", txns, now=datetime(2025, 1, 30, 6, 0))
    assert stats.merchant.days_since_first == 30


def test_merchant_peers_stay_in_sign_class():
    stats = compute_stats("c1", sample_transactions(), now=NOW)

    assert not stats.is_income
    # The Starbucks refund (r1) is income and must not be counted
    assert stats.merchant.count == 2
    assert stats.merchant.total_abs_amount == pytest.approx(10.0)
    assert stats.merchant.average_abs_amount == pytest.approx(5.0)


def test_category_peers_share_primary_category_and_sign():
    stats = compute_stats("c1", sample_transactions(), now=NOW)

    assert stats.category.category == "Food and Drink"
    assert stats.category.count == 3
    assert stats.category.total_abs_amount == pytest.approx(130.0)


def test_expense_rankings():
    stats = compute_stats("u1", sample_transactions(), now=NOW)

    # Whole Foods 120/30d, Uber 30/20d, Starbucks 10/30d
    assert stats.merchant.rank == 2
    assert stats.merchant.total_peers == 3
    assert stats.category.rank == 2
    assert stats.category.total_peers == 2


def test_ranking_is_deterministic():
    txns = sample_transactions()
    first = compute_stats("c2", txns, now=NOW)
    second = compute_stats("c2", txns, now=NOW)
    assert (first.merchant.rank, first.merchant.total_peers) == (second.merchant.rank, second.merchant.total_peers)


def test_ties_keep_first_seen_order():
    txns = [
        make_txn("a", 50.0, "2025-01-01", merchant="Alpha"),
        make_txn("b", 50.0, "2025-01-01", merchant="Beta"),
    ]
    ranked = merchant_summary(txns, now=NOW)
    assert [(m.merchant_name, m.rank) for m in ranked] == [("Alpha", 1), ("Beta", 2)]


def test_merchant_totals_are_conserved():
    txns = sample_transactions()
    summary = merchant_summary(txns, now=NOW)

    expected = sum(abs(t.amount) for t in txns if not is_income(t.amount))
    assert sum(m.total_abs_amount for m in summary) == pytest.approx(expected)


def test_category_summary_skips_uncategorized_and_income():
    txns = sample_transactions() + [make_txn("x", 8.0, "2025-01-05", merchant="Misc")]
    names = [c.category for c in category_summary(txns, now=NOW)]
    assert names == ["Food and Drink", "Travel"]


def test_income_profile_by_source():
    profile = build_income_profile(sample_transactions(), now=NOW)

    assert not profile.is_fallback
    assert set(profile.by_source) == {"ACME PAYROLL", "Starbucks"}
    payroll = profile.by_source["ACME PAYROLL"]
    assert payroll.monthly_average == pytest.approx(2000.0)
    assert payroll.annual_pace == pytest.approx(24000.0)
    assert sum(s.percent_of_total for s in profile.by_source.values()) == pytest.approx(100.0)
    assert profile.annual_income == pytest.approx(profile.monthly_income * 12)


def test_fallback_income_keeps_percentages_finite():
    txns = [make_txn("a", 300.0, "2025-01-01", merchant="Gym")]
    stats = compute_stats("a", txns, now=NOW)

    assert stats.income.is_fallback
    assert stats.income.annual_income == config.DEFAULT_ANNUAL_INCOME
    assert math.isfinite(stats.merchant.percent_of_income)
    assert stats.merchant.percent_of_income == pytest.approx(3650.0 / config.DEFAULT_ANNUAL_INCOME * 100)


def test_percent_of_income_is_not_capped():
    txns = [
        make_txn("rent", 6000.0, "2025-01-01", merchant="Landlord"),
        make_txn("pay", -100.0, "2025-01-01", name="Payroll"),
    ]
    stats = compute_stats("rent", txns, now=NOW)
    assert stats.merchant.percent_of_income > 100


def test_unknown_reference_returns_none():
    assert compute_stats("missing", sample_transactions(), now=NOW) is None
    assert compute_stats(None, sample_transactions(), now=NOW) is None


def test_reference_without_category_has_no_category_stat():
    txns = [make_txn("a", 12.0, "2025-01-10", merchant="Kiosk")]
    stats = compute_stats("a", txns, now=NOW)
    assert stats.category is None


def test_empty_snapshot_summaries():
    assert merchant_summary([], now=NOW) == []
    assert build_income_profile([], now=NOW).is_fallback
