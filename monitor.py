"""Flag newly synced activity worth telling the user about."""

from typing import Iterable, List, Optional

import config
from income import is_income
from models import Account, Alert, Transaction


def scan_for_alerts(
    transactions: Iterable[Transaction],
    accounts: Optional[Iterable[Account]] = None,
    large_threshold: Optional[float] = None,
    low_balance_threshold: Optional[float] = None,
) -> List[Alert]:
    """Return large-transaction and low-balance alerts."""
    large = config.LARGE_TRANSACTION_THRESHOLD if large_threshold is None else large_threshold
    low = config.LOW_BALANCE_THRESHOLD if low_balance_threshold is None else low_balance_threshold

    alerts = []
    for t in transactions:
        if abs(t.amount) > large:
            direction = "received from" if is_income(t.amount) else "charged at"
            alerts.append(
                Alert(
                    kind="large_transaction",
                    message=f"${abs(t.amount):,.2f} {direction} {t.merchant_key} on {t.date.isoformat()}",
                    transaction_id=t.id,
                    account_id=t.account_id or None,
                )
            )

    for a in accounts or []:
        current = a.balances.current
        if current is not None and current < low:
            alerts.append(
                Alert(
                    kind="low_balance",
                    message=f"{a.name or a.id} balance is down to ${current:,.2f}",
                    account_id=a.id,
                )
            )
    return alerts
