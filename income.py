"""Income vs. expense classification.

Plaid reports money leaving an account as a positive amount and money
arriving as a negative one. Every peer selection, ranking and projection
goes through ``is_income`` so the sign rule lives in exactly one place.
"""

INCOME = "income"
EXPENSE = "expense"


def is_income(amount: float) -> bool:
    return amount < 0


def sign_class(amount: float) -> str:
    return INCOME if is_income(amount) else EXPENSE
