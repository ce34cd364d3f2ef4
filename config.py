"""Environment variable loading and defaults."""

import os
from dotenv import load_dotenv

load_dotenv()

# Database
# Default to local SQLite, but allow override for a hosted Postgres
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///finance_tracker.db")

# Plaid
PLAID_CLIENT_ID: str = os.getenv("PLAID_CLIENT_ID", "")
PLAID_SECRET: str = os.getenv("PLAID_SECRET", "")
PLAID_ENV: str = os.getenv("PLAID_ENV", "sandbox")

# OpenAI
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4")
OPENAI_TEMPERATURE: float = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))

# Sync
PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "30"))  # seconds per provider call
SYNC_PAGE_SIZE: int = int(os.getenv("SYNC_PAGE_SIZE", "100"))
SYNC_LOCK_TIMEOUT: float = float(os.getenv("SYNC_LOCK_TIMEOUT", "10"))

# Analytics
# Used when a user has no income transactions so percent-of-income stays finite
DEFAULT_ANNUAL_INCOME: float = float(os.getenv("DEFAULT_ANNUAL_INCOME", "50000"))

# Relevance gate keywords (case-insensitive substring match)
DEFAULT_FINANCE_KEYWORDS: list[str] = [
    "spend",
    "purchase",
    "cost",
    "transaction",
    "budget",
    "buy",
    "bought",
    "amount",
    "paid",
    "expense",
    "total",
    "uber",
    "starbucks",
]
FINANCE_KEYWORDS: list[str] = DEFAULT_FINANCE_KEYWORDS + [
    k.strip().lower() for k in os.getenv("FINANCE_KEYWORDS", "").split(",") if k.strip()
]

# Monitor thresholds
LARGE_TRANSACTION_THRESHOLD: float = float(os.getenv("LARGE_TRANSACTION_THRESHOLD", "500"))
LOW_BALANCE_THRESHOLD: float = float(os.getenv("LOW_BALANCE_THRESHOLD", "100"))

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
