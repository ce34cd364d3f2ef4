"""Lightweight MCP-aligned server exposing sync and analytics tools over FastAPI."""

from datetime import date
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from assistant import OpenAICompletion, build_assistant_reply, transaction_insight
from database import DocumentStore, init_db
from errors import (
    AuthenticationMissing,
    CompletionServiceError,
    FinanceError,
    SyncInProgress,
    UpstreamProviderError,
    ValidationError,
)
from insights import category_summary, compute_stats, merchant_summary
from logging_setup import configure_logging
from models import Account, Alert, CategoryStat, MerchantStat, Stats, Transaction
from plaid_integration import PlaidProvider
from sync import SyncCoordinator

configure_logging()

app = FastAPI(title="Transaction Insights Server", version="0.1.0")

STATUS_CODES = {
    ValidationError: 400,
    AuthenticationMissing: 401,
    SyncInProgress: 409,
    UpstreamProviderError: 502,
    CompletionServiceError: 502,
}


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError):
    status = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content=exc.to_dict())


# --- Dependencies ---

@lru_cache
def get_store() -> DocumentStore:
    init_db()
    return DocumentStore()


@lru_cache
def get_coordinator() -> SyncCoordinator:
    return SyncCoordinator(get_store(), PlaidProvider())


@lru_cache
def get_completion() -> OpenAICompletion:
    return OpenAICompletion()


# --- Sync tools ---

class UserRequest(BaseModel):
    user_id: str = ""


class SyncResponse(BaseModel):
    added: List[Transaction]
    modified: List[Transaction]
    removed: List[str]
    alerts: List[Alert]
    warnings: List[str]


@app.post("/tools/sync", response_model=SyncResponse)
def sync_transactions(req: UserRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    result = coordinator.sync(req.user_id)
    return SyncResponse(
        added=result.added,
        modified=result.modified,
        removed=result.removed,
        alerts=result.alerts,
        warnings=[w.detail for w in result.warnings],
    )


class FetchRangeRequest(UserRequest):
    start_date: date
    end_date: date = Field(default_factory=date.today)


class FetchRangeResponse(BaseModel):
    transactions: List[Transaction]
    accounts: List[Account]
    total_count: int
    alerts: List[Alert]
    warnings: List[str]


@app.post("/tools/fetch_range", response_model=FetchRangeResponse)
def fetch_range(req: FetchRangeRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    result = coordinator.fetch_range(req.user_id, req.start_date, req.end_date)
    return FetchRangeResponse(
        transactions=result.transactions,
        accounts=result.accounts,
        total_count=result.total_count,
        alerts=result.alerts,
        warnings=[w.detail for w in result.warnings],
    )


class ExchangeTokenRequest(UserRequest):
    public_token: str = ""


@app.post("/tools/exchange_token")
def exchange_token(req: ExchangeTokenRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    item_id = coordinator.link(req.user_id, req.public_token)
    return {"success": True, "item_id": item_id}


# --- Analytics tools ---

class StatsRequest(BaseModel):
    transaction_id: str
    transactions: List[Transaction]


@app.post("/tools/compute_stats", response_model=Optional[Stats])
def stats_for_transaction(req: StatsRequest):
    return compute_stats(req.transaction_id, req.transactions)


class SummaryRequest(BaseModel):
    transactions: List[Transaction]


class SummaryResponse(BaseModel):
    merchants: List[MerchantStat]
    categories: List[CategoryStat]


@app.post("/tools/spending_summary", response_model=SummaryResponse)
def spending_summary(req: SummaryRequest):
    return SummaryResponse(
        merchants=merchant_summary(req.transactions),
        categories=category_summary(req.transactions),
    )


# --- Assistant tools ---

class ChatRequest(BaseModel):
    messages: List[Dict]
    transactions: List[Transaction]


class ChatResponse(BaseModel):
    message: str


def chat_with_transactions(req: ChatRequest, completion: OpenAICompletion = Depends(get_completion)):
    reply = build_assistant_reply(req.messages, req.transactions, completion)
    return ChatResponse(message=reply)


for path in ("/tools/chat", "/tools/chat_with_transactions"):
    app.add_api_route(path, chat_with_transactions, methods=["POST"], response_model=ChatResponse)


class InsightRequest(BaseModel):
    transaction_id: str
    transactions: List[Transaction]


class InsightResponse(BaseModel):
    insight: Optional[str]


@app.post("/tools/transaction_insight", response_model=InsightResponse)
def insight_for_transaction(req: InsightRequest, completion: OpenAICompletion = Depends(get_completion)):
    return InsightResponse(insight=transaction_insight(req.transaction_id, req.transactions, completion))


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mcp_server:app", host="0.0.0.0", port=8001, reload=True)
