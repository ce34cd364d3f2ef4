"""Language-model assistant over a user's transactions.

Transaction data is only attached to a conversation when the latest user
turn looks finance-related, so ordinary chit-chat does not ship the user's
history to the model. When attached, the data goes in one trailing user
message after the unmodified history.
"""

import json
import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from openai import OpenAI, OpenAIError

import config
from errors import CompletionServiceError, ValidationError
from insights import compute_stats
from models import Stats, Transaction

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are a helpful financial assistant. You have access to a user's transaction history and help answer questions, analyze spending, and forecast budgets.

Respond in markdown. Be concise but informative. Use bullet points or tables when helpful.

Current date is {today}.

Capabilities:
- Calculate totals, averages, frequencies
- Identify spending by date, merchant, category
- Offer budgeting or saving tips
- Forecast likely monthly spending based on existing patterns

Amounts follow the bank feed convention: positive amounts are money spent, negative amounts are money received.

Only reference the data if the prompt relates to transactions or spending.
If the user's message is conversational or general, respond appropriately without referencing their data.
""".strip()

DATA_PREFIX = "Here are the user's transactions:\n"


# --- Relevance gate ---

def last_user_message(history: List[dict]) -> str:
    for message in reversed(history):
        if isinstance(message, dict) and message.get("role") == "user":
            content = message.get("content")
            return content if isinstance(content, str) else ""
    return ""


def should_inject_data(history: List[dict], keywords: Optional[Iterable[str]] = None) -> bool:
    """True when the latest user turn mentions any finance keyword."""
    text = last_user_message(history).lower()
    if not text:
        return False
    words = config.FINANCE_KEYWORDS if keywords is None else keywords
    return any(k.lower() in text for k in words if k)


# --- Prompt assembly ---

def project_transactions(transactions: Iterable[Transaction]) -> List[dict]:
    """Reduce transactions to what the model needs. No account identifiers."""
    return [
        {
            "date": t.date.isoformat(),
            "name": t.name,
            "amount": t.amount,
            "category": t.primary_category or "Uncategorized",
        }
        for t in transactions
    ]


def system_message(today: Optional[date] = None) -> dict:
    today = today or date.today()
    return {"role": "system", "content": SYSTEM_PROMPT.format(today=today.strftime("%B %d, %Y"))}


def assemble(
    history: List[dict],
    transactions: List[Transaction],
    keywords: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
) -> List[dict]:
    messages = [system_message(today), *history]
    if should_inject_data(history, keywords):
        data = json.dumps(project_transactions(transactions), indent=2)
        messages.append({"role": "user", "content": DATA_PREFIX + data})
    return messages


# --- Completion service ---

class OpenAICompletion:
    """Chat completion through the OpenAI SDK."""

    def __init__(self, client=None, model: str = None, temperature: float = None):
        self._client = client
        self.model = model or config.OPENAI_MODEL
        self.temperature = config.OPENAI_TEMPERATURE if temperature is None else temperature

    @property
    def client(self):
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise CompletionServiceError("OPENAI_API_KEY is not configured", code="completion_not_configured")
            self._client = OpenAI(api_key=config.OPENAI_API_KEY)
        return self._client

    def complete(self, messages: List[dict], model_options: Optional[dict] = None) -> str:
        options = {"model": self.model, "temperature": self.temperature, **(model_options or {})}
        try:
            completion = self.client.chat.completions.create(messages=messages, **options)
        except OpenAIError as e:
            logger.error("OpenAI chat error: %s", e)
            raise CompletionServiceError(f"Failed to generate a response: {e}") from e
        return completion.choices[0].message.content or ""


def _validate_lists(history, transactions) -> None:
    if not isinstance(history, list) or not isinstance(transactions, list):
        raise ValidationError("messages and transactions are required and must be arrays")
    if not all(isinstance(m, dict) for m in history):
        raise ValidationError("each message must be an object with role and content")


def build_assistant_reply(
    history: List[dict],
    transactions: List[Transaction],
    completion,
    model_options: Optional[dict] = None,
) -> str:
    _validate_lists(history, transactions)
    messages = assemble(history, transactions)
    logger.info(
        "Assistant request: %d turn(s), data attached: %s",
        len(history), len(messages) > len(history) + 1,
    )
    return completion.complete(messages, model_options)


# --- Single-transaction insight ---

def build_insight_messages(reference: Transaction, stats: Stats) -> List[dict]:
    merchant = stats.merchant
    status = "Pending" if reference.pending else "Posted"
    lines = [
        f"Analyze this transaction at {merchant.merchant_name} for ${abs(reference.amount):.2f}.",
        "",
        "Transaction details:",
        f"- Date: {reference.date.isoformat()}",
        f"- Category: {', '.join(reference.category) or 'Uncategorized'}",
        f"- Status: {status}",
        f"- Direction: {'money received' if stats.is_income else 'money spent'}",
        "",
        "Historical context:",
        f"- Total transactions at this merchant: {merchant.count}",
        f"- Average transaction amount: ${merchant.average_abs_amount:.2f}",
        f"- Monthly average: ${merchant.monthly_average:,.2f}",
        f"- Annual pace: ${merchant.annual_pacing:,.2f} ({merchant.percent_of_income:.1f}% of annual income)",
    ]
    if merchant.rank:
        lines.append(f"- Ranks #{merchant.rank} of {merchant.total_peers} merchants by monthly spend")
    if stats.category and stats.category.rank:
        lines.append(
            f"- {stats.category.category} ranks #{stats.category.rank} of {stats.category.total_peers} categories"
        )
    lines += [
        "",
        "Please provide:",
        "1. Is this a typical amount for this merchant?",
        "2. Any unusual patterns or insights?",
        "3. Quick budgeting or money-saving tip related to this type of expense.",
        "",
        "Keep the response friendly and concise (2-3 sentences).",
    ]
    return [{"role": "user", "content": "\n".join(lines)}]


def transaction_insight(
    reference_id: str,
    transactions: List[Transaction],
    completion,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Short model-written insight about one transaction. None if it is unknown."""
    stats = compute_stats(reference_id, transactions, now)
    if stats is None:
        return None
    reference = next(t for t in transactions if t.id == stats.transaction_id)
    peers = [t for t in transactions if t.merchant_key == reference.merchant_key]
    history = build_insight_messages(reference, stats)
    return build_assistant_reply(history, peers, completion)
