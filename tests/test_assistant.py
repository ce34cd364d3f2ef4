from __future__ import annotations

import json
from datetime import date, datetime

import pytest

from assistant import (
    DATA_PREFIX,
    OpenAICompletion,
    assemble,
    build_assistant_reply,
    should_inject_data,
    transaction_insight,
)
from conftest import OpenAIStub, make_txn
from errors import CompletionServiceError, ValidationError


TXNS = [
    make_txn("t1", 4.5, "2025-01-02", merchant="Starbucks", category=["Food and Drink", "Coffee Shop"], account_id="acc_secret"),
    make_txn("t2", -1500.0, "2025-01-03", name="Payroll", category=["Transfer"]),
    make_txn("t3", 12.0, "2025-01-04", merchant="Kiosk"),
]


def test_gate_ignores_small_talk():
    history = [{"role": "user", "content": "hi there"}]
    assert should_inject_data(history) is False

    messages = assemble(history, TXNS)
    assert len(messages) == 2
    assert messages[0]["role"] == "system"
    assert messages[1] == history[0]


def test_gate_attaches_data_last_for_spending_questions():
    history = [{"role": "user", "content": "how much did I spend at coffee shops"}]
    assert should_inject_data(history) is True

    messages = assemble(history, TXNS)
    assert len(messages) == 3
    assert messages[1] == history[0]
    data = messages[-1]
    assert data["role"] == "user"
    assert data["content"].startswith(DATA_PREFIX)


def test_gate_uses_latest_user_turn_only():
    history = [
        {"role": "user", "content": "what was my total at Uber?"},
        {"role": "assistant", "content": "You paid $30."},
        {"role": "user", "content": "thanks!"},
    ]
    assert should_inject_data(history) is False


def test_gate_is_case_insensitive_and_matches_merchants():
    assert should_inject_data([{"role": "user", "content": "STARBUCKS this week?"}])
    assert should_inject_data([{"role": "assistant", "content": "budget"}]) is False
    assert should_inject_data([]) is False


def test_gate_accepts_extra_keywords():
    history = [{"role": "user", "content": "show me my groceries"}]
    assert should_inject_data(history) is False
    assert should_inject_data(history, keywords=["groceries"]) is True


def test_injected_data_is_privacy_reduced():
    history = [{"role": "user", "content": "list every transaction"}]
    payload = json.loads(assemble(history, TXNS)[-1]["content"][len(DATA_PREFIX):])

    assert payload[0] == {"date": "2025-01-02", "name": "Starbucks", "amount": 4.5, "category": "Food and Drink"}
    assert payload[2]["category"] == "Uncategorized"
    assert "acc_secret" not in json.dumps(payload)


def test_history_is_not_modified():
    history = [
        {"role": "user", "content": "budget help"},
        {"role": "assistant", "content": "sure"},
        {"role": "user", "content": "what did I buy?"},
    ]
    messages = assemble(history, TXNS, today=date(2025, 3, 22))
    assert messages[1:4] == history
    assert "March 22, 2025" in messages[0]["content"]


def test_build_reply_sends_assembled_messages():
    stub = OpenAIStub(reply="You spent $4.50.")
    completion = OpenAICompletion(client=stub, model="gpt-4", temperature=0.7)

    reply = build_assistant_reply([{"role": "user", "content": "what did I spend?"}], TXNS, completion)

    assert reply == "You spent $4.50."
    call = stub.calls[0]
    assert call["model"] == "gpt-4"
    assert call["temperature"] == 0.7
    assert call["messages"][-1]["content"].startswith(DATA_PREFIX)


def test_build_reply_rejects_non_list_input():
    with pytest.raises(ValidationError):
        build_assistant_reply("hello", TXNS, OpenAICompletion(client=OpenAIStub()))


def test_completion_errors_are_wrapped():
    import openai

    stub = OpenAIStub(error=openai.OpenAIError("rate limited"))
    with pytest.raises(CompletionServiceError):
        OpenAICompletion(client=stub).complete([{"role": "user", "content": "hi"}])


def test_transaction_insight_sends_merchant_peers_only():
    stub = OpenAIStub(reply="Typical coffee run.")
    txns = TXNS + [make_txn("t4", 6.0, "2025-01-05", merchant="Starbucks", category=["Food and Drink"])]

    reply = transaction_insight("t1", txns, OpenAICompletion(client=stub), now=datetime(2025, 1, 31))

    assert reply == "Typical coffee run."
    messages = stub.calls[0]["messages"]
    assert "Starbucks" in messages[1]["content"]
    payload = json.loads(messages[-1]["content"][len(DATA_PREFIX):])
    assert {row["name"] for row in payload} == {"Starbucks"}


def test_transaction_insight_unknown_id():
    assert transaction_insight("nope", TXNS, OpenAICompletion(client=OpenAIStub())) is None


def test_non_object_turns_are_rejected():
    with pytest.raises(ValidationError):
        build_assistant_reply(["what did I spend?"], TXNS, OpenAICompletion(client=OpenAIStub()))


def test_gate_skips_non_object_turns():
    assert should_inject_data([{"role": "user", "content": "budget"}, "stray"]) is True
