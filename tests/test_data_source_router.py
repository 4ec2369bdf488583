import json

import pytest
from conftest import FakeLLM

from datadesk.core.data_source_router import DataSourceRouter, normalize_question
from datadesk.core.gemini_client import GenerationError, GenerationTimeout


def ai_reply(**body):
    return json.dumps(body)


def test_normalize_question():
    assert normalize_question("  Who's assigned to TK-218552?! ") == "who s assigned to tk-218552"


@pytest.mark.parametrize("question,category", [
    ("hello", "greeting"),
    ("Hi there!", "greeting"),
    ("who are you?", "identity"),
    ("What can you do", "capabilities"),
    ("help", "help"),
    ("thanks a lot", "feedback"),
    ("what is this system", "meta"),
])
def test_general_patterns_answer_without_model(run, question, category):
    llm = FakeLLM(GenerationError("should not be called"))
    decision = run(DataSourceRouter(llm).route(question))
    assert decision.target == "general"
    assert decision.confidence == 0.95
    assert decision.markdownResponse
    assert category in decision.reason
    assert llm.calls == []


def test_ticket_routes_to_dms_without_model(run):
    llm = FakeLLM(GenerationError("should not be called"))
    decision = run(DataSourceRouter(llm).route("show me ticket TK218552"))
    assert decision.target == "dms"
    assert decision.confidence >= 0.8
    assert decision.dms_tables == ["leads_tickets"]
    assert llm.calls == []


def test_strong_entities_signal(run):
    llm = FakeLLM(GenerationError("should not be called"))
    decision = run(DataSourceRouter(llm).route("find the company named Acme"))
    assert decision.target == "entities"
    assert decision.confidence == 0.95
    assert decision.entities_tables == ["entity"]
    assert llm.calls == []


def test_word_boundaries_do_not_misfire(run):
    decision = run(DataSourceRouter(None).route("hierarchy of accounts"))
    assert decision.target == "entities"
    assert decision.confidence == 0.75
    assert decision.matched_pattern == "default"
    assert decision.entities_tables == ["entity", "people", "address"]


def test_empty_question_is_unknown(run):
    llm = FakeLLM(GenerationError("should not be called"))
    decision = run(DataSourceRouter(llm).route(" ?! "))
    assert decision.target == "unknown"
    assert decision.confidence == 0.0
    assert llm.calls == []


def test_rule_routing_is_deterministic(run):
    router = DataSourceRouter(None)
    first = run(router.route("which reminders are overdue"))
    second = run(router.route("which reminders are overdue"))
    assert first == second


def test_ambiguous_question_uses_model(run):
    llm = FakeLLM(ai_reply(target="dms", confidence=0.6, reason="workflow question", dms_tables=["leads_tickets"]))
    decision = run(DataSourceRouter(llm, timeout_s=5).route("what happened last week"))
    assert decision.target == "dms"
    assert decision.confidence == 0.6
    assert decision.ai_used is True
    assert llm.calls[0]["temperature"] == 0.1
    assert llm.calls[0]["timeout_s"] == 5


def test_model_confidence_is_clamped_and_defaulted(run):
    high = run(DataSourceRouter(FakeLLM(ai_reply(target="entities", confidence=3))).route("anything new"))
    assert high.confidence == 1.0
    missing = run(DataSourceRouter(FakeLLM(ai_reply(target="entities"))).route("anything new"))
    assert missing.confidence == 0.5


def test_general_from_model_gets_default_markdown(run):
    llm = FakeLLM(ai_reply(target="general", confidence=0.9, reason="chit chat"))
    decision = run(DataSourceRouter(llm).route("how is your day going"))
    assert decision.target == "general"
    assert '"how is your day going"' in decision.markdownResponse


@pytest.mark.parametrize("reply", [
    GenerationTimeout("timed out"),
    "definitely not json",
    ai_reply(target="warehouse", confidence=0.9),
])
def test_model_failure_falls_back_to_signals(run, reply):
    decision = run(DataSourceRouter(FakeLLM(reply)).route("overdue balance for acme"))
    # overdue (0.75) beats balance (0.7)
    assert decision.target == "dms"
    assert decision.confidence == 0.75
    assert decision.dms_tables == ["leads_tickets"]
    assert decision.ai_used is False


@pytest.mark.parametrize("question", ["which items are pending", "follow up with acme", "escalate this"])
def test_weak_dms_signal_alone_falls_back_to_entities(run, question):
    llm = FakeLLM(GenerationError("down"))
    decision = run(DataSourceRouter(llm).route(question))
    assert len(llm.calls) == 1
    assert decision.target == "entities"
    assert decision.confidence == 0.75
    assert decision.entities_tables == ["entity", "people", "address"]
    assert decision.matched_pattern == "default"


def test_fallback_prefers_entities_on_tie(run):
    decision = run(DataSourceRouter(FakeLLM(GenerationError("down"))).route("priority for the currency desk"))
    # both sides score 0.7
    assert decision.target == "entities"
    assert decision.confidence == 0.7
