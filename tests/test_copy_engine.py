import asyncio
import json

import pytest

from ad_shipper.schemas.ad_copy import CopyState
from ad_shipper.services.copy_engine import MAX_ROUNDS, CopyContext, CopyEngine, CopyGenerationError
from ad_shipper.services.prompts import load_prompt

_AGENTS = ("drafter", "compliance_reviewer", "accuracy_reviewer", "reviser")


class FakeLLM:
    """Replies per agent, identified by its system prompt."""

    def __init__(self, replies: dict[str, list[str]]) -> None:
        self._by_prompt = {load_prompt("copy", agent)[0]: agent for agent in _AGENTS}
        self.replies = {agent: list(items) for agent, items in replies.items()}
        self.calls: list[str] = []
        self.messages: dict[str, list[str]] = {agent: [] for agent in _AGENTS}

    async def complete(self, system: str, user_message: str, params=None) -> str:
        agent = self._by_prompt[system]
        self.calls.append(agent)
        self.messages[agent].append(user_message)
        queue = self.replies[agent]
        return queue.pop(0) if len(queue) > 1 else queue[0]


def _copy(primary: str, headline: str = "Sleep better", description=None) -> str:
    payload = {"primaryText": primary, "headline": headline}
    if description is not None:
        payload["description"] = description
    return json.dumps(payload)


_PASS = json.dumps({"verdict": "PASS", "flags": []})
_FAIL = json.dumps({"verdict": "FAIL", "flags": [{"text": "cures insomnia", "issue": "medical claim"}]})
_GREEN = json.dumps({"verdict": "GREEN", "claims": []})
_RED = json.dumps({"verdict": "RED", "claims": [{"claim": "50% faster", "status": "RED"}]})

_CONTEXT = CopyContext(
    analysis={"emotionalTone": "calm", "keyMessages": ["falls asleep faster"]},
    angle="sleep quality",
    format="UGC",
    messenger="customer",
    deliverable_name="Sleep UGC 01",
)


def _engine(llm: FakeLLM) -> CopyEngine:
    return CopyEngine(llm, default_description="Learn more on our site")


def test_clean_draft_is_accepted_after_one_round():
    llm = FakeLLM(
        {
            "drafter": [_copy("Tired of tossing all night?")],
            "compliance_reviewer": [_PASS],
            "accuracy_reviewer": [_GREEN],
            "reviser": [_copy("unused")],
        }
    )

    result = asyncio.run(_engine(llm).generate(_CONTEXT))

    assert result.primary_text == "Tired of tossing all night?"
    assert result.description == "Learn more on our site"
    assert result.review_log.revised is False
    assert result.review_log.rounds == 1
    assert "reviser" not in llm.calls
    assert "sleep quality" in llm.messages["drafter"][0]


def test_flagged_draft_is_revised_once_then_accepted():
    llm = FakeLLM(
        {
            "drafter": [_copy("This cures insomnia!", description="Shop now")],
            "compliance_reviewer": [_FAIL, _PASS],
            "accuracy_reviewer": [_GREEN],
            "reviser": [_copy("Wake up feeling rested.")],
        }
    )

    result = asyncio.run(_engine(llm).generate(_CONTEXT))

    assert result.primary_text == "Wake up feeling rested."
    assert result.description == "Shop now"
    assert result.review_log.revised is True
    assert result.review_log.rounds == 2
    assert result.review_log.compliance.verdict == "PASS"
    assert llm.calls.count("reviser") == 1
    assert "medical claim" in llm.messages["reviser"][0]


def test_always_flagged_copy_stops_at_max_rounds():
    llm = FakeLLM(
        {
            "drafter": [_copy("50% faster sleep, guaranteed")],
            "compliance_reviewer": [_PASS],
            "accuracy_reviewer": [_RED],
            "reviser": [_copy("Still 50% faster sleep")],
        }
    )

    result = asyncio.run(_engine(llm).generate(_CONTEXT))

    assert result.review_log.rounds == MAX_ROUNDS
    assert result.review_log.revised is True
    assert result.review_log.accuracy.verdict == "RED"
    assert llm.calls.count("reviser") == MAX_ROUNDS - 1
    assert llm.calls.count("accuracy_reviewer") == MAX_ROUNDS


def test_reviewer_verdicts_are_normalized():
    llm = FakeLLM(
        {
            "drafter": [_copy("Rest easy.")],
            "compliance_reviewer": ['```json\n{"verdict": "pass with fixes", "flags": []}\n```', _PASS],
            "accuracy_reviewer": ['{"verdict": "green"}'],
            "reviser": [_copy("Rest easy tonight.")],
        }
    )

    result = asyncio.run(_engine(llm).generate(_CONTEXT))

    assert result.primary_text == "Rest easy tonight."
    assert result.review_log.rounds == 2


def test_empty_draft_raises_copy_generation_error():
    llm = FakeLLM(
        {
            "drafter": [_copy("   ", headline="")],
            "compliance_reviewer": [_PASS],
            "accuracy_reviewer": [_GREEN],
            "reviser": [_copy("unused")],
        }
    )

    with pytest.raises(CopyGenerationError) as excinfo:
        asyncio.run(_engine(llm).generate(_CONTEXT))
    assert excinfo.value.stage == "drafter"


def test_copy_states_are_ordered_names():
    assert [state.value for state in CopyState] == ["drafted", "reviewing", "revising", "accepted"]


def test_max_rounds_must_be_positive():
    with pytest.raises(ValueError):
        CopyEngine(FakeLLM({agent: ["{}"] for agent in _AGENTS}), default_description="x", max_rounds=0)


def test_unrecognised_verdict_with_plain_flags_goes_to_revision():
    llm = FakeLLM(
        {
            "drafter": [_copy("This cures insomnia overnight.")],
            "compliance_reviewer": [json.dumps({"verdict": "NEEDS_FIXES", "flags": ["remove the cure claim"]}), _PASS],
            "accuracy_reviewer": [_GREEN],
            "reviser": [_copy("Fall asleep with less tossing and turning.")],
        }
    )

    result = asyncio.run(_engine(llm).generate(_CONTEXT))

    assert llm.calls.count("reviser") == 1
    assert "remove the cure claim" in llm.messages["reviser"][0]
    assert result.primary_text == "Fall asleep with less tossing and turning."
    assert result.review_log.revised is True
    assert result.review_log.compliance.verdict == "PASS"
    assert result.review_log.rounds == 2
