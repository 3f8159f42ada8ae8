import asyncio

import pytest

from app.services.llm.base import LLMError, LLMOutputError
from app.services.llm.models import EvaluationResponse
from app.services.llm.orchestrator import LLMOrchestrator


def evaluate(orchestrator):
    return asyncio.run(orchestrator.complete_json("system", "user", EvaluationResponse))


def test_complete_text_passes_prompts(fake_provider):
    fake_provider.queue("hello")
    orchestrator = LLMOrchestrator(provider=fake_provider)

    assert asyncio.run(orchestrator.complete_text("sys", "usr")) == "hello"
    assert fake_provider.calls[0]["system_prompt"] == "sys"
    assert fake_provider.calls[0]["messages"] == [{"role": "user", "content": "usr"}]


def test_json_inside_code_block(fake_provider):
    fake_provider.queue('Here you go:\n```json\n{"canDetermineLevel": false, "message": "Tell me more"}\n```')
    result = evaluate(LLMOrchestrator(provider=fake_provider))
    assert result.canDetermineLevel is False
    assert result.message == "Tell me more"
    assert result.skillResults == []


def test_json_surrounded_by_prose(fake_provider):
    fake_provider.queue(
        'Sure! {"canDetermineLevel": true, "message": "Done", '
        '"skillResults": [{"skillId": 1, "skillLevelId": 2, "feedback": "ok"}]} Thanks'
    )
    result = evaluate(LLMOrchestrator(provider=fake_provider))
    assert result.skillResults[0].skillLevelId == 2


def test_invalid_json_is_retried_with_fix_prompt(fake_provider):
    fake_provider.queue("not json at all", '{"canDetermineLevel": false, "message": "Again"}')
    result = evaluate(LLMOrchestrator(provider=fake_provider))

    assert result.message == "Again"
    retry_messages = fake_provider.calls[1]["messages"]
    assert [m["role"] for m in retry_messages] == ["user", "assistant", "user"]
    assert "not valid JSON" in retry_messages[2]["content"]


def test_unparseable_after_retry_raises_output_error(fake_provider):
    fake_provider.queue("nope", "still nope")
    with pytest.raises(LLMOutputError):
        evaluate(LLMOrchestrator(provider=fake_provider))


def test_provider_failure_propagates(fake_provider):
    fake_provider.queue(LLMError("down"))
    with pytest.raises(LLMError):
        evaluate(LLMOrchestrator(provider=fake_provider))
