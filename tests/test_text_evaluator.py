"""Tests for grading/text_evaluator.py (LLM replaced by a scripted fake)."""

import json

import pytest

from core.errors import EvaluationFailure
from core.models import RubricLine
from grading.text_evaluator import SYSTEM_PROMPT, EvaluationContext, LLMTextEvaluator, PartEvaluation


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeLLM:
    def __init__(self, content):
        self.content = content
        self.messages = None

    async def ainvoke(self, messages):
        self.messages = messages
        return FakeMessage(self.content)


def make_context(**overrides):
    data = dict(
        attempt_id="attempt-1",
        question_id="frq-methods",
        part_label="A",
        prompt="Write getTotal",
        response="int total = 0;",
        max_points=5,
        rubric=[RubricLine(criterion="Loops over the data", points=2)],
        scaffold="public int getTotal()",
        sample_solution=None,
    )
    data.update(overrides)
    return EvaluationContext(**data)


def test_build_prompt_sections():
    evaluator = LLMTextEvaluator(llm=FakeLLM("{}"))
    prompt = evaluator.build_prompt(make_context())

    assert prompt.startswith("# Free Response - Part (A) Evaluation")
    assert "## Method Signature\n```java\npublic int getTotal()\n```" in prompt
    assert "## Student's Code Submission\n```java\nint total = 0;\n```" in prompt
    assert "Sample Solution" not in prompt
    assert "## Scoring Rubric (5 points total)" in prompt
    assert '"criterion": "Loops over the data"' in prompt


def test_parse_ignores_unknown_fields():
    evaluator = LLMTextEvaluator(llm=FakeLLM("{}"))
    result = evaluator.parse("A", json.dumps({"score": 3, "confidence": "high",
                                              "rubric_scores": [{"criterion": "c", "earned": 1, "possible": 2}]}))
    assert isinstance(result, PartEvaluation)
    assert result.score == 3
    assert result.rubric_scores[0].feedback == ""


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"score": "many"}'])
def test_parse_rejects_malformed_payloads(payload):
    evaluator = LLMTextEvaluator(llm=FakeLLM(payload))
    with pytest.raises(EvaluationFailure):
        evaluator.parse("B", payload)


@pytest.mark.asyncio
async def test_evaluate_sends_system_and_user_messages():
    llm = FakeLLM(json.dumps({"score": 4, "general_feedback": "Nice"}))
    evaluator = LLMTextEvaluator(llm=llm)
    result = await evaluator.evaluate(make_context())

    assert result.score == 4
    assert result.general_feedback == "Nice"
    assert llm.messages[0].content == SYSTEM_PROMPT
    assert "Part (A)" in llm.messages[1].content


@pytest.mark.asyncio
async def test_empty_response_is_a_failure():
    evaluator = LLMTextEvaluator(llm=FakeLLM(""))
    with pytest.raises(EvaluationFailure):
        await evaluator.evaluate(make_context())
