"""
Text Evaluator - rubric-based grading of one free-response part.

Features:
    - Rubric-aware grading prompt with penalty and no-penalty lists
    - JSON-mode LLM call, parsed into a validated PartEvaluation
    - Any transport, parse or validation problem raised as EvaluationFailure
"""

import json
from typing import List, Optional, Sequence, Union
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, ValidationError
from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage

from core.errors import EvaluationFailure
from core.models import RubricLine


@dataclass
class EvaluationContext:
    """Everything the evaluator needs to grade one part."""
    attempt_id: str
    question_id: str
    part_label: str
    prompt: str
    response: str
    max_points: int
    rubric: Sequence[RubricLine] = ()
    scaffold: Optional[str] = None
    sample_solution: Optional[str] = None


# ==================== Evaluation Result ====================

class RubricScore(BaseModel):
    model_config = ConfigDict(extra="ignore")

    criterion: str = ""
    earned: float = 0
    possible: float = 0
    feedback: str = ""


class Penalty(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    points: float = 1
    reason: str = ""


class PartEvaluation(BaseModel):
    """Structured result returned by the text-evaluation service."""
    model_config = ConfigDict(extra="ignore")

    score: float = 0
    max_score: Optional[float] = None
    rubric_scores: List[RubricScore] = []
    penalties: List[Penalty] = []
    general_feedback: str = ""
    strengths: List[str] = []
    improvements: List[str] = []


# ==================== Evaluators ====================

class TextEvaluator:
    """Interface of the text-evaluation collaborator."""

    async def evaluate(self, context: EvaluationContext) -> Union[PartEvaluation, dict]:
        raise NotImplementedError


SYSTEM_PROMPT = """You are an expert AP Computer Science A grader. Your role is to evaluate student free-response answers according to the official scoring guidelines.

Key principles:
1. Apply the question-specific rubric strictly and precisely
2. Award points only when criteria are fully met
3. Apply penalties according to the guidelines (max 3 penalties per question)
4. Use the "No Penalty" list to avoid over-penalizing minor errors
5. Be fair but rigorous - partial credit is given for partial work
6. Provide constructive feedback that helps students improve

Penalties (1 point each, max 3 per question):
- Array/collection access confusion ([] vs get)
- Extraneous code causing side-effects
- Local variables used but none declared
- Destruction of persistent data
- Void method/constructor returning a value

No Penalty for:
- Spelling/case discrepancies with no ambiguity
- Missing semicolons where intent is clear
- Missing braces where indentation shows intent
- = vs == confusion
- length/size confusion
- Common punctuation variations

Return your evaluation as a JSON object with this exact structure:
{
  "score": number,
  "max_score": number,
  "rubric_scores": [
    {"criterion": "string", "earned": number, "possible": number, "feedback": "string"}
  ],
  "penalties": [
    {"type": "string", "points": number, "reason": "string"}
  ],
  "general_feedback": "string",
  "strengths": ["string"],
  "improvements": ["string"]
}"""


class LLMTextEvaluator(TextEvaluator):
    """Grades a part with an OpenAI chat model in JSON mode."""

    def __init__(self, model: str = "gpt-4o", temperature: float = 0.3, llm=None):
        if llm is None:
            llm = ChatOpenAI(model=model, temperature=temperature).bind(
                response_format={"type": "json_object"}
            )
        self.llm = llm

    def build_prompt(self, context: EvaluationContext) -> str:
        """User prompt for one part: instructions, submission, reference and rubric."""
        rubric = json.dumps(
            [{"criterion": line.criterion, "points": line.points} for line in context.rubric],
            indent=2,
        )
        sections = [
            f"# Free Response - Part ({context.part_label}) Evaluation",
            f"## Part ({context.part_label}) Instructions\n{context.prompt}",
        ]
        if context.scaffold:
            sections.append(f"## Method Signature\n```java\n{context.scaffold}\n```")
        sections.append(f"## Student's Code Submission\n```java\n{context.response}\n```")
        if context.sample_solution:
            sections.append(f"## Sample Solution (for reference)\n```java\n{context.sample_solution}\n```")
        sections.append(f"## Scoring Rubric ({context.max_points} points total)\n{rubric}")
        sections.append(
            "## Instructions\n"
            "Evaluate the student's code according to the rubric above. For each criterion:\n"
            "1. Determine if the criterion is met\n"
            "2. Award the appropriate points\n"
            "3. Provide specific feedback\n\n"
            "Check for penalty conditions and apply up to 3 penalties (1 point each).\n\n"
            "Remember: Apply the \"No Penalty\" list to avoid over-penalizing minor syntax issues."
        )
        return "\n\n".join(sections)

    def parse(self, part_label: str, content: str) -> PartEvaluation:
        try:
            return PartEvaluation.model_validate(json.loads(content))
        except (ValueError, TypeError, ValidationError) as e:
            raise EvaluationFailure(part_label, f"unparsable evaluation: {e}") from e

    async def evaluate(self, context: EvaluationContext) -> PartEvaluation:
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=self.build_prompt(context)),
        ]
        response = await self.llm.ainvoke(messages)
        if not response.content:
            raise EvaluationFailure(context.part_label, "empty response from evaluator")
        return self.parse(context.part_label, response.content)
