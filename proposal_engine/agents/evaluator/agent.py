"""
Evaluator Agent - Scores generated content against weighted criteria.

The pass/fail decision is left to the evaluation gate; this agent only
produces scores and feedback.
"""

import logging

from proposal_engine.agents.base import LLMAgent, parse_json_output
from proposal_engine.agents.evaluator.prompts import EVALUATOR_SYSTEM_PROMPT, EVALUATOR_USER_PROMPT
from proposal_engine.agents.evaluator.schemas import EvaluatorVerdict
from proposal_engine.evaluation.criteria import Criteria, calculate_overall_score
from proposal_engine.state import CriterionScore, EvaluationResult

logger = logging.getLogger(__name__)


class EvaluatorAgent(LLMAgent):

    def __init__(self, model: str = None, temperature: float = 0.2, llm=None):
        super().__init__(model=model, temperature=temperature, llm=llm)

    async def __call__(self, content: str, criteria: Criteria) -> EvaluationResult:
        raw = await self._complete(
            EVALUATOR_SYSTEM_PROMPT,
            EVALUATOR_USER_PROMPT,
            {
                "content_type": criteria.content_type,
                "criteria": criteria.format_for_prompt(),
                "content": content,
            },
        )
        verdict = parse_json_output(raw, EvaluatorVerdict)

        known = {c.id for c in criteria.criteria}
        criteria_scores = {
            v.id: CriterionScore(score=v.score, justification=v.justification)
            for v in verdict.criteria
            if v.id in known
        }
        if len(criteria_scores) < len(verdict.criteria):
            logger.warning("Evaluator returned unknown criteria for %s", criteria.content_type)

        score = calculate_overall_score(criteria_scores, criteria) if criteria_scores else verdict.overall_score
        return EvaluationResult(
            score=score or 0.0,
            passed=False,
            feedback=verdict.feedback,
            criteria_scores=criteria_scores,
        )
