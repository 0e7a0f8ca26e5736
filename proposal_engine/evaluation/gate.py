"""
Evaluation Gate

Turns a quality assessment into a routing outcome:
- continue:      passed and approved
- revise:        failed and an automatic revision was requested
- await_review:  everything else, including a missing evaluation
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from proposal_engine.evaluation.criteria import Criteria
from proposal_engine.resilience import CallPolicy, call_with_resilience
from proposal_engine.state import EvaluationResult, ProcessingStatus

logger = logging.getLogger(__name__)

Evaluator = Callable[[str, Criteria], Awaitable[EvaluationResult]]


class RouteDecision(str, Enum):
    CONTINUE = "continue"
    REVISE = "revise"
    AWAIT_REVIEW = "await_review"


def route(evaluation: Optional[EvaluationResult], status: ProcessingStatus) -> RouteDecision:
    """
    Routing rule applied after every evaluation.

    Returns:
        CONTINUE if passed and approved, REVISE if failed and revision was
        requested, AWAIT_REVIEW otherwise
    """
    if evaluation is None:
        return RouteDecision.AWAIT_REVIEW
    if evaluation.passed and status == ProcessingStatus.APPROVED:
        return RouteDecision.CONTINUE
    if not evaluation.passed and status == ProcessingStatus.REVISION_REQUESTED:
        return RouteDecision.REVISE
    return RouteDecision.AWAIT_REVIEW


def status_after_evaluation(
    evaluation: Optional[EvaluationResult],
    revisions_used: int,
    max_auto_revisions: int,
) -> ProcessingStatus:
    """Status a content item takes once its evaluation is known."""
    if evaluation is None:
        return ProcessingStatus.AWAITING_REVIEW
    if evaluation.passed:
        return ProcessingStatus.APPROVED
    if revisions_used < max_auto_revisions:
        return ProcessingStatus.REVISION_REQUESTED
    return ProcessingStatus.AWAITING_REVIEW


def finalize_evaluation(result: EvaluationResult, criteria: Criteria) -> EvaluationResult:
    """
    Recompute pass/fail from the score so evaluators cannot disagree with
    the threshold. score == threshold passes; a critical criterion below
    its own threshold fails the whole evaluation.
    """
    score = min(max(result.score, 0.0), 1.0)

    critical_failures = [
        c.id
        for c in criteria.criteria
        if c.is_critical
        and c.id in result.criteria_scores
        and result.criteria_scores[c.id].score < c.passing_threshold
    ]
    passed = score >= criteria.passing_threshold and not critical_failures

    feedback = result.feedback
    if critical_failures:
        feedback = (feedback + "\n" if feedback else "") + (
            f"Critical criteria below threshold: {', '.join(critical_failures)}"
        )

    return result.model_copy(
        update={
            "score": score,
            "passed": passed,
            "feedback": feedback,
            "threshold": criteria.passing_threshold,
        }
    )


class EvaluationGate:
    """Runs an evaluator under the call policy and applies the pass rule."""

    def __init__(self, evaluator: Evaluator, policy: Optional[CallPolicy] = None):
        self.evaluator = evaluator
        self.policy = policy or CallPolicy()

    async def evaluate(self, content: str, criteria: Criteria) -> EvaluationResult:
        raw = await call_with_resilience(
            self.evaluator,
            content,
            criteria,
            policy=self.policy,
            label=f"evaluation of {criteria.content_type}",
        )
        result = finalize_evaluation(raw, criteria)
        logger.info(
            "Evaluated %s: score=%.2f threshold=%.2f passed=%s",
            criteria.content_type,
            result.score,
            criteria.passing_threshold,
            result.passed,
        )
        return result

    route = staticmethod(route)
