import json
import logging

import pytest

from proposal_engine.evaluation import (
    Criteria,
    EvaluationGate,
    FileCriteriaProvider,
    RouteDecision,
    WeightedCriterion,
    calculate_overall_score,
    finalize_evaluation,
    route,
    status_after_evaluation,
)
from proposal_engine.resilience import CallPolicy
from proposal_engine.settings import PROJECT_ROOT
from proposal_engine.state import CriterionScore, EvaluationResult, ProcessingStatus


def _criteria(threshold=0.8, critical_threshold=0.6):
    return Criteria(
        content_type="research",
        passing_threshold=threshold,
        criteria=[
            WeightedCriterion(id="relevance", name="Relevance", weight=0.5, is_critical=True,
                              passing_threshold=critical_threshold),
            WeightedCriterion(id="clarity", name="Clarity", weight=0.5),
        ],
    )


# --- Pass rule ---

def test_score_equal_to_threshold_passes():
    result = finalize_evaluation(EvaluationResult(score=0.8, passed=False), _criteria(0.8))
    assert result.passed
    assert result.threshold == 0.8
    assert route(result, status_after_evaluation(result, 0, 2)) == RouteDecision.CONTINUE


def test_score_just_below_threshold_fails():
    result = finalize_evaluation(EvaluationResult(score=0.79, passed=True), _criteria(0.8))
    assert not result.passed
    status = status_after_evaluation(result, revisions_used=2, max_auto_revisions=2)
    assert status == ProcessingStatus.AWAITING_REVIEW
    assert route(result, status) == RouteDecision.AWAIT_REVIEW


def test_critical_criterion_failure_fails_overall():
    raw = EvaluationResult(
        score=0.85,
        passed=True,
        feedback="Strong overall",
        criteria_scores={
            "relevance": CriterionScore(score=0.4),
            "clarity": CriterionScore(score=1.0),
        },
    )
    result = finalize_evaluation(raw, _criteria(0.8))
    assert not result.passed
    assert "relevance" in result.feedback


def test_failed_evaluation_with_budget_requests_revision():
    failed = EvaluationResult(score=0.3, passed=False)
    status = status_after_evaluation(failed, revisions_used=0, max_auto_revisions=1)
    assert status == ProcessingStatus.REVISION_REQUESTED
    assert route(failed, status) == RouteDecision.REVISE


def test_missing_evaluation_awaits_review():
    assert status_after_evaluation(None, 0, 2) == ProcessingStatus.AWAITING_REVIEW
    assert route(None, ProcessingStatus.APPROVED) == RouteDecision.AWAIT_REVIEW


def test_passed_but_not_approved_awaits_review():
    passed = EvaluationResult(score=0.9, passed=True)
    assert route(passed, ProcessingStatus.AWAITING_REVIEW) == RouteDecision.AWAIT_REVIEW


async def test_gate_recomputes_pass_from_score():
    async def generous(content, criteria):
        return EvaluationResult(score=0.5, passed=True)

    gate = EvaluationGate(generous, CallPolicy(timeout=1, max_attempts=1, backoff_base=0, backoff_max=0))
    result = await gate.evaluate("text", _criteria(0.7))
    assert not result.passed
    assert result.score == 0.5


# --- Scores ---

def test_weighted_overall_score():
    scores = {"relevance": CriterionScore(score=1.0), "clarity": CriterionScore(score=0.5)}
    criteria = _criteria()
    criteria.criteria[0].weight = 0.75
    criteria.criteria[1].weight = 0.25
    assert calculate_overall_score(scores, criteria) == pytest.approx(0.875)


def test_unweighted_scores_fall_back_to_mean():
    scores = {"novelty": CriterionScore(score=0.2), "tone": CriterionScore(score=0.6)}
    assert calculate_overall_score(scores, _criteria()) == pytest.approx(0.4)
    assert calculate_overall_score({}, _criteria()) == 0.0


# --- Criteria loading ---

def test_section_types_fall_back_to_shared_file():
    provider = FileCriteriaProvider(PROJECT_ROOT / "config" / "criteria")
    budget = provider.load_criteria("section_budget")
    timeline = provider.load_criteria("section_timeline")

    assert budget.content_type == "section_budget"
    assert budget.passing_threshold == 0.75
    assert timeline.content_type == "section_timeline"
    assert timeline.passing_threshold == 0.7
    assert provider.load_criteria("section_timeline") is timeline


def test_shipped_criteria_weights_are_balanced():
    provider = FileCriteriaProvider(PROJECT_ROOT / "config" / "criteria")
    for content_type in ("research", "solution", "connections", "section_intro", "section_budget"):
        assert provider.load_criteria(content_type).weights_balanced(), content_type


def test_missing_file_uses_defaults(tmp_path, caplog):
    provider = FileCriteriaProvider(tmp_path, default_threshold=0.65)
    with caplog.at_level(logging.WARNING):
        criteria = provider.load_criteria("research")
    assert criteria.passing_threshold == 0.65
    assert {c.id for c in criteria.criteria} == {"relevance", "completeness", "clarity"}
    assert "using defaults" in caplog.text


def test_unbalanced_weights_are_reported(tmp_path, caplog):
    (tmp_path / "solution.json").write_text(json.dumps({
        "content_type": "solution",
        "passing_threshold": 0.7,
        "criteria": [
            {"id": "fit", "name": "Fit", "weight": 0.6},
            {"id": "feasibility", "name": "Feasibility", "weight": 0.6},
        ],
    }))
    with caplog.at_level(logging.WARNING):
        criteria = FileCriteriaProvider(tmp_path).load_criteria("solution")
    assert criteria.total_weight == pytest.approx(1.2)
    assert "sum to 1.200" in caplog.text


def test_invalid_file_uses_defaults(tmp_path, caplog):
    (tmp_path / "connections.json").write_text("{broken")
    with caplog.at_level(logging.WARNING):
        criteria = FileCriteriaProvider(tmp_path).load_criteria("connections")
    assert criteria.content_type == "connections"
    assert "Invalid criteria file" in caplog.text
