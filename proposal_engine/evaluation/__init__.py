from proposal_engine.evaluation.criteria import (
    Criteria,
    CriteriaProvider,
    FileCriteriaProvider,
    WeightedCriterion,
    calculate_overall_score,
    default_criteria,
)
from proposal_engine.evaluation.gate import (
    EvaluationGate,
    Evaluator,
    RouteDecision,
    finalize_evaluation,
    route,
    status_after_evaluation,
)
