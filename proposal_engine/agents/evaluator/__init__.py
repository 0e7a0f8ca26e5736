from proposal_engine.agents.evaluator.agent import EvaluatorAgent

__all__ = ["EvaluatorAgent"]
