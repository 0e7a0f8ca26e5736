from proposal_engine.agents.solution.agent import SolutionAgent

__all__ = ["SolutionAgent"]
