"""
Agents

Default LLM-backed content generators and evaluator. Any async callable with
the same signature can replace them.
"""

from proposal_engine.agents.base import ContentGenerator, GenerationContext, GeneratorSet


def build_default_generators(llm=None) -> GeneratorSet:
    """Gemini-backed generators for every phase and for sections."""
    from proposal_engine.agents.connections import ConnectionsAgent
    from proposal_engine.agents.research import ResearchAgent
    from proposal_engine.agents.section_writer import SectionWriterAgent
    from proposal_engine.agents.solution import SolutionAgent

    return GeneratorSet(
        research=ResearchAgent(llm=llm),
        solution=SolutionAgent(llm=llm),
        connections=ConnectionsAgent(llm=llm),
        section=SectionWriterAgent(llm=llm),
    )


def build_default_evaluator(llm=None):
    from proposal_engine.agents.evaluator import EvaluatorAgent

    return EvaluatorAgent(llm=llm)


__all__ = [
    "ContentGenerator",
    "GenerationContext",
    "GeneratorSet",
    "build_default_evaluator",
    "build_default_generators",
]
