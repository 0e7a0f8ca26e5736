"""
Research Agent Module

Turns the solicitation text into a structured research brief.
"""

from proposal_engine.agents.research.agent import ResearchAgent

__all__ = ["ResearchAgent"]
