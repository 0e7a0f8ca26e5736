"""
Solution Agent - Works out which solution the funder is seeking, based on the
research brief.
"""

import logging
from typing import Any, Dict

from proposal_engine.agents.base import GenerationContext, LLMAgent, parse_json_output, to_prompt_text
from proposal_engine.agents.solution.prompts import (
    REVISION_BLOCK,
    SOLUTION_SYSTEM_PROMPT,
    SOLUTION_USER_PROMPT,
)
from proposal_engine.agents.solution.schemas import SolutionAnalysis

logger = logging.getLogger(__name__)

DOCUMENT_EXCERPT_CHARS = 6000


class SolutionAgent(LLMAgent):

    def __init__(self, model: str = None, temperature: float = 0.4, llm=None):
        super().__init__(model=model, temperature=temperature, llm=llm)

    async def __call__(self, context: GenerationContext) -> Dict[str, Any]:
        revision_block = ""
        if context.is_revision:
            revision_block = REVISION_BLOCK.format(
                previous_content=to_prompt_text(context.previous_content),
                feedback="\n".join(filter(None, [context.evaluation_feedback, context.guidance])),
            )

        raw = await self._complete(
            SOLUTION_SYSTEM_PROMPT,
            SOLUTION_USER_PROMPT,
            {
                "project_name": context.project_name or "Untitled project",
                "research": to_prompt_text(context.upstream.get("research")),
                "document_excerpt": context.document_text[:DOCUMENT_EXCERPT_CHARS],
                "revision_block": revision_block,
            },
        )
        analysis = parse_json_output(raw, SolutionAnalysis)
        logger.info("Solution analysis ready: %s", analysis.primary_goal[:80])
        return analysis.model_dump()
