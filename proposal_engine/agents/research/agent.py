"""
Research Agent - Extracts the funder's priorities and requirements from the
solicitation document.
"""

import logging
from typing import Any, Dict

from proposal_engine.agents.base import GenerationContext, LLMAgent, parse_json_output, to_prompt_text
from proposal_engine.agents.research.prompts import (
    REVISION_BLOCK,
    RESEARCH_SYSTEM_PROMPT,
    RESEARCH_USER_PROMPT,
)
from proposal_engine.agents.research.schemas import ResearchBrief

logger = logging.getLogger(__name__)


class ResearchAgent(LLMAgent):

    def __init__(self, model: str = None, temperature: float = 0.3, llm=None):
        super().__init__(model=model, temperature=temperature, llm=llm)

    async def __call__(self, context: GenerationContext) -> Dict[str, Any]:
        revision_block = ""
        if context.is_revision:
            revision_block = REVISION_BLOCK.format(
                previous_content=to_prompt_text(context.previous_content),
                feedback="\n".join(filter(None, [context.evaluation_feedback, context.guidance])),
            )

        raw = await self._complete(
            RESEARCH_SYSTEM_PROMPT,
            RESEARCH_USER_PROMPT,
            {
                "project_name": context.project_name or "Untitled project",
                "document_text": context.document_text,
                "revision_block": revision_block,
            },
        )
        brief = parse_json_output(raw, ResearchBrief)
        logger.info("Research brief ready: %d priorities, %d requirements",
                    len(brief.funder_priorities), len(brief.requirements))
        return brief.model_dump()
