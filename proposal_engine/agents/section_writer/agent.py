"""
Section Writer Agent - Drafts one proposal section from the phase results and
the sections it depends on.
"""

import logging

from proposal_engine.agents.base import GenerationContext, LLMAgent, strip_code_fences, to_prompt_text
from proposal_engine.agents.section_writer.prompts import (
    REVISION_BLOCK,
    SECTION_SYSTEM_PROMPT,
    SECTION_USER_PROMPT,
)
from proposal_engine.errors import ParsingError

logger = logging.getLogger(__name__)


class SectionWriterAgent(LLMAgent):

    def __init__(self, model: str = None, temperature: float = 0.7, llm=None):
        super().__init__(model=model, temperature=temperature, llm=llm)

    def _format_dependencies(self, context: GenerationContext) -> str:
        sections = context.upstream.get("sections") or {}
        if not sections:
            return "None"
        return "\n\n".join(f"### {section_id}\n{content}" for section_id, content in sections.items())

    async def __call__(self, context: GenerationContext) -> str:
        revision_block = ""
        if context.previous_content and (context.evaluation_feedback or context.guidance):
            revision_block = REVISION_BLOCK.format(
                previous_content=context.previous_content,
                feedback="\n".join(filter(None, [context.evaluation_feedback, context.guidance])),
            )

        raw = await self._complete(
            SECTION_SYSTEM_PROMPT,
            SECTION_USER_PROMPT,
            {
                "project_name": context.project_name or "Untitled project",
                "section_title": context.section_title,
                "research": to_prompt_text(context.upstream.get("research")),
                "solution": to_prompt_text(context.upstream.get("solution")),
                "connections": to_prompt_text(context.upstream.get("connections")),
                "dependencies": self._format_dependencies(context),
                "revision_block": revision_block,
            },
        )
        content = strip_code_fences(raw)
        if not content:
            raise ParsingError(f"Empty draft returned for {context.section_title}")
        logger.info("Drafted %s (%d chars)", context.section_title, len(content))
        return content
