"""
Connections Agent - Maps funder priorities onto applicant strengths.
"""

import logging
from typing import Any, Dict

from proposal_engine.agents.base import GenerationContext, LLMAgent, parse_json_output, to_prompt_text
from proposal_engine.agents.connections.prompts import (
    CONNECTIONS_SYSTEM_PROMPT,
    CONNECTIONS_USER_PROMPT,
    REVISION_BLOCK,
)
from proposal_engine.agents.connections.schemas import ConnectionMap

logger = logging.getLogger(__name__)


class ConnectionsAgent(LLMAgent):

    def __init__(self, model: str = None, temperature: float = 0.5, llm=None):
        super().__init__(model=model, temperature=temperature, llm=llm)

    async def __call__(self, context: GenerationContext) -> Dict[str, Any]:
        revision_block = ""
        if context.is_revision:
            revision_block = REVISION_BLOCK.format(
                previous_content=to_prompt_text(context.previous_content),
                feedback="\n".join(filter(None, [context.evaluation_feedback, context.guidance])),
            )

        raw = await self._complete(
            CONNECTIONS_SYSTEM_PROMPT,
            CONNECTIONS_USER_PROMPT,
            {
                "project_name": context.project_name or "Untitled project",
                "research": to_prompt_text(context.upstream.get("research")),
                "solution": to_prompt_text(context.upstream.get("solution")),
                "revision_block": revision_block,
            },
        )
        connection_map = parse_json_output(raw, ConnectionMap)
        logger.info("Connection map ready: %d connections, %d gaps",
                    len(connection_map.connections), len(connection_map.gaps))
        return connection_map.model_dump()
