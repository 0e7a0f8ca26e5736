"""
Shared Agent Plumbing

Generation context handed to every content generator, the generator set the
graph is built from, and the LLM chain/JSON parsing helpers the default
agents share.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel, ValidationError

from proposal_engine.errors import ParsingError
from proposal_engine.settings import settings
from proposal_engine.state import PhaseRef, SectionRef

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class GenerationContext:
    """Everything a generator may use for one generation pass."""
    ref: Union[PhaseRef, SectionRef]
    project_name: str = ""
    document_text: str = ""
    upstream: Dict[str, Any] = field(default_factory=dict)
    previous_content: Any = None
    evaluation_feedback: Optional[str] = None
    guidance: Optional[str] = None
    revision: int = 0
    section_title: str = ""

    @property
    def is_revision(self) -> bool:
        return self.previous_content is not None and bool(self.evaluation_feedback or self.guidance)


ContentGenerator = Callable[[GenerationContext], Awaitable[Any]]


@dataclass(frozen=True)
class GeneratorSet:
    research: ContentGenerator
    solution: ContentGenerator
    connections: ContentGenerator
    section: ContentGenerator

    def for_ref(self, ref: Union[PhaseRef, SectionRef]) -> ContentGenerator:
        if isinstance(ref, SectionRef):
            return self.section
        if isinstance(ref, PhaseRef):
            return getattr(self, ref.phase.value)
        raise TypeError(f"Unsupported content reference: {ref!r}")


# =============================================================================
# OUTPUT PARSING
# =============================================================================

_FENCE = re.compile(r"^```(?:json|markdown|md)?\s*|\s*```$")


def strip_code_fences(content: str) -> str:
    cleaned = content.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE.sub("", cleaned)
    return cleaned.strip()


def _extract_json_object(content: str) -> str:
    cleaned = strip_code_fences(content)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return cleaned
    return cleaned[start:end + 1]


def parse_json_output(raw: str, model_cls: Type[ModelT]) -> ModelT:
    """
    Parse model output into model_cls.

    A direct parse is tried first, then one fallback after stripping code
    fences and cutting out the outermost JSON object.

    Raises:
        ParsingError: both attempts failed
    """
    try:
        return model_cls.model_validate_json(raw)
    except ValidationError:
        logger.debug("Direct parse into %s failed, retrying on extracted JSON", model_cls.__name__)

    try:
        return model_cls.model_validate_json(_extract_json_object(raw))
    except ValidationError as e:
        raise ParsingError(f"Could not parse {model_cls.__name__} from model output: {e}") from e


def to_prompt_text(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


# =============================================================================
# LLM AGENT BASE
# =============================================================================

class LLMAgent:
    """
    Base for the default Gemini-backed agents.

    Pass llm to use any LangChain chat model instead (tests use fakes).
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: float = 0.4,
        llm: Optional[BaseChatModel] = None,
    ):
        self.llm = llm or ChatGoogleGenerativeAI(
            model=model or settings.MODEL_NAME,
            temperature=temperature,
            google_api_key=settings.GEMINI_API_KEY,
        )

    async def _complete(self, system_prompt: str, user_prompt: str, variables: Dict[str, Any]) -> str:
        prompt = ChatPromptTemplate.from_messages([
            ("system", system_prompt),
            ("user", user_prompt),
        ])
        chain = prompt | self.llm | StrOutputParser()
        return await chain.ainvoke(variables)
