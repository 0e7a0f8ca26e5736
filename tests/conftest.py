import asyncio
from typing import Dict, List, Optional

import pytest

from proposal_engine.agents.base import GenerationContext, GeneratorSet
from proposal_engine.checkpoint.memory import MemoryCheckpointStore
from proposal_engine.dependencies import DependencyMap
from proposal_engine.documents import InMemoryDocumentProvider
from proposal_engine.engine import build_orchestrator
from proposal_engine.evaluation.criteria import Criteria
from proposal_engine.settings import Settings
from proposal_engine.state import EvaluationResult, SectionRef


# --- Fakes ---

class FakeGenerator:
    """
    Records every context it is called with. Content is derived from the
    reference and the call number; failures can be scripted per call.
    """

    def __init__(self, failures: Optional[List[Exception]] = None, delay: float = 0.0):
        self.calls: List[GenerationContext] = []
        self.failures = list(failures or [])
        self.delay = delay

    async def __call__(self, context: GenerationContext):
        self.calls.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        attempt = len(self.calls)
        if isinstance(context.ref, SectionRef):
            return f"Draft of {context.ref.section_id} #{attempt}"
        return {"summary": f"{context.ref.phase.value} #{attempt}"}

    def calls_for(self, key: str) -> List[GenerationContext]:
        return [call for call in self.calls if call.ref.key == key]


class ScriptedEvaluator:
    """Scores per content type, consumed in order; default once exhausted."""

    def __init__(self, scores: Optional[Dict[str, List[float]]] = None, default: float = 0.9):
        self.scores = {key: list(values) for key, values in (scores or {}).items()}
        self.default = default
        self.calls: List[str] = []

    async def __call__(self, content: str, criteria: Criteria) -> EvaluationResult:
        self.calls.append(criteria.content_type)
        queue = self.scores.get(criteria.content_type)
        score = queue.pop(0) if queue else self.default
        return EvaluationResult(
            score=score,
            passed=False,
            feedback=f"Feedback for {criteria.content_type} at {score}",
        )


class StaticCriteriaProvider:
    def __init__(self, threshold: float = 0.8):
        self.threshold = threshold

    def load_criteria(self, content_type: str) -> Criteria:
        return Criteria(content_type=content_type, passing_threshold=self.threshold)


# --- Fixtures ---

@pytest.fixture
def test_settings():
    return Settings(
        STEP_TIMEOUT_SECONDS=0.5,
        RETRY_MAX_ATTEMPTS=3,
        RETRY_BACKOFF_BASE=0.0,
        RETRY_BACKOFF_MAX=0.0,
        MAX_AUTO_REVISIONS=1,
    )


@pytest.fixture
def dependency_map():
    return DependencyMap({
        "intro": [],
        "body": ["intro"],
        "conclusion": ["body"],
    })


@pytest.fixture
def store():
    return MemoryCheckpointStore()


@pytest.fixture
def documents():
    return InMemoryDocumentProvider({
        "rfp-1": "The foundation funds community literacy programs in rural districts.",
    })


@pytest.fixture
def make_engine(test_settings, dependency_map, store, documents):
    """Build an orchestrator around fake agents; returns (orchestrator, fakes)."""

    def factory(
        evaluator: Optional[ScriptedEvaluator] = None,
        phase_generator: Optional[FakeGenerator] = None,
        section_generator: Optional[FakeGenerator] = None,
        threshold: float = 0.8,
    ):
        phase_generator = phase_generator or FakeGenerator()
        section_generator = section_generator or FakeGenerator()
        evaluator = evaluator or ScriptedEvaluator()
        orchestrator = build_orchestrator(
            test_settings,
            store=store,
            dependency_map=dependency_map,
            generators=GeneratorSet(
                research=phase_generator,
                solution=phase_generator,
                connections=phase_generator,
                section=section_generator,
            ),
            evaluator=evaluator,
            criteria_provider=StaticCriteriaProvider(threshold),
            document_provider=documents,
        )
        return orchestrator, phase_generator, section_generator, evaluator

    return factory
