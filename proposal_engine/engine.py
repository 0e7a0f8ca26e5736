"""
Engine Assembly

Wires configuration, the checkpoint store, agents and the compiled graph
into an Orchestrator. Used by the API lifespan and by scripts.
"""

import logging
from typing import Optional

from proposal_engine.agents import GeneratorSet, build_default_evaluator, build_default_generators
from proposal_engine.checkpoint import CheckpointStore, build_checkpoint_store
from proposal_engine.dependencies import DependencyMap, load_dependency_map
from proposal_engine.documents import DocumentProvider, LocalDocumentProvider
from proposal_engine.evaluation import CriteriaProvider, EvaluationGate, Evaluator, FileCriteriaProvider
from proposal_engine.graph import build_proposal_graph
from proposal_engine.orchestrator import Orchestrator
from proposal_engine.resilience import CallPolicy
from proposal_engine.settings import Settings

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
    store: CheckpointStore,
    dependency_map: DependencyMap,
    generators: GeneratorSet,
    evaluator: Evaluator,
    criteria_provider: Optional[CriteriaProvider] = None,
    document_provider: Optional[DocumentProvider] = None,
) -> Orchestrator:
    """Compile a fresh proposal graph around the given collaborators."""
    policy = CallPolicy.from_settings(settings)
    graph = build_proposal_graph(
        generators=generators,
        gate=EvaluationGate(evaluator, policy),
        criteria_provider=criteria_provider or FileCriteriaProvider(
            settings.CRITERIA_DIR, settings.DEFAULT_PASSING_THRESHOLD
        ),
        dependency_map=dependency_map,
        document_provider=document_provider or LocalDocumentProvider(settings.DOCUMENTS_DIR),
        policy=policy,
        max_auto_revisions=settings.MAX_AUTO_REVISIONS,
    )
    return Orchestrator(
        workflow=graph.compile(store),
        store=store,
        dependency_map=dependency_map,
        max_auto_revisions=settings.MAX_AUTO_REVISIONS,
    )


async def open_default_engine(settings: Settings) -> Orchestrator:
    """
    Production wiring: dependency map from disk, configured store and the
    Gemini-backed agents.

    Raises:
        DependencyConfigInvalid: malformed dependency configuration
        ValueError: invalid settings
    """
    settings.validate()
    dependency_map = load_dependency_map(settings.DEPENDENCY_CONFIG_PATH)
    store = await build_checkpoint_store(settings)
    return build_orchestrator(
        settings,
        store=store,
        dependency_map=dependency_map,
        generators=build_default_generators(),
        evaluator=build_default_evaluator(),
    )
