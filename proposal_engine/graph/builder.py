"""
Proposal Graph Builder

Pure construction of the proposal pipeline. Call build_proposal_graph() once
per process (or per test) and compile the result against a checkpoint store;
no graph is built at import time.

    load_document
        -> research -> evaluate_research -> review_research
        -> solution -> evaluate_solution -> review_solution
        -> connections -> evaluate_connections -> review_connections
        -> section_manager <-> write_section -> evaluate_section -> review_section
        -> complete
"""

from functools import partial

from proposal_engine.agents.base import GeneratorSet
from proposal_engine.dependencies import DependencyMap
from proposal_engine.documents import DocumentProvider
from proposal_engine.evaluation.criteria import CriteriaProvider
from proposal_engine.evaluation.gate import EvaluationGate
from proposal_engine.graph import nodes as n
from proposal_engine.graph.runner import WorkflowGraph
from proposal_engine.resilience import CallPolicy
from proposal_engine.state import PHASE_ORDER, PhaseRef

_SLACK_STEPS = 10


def recursion_limit_for(section_count: int, max_auto_revisions: int) -> int:
    # generate + evaluate per automatic revision, plus review and a manager hop
    per_item = 2 * (max_auto_revisions + 1) + 2
    return 1 + len(PHASE_ORDER) * per_item + section_count * per_item + 2 + _SLACK_STEPS


def build_proposal_graph(
    generators: GeneratorSet,
    gate: EvaluationGate,
    criteria_provider: CriteriaProvider,
    dependency_map: DependencyMap,
    document_provider: DocumentProvider,
    policy: CallPolicy,
    max_auto_revisions: int = 2,
) -> WorkflowGraph:
    """
    Register every node and transition of the proposal pipeline.

    Returns:
        A fresh WorkflowGraph, ready to compile()
    """
    nodes = n.ProposalNodes(
        generators=generators,
        gate=gate,
        criteria_provider=criteria_provider,
        dependency_map=dependency_map,
        document_provider=document_provider,
        policy=policy,
        max_auto_revisions=max_auto_revisions,
    )
    graph = WorkflowGraph()

    graph.register_node(n.LOAD_DOCUMENT, nodes.load_document)
    graph.set_entry_point(n.LOAD_DOCUMENT)
    graph.register_edge(n.LOAD_DOCUMENT, n.generate_node(PHASE_ORDER[0]))

    # Phases
    for position, phase in enumerate(PHASE_ORDER):
        ref = PhaseRef(phase=phase)
        generate, evaluate, review = n.generate_node(phase), n.evaluate_node(phase), n.review_node(phase)
        next_step = (
            n.generate_node(PHASE_ORDER[position + 1])
            if position + 1 < len(PHASE_ORDER)
            else n.SECTION_MANAGER
        )

        graph.register_node(generate, partial(nodes.generate_phase, phase=phase), content_ref=ref)
        graph.register_node(evaluate, partial(nodes.evaluate_phase, phase=phase), content_ref=ref)
        graph.register_node(review, partial(nodes.review_phase, phase=phase), content_ref=ref)

        graph.register_edge(generate, evaluate)
        graph.register_conditional_edge(
            evaluate,
            partial(nodes.route_after_evaluation, ref=ref, generate=generate, review=review, next_step=next_step),
        )
        graph.register_conditional_edge(
            review,
            partial(nodes.route_after_review, ref=ref, generate=generate, review=review, next_step=next_step),
        )

    # Sections
    graph.register_node(n.SECTION_MANAGER, nodes.section_manager)
    graph.register_node(n.WRITE_SECTION, nodes.write_section, content_ref=n.active_section_ref)
    graph.register_node(n.EVALUATE_SECTION, nodes.evaluate_section, content_ref=n.active_section_ref)
    graph.register_node(n.REVIEW_SECTION, nodes.review_section, content_ref=n.active_section_ref)
    graph.register_node(n.COMPLETE, nodes.complete)

    graph.register_conditional_edge(n.SECTION_MANAGER, nodes.route_from_manager)
    graph.register_edge(n.WRITE_SECTION, n.EVALUATE_SECTION)
    graph.register_conditional_edge(n.EVALUATE_SECTION, partial(_route_section, nodes.route_after_evaluation))
    graph.register_conditional_edge(n.REVIEW_SECTION, partial(_route_section, nodes.route_after_review))

    return graph


def _route_section(router, state) -> str:
    ref = n.active_section_ref(state)
    if ref is None:
        return n.SECTION_MANAGER
    return router(
        state,
        ref=ref,
        generate=n.WRITE_SECTION,
        review=n.REVIEW_SECTION,
        next_step=n.SECTION_MANAGER,
    )

