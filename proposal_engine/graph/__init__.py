from proposal_engine.graph.builder import build_proposal_graph, recursion_limit_for
from proposal_engine.graph.runner import END, CompiledWorkflow, WorkflowGraph, interrupt_update

__all__ = [
    "END",
    "CompiledWorkflow",
    "WorkflowGraph",
    "build_proposal_graph",
    "interrupt_update",
    "recursion_limit_for",
]
