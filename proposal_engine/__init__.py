"""
Proposal Workflow Engine

Resumable, quality-gated workflow for drafting funding proposals:
research -> solution analysis -> connection mapping -> per-section drafting,
with human review interrupts, dependency-aware invalidation and durable
checkpoints.
"""

__version__ = "0.1.0"
