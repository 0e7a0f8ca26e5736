"""
SQLModel Database Models

Durable checkpoint history: one row per persisted WorkflowState version.
"""

from datetime import datetime
from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import SQLModel, Field

from proposal_engine.utils.id_generator import generate_checkpoint_id


class CheckpointRow(SQLModel, table=True):
    """
    A versioned snapshot of one run's WorkflowState.

    The latest version of a thread is the row with the highest version.
    updated_at is stored as timezone-aware UTC.
    """
    __tablename__ = "workflow_checkpoints"
    __table_args__ = (
        UniqueConstraint("thread_id", "version", name="uq_checkpoint_thread_version"),
    )

    id: str = Field(default_factory=generate_checkpoint_id, primary_key=True)
    thread_id: str = Field(index=True, max_length=64)
    version: int = Field(index=True)
    state_json: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), index=True, nullable=False))
