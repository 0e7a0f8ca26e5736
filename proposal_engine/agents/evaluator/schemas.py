from typing import List, Optional
from pydantic import BaseModel, Field

# =============================================================================
# OUTPUT SCHEMAS (Pydantic)
# =============================================================================

class CriterionVerdict(BaseModel):
    id: str = Field(description="Criterion id exactly as listed")
    score: float = Field(ge=0.0, le=1.0, description="Score between 0 and 1")
    justification: str = Field(default="", description="One or two sentences")


class EvaluatorVerdict(BaseModel):
    criteria: List[CriterionVerdict] = Field(default_factory=list)
    overall_score: Optional[float] = Field(
        default=None, ge=0.0, le=1.0,
        description="Optional holistic score; computed from criteria when absent"
    )
    feedback: str = Field(default="", description="Actionable feedback for the writer")
