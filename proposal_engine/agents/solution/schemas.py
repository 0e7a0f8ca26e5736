from typing import List
from pydantic import BaseModel, Field

# =============================================================================
# OUTPUT SCHEMAS (Pydantic)
# =============================================================================

class SolutionAnalysis(BaseModel):
    """The solution the funder is looking for, as opposed to the one we want to sell."""
    primary_goal: str = Field(description="The outcome the funder is trying to achieve")
    preferred_approaches: List[str] = Field(
        default_factory=list,
        description="Approaches the funder signals it prefers"
    )
    constraints: List[str] = Field(
        default_factory=list,
        description="Budget, timing, geographic or methodological constraints"
    )
    explicitly_excluded: List[str] = Field(
        default_factory=list,
        description="Approaches or activities the funder will not support"
    )
    success_metrics: List[str] = Field(
        default_factory=list,
        description="How the funder will judge success"
    )
