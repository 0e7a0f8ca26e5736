from typing import List, Literal
from pydantic import BaseModel, Field

# =============================================================================
# OUTPUT SCHEMAS (Pydantic)
# =============================================================================

class Connection(BaseModel):
    """One link between a funder priority and something the applicant brings."""
    funder_priority: str = Field(description="The funder priority being addressed")
    applicant_strength: str = Field(description="The applicant capability or track record that meets it")
    evidence: str = Field(default="", description="Where this strength is demonstrated")
    strength: Literal["strong", "moderate", "weak"] = Field(
        default="moderate",
        description="How convincing the connection is"
    )


class ConnectionMap(BaseModel):
    connections: List[Connection] = Field(default_factory=list)
    gaps: List[str] = Field(
        default_factory=list,
        description="Funder priorities with no credible applicant connection yet"
    )
