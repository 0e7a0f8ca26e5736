from typing import List
from pydantic import BaseModel, Field

# =============================================================================
# OUTPUT SCHEMAS (Pydantic)
# =============================================================================

class ResearchBrief(BaseModel):
    """What the solicitation tells us about the funder and the opportunity."""
    summary: str = Field(description="Two to four sentence overview of the opportunity")
    funder_priorities: List[str] = Field(
        default_factory=list,
        description="Priorities and values the funder states or clearly implies"
    )
    eligibility: List[str] = Field(
        default_factory=list,
        description="Eligibility rules and hard requirements for applicants"
    )
    requirements: List[str] = Field(
        default_factory=list,
        description="Deliverables, formats and mandatory sections requested"
    )
    evaluation_approach: List[str] = Field(
        default_factory=list,
        description="How proposals will be scored, if stated"
    )
    key_terms: List[str] = Field(
        default_factory=list,
        description="Vocabulary the funder uses that the proposal should mirror"
    )
