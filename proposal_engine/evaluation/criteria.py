"""
Evaluation Criteria

Weighted criteria per content type, loaded from JSON files with a built-in
default when a file is missing or unreadable.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, Field, ValidationError

from proposal_engine.state import CriterionScore

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01


class WeightedCriterion(BaseModel):
    id: str
    name: str
    description: str = ""
    weight: float = Field(..., ge=0.0, le=1.0)
    is_critical: bool = False
    passing_threshold: float = Field(0.5, ge=0.0, le=1.0)


class Criteria(BaseModel):
    content_type: str
    passing_threshold: float = Field(0.7, ge=0.0, le=1.0)
    criteria: List[WeightedCriterion] = Field(default_factory=list)
    instructions: str = ""

    @property
    def total_weight(self) -> float:
        return sum(criterion.weight for criterion in self.criteria)

    def weights_balanced(self) -> bool:
        return abs(self.total_weight - 1.0) <= WEIGHT_TOLERANCE

    def format_for_prompt(self) -> str:
        lines = [
            f"- {c.name} ({c.id}, weight {c.weight:.2f}{', critical' if c.is_critical else ''}): {c.description}"
            for c in self.criteria
        ]
        if self.instructions:
            lines.append(f"\n{self.instructions}")
        return "\n".join(lines)


def default_criteria(content_type: str, passing_threshold: float = 0.7) -> Criteria:
    return Criteria(
        content_type=content_type,
        passing_threshold=passing_threshold,
        criteria=[
            WeightedCriterion(
                id="relevance",
                name="Relevance",
                description="Content addresses the funder's requirements and the project at hand",
                weight=0.4,
                is_critical=True,
                passing_threshold=0.6,
            ),
            WeightedCriterion(
                id="completeness",
                name="Completeness",
                description="Content covers every point expected for this part of the proposal",
                weight=0.3,
                passing_threshold=0.5,
            ),
            WeightedCriterion(
                id="clarity",
                name="Clarity",
                description="Content is well organised, specific and easy to follow",
                weight=0.3,
                passing_threshold=0.5,
            ),
        ],
        instructions="Score each criterion between 0 and 1 with a short justification.",
    )


def calculate_overall_score(criteria_scores: Dict[str, CriterionScore], criteria: Criteria) -> float:
    """
    Weighted average of the criterion scores.

    Falls back to the plain mean when none of the scored criteria carries a
    weight in the criteria definition.
    """
    if not criteria_scores:
        return 0.0
    weights = {c.id: c.weight for c in criteria.criteria}
    weighted = [(score.score, weights[cid]) for cid, score in criteria_scores.items() if weights.get(cid)]
    total_weight = sum(weight for _, weight in weighted)
    if total_weight <= 0:
        return sum(score.score for score in criteria_scores.values()) / len(criteria_scores)
    return sum(score * weight for score, weight in weighted) / total_weight


class CriteriaProvider(Protocol):
    def load_criteria(self, content_type: str) -> Criteria:
        ...


class FileCriteriaProvider:
    """
    Reads <directory>/<content_type>.json.

    Section types (section_<id>) fall back to section.json, then to the
    built-in default.
    Results are cached per content type.
    """

    def __init__(self, directory: Union[str, Path], default_threshold: float = 0.7):
        self.directory = Path(directory)
        self.default_threshold = default_threshold
        self._cache: Dict[str, Criteria] = {}

    def _read(self, name: str) -> Optional[Criteria]:
        path = self.directory / f"{name}.json"
        if not path.exists():
            return None
        try:
            return Criteria.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Invalid criteria file %s, using defaults: %s", path, e)
            return None

    def load_criteria(self, content_type: str) -> Criteria:
        if content_type in self._cache:
            return self._cache[content_type]

        criteria = self._read(content_type)
        if criteria is None and content_type.startswith("section_"):
            shared = self._read("section")
            if shared is not None:
                criteria = shared.model_copy(update={"content_type": content_type})
        if criteria is None:
            logger.warning("No criteria for '%s', using defaults", content_type)
            criteria = default_criteria(content_type, self.default_threshold)

        if not criteria.weights_balanced():
            logger.warning(
                "Criteria weights for '%s' sum to %.3f, expected 1.0",
                content_type,
                criteria.total_weight,
            )

        self._cache[content_type] = criteria
        return criteria
