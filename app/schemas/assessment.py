import logging
from pydantic import BaseModel, ValidationError
from typing import List, Optional

logger = logging.getLogger(__name__)


class Recommendation(BaseModel):
    """One entry of an assessment's `recommendations` JSON column."""
    version: int = 1
    recommendation: str = ""
    details: str = ""
    priority: Optional[str] = None  # 'High' | 'Medium' | 'Low'

    @property
    def text(self) -> str:
        return self.recommendation or self.details


def parse_recommendations(raw) -> List[Recommendation]:
    """
    Validates the loosely-typed JSON written by the analysis pipeline.
    Malformed entries are dropped with a warning.
    """
    parsed = []
    for item in raw or []:
        if isinstance(item, str):
            item = {"recommendation": item}
        try:
            parsed.append(Recommendation.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed recommendation {item!r}: {e}")
    return parsed
