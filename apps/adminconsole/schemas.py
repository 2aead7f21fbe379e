from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from services.beliefcore.models import Belief, BeliefDomain, MatchType


class BeliefCreate(BaseModel):
    text: str = Field(..., min_length=1)
    domain: BeliefDomain
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    importance: Optional[int] = Field(None, ge=1, le=10)
    evidence_ids: List[str] = Field(default_factory=list, description="event-log ids")
    tags: List[str] = Field(default_factory=list)
    supersedes_id: Optional[str] = None
    fingerprint: Optional[List[float]] = Field(None, description="computed from text when omitted")


class BeliefPatch(BaseModel):
    text: Optional[str] = Field(None, min_length=1)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    importance: Optional[int] = Field(None, ge=1, le=10)
    tags: Optional[List[str]] = None
    add_support: bool = False
    add_contradict: bool = False


class InvalidateRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class AdjustRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)
    delta: float


class BeliefView(BaseModel):
    """Belief as returned over HTTP: no fingerprint, plus the review flag."""
    id: str
    text: str
    domain: BeliefDomain
    confidence: float
    evidence_ids: List[str]
    supporting_count: int
    contradicting_count: int
    derived_at: datetime
    last_evaluated: datetime
    supersedes_id: Optional[str] = None
    invalidated_at: Optional[datetime] = None
    invalidation_reason: Optional[str] = None
    importance: int
    tags: List[str]
    flagged: bool = False

    @classmethod
    def of(cls, belief: Belief, flagged: bool = False) -> "BeliefView":
        return cls(**belief.model_dump(exclude={"fingerprint"}), flagged=flagged)


class SearchHit(BaseModel):
    belief: BeliefView
    score: float
    match_type: MatchType
