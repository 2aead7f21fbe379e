from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class BeliefDomain(str, Enum):
    CODE_PATTERN = "code_pattern"
    USER_PREFERENCE = "user_preference"
    PROJECT_STRUCTURE = "project_structure"
    WORKFLOW = "workflow"
    DECISION = "decision"
    CONSTRAINT = "constraint"


class Belief(BaseModel):
    id: str
    text: str
    domain: BeliefDomain
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence_ids: List[str] = Field(default_factory=list, description="opaque event-log ids")
    supporting_count: int = Field(0, ge=0)
    contradicting_count: int = Field(0, ge=0)
    derived_at: datetime
    last_evaluated: datetime
    supersedes_id: Optional[str] = None
    invalidated_at: Optional[datetime] = None
    invalidation_reason: Optional[str] = None
    importance: int = Field(5, ge=1)
    tags: List[str] = Field(default_factory=list)
    fingerprint: Optional[List[float]] = None

    @property
    def is_active(self) -> bool:
        return self.invalidated_at is None


class NewBelief(BaseModel):
    """
    A belief without an id, as handed to BeliefRepository.create().
    Unset confidence / importance / timestamps are filled in by the repository.
    supporting_count defaults to the number of evidence ids.
    """
    text: str = Field(..., min_length=1)
    domain: BeliefDomain
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    evidence_ids: List[str] = Field(default_factory=list)
    supporting_count: Optional[int] = Field(None, ge=0)
    contradicting_count: int = Field(0, ge=0)
    derived_at: Optional[datetime] = None
    last_evaluated: Optional[datetime] = None
    supersedes_id: Optional[str] = None
    importance: Optional[int] = Field(None, ge=1)
    tags: List[str] = Field(default_factory=list)
    fingerprint: Optional[List[float]] = None

    @model_validator(mode="after")
    def _seed_supporting_count(self) -> "NewBelief":
        if self.supporting_count is None:
            self.supporting_count = len(self.evidence_ids)
        return self


NULLABLE_CHANGES = frozenset({"fingerprint"})


class BeliefChanges(BaseModel):
    """
    Partial update for one belief. Only fields explicitly passed count as
    supplied (see supplied()); fingerprint is the only field that may be
    cleared with None.
    """
    text: Optional[str] = Field(None, min_length=1)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    evidence_ids: Optional[List[str]] = None
    supporting_count: Optional[int] = Field(None, ge=0)
    contradicting_count: Optional[int] = Field(None, ge=0)
    last_evaluated: Optional[datetime] = None
    importance: Optional[int] = Field(None, ge=1)
    tags: Optional[List[str]] = None
    fingerprint: Optional[List[float]] = None

    @model_validator(mode="after")
    def _reject_null_for_required_columns(self) -> "BeliefChanges":
        for name in self.model_fields_set:
            if name not in NULLABLE_CHANGES and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be set to null")
        return self

    def supplied(self) -> Dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set


class SearchOptions(BaseModel):
    limit: Optional[int] = Field(None, ge=1)
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    domain: Optional[BeliefDomain] = None
    active_only: bool = True


MatchType = Literal["semantic", "keyword", "hybrid"]


class BeliefSearchResult(BaseModel):
    belief: Belief
    score: float
    match_type: MatchType


class DomainStats(BaseModel):
    count: int
    avg_confidence: float
