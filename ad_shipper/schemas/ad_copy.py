from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CopyState(str, Enum):
    DRAFTED = "drafted"
    REVIEWING = "reviewing"
    REVISING = "revising"
    ACCEPTED = "accepted"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CopyDraft(_CamelModel):
    primary_text: str
    headline: str
    description: Optional[str] = None


class ComplianceReview(_CamelModel):
    # PASS, PASS_WITH_FIXES or FAIL in practice. Anything other than PASS needs revision.
    verdict: str
    flags: list[Any] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.verdict == "PASS"


class AccuracyReview(_CamelModel):
    # GREEN, YELLOW or RED in practice. Anything other than GREEN needs revision.
    verdict: str
    claims: list[Any] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.verdict == "GREEN"


class ReviewLog(_CamelModel):
    compliance: ComplianceReview
    accuracy: AccuracyReview
    revised: bool = False
    rounds: int = 0


class CopyResult(_CamelModel):
    primary_text: str
    headline: str
    description: str
    review_log: ReviewLog
