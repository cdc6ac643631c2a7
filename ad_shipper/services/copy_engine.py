from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from ad_shipper.config import settings
from ad_shipper.llm.client import LLMClient
from ad_shipper.llm.json_extract import MalformedResponseError, extract_json
from ad_shipper.schemas.ad_copy import (
    AccuracyReview,
    ComplianceReview,
    CopyDraft,
    CopyResult,
    CopyState,
    ReviewLog,
)
from ad_shipper.services.prompts import load_prompt

logger = logging.getLogger(__name__)

MAX_ROUNDS = 2

_COPY_FIELDS = ("primaryText", "headline")
_COPY_OPTIONAL_FIELDS = ("description",)


class CopyGenerationError(RuntimeError):
    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


@dataclass(frozen=True)
class CopyContext:
    analysis: dict[str, Any]
    angle: str
    format: str
    messenger: str
    deliverable_name: str


def _draft_message(context: CopyContext) -> str:
    return (
        "Write ad copy for this video ad.\n\n"
        f"Ad name: {context.deliverable_name}\n"
        f"Angle: {context.angle}\n"
        f"Format: {context.format}\n"
        f"Messenger: {context.messenger}\n"
        "Video analysis:\n"
        f"{json.dumps(context.analysis, indent=2, ensure_ascii=False)}\n\n"
        "Write copy that matches the video content and the angle. Assume the audience is problem aware "
        "unless the angle suggests otherwise.\n"
        'Return ONLY valid JSON: {"primaryText": "...", "headline": "...", "description": "..."}'
    )


def _review_message(copy: CopyDraft, context: CopyContext) -> str:
    return (
        "Review this ad copy.\n\n"
        f"Primary text:\n{copy.primary_text}\n\n"
        f"Headline: {copy.headline}\n"
        f"Description: {copy.description or ''}\n\n"
        "Facts available from the video analysis:\n"
        f"{json.dumps(context.analysis, indent=2, ensure_ascii=False)}"
    )


def _revision_message(copy: CopyDraft, compliance: ComplianceReview, accuracy: AccuracyReview) -> str:
    return (
        "Current ad copy:\n"
        f"Primary text:\n{copy.primary_text}\n\n"
        f"Headline: {copy.headline}\n"
        f"Description: {copy.description or ''}\n\n"
        "Compliance review:\n"
        f"{compliance.model_dump_json(indent=2)}\n\n"
        "Accuracy review:\n"
        f"{accuracy.model_dump_json(indent=2)}\n\n"
        "Apply the minimum changes that resolve every RED and YELLOW finding.\n"
        'Return ONLY valid JSON: {"primaryText": "...", "headline": "...", "description": "..."}'
    )


def _parse_copy(raw: str, *, stage: str) -> CopyDraft:
    payload = extract_json(raw, required_fields=_COPY_FIELDS, optional_fields=_COPY_OPTIONAL_FIELDS)
    primary_text = str(payload.get("primaryText") or "").strip()
    headline = str(payload.get("headline") or "").strip()
    if not primary_text or not headline:
        raise CopyGenerationError(f"{stage} returned incomplete copy: {json.dumps(payload)[:300]}", stage=stage)
    description = str(payload.get("description") or "").strip() or None
    return CopyDraft(primary_text=primary_text, headline=headline, description=description)


def _normalize_verdict(payload: dict[str, Any]) -> dict[str, Any]:
    verdict = payload.get("verdict")
    if isinstance(verdict, str):
        payload = {**payload, "verdict": verdict.strip().upper().replace(" ", "_")}
    return payload


def _parse_compliance(raw: str) -> ComplianceReview:
    payload = extract_json(raw, required_fields=("verdict",), list_fields=("flags",))
    try:
        return ComplianceReview.model_validate(_normalize_verdict(payload))
    except ValidationError as exc:
        raise MalformedResponseError(f"Compliance review has an invalid shape: {exc}", raw_text=raw) from exc


def _parse_accuracy(raw: str) -> AccuracyReview:
    payload = extract_json(raw, required_fields=("verdict",), list_fields=("claims",))
    try:
        return AccuracyReview.model_validate(_normalize_verdict(payload))
    except ValidationError as exc:
        raise MalformedResponseError(f"Accuracy review has an invalid shape: {exc}", raw_text=raw) from exc


class CopyEngine:
    """
    Draft -> review -> revise loop over three agents sharing one LLM client.

    A drafter writes the copy, a compliance reviewer and an accuracy reviewer judge it
    concurrently, and a reviser applies minimal fixes. The loop runs at most
    `max_rounds` review rounds; copy still flagged after the last round is accepted
    with `revised=True` and a warning.
    """

    def __init__(
        self,
        llm: LLMClient,
        *,
        default_description: str,
        max_rounds: int = MAX_ROUNDS,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.llm = llm
        self.default_description = default_description
        self.max_rounds = max_rounds

    @classmethod
    def from_settings(cls, llm: Optional[LLMClient] = None) -> "CopyEngine":
        return cls(llm or LLMClient.from_settings(), default_description=settings.COPY_DEFAULT_DESCRIPTION)

    async def _call(self, prompt_name: str, message: str) -> str:
        system, _ = load_prompt("copy", prompt_name)
        return await self.llm.complete(system, message)

    async def _review(self, copy: CopyDraft, context: CopyContext) -> tuple[ComplianceReview, AccuracyReview]:
        message = _review_message(copy, context)
        compliance_raw, accuracy_raw = await asyncio.gather(
            self._call("compliance_reviewer", message),
            self._call("accuracy_reviewer", message),
        )
        return _parse_compliance(compliance_raw), _parse_accuracy(accuracy_raw)

    async def generate(self, context: CopyContext) -> CopyResult:
        state = CopyState.DRAFTED
        draft = _parse_copy(await self._call("drafter", _draft_message(context)), stage="drafter")
        draft_description = draft.description or self.default_description
        current = draft.model_copy(update={"description": draft_description})
        logger.info(
            "copy_engine.drafted",
            extra={"deliverable": context.deliverable_name, "chars": len(current.primary_text)},
        )

        revised = False
        rounds = 0
        while True:
            state = CopyState.REVIEWING
            rounds += 1
            compliance, accuracy = await self._review(current, context)
            logger.info(
                "copy_engine.reviewed",
                extra={
                    "deliverable": context.deliverable_name,
                    "round": rounds,
                    "compliance_verdict": compliance.verdict,
                    "flags": len(compliance.flags),
                    "accuracy_verdict": accuracy.verdict,
                    "claims": len(accuracy.claims),
                },
            )

            if compliance.clean and accuracy.clean:
                state = CopyState.ACCEPTED
                break

            if rounds >= self.max_rounds:
                logger.warning(
                    "copy_engine.accepted_with_findings",
                    extra={
                        "deliverable": context.deliverable_name,
                        "rounds": rounds,
                        "compliance_verdict": compliance.verdict,
                        "accuracy_verdict": accuracy.verdict,
                    },
                )
                revised = True
                state = CopyState.ACCEPTED
                break

            state = CopyState.REVISING
            revision = _parse_copy(
                await self._call("reviser", _revision_message(current, compliance, accuracy)),
                stage="reviser",
            )
            current = revision.model_copy(update={"description": revision.description or draft_description})
            revised = True
            logger.info(
                "copy_engine.revised",
                extra={"deliverable": context.deliverable_name, "round": rounds, "chars": len(current.primary_text)},
            )

        logger.info(
            "copy_engine.finished",
            extra={"deliverable": context.deliverable_name, "state": state.value, "rounds": rounds, "revised": revised},
        )
        return CopyResult(
            primary_text=current.primary_text,
            headline=current.headline,
            description=current.description or self.default_description,
            review_log=ReviewLog(compliance=compliance, accuracy=accuracy, revised=revised, rounds=rounds),
        )
