from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _AnalysisModel(BaseModel):
    # Gemini answers in camelCase; fields stay snake_case on our side.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Scene(_AnalysisModel):
    timestamp: str
    description: str
    shot_type: str
    visual_elements: list[str] = Field(default_factory=list)


class TextOverlay(_AnalysisModel):
    timestamp: str
    text: str
    purpose: Literal["headline", "subheading", "cta", "disclaimer", "pricing", "other"]


class SpokenContent(_AnalysisModel):
    transcript: str = ""
    themes: list[str] = Field(default_factory=list)


class VideoAnalysis(_AnalysisModel):
    scenes: list[Scene]
    text_overlays: list[TextOverlay]
    emotional_tone: str
    creative_approach: str
    product_presentation: Optional[str] = None
    call_to_action: Optional[str] = None
    target_audience_indicators: list[str] = Field(default_factory=list)
    key_messages: list[str] = Field(default_factory=list)
    spoken_content: Optional[SpokenContent] = None

    def to_payload(self) -> dict:
        """JSON-ready camelCase payload, as stored in the cache and shown to the copy agents."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
