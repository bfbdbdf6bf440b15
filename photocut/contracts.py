from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class MatteMethod(str, Enum):
    SIMPLE = "simple"
    AGGRESSIVE = "aggressive"
    AI_MODNET_FAST = "ai_modnet_fast"
    AI_U2NET_QUALITY = "ai_u2net_quality"

    @property
    def is_ai(self) -> bool:
        return self in (MatteMethod.AI_MODNET_FAST, MatteMethod.AI_U2NET_QUALITY)


class ExportFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return {"jpeg": ".jpg", "png": ".png", "webp": ".webp"}[self.value]


class ExportPreset(BaseModel):
    name: str = Field(min_length=1)
    width: int = Field(ge=1)
    height: int = Field(ge=1)
    format: ExportFormat = ExportFormat.JPEG
    quality: int = Field(default=90, ge=1, le=100)


class ProcessingOptions(BaseModel):
    method: MatteMethod = MatteMethod.SIMPLE
    square_size: int = Field(default=2000, ge=1)
    padding_percent: float = Field(default=0.08, ge=0.0, le=1.0)
    white_background: bool = True

    # classic near-white keying; feather also drives the AI soft edge
    white_threshold: int = Field(default=245, ge=0, le=255)
    feather: int = Field(default=10, ge=0, le=255)

    # AI cleanup helpers
    suppress_ground_shadow: bool = True
    shadow_white_threshold: int = Field(default=245, ge=0, le=255)
    shadow_max_alpha: int = Field(default=120, ge=0, le=255)
    shadow_bottom_percent: int = Field(default=30, ge=0, le=100)
    force_pure_white_background: bool = False

    exports: List[ExportPreset] = Field(default_factory=list)


class Entitlements(BaseModel):
    """Decided by the licensing layer; the pipeline only reads it."""

    ai_allowed: bool = True
    watermark_required: bool = False
