"""
Photo submission schemas.
"""

import base64
import binascii
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DATA_URL_RE = re.compile(r"^data:image/(?P<fmt>[a-zA-Z0-9.+-]+);base64,(?P<payload>.*)$", re.DOTALL)


class PhotoSubmission(BaseModel):
    """One captured image with its client-declared attributes."""

    # JSON bodies carry the image as base64
    model_config = ConfigDict(ser_json_bytes="base64")

    data: bytes
    declared_format: str = Field(..., description="Format claimed by the client, e.g. 'jpeg'")
    width: Optional[int] = Field(None, ge=0)
    height: Optional[int] = Field(None, ge=0)

    @field_validator("data", mode="before")
    @classmethod
    def decode_base64(cls, v: object) -> object:
        if isinstance(v, str):
            # Accept both the standard and URL-safe alphabets
            normalized = v.strip().replace("-", "+").replace("_", "/")
            normalized += "=" * (-len(normalized) % 4)
            try:
                return base64.b64decode(normalized, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError("Photo data must be base64 encoded") from e
        return v

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_data_url(
        cls, data_url: str, width: Optional[int] = None, height: Optional[int] = None
    ) -> "PhotoSubmission":
        """
        Build a submission from a ``data:image/<fmt>;base64,`` URL.

        Raises:
            ValueError: if the URL is not a base64 image data URL
        """
        match = _DATA_URL_RE.match(data_url.strip())
        if not match:
            raise ValueError("Not a base64 image data URL")
        try:
            data = base64.b64decode(match.group("payload"), validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Invalid base64 payload") from e
        return cls(
            data=data,
            declared_format=match.group("fmt").lower(),
            width=width,
            height=height,
        )


class PhotoVerificationResult(BaseModel):
    """Outcome of photo verification."""

    is_valid: bool
    quality: float = Field(0.0, ge=0, le=1)
    has_face: bool = False
    width: int = 0
    height: int = 0
    file_size: int = 0
    format: str = ""
    blur_score: float = 0.0
    manipulation_score: float = 0.0
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class PhotoVerificationSummary(BaseModel):
    """Aggregate statistics over many photo verifications."""

    total_photos: int = 0
    valid_photos: int = 0
    invalid_photos: int = 0
    average_quality: float = 0.0
    face_detection_rate: float = 0.0
    common_issues: list[str] = Field(default_factory=list)
