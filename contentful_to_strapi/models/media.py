from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


_BYTES_PER_MB = 1024 * 1024


def bytes_to_mb(size: int) -> float:
    return float(size) / _BYTES_PER_MB


class MediaReference(BaseModel):
    """A Contentful asset resolved from the inclusion side-table."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    asset_id: str
    file_name: str = Field(..., min_length=1)
    content_type: Optional[str] = None
    size_bytes: int = 0
    url: str = ""
    title: Optional[str] = None

    @field_validator("url", mode="before")
    @classmethod
    def _absolute_url(cls, v: Optional[str]) -> str:
        # Contentful serves protocol-relative URLs ("//images.ctfassets.net/...")
        if not v:
            return ""
        if v.startswith("//"):
            return f"https:{v}"
        return v

    @property
    def size_mb(self) -> float:
        return bytes_to_mb(self.size_bytes)

    @property
    def is_image(self) -> bool:
        return bool(self.content_type and self.content_type.startswith("image/"))

    @classmethod
    def from_asset(cls, asset: Dict[str, Any]) -> Optional["MediaReference"]:
        """Build a reference from a raw Contentful ``Asset`` object.

        Returns ``None`` when the asset carries no ``file`` payload (for
        example an asset that was created but never processed).
        """
        sys_id = (asset.get("sys") or {}).get("id")
        fields = asset.get("fields") or {}
        file_info = fields.get("file") or {}
        if not sys_id or not file_info:
            return None
        details = file_info.get("details") or {}
        return cls(
            asset_id=sys_id,
            file_name=file_info.get("fileName") or f"image-{sys_id}",
            content_type=file_info.get("contentType"),
            size_bytes=int(details.get("size") or 0),
            url=file_info.get("url") or "",
            title=fields.get("title"),
        )


class UploadResult(BaseModel):
    """Outcome of one successful upload.  Failures are represented by ``None``."""

    model_config = ConfigDict(frozen=True)

    destination_id: Union[int, str]
    size_mb: float
    url: str = ""
    file_name: str = ""


class TranscodeDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    quality: Optional[int] = None
    max_dimension: Optional[int] = None
    resize: bool = False
    output_format: Optional[str] = None
    normalize_format: bool = False

    @property
    def transcode(self) -> bool:
        return self.quality is not None
