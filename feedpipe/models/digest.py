"""Validated analysis payloads, one schema per analysis kind.

Payloads come back from the reasoning service as loosely shaped JSON. They
are validated strictly here: wrong types are rejected, never coerced.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from feedpipe.errors import DigestValidationError


class DigestBase(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore", populate_by_name=True)

    kind: str
    summary_oneline: str = Field(min_length=1)
    content_ko: str
    content_en: str
    categories: list[str] = Field(min_length=1, max_length=5)
    recommend_score: int = Field(alias="recommendScore", ge=1, le=10)
    recommend_reason: str = Field(alias="recommendReason", min_length=1)

    def to_record_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PostDigest(DigestBase):
    kind: Literal["post"] = "post"


class DiscussionDigest(DigestBase):
    kind: Literal["discussion"] = "discussion"
    subreddit: str = ""


class VideoDigest(DigestBase):
    kind: Literal["video"] = "video"
    key_points: list[str] = Field(default_factory=list)


class RepositoryDigest(DigestBase):
    kind: Literal["repository"] = "repository"
    tech_stack: list[str] = Field(default_factory=list)


DIGEST_MODELS: dict[str, type[DigestBase]] = {
    "x": PostDigest,
    "threads": PostDigest,
    "linkedin": PostDigest,
    "reddit": DiscussionDigest,
    "youtube": VideoDigest,
    "github": RepositoryDigest,
    "trendshift": RepositoryDigest,
}


def digest_model_for(platform: str) -> type[DigestBase]:
    return DIGEST_MODELS.get(platform, PostDigest)


def validate_digest(platform: str, payload: Any) -> DigestBase:
    """Validate *payload* against the schema for *platform*.

    Raises :class:`DigestValidationError` for anything that does not match,
    including scores outside ``[1, 10]``.
    """
    if not isinstance(payload, dict):
        raise DigestValidationError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )
    model = digest_model_for(platform)
    data = {k: v for k, v in payload.items() if k != "kind"}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise DigestValidationError(
            f"{model.__name__} rejected payload: {exc.error_count()} error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
        ) from exc
