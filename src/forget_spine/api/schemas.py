"""
API schemas: response bodies and the RFC 7807 error envelope.

The total mass is serialised under the key ``Z``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from forget_spine.distribution import Distribution
from forget_spine.service import FieldSnapshot


class FieldResult(BaseModel):
    """Response of ``GET /get``."""

    model_config = ConfigDict(populate_by_name=True)

    distribution: str
    field: str
    count: int
    total: int = Field(alias="Z", description="Decayed total mass")
    probability: float
    rate: float

    @classmethod
    def from_snapshot(cls, snap: FieldSnapshot) -> FieldResult:
        return cls(**snap.to_dict())


class DistributionResult(BaseModel):
    """Response of ``GET /dist``."""

    model_config = ConfigDict(populate_by_name=True)

    distribution: str
    total: int = Field(alias="Z", description="Decayed total mass")
    data: dict[str, int]
    rate: float

    @classmethod
    def from_distribution(cls, dist: Distribution) -> DistributionResult:
        return cls(**dist.to_dict())


class HealthResult(BaseModel):
    """Response of ``GET /health``."""

    status: Literal["healthy", "unhealthy"]
    store: Literal["ok", "unavailable"]
    pipeline: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs»: every non-2xx body."""

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    code: str | None = Field(default=None, description="Machine-readable error category")
    param: str | None = Field(default=None, description="Offending request parameter")
