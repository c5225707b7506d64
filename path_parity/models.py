"""Internal data models for path-parity.

All models use Pydantic v2. Captured bodies are kept as raw bytes; nothing
here decodes them.
"""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# Core Models
# =============================================================================


class EndpointRole(str, Enum):
    """Which side of the comparison a capture came from."""

    REFERENCE = "reference"
    CANDIDATE = "candidate"


class TestCase(BaseModel):
    """One request path read from the corpus.

    The path is appended verbatim to each endpoint's base URL. index is the
    1-based position among the usable corpus lines.
    """

    # Not a pytest test class, despite the name.
    __test__ = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    index: int = Field(ge=1, description="1-based position in the corpus")
    path: str = Field(min_length=1, description="Request path, e.g. geohack.php?params=...")


class ResponseCapture(BaseModel):
    """Raw body returned by one endpoint for one TestCase.

    status_code and elapsed_ms are informational. The body is the only
    signal used for comparison.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    role: EndpointRole = Field(description="Endpoint the body was fetched from")
    body: bytes = Field(default=b"", description="Full response body")
    status_code: int = Field(description="HTTP status code")
    elapsed_ms: float = Field(default=0.0, description="Response time in milliseconds")

    @property
    def byte_count(self) -> int:
        return len(self.body)


# =============================================================================
# Comparison Result Models
# =============================================================================


class ComparisonResult(BaseModel):
    """Outcome of comparing two bodies under whitespace normalization."""

    model_config = ConfigDict(extra="forbid")

    match: bool = Field(description="Whether normalized bodies are equal")
    reference_bytes: int = Field(description="Length of the raw reference body")
    candidate_bytes: int = Field(description="Length of the raw candidate body")
    diff: list[str] = Field(
        default_factory=list, description="Unified diff of normalized lines (empty if match)"
    )
    first_divergence: str | None = Field(
        default=None, description="Excerpt around the first differing normalized content"
    )

    @model_validator(mode="after")
    def check_diff_consistency(self) -> Self:
        if self.match and self.diff:
            raise ValueError("a matching result cannot carry a diff")
        return self


class Outcome(str, Enum):
    """Verdict kind for one TestCase."""

    MATCH = "match"
    MISMATCH = "mismatch"
    FETCH_FAILURE = "fetch_failure"
    REJECTED = "rejected"


class Verdict(BaseModel):
    """Recorded outcome for one TestCase, consumed by the Reporter."""

    model_config = ConfigDict(extra="forbid")

    case: TestCase = Field(description="The case this verdict belongs to")
    outcome: Outcome = Field(description="Match, mismatch, fetch failure or rejected")
    comparison: ComparisonResult | None = Field(
        default=None, description="Set when both fetches succeeded"
    )
    failures: dict[EndpointRole, str] = Field(
        default_factory=dict, description="Per-endpoint error messages (fetch_failure only)"
    )
    reason: str | None = Field(default=None, description="Why the case was rejected")
    reference_status: int | None = Field(default=None, description="Reference HTTP status")
    candidate_status: int | None = Field(default=None, description="Candidate HTTP status")

    @model_validator(mode="after")
    def check_outcome_fields(self) -> Self:
        if self.outcome in (Outcome.MATCH, Outcome.MISMATCH):
            if self.comparison is None:
                raise ValueError(f"{self.outcome.value} verdict requires a comparison")
            if self.comparison.match != (self.outcome == Outcome.MATCH):
                raise ValueError("outcome disagrees with comparison.match")
        elif self.outcome == Outcome.FETCH_FAILURE:
            if not self.failures:
                raise ValueError("fetch_failure verdict requires at least one failure")
            if self.comparison is not None:
                raise ValueError("fetch_failure verdict cannot carry a comparison")
        elif self.outcome == Outcome.REJECTED:
            if not self.reason:
                raise ValueError("rejected verdict requires a reason")
        return self

    @property
    def passed(self) -> bool:
        return self.outcome == Outcome.MATCH


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class TargetConfig(BaseModel):
    """Configuration for one endpoint."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(min_length=1, description="Base URL; the corpus line is appended verbatim")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers to include (supports ${ENV_VAR} substitution)",
    )
    verify_ssl: bool = Field(default=True, description="Verify the server certificate")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle for verification")


class TargetsConfig(BaseModel):
    """The two endpoints under comparison."""

    model_config = ConfigDict(extra="forbid")

    reference: TargetConfig | None = Field(default=None, description="Trusted live service")
    candidate: TargetConfig | None = Field(default=None, description="Implementation under test")


class RateLimitConfig(BaseModel):
    """Rate limiting configuration."""

    model_config = ConfigDict(extra="forbid")

    requests_per_second: float = Field(gt=0, description="Maximum requests per second")


class RuntimeConfig(BaseModel):
    """Top-level runtime configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    targets: TargetsConfig = Field(default_factory=TargetsConfig, description="Endpoints")
    timeout: float | None = Field(default=None, gt=0, description="Per-request timeout in seconds")
    expected_prefix: str | None = Field(
        default=None, description="Prefix every corpus line is expected to start with"
    )
    rate_limit: RateLimitConfig | None = Field(default=None, description="Rate limiting settings")
