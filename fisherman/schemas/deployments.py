"""Value types passed between the stages of the deployment pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

SHORT_SHA_LENGTH = 7


class DeploymentOutcome(StrEnum):
    """Terminal outcome of processing one webhook event."""

    SUCCESS = "success"
    SKIPPED_WRONG_BRANCH = "skipped_wrong_branch"
    SKIPPED_CONCURRENT = "skipped_concurrent"
    AUTH_FAILED = "auth_failed"
    MALFORMED_PAYLOAD = "malformed_payload"
    SYNC_FAILED = "sync_failed"
    BUILD_FAILED = "build_failed"

    @property
    def is_failure(self) -> bool:
        return self in _FAILURES


_FAILURES = frozenset(
    {
        DeploymentOutcome.SKIPPED_CONCURRENT,
        DeploymentOutcome.AUTH_FAILED,
        DeploymentOutcome.MALFORMED_PAYLOAD,
        DeploymentOutcome.SYNC_FAILED,
        DeploymentOutcome.BUILD_FAILED,
    }
)


class PushEvent(BaseModel):
    """A push normalised from the webhook payload, built once per request."""

    model_config = ConfigDict(frozen=True)

    identity: str
    ref: str
    commit_sha: str
    commit_message: str
    signature: str | None = None
    deleted: bool = False

    @property
    def branch(self) -> str | None:
        """Branch name for ``refs/heads/...`` refs, ``None`` for tags and others."""
        prefix = "refs/heads/"
        if self.ref.startswith(prefix):
            return self.ref[len(prefix):]
        return None

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:SHORT_SHA_LENGTH]


class DeploymentResult(BaseModel):
    """Terminal value produced exactly once per processed event."""

    model_config = ConfigDict(frozen=True)

    identity: str
    outcome: DeploymentOutcome
    commit_sha: str | None = None
    commit_message: str | None = None
    detail: str | None = None

    @property
    def short_sha(self) -> str | None:
        return self.commit_sha[:SHORT_SHA_LENGTH] if self.commit_sha else None

    @classmethod
    def for_event(
        cls,
        event: PushEvent,
        outcome: DeploymentOutcome,
        detail: str | None = None,
    ) -> DeploymentResult:
        return cls(
            identity=event.identity,
            outcome=outcome,
            commit_sha=event.commit_sha,
            commit_message=event.commit_message,
            detail=detail,
        )


class DeploymentRecord(BaseModel):
    """A terminal result stamped with the time it was reached."""

    timestamp: datetime
    result: DeploymentResult


class DeploymentHistoryResponse(BaseModel):
    """Response model for ``GET /deployments``."""

    deployments: list[DeploymentRecord]
