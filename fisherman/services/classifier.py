"""Turn raw webhook bodies into ``PushEvent``s and decide whether to act on them."""

from __future__ import annotations

import json

from pydantic import ValidationError

from fisherman.config import RepositoryProfile
from fisherman.schemas.deployments import DeploymentOutcome, DeploymentResult, PushEvent
from fisherman.schemas.webhooks import PingWebhookPayload, PushWebhookPayload


class MalformedPayloadError(ValueError):
    """The body is not a push/ping payload we can act on."""


def extract_identity(body: bytes) -> str | None:
    """Best-effort read of ``repository.full_name`` from an unverified body.

    Only used to pick which secret to verify the signature with, so it never
    raises; anything unexpected yields ``None``.
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    repository = data.get("repository")
    if not isinstance(repository, dict):
        return None
    full_name = repository.get("full_name")
    if isinstance(full_name, str) and full_name:
        return full_name
    return None


def parse_push_event(body: bytes, signature: str | None = None) -> PushEvent:
    """Validate a push payload and normalise it.

    Raises:
        MalformedPayloadError: If required fields are missing or mistyped.
    """
    try:
        payload = PushWebhookPayload.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedPayloadError(_summarise(exc)) from exc

    head = payload.head_commit
    return PushEvent(
        identity=payload.repository.full_name,
        ref=payload.ref,
        commit_sha=head.id if head is not None else payload.after,
        commit_message=head.message if head is not None else "",
        signature=signature,
        deleted=payload.deleted,
    )


def parse_ping(body: bytes) -> PingWebhookPayload:
    try:
        return PingWebhookPayload.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedPayloadError(_summarise(exc)) from exc


def classify(event: PushEvent, profile: RepositoryProfile) -> DeploymentResult | None:
    """Return a skip result when the event should not deploy, otherwise ``None``."""
    if event.deleted:
        return DeploymentResult.for_event(
            event, DeploymentOutcome.SKIPPED_WRONG_BRANCH, detail="branch deleted"
        )
    if event.branch != profile.branch:
        return DeploymentResult.for_event(
            event,
            DeploymentOutcome.SKIPPED_WRONG_BRANCH,
            detail=f"{event.ref} is not refs/heads/{profile.branch}",
        )
    return None


def _summarise(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "body"
        problems.append(f"{location}: {error['msg']}")
    return "; ".join(problems)
