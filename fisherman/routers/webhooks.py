"""GitHub webhook router: authenticate, classify, hand off to the coordinator."""

from typing import Annotated

import structlog
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Request,
    Response,
    status,
)

from fisherman.config import Config
from fisherman.dependencies import get_config, get_coordinator
from fisherman.schemas.deployments import DeploymentOutcome, DeploymentResult
from fisherman.services.classifier import (
    MalformedPayloadError,
    classify,
    extract_identity,
    parse_ping,
    parse_push_event,
)
from fisherman.services.coordinator import DeploymentCoordinator
from fisherman.services.signature import verify_signature

logger = structlog.get_logger()

router = APIRouter(tags=["webhooks"])

UNKNOWN_REPOSITORY = "unknown"


@router.post("/", status_code=status.HTTP_202_ACCEPTED)
async def receive_webhook(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    config: Annotated[Config, Depends(get_config)],
    coordinator: Annotated[DeploymentCoordinator, Depends(get_coordinator)],
    x_github_event: Annotated[str | None, Header()] = None,
    x_hub_signature_256: Annotated[str | None, Header()] = None,
) -> dict:
    """Receive a GitHub webhook and start a deployment if it warrants one.

    The signature is checked against the secret of the repository named in
    the body before anything else happens, including full payload
    validation.  Accepted pushes are deployed in a background task after
    the 202 response has been sent.
    """
    body = await request.body()
    identity = extract_identity(body)
    secret = config.resolve_secret(identity) if identity else config.default.secret

    if not verify_signature(body, x_hub_signature_256, secret):
        coordinator.record(
            DeploymentResult(
                identity=identity or UNKNOWN_REPOSITORY,
                outcome=DeploymentOutcome.AUTH_FAILED,
                detail="missing signature" if not x_hub_signature_256 else "signature mismatch",
            )
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    if x_github_event == "ping":
        try:
            ping = parse_ping(body)
        except MalformedPayloadError as exc:
            raise _malformed(coordinator, identity, exc) from None
        logger.info("webhook_ping", repository=ping.repository.full_name, hook_id=ping.hook_id)
        response.status_code = status.HTTP_200_OK
        return {"status": "pong"}

    if x_github_event != "push":
        logger.info("webhook_unsupported_event", github_event=x_github_event, repository=identity)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported event type: {x_github_event}",
        )

    try:
        event = parse_push_event(body, signature=x_hub_signature_256)
    except MalformedPayloadError as exc:
        raise _malformed(coordinator, identity, exc) from None

    profile = config.resolve(event.identity)
    skipped = classify(event, profile)
    if skipped is not None:
        coordinator.record(skipped)
        response.status_code = status.HTTP_200_OK
        return {"status": "ignored", "ref": event.ref}

    if not coordinator.try_lock(event.identity):
        await coordinator.reject_concurrent(event)
        response.status_code = status.HTTP_200_OK
        return {"status": "skipped_concurrent"}

    # The task runs after the response is sent and run_locked releases the lock.
    # If it cannot be queued the lock is released here instead.
    try:
        background_tasks.add_task(coordinator.run_locked, event, profile)
    except Exception:
        coordinator.locks.release(event.identity)
        raise
    logger.info("webhook_accepted", repository=event.identity, commit=event.short_sha)
    return {"status": "deploying", "commit": event.commit_sha}


def _malformed(
    coordinator: DeploymentCoordinator,
    identity: str | None,
    exc: MalformedPayloadError,
) -> HTTPException:
    coordinator.record(
        DeploymentResult(
            identity=identity or UNKNOWN_REPOSITORY,
            outcome=DeploymentOutcome.MALFORMED_PAYLOAD,
            detail=str(exc),
        )
    )
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Malformed payload: {exc}",
    )
