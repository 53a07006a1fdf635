"""Pydantic models for the GitHub webhook payloads the agent understands."""

from pydantic import BaseModel, Field, field_validator

from fisherman.config import is_repository_identity


class CommitAuthor(BaseModel):
    """Author information from a Git commit."""

    name: str
    email: str | None = None


class Commit(BaseModel):
    """A single commit within a GitHub push event."""

    id: str
    message: str = ""
    timestamp: str | None = None
    author: CommitAuthor | None = None


class RepositoryOwner(BaseModel):
    """Owner of the repository (user or organization)."""

    login: str | None = None
    name: str | None = None


class Repository(BaseModel):
    """Repository metadata from the webhook payload."""

    full_name: str = Field(min_length=3, pattern=r"^[^/\s]+/[^/\s]+$")
    id: int | None = None
    name: str | None = None
    owner: RepositoryOwner | None = None

    @field_validator("full_name")
    @classmethod
    def _owner_and_name(cls, value: str) -> str:
        if not is_repository_identity(value):
            raise ValueError("must be owner/name without . or .. segments")
        return value


class PushWebhookPayload(BaseModel):
    """GitHub push webhook event payload.

    Reference: https://docs.github.com/en/webhooks/webhook-events-and-payloads#push
    """

    ref: str = Field(min_length=1)
    before: str | None = None
    after: str = Field(min_length=1)
    repository: Repository
    commits: list[Commit] = Field(default_factory=list)
    head_commit: Commit | None = None
    created: bool = False
    deleted: bool = False
    forced: bool = False


class PingWebhookPayload(BaseModel):
    """Sent by GitHub once when a webhook is first configured."""

    zen: str | None = None
    hook_id: int | None = None
    repository: Repository
