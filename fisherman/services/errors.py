"""Failures raised inside the locked section of a deployment."""

from __future__ import annotations

from fisherman.schemas.deployments import DeploymentOutcome

# Discord rejects messages over 2000 characters; keep the tail, which is where
# compilers and git put the actual error.
MAX_OUTPUT_CHARS = 1500


class DeploymentError(Exception):
    """A pipeline stage failed. ``outcome`` names the terminal state it maps to."""

    outcome: DeploymentOutcome

    def __init__(self, message: str, output: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.output = output

    @property
    def detail(self) -> str:
        if not self.output:
            return self.message
        output = self.output.strip()
        if len(output) > MAX_OUTPUT_CHARS:
            output = "..." + output[-MAX_OUTPUT_CHARS:]
        return f"{self.message}\n{output}"


class SyncError(DeploymentError):
    """The working copy could not be fast-forwarded to the pushed commit."""

    outcome = DeploymentOutcome.SYNC_FAILED


class BuildError(DeploymentError):
    """The build tool failed or did not produce every expected binary."""

    outcome = DeploymentOutcome.BUILD_FAILED
