"""HMAC-SHA256 verification of GitHub webhook bodies."""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``X-Hub-Signature-256`` header value GitHub would send for ``body``."""
    digest = hmac.new(
        secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check ``signature`` against the HMAC of ``body`` keyed with ``secret``.

    The comparison is constant-time. A missing signature or a missing secret
    never verifies: a repository without a configured secret accepts nothing.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))
