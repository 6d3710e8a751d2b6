import hashlib
import hmac
import logging
from enum import Enum

logger = logging.getLogger(__name__)

_SIGNATURE_PREFIX = "sha256="
_HEX_DIGITS = frozenset("0123456789abcdef")


class SignatureCheck(str, Enum):
    AUTHENTIC = "authentic"
    INAUTHENTIC = "inauthentic"
    # No secret provisioned; the event is accepted without verification.
    SKIPPED = "skipped"

    @property
    def accepted(self) -> bool:
        return self is not SignatureCheck.INAUTHENTIC


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> SignatureCheck:
    """Check an HMAC-SHA256 hex signature over the exact request bytes.

    A missing secret puts the receiver in reduced-security mode: every event is
    accepted and a warning is logged. Malformed signatures are reported as
    inauthentic rather than raised.
    """
    if not secret:
        logger.warning("webhook secret not configured; accepting event without signature verification")
        return SignatureCheck.SKIPPED

    if not signature:
        return SignatureCheck.INAUTHENTIC

    candidate = signature.strip().lower()
    if candidate.startswith(_SIGNATURE_PREFIX):
        candidate = candidate[len(_SIGNATURE_PREFIX) :]

    expected = compute_signature(raw_body, secret)
    if len(candidate) != len(expected) or not set(candidate) <= _HEX_DIGITS:
        return SignatureCheck.INAUTHENTIC

    if hmac.compare_digest(candidate.encode("ascii"), expected.encode("ascii")):
        return SignatureCheck.AUTHENTIC
    return SignatureCheck.INAUTHENTIC
