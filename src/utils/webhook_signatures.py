"""
Webhook signature validation - verify incoming webhooks are authentic.

Supported providers:
- GitHub: X-Hub-Signature-256: sha256=<hex HMAC-SHA256 of body>
- Stripe: Stripe-Signature: t=<ts>,v1=<hex HMAC-SHA256 of "<ts>.<body>">
- Slack: X-Slack-Signature: v0=<hex HMAC-SHA256 of body>
- Custom/generic: HMAC-SHA1/256/512 of body, hex, no prefix

Every check is pure: no I/O, and any malformed input yields False rather
than an exception.
"""
import hashlib
import hmac
import logging
import time
from typing import Optional, Union

logger = logging.getLogger(__name__)

GENERIC_PROVIDERS = ("custom", "generic")

_HASH_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def _hmac_hex(secret: str, message: bytes, digestmod=hashlib.sha256) -> str:
    return hmac.new(secret.encode("utf-8"), message, digestmod).hexdigest()


def _resolve_algorithm(algorithm: str):
    """Map "sha256" / "hmac-sha256" style names to a hashlib constructor."""
    name = (algorithm or "").strip().lower()
    if name.startswith("hmac-"):
        name = name[len("hmac-"):]
    return _HASH_ALGORITHMS.get(name)


def validate_github_signature(secret: str, signature: str, body: bytes) -> bool:
    prefix = "sha256="
    if not signature.startswith(prefix):
        return False
    expected = _hmac_hex(secret, body)
    return hmac.compare_digest(expected, signature[len(prefix):].lower())


def parse_stripe_header(signature: str) -> tuple[Optional[str], list[str]]:
    """Split "t=123,v1=abc,v1=def" into (timestamp, [v1 signatures])."""
    timestamp = None
    v1_values = []
    for part in signature.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            v1_values.append(value)
    return timestamp, v1_values


def validate_stripe_signature(
    secret: str,
    signature: str,
    body: bytes,
    tolerance_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> bool:
    timestamp, v1_values = parse_stripe_header(signature)
    if not timestamp or not v1_values:
        return False

    if tolerance_seconds:
        try:
            signed_at = int(timestamp)
        except ValueError:
            return False
        current = time.time() if now is None else now
        if abs(current - signed_at) > tolerance_seconds:
            logger.warning("Stripe signature timestamp outside tolerance (%ds)", tolerance_seconds)
            return False

    expected = _hmac_hex(secret, timestamp.encode("utf-8") + b"." + body)
    return any(hmac.compare_digest(expected, v1.lower()) for v1 in v1_values)


def validate_slack_signature(secret: str, signature: str, body: bytes) -> bool:
    version, _, provided = signature.partition("=")
    if version != "v0" or not provided:
        return False
    expected = _hmac_hex(secret, body)
    return hmac.compare_digest(expected, provided.lower())


def validate_hmac_signature(secret: str, signature: str, body: bytes, algorithm: str) -> bool:
    digestmod = _resolve_algorithm(algorithm)
    if digestmod is None:
        logger.error("Unknown signature algorithm: %s", algorithm)
        return False
    expected = _hmac_hex(secret, body, digestmod)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_signature(
    raw_body: Union[str, bytes],
    signature: Optional[str],
    secret: str,
    algorithm: str,
    provider: str,
    tolerance_seconds: Optional[int] = None,
) -> bool:
    """
    Verify a webhook signature for the given provider.

    Args:
        raw_body: Exact request body as received (bytes or text)
        signature: Value of the configured signature header, or None if absent
        secret: Shared secret from the webhook configuration
        algorithm: Hash algorithm for custom/generic providers
        provider: github, stripe, slack, custom/generic
        tolerance_seconds: Stripe only - reject timestamps further than this from now

    Returns:
        True only when the signature matches. Never raises.
    """
    if not signature:
        logger.warning("Webhook signature missing (provider=%s)", provider)
        return False
    if not secret:
        logger.warning("Webhook secret not configured (provider=%s)", provider)
        return False

    try:
        body = _to_bytes(raw_body)

        if provider == "github":
            return validate_github_signature(secret, signature, body)
        if provider == "stripe":
            return validate_stripe_signature(secret, signature, body, tolerance_seconds)
        if provider == "slack":
            return validate_slack_signature(secret, signature, body)
        if provider in GENERIC_PROVIDERS:
            return validate_hmac_signature(secret, signature, body, algorithm)

        logger.error("Unknown webhook provider: %s", provider)
        return False
    except Exception as e:
        logger.error("Signature verification error (provider=%s): %s", provider, str(e))
        return False
