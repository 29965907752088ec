import hashlib
import hmac
import secrets

from guest_engagement.config import Settings


def generate_token() -> str:
    """Generate a cryptographically secure random token."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """Hash a token for storage using SHA-256."""
    return hashlib.sha256(token.encode()).hexdigest()


def extract_cron_secret(authorization: str | None, header_secret: str | None) -> str | None:
    """Pull the presented secret from a Bearer header or the x-cron-secret header."""
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    if header_secret and header_secret.strip():
        return header_secret.strip()
    return None


def verify_cron_secret(settings: Settings, presented: str | None) -> bool:
    """Check a presented cron secret in constant time.

    An unset CRON_SECRET rejects everything rather than opening the endpoint.
    """
    expected = settings.cron_secret
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode(), presented.encode())
