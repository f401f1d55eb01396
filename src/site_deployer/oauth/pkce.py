"""PKCE (Proof Key for Code Exchange) utilities for GitHub OAuth."""

import base64
import hashlib
import secrets
from dataclasses import dataclass

CODE_CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEParams:
    """A single-use verifier/challenge pair for one authorization attempt."""

    code_verifier: str
    code_challenge: str
    code_challenge_method: str = CODE_CHALLENGE_METHOD


def _b64url(data: bytes) -> str:
    """Base64url encode without padding (RFC 4648 section 5)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def compute_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code_challenge for a verifier."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce() -> PKCEParams:
    """
    Generate PKCE code_verifier and code_challenge using S256.

    Per RFC 7636, the code_verifier is a cryptographically random string
    of 43 to 128 unreserved characters. 32 random bytes encode to exactly
    43 base64url characters.

    The code_challenge is the Base64url-encoded SHA256 hash of the code_verifier.

    Returns:
        PKCEParams holding the verifier, challenge and method
    """
    code_verifier = _b64url(secrets.token_bytes(32))
    return PKCEParams(
        code_verifier=code_verifier,
        code_challenge=compute_code_challenge(code_verifier),
    )


def generate_csrf_state() -> str:
    """Generate an unguessable state token (16 random bytes, base64url)."""
    return _b64url(secrets.token_bytes(16))


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    """
    Verify that a code_verifier matches a code_challenge.

    Args:
        code_verifier: The original code verifier
        code_challenge: The challenge to verify against

    Returns:
        True if the verifier produces the same challenge, False otherwise
    """
    return secrets.compare_digest(compute_code_challenge(code_verifier), code_challenge)
