"""PKCE (RFC 7636) helpers. Only the S256 method exists here."""

import base64
import hashlib
import hmac
import secrets
import string

_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"


def code_challenge_s256(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    """Constant-time check that ``code_verifier`` hashes to ``code_challenge``."""
    if not code_verifier or not code_challenge:
        return False
    try:
        expected = code_challenge_s256(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), code_challenge.encode("utf-8"))


def generate_code_verifier(length: int = 64) -> str:
    if not 43 <= length <= 128:
        raise ValueError("code_verifier length must be between 43 and 128")
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))
