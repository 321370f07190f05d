"""Random codes and session-token helpers."""

import hashlib
import secrets


def generate_numeric_code(digits: int) -> str:
    """Uniform random code of exactly ``digits`` digits with no leading zero."""
    if digits < 1:
        raise ValueError("digits must be >= 1")
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


def codes_match(expected: str | None, supplied: str) -> bool:
    """Compare a stored code with user input after trimming whitespace."""
    if expected is None:
        return False
    return secrets.compare_digest(expected.encode(), supplied.strip().encode())


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()
