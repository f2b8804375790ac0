"""Human-typeable join codes for sessions.

Codes are drawn from a 32-symbol alphabet without the glyphs people confuse
when reading a code off a projector (0/O, 1/I). The generator is stateless;
uniqueness against active sessions is the session registry's job.
"""

import secrets

PIN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_PIN_LENGTH = 6


def generate_pin(length: int = DEFAULT_PIN_LENGTH) -> str:
    """Return a random code of `length` symbols from PIN_ALPHABET."""
    if length < 1:
        raise ValueError("PIN length must be positive")
    return "".join(secrets.choice(PIN_ALPHABET) for _ in range(length))


def normalize_pin(raw: str | None) -> str:
    """Canonical form used for storage and lookup: trimmed and upper-case."""
    return (raw or "").strip().upper()


def is_valid_pin(pin: str, length: int = DEFAULT_PIN_LENGTH) -> bool:
    """True if `pin` is already normalized and only uses PIN_ALPHABET."""
    return len(pin) == length and all(ch in PIN_ALPHABET for ch in pin)
