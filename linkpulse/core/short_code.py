"""
Short code generation & validation.

Format:  {length} characters drawn uniformly from the configured alphabet
         (default: 7 × [A-Za-z0-9] → 62^7 ≈ 3.5e12 codes)

Codes come from the OS CSPRNG (secrets), never from a database sequence,
so one user's codes say nothing about anyone else's. Uniqueness is NOT
guaranteed here; the url_mappings unique index decides, and the store
regenerates on collision.
"""

import secrets

from linkpulse.config import get_settings

# Accept codes a little shorter/longer than the current length so links
# issued before a length change keep resolving.
_LENGTH_SLACK = 3


def generate_short_code(length: int | None = None, alphabet: str | None = None) -> str:
    """Draw a random short code."""
    settings = get_settings()
    length = length or settings.short_code_length
    alphabet = alphabet or settings.short_code_alphabet
    return "".join(secrets.choice(alphabet) for _ in range(length))


def is_valid_short_code(code: str) -> bool:
    """Cheap syntactic check so junk paths never reach the store."""
    settings = get_settings()
    if not code:
        return False
    lo = max(1, settings.short_code_length - _LENGTH_SLACK)
    hi = settings.short_code_length + _LENGTH_SLACK
    if not lo <= len(code) <= hi:
        return False
    alphabet = set(settings.short_code_alphabet)
    return all(ch in alphabet for ch in code)
