"""Short key generation and short-URL building."""

import secrets
import string

# URL-safe 64-symbol alphabet: 0-9, a-z, A-Z, '_' and '-'
KEY_ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase + "_-"
KEY_ALPHABET_SIZE = len(KEY_ALPHABET)

MIN_KEY_LENGTH = 7  # 42 bits


def generate_key(length: int = 8) -> str:
    """Random short key; 6 bits of entropy per character."""
    if length < MIN_KEY_LENGTH:
        raise ValueError(f"Short keys need at least {MIN_KEY_LENGTH} characters, got {length}")
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


def build_short_url(base_url: str, key: str, short_path: str = "/s/") -> str:
    """``http://host`` + ``/s/`` + key, tolerant of stray slashes."""
    path = "/" + short_path.strip("/") + "/" if short_path.strip("/") else "/"
    return f"{base_url.rstrip('/')}{path}{key}"
