"""QuizLive - Utilities

Validation helpers and PIN generation.
"""

import random
import string
from typing import Tuple

PIN_LENGTH = 6


def validate_nickname(nickname, max_length: int = 20) -> Tuple[bool, str]:
    """Validate a player nickname. Returns (ok, error message)."""
    if nickname is None or not isinstance(nickname, str):
        return False, "Nickname is required"

    nickname = nickname.strip()

    if len(nickname) < 1:
        return False, "Nickname is required"

    if len(nickname) > max_length:
        return False, f"Nickname must be at most {max_length} characters"

    return True, ""


def generate_pin(rng=random) -> str:
    """Random 6-digit numeric PIN (may start with 0)."""
    return ''.join(rng.choices(string.digits, k=PIN_LENGTH))


def normalize_pin(pin) -> str:
    """PINs arrive as strings or numbers from clients."""
    if pin is None:
        return ""
    return str(pin).strip()
