# Overview: Claim code generation for redemptions and streak rewards.

from __future__ import annotations

import secrets
import string
import time

from ..extensions import db
from ..models import PointsTransaction


CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10


class CodeGenerationError(Exception):
    """Raised when no unused code could be produced."""


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def _random_part(length: int) -> str:
    # WHY secrets: codes are bearer tokens presented at the machine.
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def redemption_code(prefix: str) -> str:
    """HIVIS-<base36 ms timestamp>-<4 random>, e.g. HIVIS-LX3K9Z1A-7QF2."""
    return f"{prefix}-{_base36(int(time.time() * 1000))}-{_random_part(4)}"


def streak_code(prefix: str) -> str:
    """STREAK-<6 random>, e.g. STREAK-K2M9QX."""
    return f"{prefix}-{_random_part(6)}"


def generate_unique_code(prefix: str, *, timestamped: bool = False) -> str:
    """
    Code not yet present in the ledger.

    The unique constraint on transactions.redemption_code is the final
    guard; this pre-check only makes a collision at commit unlikely.
    """
    make = redemption_code if timestamped else streak_code
    for _ in range(MAX_CODE_ATTEMPTS):
        code = make(prefix)
        exists = db.session.query(PointsTransaction.id).filter_by(redemption_code=code).first()
        if not exists:
            return code
    raise CodeGenerationError(f"Could not generate a unique {prefix} code")
