# Overview: Product-to-points valuation for vending purchases and direct scans.

from __future__ import annotations

from ..validation import ValidationError


LARGE_DRINK_POINTS = 20
SMALL_DRINK_POINTS = 10
SNACK_POINTS = 15
DEFAULT_POINTS = 10

# Checked in order; first keyword hit wins. "large" beats "coke" so a
# "Large Coke 600ml" is a large drink.
PRODUCT_POINT_RULES: list[tuple[tuple[str, ...], int]] = [
    (("large", "600ml", "750ml"), LARGE_DRINK_POINTS),
    (("small", "250ml", "330ml", "can", "bottle", "water", "coke", "pepsi", "sprite"), SMALL_DRINK_POINTS),
    (("chip", "chocolate", "bar", "snack", "biscuit", "cookie", "nuts", "crackers"), SNACK_POINTS),
]

QR_MACHINE_PREFIX = "HIVIS_MACHINE_"
SCAN_POINTS = 10
POINTS_PER_DOLLAR = 10


def point_value(product_name: str | None, rules=None, default: int = DEFAULT_POINTS) -> int:
    """
    Points for one vended product, keyed by substring heuristics on its name.

    Pure function; swap `rules` for a lookup table without touching the engine.
    """
    if not product_name:
        return default
    product = product_name.lower()
    for keywords, points in (rules if rules is not None else PRODUCT_POINT_RULES):
        if any(k in product for k in keywords):
            return points
    return default


def points_for_amount(amount_cents: int) -> int:
    """10 points per whole dollar spent (manual/QR purchases with a known amount)."""
    if amount_cents < 0:
        raise ValidationError("amount must be >= 0")
    return (amount_cents // 100) * POINTS_PER_DOLLAR


def parse_machine_qr(qr_data: str | None) -> str:
    """Validate a machine QR payload ("HIVIS_MACHINE_001") and return the machine id."""
    if not qr_data or not qr_data.startswith(QR_MACHINE_PREFIX) or qr_data == QR_MACHINE_PREFIX:
        raise ValidationError("Invalid QR code")
    return qr_data.strip()
