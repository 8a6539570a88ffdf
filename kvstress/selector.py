"""Read/write/delete selection from a uniform draw and the configured read ratio.

Boundaries:
    [0, r)        -> READ
    [r, r + w)    -> WRITE
    [r + w, 1)    -> DELETE when aggressive, otherwise WRITE

With aggressive mode off the delete share is 0 and r + w == 1, so the last
range is empty except for floating-point residue; that residue is written,
never deleted, and nothing is renormalised.
"""

from __future__ import annotations

from .models import OperationKind

AGGRESSIVE_DELETE_RATIO = 0.05


def clamp_ratio(read_ratio: float) -> float:
    return min(1.0, max(0.0, read_ratio))


def operation_ratios(read_ratio: float, aggressive: bool) -> tuple[float, float, float]:
    """Effective (read, write, delete) fractions before the draw."""
    r = clamp_ratio(read_ratio)
    d = AGGRESSIVE_DELETE_RATIO if aggressive else 0.0
    w = max(0.0, 1.0 - r - d)
    return r, w, d


def select_operation(u: float, read_ratio: float, aggressive: bool) -> OperationKind:
    """Pick the operation for draw u in [0, 1)."""
    r, w, _ = operation_ratios(read_ratio, aggressive)
    if u < r:
        return OperationKind.READ
    if u < r + w:
        return OperationKind.WRITE
    if aggressive:
        return OperationKind.DELETE
    return OperationKind.WRITE
