"""Rounding shared by the forecasting and clearance calculations."""

from __future__ import annotations

import math
from typing import Optional, Union, overload


@overload
def round_half_up(value: float) -> int: ...


@overload
def round_half_up(value: float, ndigits: int) -> float: ...


def round_half_up(value: float, ndigits: Optional[int] = None) -> Union[int, float]:
    """Round with ties going up (``2.5 -> 3``, ``-2.5 -> -2``).

    Unlike the built-in ``round``, ties never go to the even neighbour.
    Without ``ndigits`` an ``int`` is returned, like ``round``.
    """

    if ndigits is None:
        return int(math.floor(value + 0.5))
    if not math.isfinite(value):
        return value
    factor = 10**ndigits
    return math.floor(value * factor + 0.5) / factor
