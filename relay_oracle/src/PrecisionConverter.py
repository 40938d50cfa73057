"""PrecisionConverter: human-scale prices to fixed-point integers.

A price ``p`` for an asset configured with exponent ``e`` becomes
``value = trunc(p * 10**-e)``, stored with ``scale_exponent = e``. Digits
beyond the asset's precision are truncated toward zero, never rounded up.

.. code-block:: python

    >>> to_fixed_point(Decimal("45000.123456789"), -8)
    (4500012345678, -8)
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, localcontext

from .Asset import Asset
from .errors import InvalidInput
from .PriceRecord import MAX_SCALE_EXPONENT, MAX_VALUE, MIN_SCALE_EXPONENT, PriceRecord

# Enough digits for any uint256 value at any allowed exponent.
_PRECISION = 120


def to_fixed_point(price: Decimal, scale_exponent: int) -> tuple[int, int]:
    """Convert a price to ``(value, scale_exponent)``.

    :param price: Human-scale price.
    :param scale_exponent: Target exponent in [-30, 30].
    :returns: Integer value and the exponent.
    :raises InvalidInput: If the price is negative or not finite, the
        exponent is out of range, or the value would not fit in uint256.
    """
    if not MIN_SCALE_EXPONENT <= scale_exponent <= MAX_SCALE_EXPONENT:
        raise InvalidInput(f"Scale exponent {scale_exponent} out of range")
    if not isinstance(price, Decimal):
        raise InvalidInput(f"Price must be a Decimal, got {type(price).__name__}")
    if not price.is_finite() or price < 0:
        raise InvalidInput(f"Cannot convert price {price}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = price.scaleb(-scale_exponent).to_integral_value(rounding=ROUND_DOWN)

    if scaled > MAX_VALUE:
        raise InvalidInput(
            f"Price {price} at exponent {scale_exponent} overflows uint256"
        )
    return int(scaled), scale_exponent


class PrecisionConverter:
    """Builds PriceRecords for configured assets."""

    def to_record(
        self,
        asset: Asset,
        price: Decimal,
        updated_at: int,
        sequence: int,
    ) -> PriceRecord:
        """Convert an aggregated price into a record for ``asset``.

        :param asset: Asset whose exponent is used.
        :param price: Aggregated human-scale price.
        :param updated_at: Unix timestamp for the record.
        :param sequence: Sequence number for the record.
        :raises InvalidInput: If the price cannot be represented.
        """
        value, scale_exponent = to_fixed_point(price, asset.scale_exponent)
        return PriceRecord(
            scale_exponent=scale_exponent,
            updated_at=int(updated_at),
            value=value,
            sequence=sequence,
        )
