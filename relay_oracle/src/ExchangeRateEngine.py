"""ExchangeRateEngine: derived exchange rates between stored assets.

Rates are computed with Python integers, so there is no overflow and no
intermediate rounding. The two input scales are folded into a single power of
ten before the one final division, which truncates toward zero:

    derived = a.value * 10**(30 + a.exp - b.exp) // b.value

When the combined exponent is negative the divisor is scaled up instead.

A missing asset is treated as the all-zero record, and a zero value on either
side yields a zero rate. Callers that need to tell "unset" from "stored zero"
must check ``exists`` through the store.

.. code-block:: python

    >>> engine = ExchangeRateEngine(store)
    >>> engine.get_pair(usdc_id, btc_id, Direction.FORWARD).derived_value
    22222222222222222222222222
"""

from __future__ import annotations

from collections.abc import Sequence

from .errors import InvalidInput
from .PriceRecord import PAIR_DECIMALS, DerivedPair, Direction, PriceRecord
from .PriceStore import PriceStore


def forward(a: PriceRecord, b: PriceRecord) -> DerivedPair:
    """Price of ``a`` in units of ``b``, at 30 decimals.

    :param a: Numerator record.
    :param b: Denominator record.
    :returns: Derived pair; zero-valued if either value is zero.
    """
    updated_at = min(a.updated_at, b.updated_at)
    sequence_delta = abs(a.sequence - b.sequence)

    if a.value == 0 or b.value == 0:
        return DerivedPair(
            derived_value=0, updated_at=updated_at, sequence_delta=sequence_delta
        )

    exponent = PAIR_DECIMALS + a.scale_exponent - b.scale_exponent
    if exponent >= 0:
        derived = (a.value * 10**exponent) // b.value
    else:
        derived = a.value // (b.value * 10 ** (-exponent))

    return DerivedPair(
        derived_value=derived, updated_at=updated_at, sequence_delta=sequence_delta
    )


def backward(a: PriceRecord, b: PriceRecord) -> DerivedPair:
    """Price of ``b`` in units of ``a``, at 30 decimals."""
    return forward(b, a)


def derive(a: PriceRecord, b: PriceRecord, direction: Direction) -> DerivedPair:
    """Dispatch on direction."""
    if direction is Direction.FORWARD:
        return forward(a, b)
    if direction is Direction.BACKWARD:
        return backward(a, b)
    raise InvalidInput(f"Unknown direction {direction!r}")


class ExchangeRateEngine:
    """Computes derived rates from records held in a PriceStore.

    :ivar store: Store the rates are read from.
    """

    def __init__(self, store: PriceStore) -> None:
        self.store = store

    def get_pair(
        self, asset_id0: bytes, asset_id1: bytes, direction: Direction
    ) -> DerivedPair:
        """Derived rate between two assets.

        :param asset_id0: First asset.
        :param asset_id1: Second asset.
        :param direction: FORWARD for id0 in units of id1, BACKWARD for the reverse.
        :returns: Derived pair; all-zero if either asset is unset.
        """
        (record0, record1), _ = self.store.get_batch([asset_id0, asset_id1])
        return derive(record0, record1, direction)

    def get_pairs(
        self,
        asset_ids0: Sequence[bytes],
        asset_ids1: Sequence[bytes],
        directions: Sequence[Direction],
    ) -> list[DerivedPair]:
        """Derived rates for several pairs, each with its own direction.

        Each pair is computed independently; an unset asset only zeroes its
        own slot.

        :raises InvalidInput: If the three sequences differ in length.
        """
        if not len(asset_ids0) == len(asset_ids1) == len(directions):
            raise InvalidInput(
                f"Pair arrays differ in length: {len(asset_ids0)}, "
                f"{len(asset_ids1)}, {len(directions)}"
            )
        with self.store.transaction():
            records0, _ = self.store.get_batch(asset_ids0)
            records1, _ = self.store.get_batch(asset_ids1)
        return [
            derive(a, b, direction)
            for a, b, direction in zip(records0, records1, directions, strict=True)
        ]

    def get_pairs_uniform(
        self,
        asset_ids0: Sequence[bytes],
        asset_ids1: Sequence[bytes],
        direction: Direction,
    ) -> list[DerivedPair]:
        """Derived rates for several pairs sharing one direction.

        :raises InvalidInput: If the two sequences differ in length.
        """
        if len(asset_ids0) != len(asset_ids1):
            raise InvalidInput(
                f"Pair arrays differ in length: {len(asset_ids0)}, {len(asset_ids1)}"
            )
        return self.get_pairs(asset_ids0, asset_ids1, [direction] * len(asset_ids0))
