"""PriceRecord and DerivedPair: fixed-point price values.

A stored price is an unsigned integer ``value`` together with a power-of-ten
``scale_exponent``, so the human-scale price is ``value * 10**scale_exponent``.
Derived pair rates are always expressed with 30 decimals.

.. code-block:: python

    >>> btc = PriceRecord(scale_exponent=-8, updated_at=1700000000,
    ...                   value=4500000000000, sequence=1)
    >>> btc.to_decimal()
    Decimal('45000.00000000')
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from .errors import InvalidInput

MIN_SCALE_EXPONENT = -30
MAX_SCALE_EXPONENT = 30

# Derived pair values carry 30 decimals.
PAIR_DECIMALS = 30
PAIR_SCALE_EXPONENT = -PAIR_DECIMALS

# Values and sequence numbers must fit the on-chain uint256 / uint64 slots.
MAX_VALUE = 2**256 - 1
MAX_SEQUENCE = 2**64 - 1


class Direction(Enum):
    """Direction of a derived pair rate.

    FORWARD prices the first asset in units of the second, BACKWARD the
    second in units of the first.
    """

    FORWARD = 0
    BACKWARD = 1


@dataclass(frozen=True)
class PriceRecord:
    """A single stored price.

    :ivar scale_exponent: Power-of-ten scale of ``value``, in [-30, 30].
    :ivar updated_at: Unix timestamp of the update.
    :ivar value: Unsigned integer price.
    :ivar sequence: Caller-supplied non-negative counter.
    """

    scale_exponent: int
    updated_at: int
    value: int
    sequence: int

    def __post_init__(self) -> None:
        """Reject out-of-range fields.

        :raises InvalidInput: If any field is outside its domain.
        """
        for name in ("scale_exponent", "updated_at", "value", "sequence"):
            field_value = getattr(self, name)
            if not isinstance(field_value, int) or isinstance(field_value, bool):
                raise InvalidInput(f"{name} must be an int, got {field_value!r}")
        if not MIN_SCALE_EXPONENT <= self.scale_exponent <= MAX_SCALE_EXPONENT:
            raise InvalidInput(
                f"scale_exponent {self.scale_exponent} outside "
                f"[{MIN_SCALE_EXPONENT}, {MAX_SCALE_EXPONENT}]"
            )
        if not 0 <= self.value <= MAX_VALUE:
            raise InvalidInput(f"value {self.value} outside uint256 range")
        if not 0 <= self.sequence <= MAX_SEQUENCE:
            raise InvalidInput(f"sequence {self.sequence} outside uint64 range")
        if self.updated_at < 0:
            raise InvalidInput(f"updated_at must be non-negative, got {self.updated_at}")

    @classmethod
    def empty(cls) -> PriceRecord:
        """Return the all-zero record reported for unset assets."""
        return cls(scale_exponent=0, updated_at=0, value=0, sequence=0)

    def to_decimal(self) -> Decimal:
        """Return the human-scale price as an exact Decimal."""
        return Decimal(self.value).scaleb(self.scale_exponent)

    def age(self, now: int) -> int:
        """Seconds since this record was updated.

        Staleness policy belongs to the consumer; the store never rejects
        old records.

        :param now: Current unix timestamp.
        :returns: Age in seconds (never negative).
        """
        return max(0, now - self.updated_at)

    def to_dict(self) -> dict[str, int]:
        """Serialize to a JSON-friendly dict."""
        return {
            "scale_exponent": self.scale_exponent,
            "updated_at": self.updated_at,
            "value": self.value,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PriceRecord:
        """Deserialize from :meth:`to_dict` output.

        :raises InvalidInput: If fields are missing or out of range.
        """
        try:
            fields = {
                name: int(data[name])
                for name in ("scale_exponent", "updated_at", "value", "sequence")
            }
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput(f"Malformed price record {data!r}: {e}") from e
        return cls(**fields)


@dataclass(frozen=True)
class DerivedPair:
    """Exchange rate between two stored assets, recomputed per query.

    :ivar derived_value: Rate scaled to 30 decimals, truncated toward zero.
    :ivar updated_at: Older of the two inputs' timestamps.
    :ivar sequence_delta: Absolute difference of the inputs' sequences.
    :ivar scale_exponent: Always -30.
    """

    derived_value: int
    updated_at: int
    sequence_delta: int
    scale_exponent: int = PAIR_SCALE_EXPONENT

    def to_decimal(self) -> Decimal:
        """Return the human-scale rate as an exact Decimal."""
        return Decimal(self.derived_value).scaleb(self.scale_exponent)
