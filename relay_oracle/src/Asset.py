"""Asset: a priced instrument and its on-chain identifier.

The asset id is ``keccak256(symbol)`` over the lower-cased symbol, so every
relayer and consumer derives the same 32-byte key without a registry.

.. code-block:: python

    >>> asset = Asset.from_string("btc:-8")
    >>> str(asset)
    'btc'
    >>> asset.scale_exponent
    -8
    >>> len(asset.asset_id)
    32
"""

from __future__ import annotations

from web3 import Web3

from .errors import InvalidInput
from .PriceRecord import MAX_SCALE_EXPONENT, MIN_SCALE_EXPONENT

ASSET_ID_LENGTH = 32

# Eight decimals unless configured otherwise.
DEFAULT_SCALE_EXPONENT = -8


def compute_asset_id(symbol: str) -> bytes:
    """Hash an asset symbol into its 32-byte id.

    :param symbol: Asset symbol (case-insensitive).
    :returns: keccak256 of the lower-cased symbol.
    """
    return bytes(Web3.keccak(text=symbol.strip().lower()))


def check_asset_id(asset_id: object) -> bytes:
    """Validate an asset id.

    :param asset_id: Candidate id.
    :returns: The id as bytes.
    :raises InvalidInput: If it is not 32 bytes.
    """
    if not isinstance(asset_id, (bytes, bytearray)) or len(asset_id) != ASSET_ID_LENGTH:
        raise InvalidInput(f"Asset id must be {ASSET_ID_LENGTH} bytes, got {asset_id!r}")
    return bytes(asset_id)


class Asset:
    """An asset tracked by the relayer.

    :ivar symbol: Lower-cased symbol (e.g. "btc").
    :ivar quote: Quote currency the sources are asked for (e.g. "usd").
    :ivar scale_exponent: Exponent used when converting prices to integers.
    """

    def __init__(
        self,
        symbol: str,
        scale_exponent: int = DEFAULT_SCALE_EXPONENT,
        quote: str = "usd",
    ) -> None:
        """Initialize an asset.

        :param symbol: Asset symbol (e.g. "btc", "eth").
        :param scale_exponent: Power-of-ten scale of stored values.
        :param quote: Quote currency used when querying sources.
        :raises InvalidInput: If the symbol is empty or the exponent out of range.
        """
        symbol = symbol.strip().lower()
        if not symbol:
            raise InvalidInput("Asset symbol must not be empty")
        if not MIN_SCALE_EXPONENT <= scale_exponent <= MAX_SCALE_EXPONENT:
            raise InvalidInput(
                f"Scale exponent {scale_exponent} for {symbol} outside "
                f"[{MIN_SCALE_EXPONENT}, {MAX_SCALE_EXPONENT}]"
            )
        self.symbol = symbol
        self.quote = quote.strip().lower()
        self.scale_exponent = scale_exponent
        self.asset_id = compute_asset_id(symbol)

    def __str__(self) -> str:
        return self.symbol

    def __repr__(self) -> str:
        return (
            f"Asset({self.symbol!r}, scale_exponent={self.scale_exponent}, "
            f"quote={self.quote!r})"
        )

    def __hash__(self) -> int:
        return hash(self.asset_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Asset):
            return NotImplemented
        return self.asset_id == other.asset_id

    @classmethod
    def from_string(cls, spec: str, quote: str = "usd") -> Asset:
        """Parse ``symbol`` or ``symbol:exponent``.

        :param spec: String like "btc" or "usdc:-6".
        :param quote: Quote currency for the asset.
        :returns: New Asset instance.
        :raises InvalidInput: If the format is invalid.

        .. code-block:: python

            >>> Asset.from_string("usdc:-6").scale_exponent
            -6
        """
        parts = spec.strip().split(":")
        if len(parts) == 1:
            return cls(parts[0], quote=quote)
        if len(parts) != 2:
            raise InvalidInput(
                f"Invalid asset format '{spec}'. Expected 'symbol' or 'symbol:exponent'"
            )
        try:
            exponent = int(parts[1])
        except ValueError as e:
            raise InvalidInput(f"Invalid scale exponent in '{spec}'") from e
        return cls(parts[0], scale_exponent=exponent, quote=quote)
