"""GateClient: how the relayer reaches a ValidationGate.

The submission manager only talks to this interface. ``LocalGateClient``
drives an in-process :class:`OracleService`; ``ContractGateClient`` (see
ContractGateClient.py) drives an on-chain deployment.

Implementations raise:
    - TransientSubmissionFailure for anything worth retrying,
    - PermissionDenied / InvalidInput for terminal rejections.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from .access import normalize_identity
from .OracleService import OracleService
from .PriceRecord import PriceRecord


class GateClient(ABC):
    """Abstract submission endpoint.

    :ivar relayer: Identity submissions are made as.
    """

    relayer: str

    @abstractmethod
    async def submit(
        self, asset_ids: Sequence[bytes], records: Sequence[PriceRecord]
    ) -> None:
        """Submit one atomic batch.

        :param asset_ids: Ordered asset ids.
        :param records: Records, parallel to ``asset_ids``.
        """
        pass

    @abstractmethod
    async def get_asset_info(self, asset_id: bytes) -> tuple[PriceRecord, bool]:
        """Read the currently stored record for an asset.

        :param asset_id: 32-byte asset id.
        :returns: ``(record, exists)``.
        """
        pass

    async def close(self) -> None:
        """Release any connections held by the client."""
        return None


class LocalGateClient(GateClient):
    """Submits to an OracleService living in the same process.

    :ivar service: Target service.
    """

    def __init__(self, service: OracleService, relayer: str) -> None:
        """Initialize the client.

        :param service: Oracle to submit into.
        :param relayer: Identity to submit as.
        """
        self.service = service
        self.relayer = normalize_identity(relayer)

    async def submit(
        self, asset_ids: Sequence[bytes], records: Sequence[PriceRecord]
    ) -> None:
        self.service.submit_price_feed(self.relayer, asset_ids, records)

    async def get_asset_info(self, asset_id: bytes) -> tuple[PriceRecord, bool]:
        return self.service.get_asset_info(asset_id)
