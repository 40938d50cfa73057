"""Identity normalisation and the owner role shared by store and gate."""

from __future__ import annotations

import logging

from web3 import Web3

from .errors import InvalidInput, PermissionDenied

logger = logging.getLogger(__name__)


def normalize_identity(identity: str) -> str:
    """Return the EIP-55 checksum form of an address-like identity.

    :param identity: Hex address, any case, with 0x prefix.
    :returns: Checksummed address.
    :raises InvalidInput: If the identity is not a 20-byte hex address.
    """
    if not isinstance(identity, str):
        raise InvalidInput(f"Identity must be a hex address string, got {identity!r}")
    try:
        return Web3.to_checksum_address(identity)
    except ValueError as e:
        raise InvalidInput(f"Invalid identity {identity!r}: {e}") from e


class Ownable:
    """Owner role: a single principal allowed to perform admin calls.

    :ivar owner: Checksummed owner identity.
    """

    def __init__(self, owner: str) -> None:
        """Initialize with the owning identity.

        :param owner: Owner address.
        """
        self.owner = normalize_identity(owner)

    def _is_caller(self, caller: str | None, expected: str | None) -> bool:
        if caller is None or expected is None:
            return False
        try:
            return normalize_identity(caller) == expected
        except InvalidInput:
            return False

    def _require_owner(self, caller: str | None, action: str) -> None:
        """Raise unless ``caller`` is the owner.

        :raises PermissionDenied: If caller is not the owner.
        """
        if not self._is_caller(caller, self.owner):
            logger.warning(f"Rejected {action} from non-owner {caller}")
            raise PermissionDenied(caller, f"Only the owner may {action}")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """Hand the owner role to another identity.

        :param caller: Must be the current owner.
        :param new_owner: New owner address.
        """
        self._require_owner(caller, "transfer ownership")
        self.owner = normalize_identity(new_owner)
        logger.info(f"Ownership transferred to {self.owner}")
