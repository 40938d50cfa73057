"""ContractGateClient: submit batches to an on-chain price feed contract."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError
from web3.middleware import SignAndSendRawMiddlewareBuilder

from .errors import InvalidInput, PermissionDenied, TransientSubmissionFailure
from .GateClient import GateClient
from .PriceRecord import PriceRecord

logger = logging.getLogger(__name__)

_RECORD_COMPONENTS = [
    {"name": "scaleExponent", "type": "int8"},
    {"name": "updatedAt", "type": "uint64"},
    {"name": "value", "type": "uint256"},
    {"name": "sequence", "type": "uint64"},
]

# Subset of the price feed ABI the relayer needs.
PRICE_FEED_ABI: list[dict] = [
    {
        "type": "function",
        "name": "submitPriceFeed",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "assetIds", "type": "bytes32[]"},
            {"name": "records", "type": "tuple[]", "components": _RECORD_COMPONENTS},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getAssetInfo",
        "stateMutability": "view",
        "inputs": [{"name": "assetId", "type": "bytes32"}],
        "outputs": [
            {"name": "record", "type": "tuple", "components": _RECORD_COMPONENTS},
            {"name": "exists", "type": "bool"},
        ],
    },
]

# Revert reasons that mean the relayer key is not authorized.
_PERMISSION_MARKERS = ("unauthorized", "permission", "not relayer", "only relayer")


def load_abi(path: str | os.PathLike) -> list[dict]:
    """Load a contract ABI from a compiler output or bare ABI JSON file.

    :param path: JSON file holding either ``{"abi": [...]}`` or ``[...]``.
    :returns: ABI list.
    """
    with open(Path(path), "r") as file:
        data = json.load(file)
    return data["abi"] if isinstance(data, dict) else data


def classify_revert(error: ContractLogicError) -> Exception:
    """Map a contract revert to the matching terminal error."""
    message = str(error)
    if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
        return PermissionDenied(None, f"Contract rejected relayer: {message}")
    return InvalidInput(f"Contract rejected batch: {message}")


class ContractGateClient(GateClient):
    """Gate client backed by a web3 contract.

    :ivar w3: Web3 instance signing with the relayer key.
    :ivar contract: Price feed contract.
    :ivar relayer: Address derived from the relayer key.
    :ivar receipt_timeout: Seconds to wait for a transaction receipt.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        abi: list[dict] | None = None,
        receipt_timeout: float = 60.0,
        w3: Web3 | None = None,
    ) -> None:
        """Connect to the chain and load the contract.

        :param rpc_url: JSON-RPC endpoint.
        :param contract_address: Address of the price feed contract.
        :param private_key: Relayer signing key (hex).
        :param abi: Optional full contract ABI; defaults to PRICE_FEED_ABI.
        :param receipt_timeout: Seconds to wait for inclusion.
        :param w3: Optional pre-built Web3 instance (tests, custom providers).
        """
        account: LocalAccount = Account.from_key(private_key)
        self.w3 = w3 if w3 is not None else Web3(Web3.HTTPProvider(rpc_url))
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
        self.w3.eth.default_account = account.address
        self.relayer = account.address
        self.receipt_timeout = receipt_timeout
        self.contract: Contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=abi or PRICE_FEED_ABI,
        )
        logger.info(f"Contract gate client: contract={contract_address}, relayer={self.relayer}")

    def _submit_sync(
        self, asset_ids: Sequence[bytes], records: Sequence[PriceRecord]
    ) -> None:
        encoded = [
            (r.scale_exponent, r.updated_at, r.value, r.sequence) for r in records
        ]
        try:
            tx_hash = self.contract.functions.submitPriceFeed(
                list(asset_ids), encoded
            ).transact({"from": self.relayer})
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except ContractLogicError as e:
            raise classify_revert(e) from e
        except TimeExhausted as e:
            raise TransientSubmissionFailure(f"Transaction not mined: {e}") from e
        except Web3RPCError as e:
            raise TransientSubmissionFailure(f"RPC error: {e}") from e
        except OSError as e:
            # requests' connection errors derive from OSError
            raise TransientSubmissionFailure(f"RPC unreachable: {e}") from e

        if receipt["status"] != 1:
            raise TransientSubmissionFailure(
                f"Transaction {tx_hash.hex()} reverted on inclusion"
            )
        logger.debug(f"Batch of {len(encoded)} included in block {receipt['blockNumber']}")

    async def submit(
        self, asset_ids: Sequence[bytes], records: Sequence[PriceRecord]
    ) -> None:
        await asyncio.to_thread(self._submit_sync, asset_ids, records)

    def _get_asset_info_sync(self, asset_id: bytes) -> tuple[PriceRecord, bool]:
        try:
            (scale_exponent, updated_at, value, sequence), exists = (
                self.contract.functions.getAssetInfo(asset_id).call()
            )
        except (OSError, Web3RPCError) as e:
            raise TransientSubmissionFailure(f"RPC unreachable: {e}") from e
        record = PriceRecord(
            scale_exponent=scale_exponent,
            updated_at=updated_at,
            value=value,
            sequence=sequence,
        )
        return record, bool(exists)

    async def get_asset_info(self, asset_id: bytes) -> tuple[PriceRecord, bool]:
        return await asyncio.to_thread(self._get_asset_info_sync, asset_id)
