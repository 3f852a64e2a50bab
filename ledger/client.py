"""
Ledger client for the BaseMiner round contract.

This module provides typed async access to the contract through web3's
``AsyncWeb3``. The client keeps no round state: every call goes to the node.
Writes are signed locally with an ``eth_account`` key and return as soon as
the node accepts the transaction into its pending set.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from ledger.errors import (
    LedgerGuardRejection,
    SubmissionRejected,
    TransientReadFailure,
)
from ledger.protocol import (
    BASE_SEPOLIA_CHAIN_ID,
    CONTRACT_ABI,
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_RPC_URL,
    TransactionStatus,
    decode_round_details,
    eth_to_wei,
)
from rounds.models import InvalidSnapshot, RoundDetails, is_valid_square

logger = logging.getLogger(__name__)


class LedgerClient:
    """Async client for the round contract."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        contract_address: Optional[str] = None,
        private_key: Optional[str] = None,
        chain_id: int = BASE_SEPOLIA_CHAIN_ID,
        timeout: float = 10.0,  # seconds
    ):
        """
        Initialize the ledger client.

        Args:
            rpc_url: JSON-RPC endpoint (default: public Base Sepolia RPC)
            contract_address: Round contract address
            private_key: Hex key used to sign writes; reads work without it
            chain_id: Chain id stamped on signed transactions
            timeout: Per-request RPC timeout in seconds
        """
        self.rpc_url = rpc_url or DEFAULT_RPC_URL
        self.contract_address = Web3.to_checksum_address(contract_address or DEFAULT_CONTRACT_ADDRESS)
        self.chain_id = int(chain_id)
        self.timeout = timeout
        self._account = Account.from_key(private_key) if private_key else None
        self._w3: Optional[AsyncWeb3] = None
        self._contract = None

    @property
    def address(self) -> Optional[str]:
        """Address of the signing account, if one is configured."""
        return self._account.address if self._account is not None else None

    async def __aenter__(self) -> LedgerClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Create the web3 provider and bind the contract."""
        if self._w3 is not None:
            return
        provider = AsyncWeb3.AsyncHTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
        )
        self._w3 = AsyncWeb3(provider)
        self._contract = self._w3.eth.contract(address=self.contract_address, abi=CONTRACT_ABI)
        logger.debug(f"Connected to ledger at {self.rpc_url} (contract {self.contract_address})")

    async def disconnect(self) -> None:
        """Close the provider session."""
        if self._w3 is None:
            return
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        self._w3 = None
        self._contract = None
        logger.debug("Disconnected from ledger")

    async def _bound(self):
        if self._contract is None:
            await self.connect()
        return self._w3, self._contract

    async def is_connected(self) -> bool:
        """Check whether the RPC endpoint answers."""
        try:
            w3, _ = await self._bound()
            return bool(await w3.is_connected())
        except Exception as e:
            logger.warning(f"Ledger health check error: {e}")
            return False

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def read_current_round_id(self) -> int:
        """Return the contract's current round id (``roundId()``)."""
        try:
            _, contract = await self._bound()
            return int(await contract.functions.roundId().call())
        except Exception as e:
            raise TransientReadFailure("roundId", e) from e

    async def read_round_details(self, round_id: int) -> RoundDetails:
        """Return the details of ``round_id`` (``getRoundDetails(uint256)``)."""
        try:
            _, contract = await self._bound()
            raw = await contract.functions.getRoundDetails(int(round_id)).call()
        except Exception as e:
            raise TransientReadFailure(f"getRoundDetails({round_id})", e) from e
        try:
            return decode_round_details(raw)
        except InvalidSnapshot:
            raise
        except Exception as e:
            raise InvalidSnapshot(f"could not decode round {round_id}: {e}") from e

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        """Receipt state of ``tx_hash``; PENDING while the node has no receipt."""
        try:
            w3, _ = await self._bound()
            receipt = await w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return TransactionStatus.PENDING
        except Exception as e:
            raise TransientReadFailure(f"receipt({tx_hash})", e) from e
        return TransactionStatus.SUCCESS if receipt["status"] == 1 else TransactionStatus.REVERTED

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def submit_stake(self, square: int, fee: Decimal) -> str:
        """
        Stake ``fee`` ether on ``square`` (payable ``deploy(uint256)``).

        Returns:
            Transaction hash once the node accepted the transaction

        Raises:
            SubmissionRejected: bad square, no signing key, or the node refused it
            LedgerGuardRejection: the contract would revert (round closed, fee mismatch)
        """
        if not is_valid_square(square):
            raise SubmissionRejected(f"square {square!r} is out of range")
        _, contract = await self._bound()
        return await self._send("deploy", contract.functions.deploy(square), value_wei=eth_to_wei(fee))

    async def submit_advance_round(self) -> str:
        """
        Advance an expired round (non-payable ``reset()``).

        Raises:
            LedgerGuardRejection: round not expired yet or already advanced
            SubmissionRejected: no signing key, or the node refused it
        """
        _, contract = await self._bound()
        return await self._send("reset", contract.functions.reset(), value_wei=0)

    async def _send(self, operation: str, call: Any, value_wei: int) -> str:
        if self._account is None:
            raise SubmissionRejected(f"{operation}: no signing key configured")
        w3, _ = await self._bound()
        try:
            nonce = await w3.eth.get_transaction_count(self._account.address, "pending")
            # build_transaction estimates gas, so a guarded call reverts here
            tx = await call.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": nonce,
                    "value": int(value_wei),
                    "chainId": self.chain_id,
                }
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise LedgerGuardRejection(operation, str(e)) from e
        except Exception as e:
            raise SubmissionRejected(f"{operation} failed: {e}") from e

        handle = Web3.to_hex(tx_hash)
        logger.info(f"{operation} transaction accepted: {handle}")
        return handle

    def build_stake_request(self, square: int, fee: Decimal) -> Dict[str, Any]:
        """
        Unsigned ``eth_sendTransaction`` request for an external wallet.

        Returns:
            ``{"chainId": "eip155:<id>", "method": ..., "params": {...}}`` with
            the value in wei as a decimal string
        """
        if not is_valid_square(square):
            raise SubmissionRejected(f"square {square!r} is out of range")
        contract = Web3().eth.contract(address=self.contract_address, abi=CONTRACT_ABI)
        data = contract.encode_abi("deploy", args=[square])
        return {
            "chainId": f"eip155:{self.chain_id}",
            "method": "eth_sendTransaction",
            "params": {
                "abi": [entry for entry in CONTRACT_ABI if entry["name"] == "deploy"],
                "to": self.contract_address,
                "data": data,
                "value": str(eth_to_wei(fee)),
            },
        }
