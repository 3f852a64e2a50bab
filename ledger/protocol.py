"""
Contract interface shared by BaseMiner viewers, stakers and the watchdog.

The ABI below covers only the functions the clients use. Helpers convert the
raw ``getRoundDetails`` tuple (wei amounts) into ``RoundDetails`` (ether
amounts) so the rest of the code never handles wei.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Sequence

from web3 import Web3

from rounds.models import SQUARE_COUNT, InvalidSnapshot, RoundDetails

BASE_SEPOLIA_CHAIN_ID = 84532
DEFAULT_RPC_URL = "https://sepolia.base.org"
DEFAULT_CONTRACT_ADDRESS = "0xb68bC7FEDf18c5cF41b39ff75ecD9c04C1164244"
DEFAULT_ENTRY_FEE_ETH = Decimal("0.0001")

CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "deploy",
        "inputs": [{"name": "square", "type": "uint256"}],
        "outputs": [],
        "stateMutability": "payable",
    },
    {
        "type": "function",
        "name": "reset",
        "inputs": [],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "roundId",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getRoundDetails",
        "inputs": [{"name": "_roundId", "type": "uint256"}],
        "outputs": [
            {"name": "endTime", "type": "uint256"},
            {"name": "totalEth", "type": "uint256"},
            {"name": "squareStakes", "type": "uint256[25]"},
            {"name": "finalized", "type": "bool"},
            {"name": "winner", "type": "uint256"},
        ],
        "stateMutability": "view",
    },
]


class TransactionStatus(Enum):
    """Receipt state of a broadcast transaction."""

    PENDING = "pending"
    SUCCESS = "success"
    REVERTED = "reverted"


def wei_to_eth(amount_wei: int) -> Decimal:
    return Decimal(Web3.from_wei(int(amount_wei), "ether"))


def eth_to_wei(amount_eth: Decimal) -> int:
    return int(Web3.to_wei(Decimal(amount_eth), "ether"))


def decode_round_details(raw: Sequence[Any]) -> RoundDetails:
    """
    Convert the raw ``getRoundDetails`` output into ``RoundDetails``.

    Args:
        raw: ``(endTime, totalEth, squareStakes[25], finalized, winner)`` as
            returned by the contract call, amounts in wei

    Returns:
        RoundDetails with amounts in ether

    Raises:
        InvalidSnapshot: if the tuple has the wrong shape
    """
    if len(raw) != 5:
        raise InvalidSnapshot(f"getRoundDetails returned {len(raw)} fields, expected 5")
    end_time, total_wei, stakes_wei, finalized, winner = raw
    if len(stakes_wei) != SQUARE_COUNT:
        raise InvalidSnapshot(f"getRoundDetails returned {len(stakes_wei)} squares, expected {SQUARE_COUNT}")
    return RoundDetails(
        end_time_unix=int(end_time),
        total_staked=wei_to_eth(total_wei),
        square_stakes=tuple(wei_to_eth(s) for s in stakes_wei),
        finalized=bool(finalized),
        winner=int(winner),
    )
