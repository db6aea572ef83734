from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from web3 import Web3

from .errors import UpstreamError
from .protocols import Allocation, YieldSnapshot

logger = structlog.get_logger(__name__)

# read-only slice of the YieldOptimizer contract
YIELD_OPTIMIZER_ABI: List[Dict[str, Any]] = [
    {
        "name": "getCurrentYields",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "benqiAPY", "type": "uint256"},
            {"name": "traderJoeAPY", "type": "uint256"},
            {"name": "yieldYakAPY", "type": "uint256"},
            {"name": "lastUpdated", "type": "uint256"},
        ],
    },
    {
        "name": "getUserPortfolio",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [
            {
                "name": "profile",
                "type": "tuple",
                "components": [
                    {"name": "riskScore", "type": "uint256"},
                    {"name": "totalDeposited", "type": "uint256"},
                    {"name": "lastRebalance", "type": "uint256"},
                    {"name": "autoRebalance", "type": "bool"},
                ],
            },
            {
                "name": "allocation",
                "type": "tuple",
                "components": [
                    {"name": "benqiAmount", "type": "uint256"},
                    {"name": "traderJoeAmount", "type": "uint256"},
                    {"name": "yieldYakAmount", "type": "uint256"},
                ],
            },
            {"name": "estimatedValue", "type": "uint256"},
        ],
    },
]


def parse_yields(raw) -> List[YieldSnapshot]:
    """(benqi_bp, traderjoe_bp, yieldyak_bp, updated_at) -> snapshots in percent."""
    stamp = datetime.fromtimestamp(int(raw[3]), tz=timezone.utc)
    return [
        YieldSnapshot(protocol, int(bp) / 100, stamp)
        for protocol, bp in zip(("aave", "traderjoe", "yieldyak"), raw[:3])
    ]


def parse_portfolio(raw) -> Dict[str, Any]:
    profile, amounts, value = raw
    return {
        "risk_score": int(profile[0]),
        "total_deposited": float(Web3.from_wei(int(profile[1]), "ether")),
        "last_rebalance": datetime.fromtimestamp(int(profile[2]), tz=timezone.utc),
        "auto_rebalance": bool(profile[3]),
        "allocation": Allocation.from_amounts(
            {
                "aave": float(Web3.from_wei(int(amounts[0]), "ether")),
                "traderjoe": float(Web3.from_wei(int(amounts[1]), "ether")),
                "yieldyak": float(Web3.from_wei(int(amounts[2]), "ether")),
            }
        ),
        "estimated_value": float(Web3.from_wei(int(value), "ether")),
    }


class ChainClient:
    """
    Read access to the optimizer contract over JSON-RPC.
    web3 calls are blocking, so each one runs in a worker thread.
    """

    def __init__(self, rpc_url: str, contract_address: Optional[str] = None, web3: Optional[Web3] = None):
        self.web3 = web3 or Web3(Web3.HTTPProvider(rpc_url))
        self.contract = None
        if contract_address:
            self.contract = self.web3.eth.contract(
                address=Web3.to_checksum_address(contract_address),
                abi=YIELD_OPTIMIZER_ABI,
            )

    def _require_contract(self):
        if self.contract is None:
            raise UpstreamError("Yield optimizer contract address is not configured")
        return self.contract

    async def gas_price(self) -> float:
        """Current gas price in native units (AVAX per gas unit)."""
        wei = await asyncio.to_thread(lambda: self.web3.eth.gas_price)
        return float(Web3.from_wei(wei, "ether"))

    async def get_yields(self) -> List[YieldSnapshot]:
        contract = self._require_contract()
        try:
            raw = await asyncio.to_thread(contract.functions.getCurrentYields().call)
        except Exception as e:
            logger.error("chain_yields_failed", error=str(e))
            raise UpstreamError("Failed to fetch yield data") from e
        return parse_yields(raw)

    async def get_portfolio(self, address: str) -> Dict[str, Any]:
        contract = self._require_contract()
        checksum = Web3.to_checksum_address(address)
        try:
            raw = await asyncio.to_thread(contract.functions.getUserPortfolio(checksum).call)
        except Exception as e:
            logger.error("chain_portfolio_failed", address=address, error=str(e))
            raise UpstreamError("Failed to fetch portfolio data") from e
        logger.debug("chain_portfolio_fetched", address=address[:8])
        return parse_portfolio(raw)

    async def get_allocation(self, address: str) -> Allocation:
        return (await self.get_portfolio(address))["allocation"]
