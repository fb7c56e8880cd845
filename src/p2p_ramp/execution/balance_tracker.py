"""
Balance tracking per account and chain.

Balances are read fresh from the chain and held only in memory. The cache
is dropped whenever the selected (account, chain) pair changes, and a failure
anywhere on a chain clears that chain's map entirely rather than leaving it
partially populated.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Dict, Optional, Tuple, Union

import aiohttp
from web3.exceptions import Web3Exception

from p2p_ramp.chains.evm import EvmGateway
from p2p_ramp.chains.icp import IdentityLedger
from p2p_ramp.chains.tokens import TokenCatalog, chain_key
from p2p_ramp.errors import RampClientError
from p2p_ramp.service.models import Blockchain, EvmChain, IcpChain

logger = logging.getLogger(__name__)

READ_ERRORS = (RampClientError, Web3Exception, ValueError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass(frozen=True)
class Balance:
    raw: int
    formatted: str


def format_units(raw: int, decimals: int, places: int = 2) -> str:
    """Render smallest units as a decimal string, truncated to ``places``."""
    value = Decimal(raw).scaleb(-decimals)
    quantum = Decimal(1).scaleb(-places)
    return str(value.quantize(quantum, rounding=ROUND_DOWN))


class BalanceTracker:
    """
    Reads native and token balances.

    Usage:
        tracker = BalanceTracker(catalog, evm=gateway, ledger=icp_ledger)
        balances = await tracker.fetch_balances("0xabc...", EvmChain(chain_id=11155111))
        balances["ETH"].formatted  # "0.05"
    """

    def __init__(
        self,
        catalog: TokenCatalog,
        evm: Optional[EvmGateway] = None,
        ledger: Optional[IdentityLedger] = None,
    ) -> None:
        self._catalog = catalog
        self._evm = evm
        self._ledger = ledger

        self._selection: Optional[Tuple[str, Union[int, str]]] = None
        self._balances: Dict[str, Balance] = {}

    def _select(self, account: str, blockchain: Blockchain) -> None:
        selection = (account, chain_key(blockchain))
        if selection != self._selection:
            if self._selection is not None:
                logger.debug(f"Balance selection changed to {selection}, dropping cache")
            self._selection = selection
            self._balances = {}

    def invalidate(self) -> None:
        """Drop cached balances, e.g. after funds moved on-chain."""
        self._balances = {}

    def get_cached(self, account: str, blockchain: Blockchain) -> Dict[str, Balance]:
        """Last fetched balances for this selection, or an empty map."""
        if self._selection != (account, chain_key(blockchain)):
            return {}
        return dict(self._balances)

    async def _read(self, account: str, blockchain: Blockchain) -> Dict[str, Balance]:
        balances: Dict[str, Balance] = {}
        tokens = self._catalog.tokens_for(blockchain)

        if isinstance(blockchain, IcpChain):
            if self._ledger is None:
                raise RampClientError("No identity-chain ledger configured")
            for token in tokens:
                raw = await self._ledger.balance_of(token.address, account)
                balances[token.name] = Balance(raw, format_units(raw, token.decimals))

        elif isinstance(blockchain, EvmChain):
            if self._evm is None:
                raise RampClientError("No EVM gateway configured")
            for token in tokens:
                if token.address is None:
                    raw = await self._evm.native_balance(blockchain.chain_id, account)
                else:
                    raw = await self._evm.token_balance(blockchain.chain_id, token.address, account)
                balances[token.name] = Balance(raw, format_units(raw, token.decimals))

        return balances

    async def fetch_balances(self, account: str, blockchain: Blockchain) -> Dict[str, Balance]:
        """
        Read every catalog token balance of ``account`` on ``blockchain``.

        Returns:
            {token name: Balance}; empty if any read on the chain failed
        """
        self._select(account, blockchain)
        self._balances = {}
        try:
            balances = await self._read(account, blockchain)
        except READ_ERRORS as e:
            logger.warning(f"Balance fetch failed for {account} on {chain_key(blockchain)}: {e}")
            return {}

        self._balances = balances
        return dict(balances)
