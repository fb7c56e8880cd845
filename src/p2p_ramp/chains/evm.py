"""
EVM vault gateway.

One ``AsyncWeb3`` per configured chain. Every state-changing call is
estimated first and submitted with that estimate as an explicit gas limit;
a transaction counts as successful only when its receipt has ``status == 1``.

Signing is delegated to the provider (node-managed account or signing
middleware installed by the host); this module never handles keys.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from p2p_ramp.errors import NetworkError, UnsupportedChainError, VaultTransactionFailedError

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)

VAULT_ABI = [
    {
        "inputs": [],
        "name": "depositBaseCurrency",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "_token", "type": "address"},
            {"internalType": "uint256", "name": "_amount", "type": "uint256"},
        ],
        "name": "depositToken",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "_amount", "type": "uint256"}],
        "name": "withdrawBaseCurrency",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "_token", "type": "address"},
            {"internalType": "uint256", "name": "_amount", "type": "uint256"},
        ],
        "name": "withdrawToken",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "_offramper", "type": "address"},
            {"internalType": "address", "name": "_token", "type": "address"},
            {"internalType": "uint256", "name": "_amount", "type": "uint256"},
        ],
        "name": "uncommitDeposit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ERC20_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def describe_web3_error(error: BaseException) -> str:
    """User-facing text for a failed chain call."""
    text = str(error)
    lowered = text.lower()
    if isinstance(error, ContractLogicError) or "revert" in lowered:
        return (
            "Transaction reverted. Please check if the token contract allows this "
            "operation or if you have enough balance."
        )
    if "insufficient funds" in lowered:
        return (
            "Transaction failed due to insufficient funds. Please make sure your "
            "wallet has enough ETH for gas fees."
        )
    if "nonce" in lowered:
        return "Transaction failed due to a nonce error. Try resubmitting the transaction."
    if "user rejected" in lowered or "user denied" in lowered:
        return "Transaction failed, user rejected the signature."
    return f"Transaction failed: {text or 'Unknown error occurred. Please try again.'}"


class EvmGateway:
    """
    Vault and ERC-20 access across EVM chains.

    Usage:
        gateway = EvmGateway.from_rpc_urls(settings.evm_rpc_urls, settings.vault_addresses)
        receipt = await gateway.deposit(11155111, None, 5 * 10**16, sender)
    """

    def __init__(
        self,
        web3s: Dict[int, AsyncWeb3],
        vault_addresses: Dict[int, str],
        receipt_timeout: float = 120.0,
    ):
        self._web3s = web3s
        self._vault_addresses = vault_addresses
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_rpc_urls(
        cls,
        rpc_urls: Dict[int, str],
        vault_addresses: Dict[int, str],
        receipt_timeout: float = 120.0,
    ) -> "EvmGateway":
        web3s = {
            chain_id: AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))
            for chain_id, url in rpc_urls.items()
        }
        return cls(web3s, vault_addresses, receipt_timeout)

    @property
    def chain_ids(self) -> list[int]:
        return sorted(self._web3s)

    def web3(self, chain_id: int) -> AsyncWeb3:
        try:
            return self._web3s[chain_id]
        except KeyError:
            raise UnsupportedChainError(f"No RPC configured for chain id {chain_id}")

    def vault_address(self, chain_id: int) -> str:
        address = self._vault_addresses.get(chain_id)
        if not address:
            raise UnsupportedChainError(f"No vault address found for chain id {chain_id}")
        return AsyncWeb3.to_checksum_address(address)

    def _vault(self, chain_id: int):
        return self.web3(chain_id).eth.contract(address=self.vault_address(chain_id), abi=VAULT_ABI)

    def _erc20(self, chain_id: int, token_address: str):
        return self.web3(chain_id).eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address), abi=ERC20_ABI
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def gas_price(self, chain_id: int) -> int:
        try:
            return int(await self.web3(chain_id).eth.gas_price)
        except (Web3Exception, ValueError) + TRANSPORT_ERRORS as e:
            raise NetworkError(f"Could not read gas price on chain {chain_id}: {e}", _status(e))

    async def native_balance(self, chain_id: int, account: str) -> int:
        w3 = self.web3(chain_id)
        try:
            return int(await w3.eth.get_balance(AsyncWeb3.to_checksum_address(account)))
        except TRANSPORT_ERRORS as e:
            raise NetworkError(f"Could not read balance on chain {chain_id}: {e}", _status(e))

    async def token_balance(self, chain_id: int, token_address: str, account: str) -> int:
        contract = self._erc20(chain_id, token_address)
        try:
            return int(await contract.functions.balanceOf(AsyncWeb3.to_checksum_address(account)).call())
        except TRANSPORT_ERRORS as e:
            raise NetworkError(f"Could not read {token_address} balance on chain {chain_id}: {e}", _status(e))

    async def estimate_deposit_gas(
        self, chain_id: int, token_address: Optional[str], amount: int, sender: str
    ) -> int:
        """Simulate the sender's own deposit (the one call the client may estimate live)."""
        vault = self._vault(chain_id)
        sender = AsyncWeb3.to_checksum_address(sender)
        try:
            if token_address is None:
                return int(
                    await vault.functions.depositBaseCurrency().estimate_gas({"from": sender, "value": amount})
                )
            return int(
                await vault.functions.depositToken(
                    AsyncWeb3.to_checksum_address(token_address), amount
                ).estimate_gas({"from": sender})
            )
        except (Web3Exception, ValueError) as e:
            raise VaultTransactionFailedError(describe_web3_error(e))
        except TRANSPORT_ERRORS as e:
            raise NetworkError(f"Could not simulate deposit on chain {chain_id}: {e}", _status(e))

    # =========================================================================
    # Transactions
    # =========================================================================

    async def _transact(self, chain_id: int, call, tx: Dict[str, Any], label: str) -> Dict[str, Any]:
        """Estimate, submit with an explicit gas limit, and wait for a successful receipt."""
        w3 = self.web3(chain_id)
        tx_hash = None
        try:
            gas = await call.estimate_gas(tx)
            tx_hash = await call.transact({**tx, "gas": gas})
            receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        except TimeExhausted:
            raise VaultTransactionFailedError(
                f"{label}: no receipt after {self._receipt_timeout}s", tx_hash=_hex(tx_hash)
            )
        except (Web3Exception, ValueError) as e:
            logger.error(f"{label} on chain {chain_id} failed: {e}")
            raise VaultTransactionFailedError(describe_web3_error(e), tx_hash=_hex(tx_hash))
        except TRANSPORT_ERRORS as e:
            logger.error(f"{label} on chain {chain_id} lost its RPC connection: {e}")
            if tx_hash is None:
                raise NetworkError(f"{label}: RPC unreachable on chain {chain_id}: {e}", _status(e))
            raise VaultTransactionFailedError(
                f"{label}: RPC failed while waiting for the receipt: {e}", tx_hash=_hex(tx_hash)
            )

        if receipt["status"] != 1:
            logger.error(f"{label} on chain {chain_id} reverted (tx: {_hex(tx_hash)})")
            raise VaultTransactionFailedError("Transaction failed on-chain.", tx_hash=_hex(tx_hash))

        logger.info(f"{label} on chain {chain_id} confirmed (tx: {_hex(tx_hash)})")
        return dict(receipt)

    async def deposit(
        self, chain_id: int, token_address: Optional[str], amount: int, sender: str
    ) -> Dict[str, Any]:
        """
        Escrow funds in the chain's vault.

        Tokens are approved for the vault first, then deposited; the native
        asset is sent as the call's value.

        Raises:
            VaultTransactionFailedError: If any step reverts or fails
        """
        vault = self._vault(chain_id)
        sender = AsyncWeb3.to_checksum_address(sender)

        if token_address is None:
            return await self._transact(
                chain_id,
                vault.functions.depositBaseCurrency(),
                {"from": sender, "value": amount},
                "depositBaseCurrency",
            )

        token = AsyncWeb3.to_checksum_address(token_address)
        await self._transact(
            chain_id,
            self._erc20(chain_id, token).functions.approve(self.vault_address(chain_id), amount),
            {"from": sender},
            "approve",
        )
        return await self._transact(
            chain_id,
            vault.functions.depositToken(token, amount),
            {"from": sender},
            "depositToken",
        )

    async def withdraw(
        self, chain_id: int, token_address: Optional[str], amount: int, sender: str
    ) -> Dict[str, Any]:
        """Withdraw uncommitted funds from the vault back to the sender."""
        vault = self._vault(chain_id)
        sender = AsyncWeb3.to_checksum_address(sender)

        if token_address is None:
            call = vault.functions.withdrawBaseCurrency(amount)
            label = "withdrawBaseCurrency"
        else:
            call = vault.functions.withdrawToken(AsyncWeb3.to_checksum_address(token_address), amount)
            label = "withdrawToken"
        return await self._transact(chain_id, call, {"from": sender}, label)


def _status(error: BaseException) -> Optional[int]:
    return getattr(error, "status", None) if isinstance(error, aiohttp.ClientResponseError) else None


def _hex(tx_hash) -> Optional[str]:
    if tx_hash is None:
        return None
    return tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)
