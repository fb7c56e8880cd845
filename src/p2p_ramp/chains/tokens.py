"""
Token catalogs per chain.

EVM chains are keyed by chain id, the identity chain by ``"ICP"``. Native
assets have no contract address on EVM (``address is None``); identity-chain
tokens are addressed by their ledger principal.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from p2p_ramp.errors import UnsupportedChainError
from p2p_ramp.service.models import Blockchain, EvmChain, IcpChain, SolanaChain

ICP_KEY = "ICP"

ICP_LEDGER = "ryjl3-tyaaa-aaaaa-aaaba-cai"
CKBTC_LEDGER = "mxzaz-hqaaa-aaaar-qaada-cai"
CHAT_LEDGER = "2ouva-viaaa-aaaaq-aaamq-cai"
OGY_LEDGER = "lkwrt-vyaaa-aaaaq-aadhq-cai"


@dataclass(frozen=True)
class TokenOption:
    """A token a user can deposit or hold on one chain."""

    name: str
    address: Optional[str]  # None = EVM native asset
    decimals: int
    is_native: bool
    rate_symbol: str
    chain_qualifier: Optional[str] = None  # None = chain-agnostic rate

    @property
    def scale(self) -> int:
        return 10 ** self.decimals


ETH = TokenOption(name="ETH", address=None, decimals=18, is_native=True, rate_symbol="ETH")
MNT = TokenOption(name="MNT", address=None, decimals=18, is_native=True, rate_symbol="MNT")

ICP_TOKENS: List[TokenOption] = [
    TokenOption(name="ICP", address=ICP_LEDGER, decimals=8, is_native=True, rate_symbol="ICP"),
    TokenOption(name="ckBTC", address=CKBTC_LEDGER, decimals=8, is_native=False, rate_symbol="BTC"),
    TokenOption(name="CHAT", address=CHAT_LEDGER, decimals=8, is_native=False, rate_symbol="CHAT"),
    TokenOption(name="OGY", address=OGY_LEDGER, decimals=8, is_native=False, rate_symbol="OGY"),
]


def _stablecoin(name: str, address: str, decimals: int, chain_id: int) -> TokenOption:
    return TokenOption(
        name=name,
        address=address,
        decimals=decimals,
        is_native=False,
        rate_symbol=name,
        chain_qualifier=str(chain_id),
    )


# Testnet deployments
EVM_TOKENS: Dict[int, List[TokenOption]] = {
    11155111: [ETH, _stablecoin("USDT", "0x878bfCfbB8EAFA8A2189fd616F282E1637E06bcF", 18, 11155111)],
    84532: [ETH, _stablecoin("USDC", "0x036CbD53842c5426634e7929541eC2318f3dCF7e", 6, 84532)],
    11155420: [ETH],
    5003: [MNT],
}


def chain_key(blockchain: Blockchain) -> Union[int, str]:
    """Catalog key of a blockchain: the chain id for EVM, ``"ICP"`` for the identity chain."""
    if isinstance(blockchain, EvmChain):
        return blockchain.chain_id
    if isinstance(blockchain, IcpChain):
        return ICP_KEY
    if isinstance(blockchain, SolanaChain):
        raise UnsupportedChainError("Solana is not supported")
    raise UnsupportedChainError(f"Unknown blockchain {blockchain!r}")


@dataclass
class TokenCatalog:
    """
    Per-chain token lists.

    Usage:
        catalog = TokenCatalog()
        eth = catalog.find(EvmChain(chain_id=11155111), None)
        ckbtc = catalog.find(IcpChain(ledger_principal=CKBTC_LEDGER), CKBTC_LEDGER)
    """

    evm_tokens: Dict[int, List[TokenOption]] = field(default_factory=lambda: dict(EVM_TOKENS))
    icp_tokens: List[TokenOption] = field(default_factory=lambda: list(ICP_TOKENS))

    def tokens_for(self, blockchain: Blockchain) -> List[TokenOption]:
        key = chain_key(blockchain)
        if key == ICP_KEY:
            return list(self.icp_tokens)
        try:
            return list(self.evm_tokens[key])
        except KeyError:
            raise UnsupportedChainError(f"No token catalog for chain id {key}")

    def find(self, blockchain: Blockchain, address: Optional[str]) -> Optional[TokenOption]:
        """
        Look up a token by address. ``None`` selects the EVM native asset.

        EVM addresses compare case-insensitively.
        """
        for token in self.tokens_for(blockchain):
            if address is None and token.address is None:
                return token
            if address is not None and token.address is not None:
                if isinstance(blockchain, EvmChain):
                    if token.address.lower() == address.lower():
                        return token
                elif token.address == address:
                    return token
        return None

    def default(self, blockchain: Blockchain) -> TokenOption:
        """The chain's native asset (first native entry)."""
        for token in self.tokens_for(blockchain):
            if token.is_native:
                return token
        raise UnsupportedChainError(f"No native token for {chain_key(blockchain)}")
