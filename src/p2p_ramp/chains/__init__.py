"""
Chain adapters.

Public API:
    EvmGateway - web3 vault/ERC-20 access per EVM chain
    DelegatedIdentity, IdentityLedger - identity-chain protocols (host-provided)
    TokenCatalog, TokenOption - per-chain token lists
"""
from p2p_ramp.chains.evm import EvmGateway, describe_web3_error
from p2p_ramp.chains.icp import DelegatedIdentity, IdentityLedger, transfer_to_service
from p2p_ramp.chains.tokens import TokenCatalog, TokenOption, chain_key

__all__ = [
    "EvmGateway",
    "describe_web3_error",
    "DelegatedIdentity",
    "IdentityLedger",
    "transfer_to_service",
    "TokenCatalog",
    "TokenOption",
    "chain_key",
]
