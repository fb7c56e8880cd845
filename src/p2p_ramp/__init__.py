"""
P2P Ramp Client.

Client-side orchestrator for a peer-to-peer fiat/crypto escrow marketplace.
Offrampers escrow crypto in a per-chain vault and receive fiat; onrampers pay
fiat off-chain and receive the released crypto. A remote order service is the
authoritative ledger of users, sessions, orders and exchange rates.

The package handles authentication and session lifecycle, order lifecycle
sequencing (deposit, submit, lock, verify, cancel), gas and fee pre-flight
checks, exchange rate caching and balance tracking.
"""

__version__ = "0.1.0"
