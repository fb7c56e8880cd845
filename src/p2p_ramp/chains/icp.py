"""
Identity-chain collaborators.

The identity chain (principal-based login, ledger canisters) is consumed
through two protocols the host application implements:

    DelegatedIdentity - the logged-in principal; produces request headers
                        proving it and can be revoked on logout.
    IdentityLedger    - per-ledger balance query and transfer-with-fee.

Ledger implementations report failures as ``LedgerError``.
"""
from __future__ import annotations

import logging
from typing import Dict, Protocol

logger = logging.getLogger(__name__)


class DelegatedIdentity(Protocol):
    @property
    def principal(self) -> str:
        ...

    def auth_headers(self) -> Dict[str, str]:
        ...

    async def revoke(self) -> None:
        ...


class IdentityLedger(Protocol):
    async def balance_of(self, ledger_principal: str, owner: str) -> int:
        """Raises ``LedgerError`` if the ledger cannot be queried."""
        ...

    async def transfer(self, ledger_principal: str, to: str, amount: int, fee: int) -> int:
        """Transfer ``amount`` to ``to``; returns the ledger block index once final.

        Raises:
            LedgerError: If the ledger rejects or cannot complete the transfer
        """
        ...


async def transfer_to_service(
    ledger: IdentityLedger,
    ledger_principal: str,
    service_account: str,
    amount: int,
    fee: int,
) -> int:
    """
    Move an order's funds to the service-controlled account.

    The service pays the ledger fee again when it releases or refunds, so the
    transfer carries ``amount + fee``.
    """
    total = amount + fee
    block_index = await ledger.transfer(ledger_principal, service_account, total, fee)
    logger.info(f"Transferred {total} on ledger {ledger_principal} (block {block_index})")
    return block_index
