"""
Client-side order filtering.

Matching rules per filter variant:

    ByState             state tag equals
    ByOfframperId       Created/Locked orders of that offramper user
    ByOnramperId        Locked orders held by that onramper user
    ByOfframperAddress  Created/Locked orders deposited from that address
    LockedByOnramper    Locked orders held by that onramper address
    ByBlockchain        same chain (EVM chain id / identity-chain ledger)
    ByChainId           EVM orders on that chain id (client-side only)

Completed and Cancelled records carry no user ids, so the id filters never
match them.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from p2p_ramp.service.models import (
    Blockchain,
    ByBlockchain,
    ByChainId,
    ByOfframperAddress,
    ByOfframperId,
    ByOnramperId,
    ByState,
    CreatedOrderState,
    EvmChain,
    IcpChain,
    LockedByOnramper,
    LockedOrderState,
    Order,
    OrderFilter,
    OrderState,
    SolanaChain,
)


def _base(order: OrderState) -> Optional[Order]:
    if isinstance(order, CreatedOrderState):
        return order.order
    if isinstance(order, LockedOrderState):
        return order.order.base
    return None


def same_blockchain(a: Optional[Blockchain], b: Blockchain) -> bool:
    if isinstance(a, EvmChain) and isinstance(b, EvmChain):
        return a.chain_id == b.chain_id
    if isinstance(a, IcpChain) and isinstance(b, IcpChain):
        return a.ledger_principal == b.ledger_principal
    if isinstance(a, SolanaChain) and isinstance(b, SolanaChain):
        return True
    return False


def matches(order: OrderState, order_filter: OrderFilter) -> bool:
    """True if ``order`` satisfies ``order_filter``."""
    if isinstance(order_filter, ByState):
        return order.state_filter == order_filter.state

    if isinstance(order_filter, ByOfframperId):
        base = _base(order)
        return base is not None and base.offramper_user_id == order_filter.user_id

    if isinstance(order_filter, ByOnramperId):
        return (
            isinstance(order, LockedOrderState)
            and order.order.onramper.user_id == order_filter.user_id
        )

    if isinstance(order_filter, ByOfframperAddress):
        base = _base(order)
        return base is not None and base.offramper_address.same_address(order_filter.address)

    if isinstance(order_filter, LockedByOnramper):
        return (
            isinstance(order, LockedOrderState)
            and order.order.onramper.address.same_address(order_filter.address)
        )

    if isinstance(order_filter, ByBlockchain):
        return same_blockchain(order.blockchain, order_filter.blockchain)

    if isinstance(order_filter, ByChainId):
        chain = order.blockchain
        return isinstance(chain, EvmChain) and chain.chain_id == order_filter.chain_id

    raise TypeError(f"Unknown order filter {order_filter!r}")


def apply_filters(orders: Iterable[OrderState], filters: Sequence[OrderFilter]) -> List[OrderState]:
    """Keep orders matching every filter."""
    return [o for o in orders if all(matches(o, f) for f in filters)]


def service_filter(order_filter: Optional[OrderFilter]) -> Optional[OrderFilter]:
    """The filter to send to the service; client-only variants are sent as no filter."""
    if isinstance(order_filter, ByChainId):
        return None
    return order_filter
