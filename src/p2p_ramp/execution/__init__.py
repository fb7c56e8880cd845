"""
Execution Layer - order lifecycle, fees, rates and balances.

This module provides:
    - OrderLifecycleOrchestrator: Create / lock / verify / cancel sequencing (use this!)
    - OrchestratorConfig, CreateOrderRequest, CreateOrderResult
    - GasFeeEstimator: Gas legs and fee pre-flight guard
    - GasConfig, GasEstimate, FeeEstimate, GasOperation
    - ExchangeRateCache: Durable TTL cache of fiat/crypto rates
    - RateCacheConfig, ExchangeRateEntry
    - BalanceTracker: Native and token balances per account/chain
    - Balance, format_units
    - Filters: matches, apply_filters, service_filter

Usage:
    from p2p_ramp.execution import OrderLifecycleOrchestrator, CreateOrderRequest

    orchestrator = OrderLifecycleOrchestrator(auth, service, catalog, rates, gas=estimator, evm=gateway)
    result = await orchestrator.create_order(request)
"""
from p2p_ramp.execution.balance_tracker import Balance, BalanceTracker, format_units
from p2p_ramp.execution.filters import apply_filters, matches, service_filter
from p2p_ramp.execution.gas import (
    FeeEstimate,
    GasConfig,
    GasEstimate,
    GasFeeEstimator,
    GasOperation,
)
from p2p_ramp.execution.orchestrator import (
    CreateOrderRequest,
    CreateOrderResult,
    OrchestratorConfig,
    OrderLifecycleOrchestrator,
)
from p2p_ramp.execution.rates import ExchangeRateCache, ExchangeRateEntry, RateCacheConfig

__all__ = [
    "Balance",
    "BalanceTracker",
    "format_units",
    "apply_filters",
    "matches",
    "service_filter",
    "FeeEstimate",
    "GasConfig",
    "GasEstimate",
    "GasFeeEstimator",
    "GasOperation",
    "CreateOrderRequest",
    "CreateOrderResult",
    "OrchestratorConfig",
    "OrderLifecycleOrchestrator",
    "ExchangeRateCache",
    "ExchangeRateEntry",
    "RateCacheConfig",
]
