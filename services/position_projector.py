"""Projects the position an account would end up with after an operation.

Each operation is reduced to a ``PositionDelta`` of USD changes; the
target position is then re-derived from the new USD figures rather than
by adjusting the current metrics.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from models.compound_v3 import CollateralInfo, MarketInfo, Position
from services.metrics import calc_health_rate, calc_liquidation_threshold, calc_net_apr, calc_utilization
from utils.format import DecimalLike, format_usd, to_decimal

ZERO = Decimal(0)


@dataclass(frozen=True)
class PositionDelta:
    supply_usd: Decimal = ZERO
    borrow_usd: Decimal = ZERO
    collateral_usd: Decimal = ZERO
    borrow_capacity_usd: Decimal = ZERO
    liquidation_limit_usd: Decimal = ZERO


def to_usd(amount: DecimalLike, price: DecimalLike) -> Decimal:
    return to_decimal(amount) * to_decimal(price)


def project_position(market_info: MarketInfo, delta: PositionDelta) -> Position:
    supply_usd = max(market_info.supply_usd + delta.supply_usd, ZERO)
    borrow_usd = max(market_info.borrow_usd + delta.borrow_usd, ZERO)
    collateral_usd = max(market_info.collateral_usd + delta.collateral_usd, ZERO)
    borrow_capacity_usd = max(market_info.borrow_capacity_usd + delta.borrow_capacity_usd, ZERO)
    liquidation_limit_usd = max(market_info.liquidation_limit + delta.liquidation_limit_usd, ZERO)

    liquidation_threshold = calc_liquidation_threshold(liquidation_limit_usd, collateral_usd)
    return Position(
        utilization=calc_utilization(borrow_capacity_usd, borrow_usd),
        health_rate=calc_health_rate(collateral_usd, borrow_usd, liquidation_threshold),
        liquidation_threshold=liquidation_threshold,
        supply_usd=format_usd(supply_usd),
        borrow_usd=format_usd(borrow_usd),
        collateral_usd=format_usd(collateral_usd),
        net_apr=calc_net_apr(supply_usd, market_info.supply_apr, collateral_usd, borrow_usd, market_info.borrow_apr),
    )


def _collateral_delta(collateral: CollateralInfo, usd: Decimal) -> PositionDelta:
    return PositionDelta(
        collateral_usd=usd,
        borrow_capacity_usd=usd * collateral.borrow_collateral_factor,
        liquidation_limit_usd=usd * collateral.liquidate_collateral_factor,
    )


def leverage_delta(collateral: CollateralInfo, leverage_usd: Decimal, borrow_usd: Decimal) -> PositionDelta:
    """Flash-borrow collateral, supply it, borrow base and swap back to repay the loan"""
    supplied = _collateral_delta(collateral, leverage_usd)
    return PositionDelta(
        borrow_usd=borrow_usd,
        collateral_usd=supplied.collateral_usd,
        borrow_capacity_usd=supplied.borrow_capacity_usd,
        liquidation_limit_usd=supplied.liquidation_limit_usd,
    )


def deleverage_delta(collateral: CollateralInfo, withdraw_usd: Decimal, repay_usd: Decimal) -> PositionDelta:
    """Repay debt with flash-loaned base, then withdraw collateral to cover the loan"""
    withdrawn = _collateral_delta(collateral, -withdraw_usd)
    return PositionDelta(
        borrow_usd=-repay_usd,
        collateral_usd=withdrawn.collateral_usd,
        borrow_capacity_usd=withdrawn.borrow_capacity_usd,
        liquidation_limit_usd=withdrawn.liquidation_limit_usd,
    )


def collateral_swap_delta(src: CollateralInfo, withdraw_usd: Decimal,
                          dest: CollateralInfo, supply_usd: Decimal) -> PositionDelta:
    withdrawn = _collateral_delta(src, -withdraw_usd)
    supplied = _collateral_delta(dest, supply_usd)
    return PositionDelta(
        collateral_usd=withdrawn.collateral_usd + supplied.collateral_usd,
        borrow_capacity_usd=withdrawn.borrow_capacity_usd + supplied.borrow_capacity_usd,
        liquidation_limit_usd=withdrawn.liquidation_limit_usd + supplied.liquidation_limit_usd,
    )


def zap_borrow_delta(borrow_usd: Decimal) -> PositionDelta:
    return PositionDelta(borrow_usd=borrow_usd)


def zap_supply_delta(supply_usd: Decimal, collateral: Optional[CollateralInfo] = None) -> PositionDelta:
    """Supplying base raises supplyUSD; supplying a collateral raises collateral, capacity and limit"""
    if collateral is None:
        return PositionDelta(supply_usd=supply_usd)
    return _collateral_delta(collateral, supply_usd)


def zap_repay_delta(repay_usd: Decimal) -> PositionDelta:
    return PositionDelta(borrow_usd=-repay_usd)


def zap_withdraw_delta(withdraw_usd: Decimal, collateral: Optional[CollateralInfo] = None) -> PositionDelta:
    if collateral is None:
        return PositionDelta(supply_usd=-withdraw_usd)
    return _collateral_delta(collateral, -withdraw_usd)
