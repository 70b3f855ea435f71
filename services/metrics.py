"""Pure risk metrics for Compound V3 positions.

Inputs are USD figures as Decimals (or decimal strings); outputs are the
rounded strings that go into responses. Nothing here touches the network.
"""
from decimal import Decimal
from typing import Tuple

from config.contracts import FACTOR_SCALE, SECONDS_PER_YEAR
from utils.format import DecimalLike, floor_decimal, format_decimal, format_usd, to_decimal

HEALTH_RATE_NO_DEBT = "Infinity"


def calc_apr(rate_per_second: DecimalLike) -> str:
    """Annualize a Comet per-second rate (1e18 fixed point), 4 dp"""
    rate = to_decimal(rate_per_second)
    return format_decimal(rate * SECONDS_PER_YEAR / FACTOR_SCALE, 4)


def calc_utilization(borrow_capacity_usd: DecimalLike, borrow_usd: DecimalLike) -> str:
    borrow_capacity_usd = to_decimal(borrow_capacity_usd)
    if borrow_capacity_usd == 0:
        return "0"
    return format_decimal(to_decimal(borrow_usd) / borrow_capacity_usd, 4)


def calc_health_rate(collateral_usd: DecimalLike, borrow_usd: DecimalLike, liquidation_threshold: DecimalLike) -> str:
    """Liquidation-weighted collateral over debt, 2 dp.

    An account without debt cannot be liquidated and reports "Infinity".
    """
    borrow_usd = to_decimal(borrow_usd)
    if borrow_usd == 0:
        return HEALTH_RATE_NO_DEBT
    return format_decimal(to_decimal(collateral_usd) * to_decimal(liquidation_threshold) / borrow_usd, 2)


def calc_net_apr(supply_usd: DecimalLike, supply_apr: DecimalLike, collateral_usd: DecimalLike,
                 borrow_usd: DecimalLike, borrow_apr: DecimalLike) -> str:
    # Comet collateral is not lent out, so only the supplied base token earns
    supply_usd = to_decimal(supply_usd)
    collateral_usd = to_decimal(collateral_usd)
    denominator = supply_usd + collateral_usd
    if denominator == 0:
        return "0"
    earned = supply_usd * to_decimal(supply_apr)
    paid = to_decimal(borrow_usd) * to_decimal(borrow_apr)
    return format_decimal((earned - paid) / denominator, 4)


def calc_liquidation_threshold(liquidation_limit_usd: DecimalLike, collateral_usd: DecimalLike) -> str:
    collateral_usd = to_decimal(collateral_usd)
    if collateral_usd == 0:
        return "0"
    return format_decimal(to_decimal(liquidation_limit_usd) / collateral_usd, 4)


def calc_borrow_capacity(base_token_decimals: int, borrow_capacity_usd: DecimalLike,
                         base_token_price: DecimalLike) -> str:
    """Base token units the capacity buys, floored so a borrow of it never reverts"""
    base_token_price = to_decimal(base_token_price)
    if base_token_price == 0:
        return "0"
    return floor_decimal(to_decimal(borrow_capacity_usd) / base_token_price, base_token_decimals)


def calc_liquidation_risk(borrow_usd: DecimalLike, liquidation_limit_usd: DecimalLike) -> str:
    liquidation_limit_usd = to_decimal(liquidation_limit_usd)
    if liquidation_limit_usd == 0:
        return "0"
    return format_decimal(to_decimal(borrow_usd) / liquidation_limit_usd, 2)


def calc_liquidation_point(base_token_decimals: int, collateral_usd: DecimalLike, liquidation_risk: DecimalLike,
                           base_token_price: DecimalLike) -> Tuple[str, str]:
    """Debt level, in base units and USD, at which the position becomes liquidatable"""
    point_usd: Decimal = to_decimal(collateral_usd) * to_decimal(liquidation_risk)
    point = calc_borrow_capacity(base_token_decimals, point_usd, base_token_price)
    return point, format_usd(point_usd)
