import pytest
from decimal import Decimal

from services.metrics import (
    calc_apr,
    calc_borrow_capacity,
    calc_health_rate,
    calc_liquidation_point,
    calc_liquidation_risk,
    calc_liquidation_threshold,
    calc_net_apr,
    calc_utilization,
)


def test_calc_apr():
    assert calc_apr(818000000) == "0.0258"
    assert calc_apr(0) == "0"


def test_calc_utilization():
    assert calc_utilization("271.85", "170.99") == "0.629"
    assert calc_utilization("0", "170.99") == "0"
    assert calc_utilization("100", "0") == "0"


@pytest.mark.parametrize("capacity,borrow", [("0", "0"), ("1", "0"), ("1", "5"), ("1000000", "0.01")])
def test_utilization_is_never_negative(capacity, borrow):
    assert Decimal(calc_utilization(capacity, borrow)) >= 0


def test_calc_health_rate():
    assert calc_health_rate("350.78", "170.99", "0.825") == "1.69"


def test_health_rate_without_debt_is_infinite():
    assert calc_health_rate("350.78", "0", "0.825") == "Infinity"
    assert calc_health_rate("0", "0", "0") == "Infinity"


def test_health_rate_monotonicity():
    base = Decimal(calc_health_rate("1000", "500", "0.8"))
    assert Decimal(calc_health_rate("1100", "500", "0.8")) > base
    assert Decimal(calc_health_rate("1000", "600", "0.8")) < base


def test_calc_net_apr():
    # collateral earns nothing, so borrowing against it is a net cost
    assert calc_net_apr("0", "0.0258", "350.78", "170.99", "0.0428") == "-0.0209"
    assert calc_net_apr("1000", "0.05", "0", "0", "0.1") == "0.05"
    assert calc_net_apr("0", "0.05", "0", "10", "0.1") == "0"


def test_calc_liquidation_threshold():
    assert calc_liquidation_threshold("289.39", "350.78") == "0.825"
    assert calc_liquidation_threshold("0", "0") == "0"


def test_liquidation_threshold_round_trip():
    limit, collateral = Decimal("1234.56"), Decimal("1500.01")
    threshold = Decimal(calc_liquidation_threshold(limit, collateral))
    assert abs(threshold * collateral - limit) <= collateral * Decimal("0.00005")


def test_calc_borrow_capacity_floors():
    assert calc_borrow_capacity(6, "271.851626305843705", "0.99995719") == "271.863264"
    assert calc_borrow_capacity(6, "10", "0") == "0"


def test_calc_liquidation_risk_and_point():
    assert calc_liquidation_risk("170.99", "289.390441") == "0.59"
    assert calc_liquidation_risk("170.99", "0") == "0"

    point, point_usd = calc_liquidation_point(6, "350.776292007540264", "0.59", "0.99995719")
    assert point == "206.966872"
    assert point_usd == "206.96"
