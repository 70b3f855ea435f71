from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from models.token import Token
from utils.format import format_decimal, strip_zeros


@dataclass(frozen=True)
class MarketAsset:
    asset: Token
    price_feed: str
    borrow_collateral_factor: Decimal
    liquidate_collateral_factor: Decimal


@dataclass(frozen=True)
class Market:
    """Static Comet configuration, read once per market id and cached"""
    market_id: str
    comet_address: str
    base_token: Token
    base_token_price_feed: str
    base_borrow_min: Decimal
    num_assets: int
    assets: Tuple[MarketAsset, ...]


@dataclass
class CollateralInfo:
    asset: Token
    asset_price: Decimal
    borrow_collateral_factor: Decimal
    liquidate_collateral_factor: Decimal
    collateral_balance: Decimal
    collateral_usd: Decimal
    borrow_capacity: Decimal
    borrow_capacity_usd: Decimal

    def to_dict(self) -> dict:
        return {
            'asset': self.asset.to_dict(),
            'assetPrice': strip_zeros(self.asset_price),
            'borrowCollateralFactor': strip_zeros(self.borrow_collateral_factor),
            'liquidateCollateralFactor': strip_zeros(self.liquidate_collateral_factor),
            'collateralBalance': strip_zeros(self.collateral_balance),
            'collateralUSD': strip_zeros(self.collateral_usd),
            'borrowCapacity': strip_zeros(self.borrow_capacity),
            'borrowCapacityUSD': strip_zeros(self.borrow_capacity_usd),
        }


@dataclass(frozen=True)
class Position:
    """Risk snapshot of an account, already in its serialized string form"""
    utilization: str
    health_rate: str
    liquidation_threshold: str
    supply_usd: str
    borrow_usd: str
    collateral_usd: str
    net_apr: str

    def to_dict(self) -> dict:
        return {
            'utilization': self.utilization,
            'healthRate': self.health_rate,
            'liquidationThreshold': self.liquidation_threshold,
            'supplyUSD': self.supply_usd,
            'borrowUSD': self.borrow_usd,
            'collateralUSD': self.collateral_usd,
            'netAPR': self.net_apr,
        }


@dataclass
class MarketInfo:
    """Current state of one account in one market.

    USD figures are kept at the precision they are reported with (2 dp), so
    projections start from exactly the numbers the caller sees. Metrics that
    may carry a sentinel (health rate) are stored as strings.
    """
    base_token: Token
    base_token_price: Decimal
    base_borrow_min: Decimal
    supply_apr: Decimal
    supply_balance: Decimal
    supply_usd: Decimal
    borrow_apr: Decimal
    borrow_balance: Decimal
    borrow_usd: Decimal
    collateral_usd: Decimal
    borrow_capacity: Decimal
    borrow_capacity_usd: Decimal
    available_to_borrow: Decimal
    available_to_borrow_usd: Decimal
    liquidation_limit: Decimal
    liquidation_threshold: Decimal
    liquidation_risk: Decimal
    liquidation_point: Decimal
    liquidation_point_usd: Decimal
    utilization: str
    health_rate: str
    net_apr: str
    collaterals: List[CollateralInfo] = field(default_factory=list)

    def find_collateral(self, token: Token) -> Optional[CollateralInfo]:
        target = token.unwrapped
        for collateral in self.collaterals:
            if collateral.asset.is_same(target):
                return collateral
        return None

    def is_base_token(self, token: Token) -> bool:
        return token.unwrapped.is_same(self.base_token)

    def current_position(self) -> Position:
        return Position(
            utilization=self.utilization,
            health_rate=self.health_rate,
            liquidation_threshold=format_decimal(self.liquidation_threshold, 4),
            supply_usd=strip_zeros(self.supply_usd),
            borrow_usd=strip_zeros(self.borrow_usd),
            collateral_usd=strip_zeros(self.collateral_usd),
            net_apr=self.net_apr,
        )

    def to_dict(self) -> dict:
        return {
            'baseToken': self.base_token.to_dict(),
            'baseTokenPrice': strip_zeros(self.base_token_price),
            'baseBorrowMin': strip_zeros(self.base_borrow_min),
            'supplyAPR': strip_zeros(self.supply_apr),
            'supplyBalance': strip_zeros(self.supply_balance),
            'supplyUSD': strip_zeros(self.supply_usd),
            'borrowAPR': strip_zeros(self.borrow_apr),
            'borrowBalance': strip_zeros(self.borrow_balance),
            'borrowUSD': strip_zeros(self.borrow_usd),
            'collateralUSD': strip_zeros(self.collateral_usd),
            'borrowCapacity': strip_zeros(self.borrow_capacity),
            'borrowCapacityUSD': strip_zeros(self.borrow_capacity_usd),
            'availableToBorrow': strip_zeros(self.available_to_borrow),
            'availableToBorrowUSD': strip_zeros(self.available_to_borrow_usd),
            'liquidationLimit': strip_zeros(self.liquidation_limit),
            'liquidationThreshold': strip_zeros(self.liquidation_threshold),
            'liquidationRisk': strip_zeros(self.liquidation_risk),
            'liquidationPoint': strip_zeros(self.liquidation_point),
            'liquidationPointUSD': strip_zeros(self.liquidation_point_usd),
            'utilization': self.utilization,
            'healthRate': self.health_rate,
            'netAPR': self.net_apr,
            'collaterals': [collateral.to_dict() for collateral in self.collaterals],
        }


@dataclass
class MarketGroup:
    chain_id: int
    markets: List[dict]

    def to_dict(self) -> dict:
        return {'chainId': self.chain_id, 'markets': self.markets}
