import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from clients.blockchain_client import BlockchainClient, Call
from config.contracts import FACTOR_SCALE, PRICE_DECIMALS, PRICE_SCALE, get_custom_base_token_price_feed, get_market_config
from models.compound_v3 import CollateralInfo, Market, MarketAsset, MarketInfo
from models.token import Token
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
from utils.address import normalize_address
from utils.cache import WriteOnceCache
from utils.errors import Result
from utils.format import round_decimal, to_decimal, USD_PLACES
from utils.token_amount import TokenAmount

logger = logging.getLogger(__name__)

ASSET_INFO_TYPE = "(uint8,address,address,uint64,uint64,uint64,uint64,uint128)"

# Static market configuration and receipt tokens live for the whole process
_MARKET_CACHE: WriteOnceCache = WriteOnceCache()
_C_TOKEN_CACHE: WriteOnceCache = WriteOnceCache()


def _usd(value: Decimal) -> Decimal:
    return round_decimal(value, USD_PLACES)


class MarketService:
    """Reads Compound V3 market state through an injected chain client and
    aggregates it into a MarketInfo for one account."""

    def __init__(self, chain_id: int, client: BlockchainClient,
                 cache: Optional[WriteOnceCache] = None, c_token_cache: Optional[WriteOnceCache] = None):
        self.chain_id = chain_id
        self.client = client
        self.cache = cache if cache is not None else _MARKET_CACHE
        self.c_token_cache = c_token_cache if c_token_cache is not None else _C_TOKEN_CACHE

    async def get_market(self, market_id: str) -> Market:
        market_id = market_id.upper()
        return await self.cache.get_or_load((self.chain_id, market_id), lambda: self._load_market(market_id))

    async def _load_market(self, market_id: str) -> Market:
        comet = get_market_config(self.chain_id, market_id)['comet_address']
        logger.info(f"[{self.chain_id}] Loading Compound V3 {market_id} market configuration from {comet}")

        results = await self.client.aggregate([
            Call(comet, "baseToken()", (), ("address",)),
            Call(comet, "baseTokenPriceFeed()", (), ("address",)),
            Call(comet, "numAssets()", (), ("uint8",)),
            Call(comet, "baseBorrowMin()", (), ("uint104",)),
        ])
        base_token_address, base_token_price_feed, num_assets, base_borrow_min = [result[0] for result in results]

        results = await self.client.aggregate([
            Call(comet, "getAssetInfo(uint8)", (i,), (ASSET_INFO_TYPE,)) for i in range(num_assets)
        ])
        asset_infos = [result[0] for result in results]
        asset_addresses = [info[1] for info in asset_infos]

        base_token, *asset_tokens = await self.get_tokens([base_token_address, *asset_addresses])

        assets = tuple(
            MarketAsset(
                asset=token,
                price_feed=normalize_address(info[2]),
                borrow_collateral_factor=Decimal(info[4]) / FACTOR_SCALE,
                liquidate_collateral_factor=Decimal(info[5]) / FACTOR_SCALE,
            )
            for token, info in zip(asset_tokens, asset_infos)
        )

        logger.debug(f"[{self.chain_id}] {market_id} market has base {base_token.symbol} and {num_assets} collaterals")
        return Market(
            market_id=market_id,
            comet_address=comet,
            base_token=base_token,
            base_token_price_feed=normalize_address(base_token_price_feed),
            base_borrow_min=TokenAmount.from_wei(base_borrow_min, base_token.decimals).to_decimal(),
            num_assets=num_assets,
            assets=assets,
        )

    async def get_tokens(self, addresses: Sequence[str]) -> List[Token]:
        """Read decimals, symbol and name of ERC-20 tokens in one round trip"""
        calls = []
        for address in addresses:
            calls.extend([
                Call(address, "decimals()", (), ("uint8",)),
                Call(address, "symbol()", (), ("string",)),
                Call(address, "name()", (), ("string",)),
            ])
        results = await self.client.aggregate(calls)

        tokens = []
        for i, address in enumerate(addresses):
            decimals, symbol, name = (result[0] for result in results[i * 3:i * 3 + 3])
            tokens.append(Token(
                chain_id=self.chain_id,
                address=normalize_address(address),
                decimals=decimals,
                symbol=symbol,
                name=name,
            ))
        return tokens

    async def get_c_token(self, market_id: str) -> Token:
        """The Comet receipt token representing supplied base"""
        market_id = market_id.upper()

        async def load() -> Token:
            comet = get_market_config(self.chain_id, market_id)['comet_address']
            tokens = await self.get_tokens([comet])
            return tokens[0]

        return await self.c_token_cache.get_or_load((self.chain_id, market_id), load)

    async def get_aprs(self, market_id: str) -> Tuple[Decimal, Decimal]:
        """Current (supply APR, borrow APR) of the market"""
        market = await self.get_market(market_id)
        [(utilization,)] = await self.client.aggregate([self._utilization_call(market)])
        return await self._get_aprs_at(market, utilization)

    @staticmethod
    def _utilization_call(market: Market) -> Call:
        return Call(market.comet_address, "getUtilization()", (), ("uint256",))

    async def _get_aprs_at(self, market: Market, utilization: int) -> Tuple[Decimal, Decimal]:
        # Rates are functions of utilization, so they always take a second round trip
        comet = market.comet_address
        (supply_rate,), (borrow_rate,) = await self.client.aggregate([
            Call(comet, "getSupplyRate(uint256)", (utilization,), ("uint64",)),
            Call(comet, "getBorrowRate(uint256)", (utilization,), ("uint64",)),
        ])
        return to_decimal(calc_apr(supply_rate)), to_decimal(calc_apr(borrow_rate))

    async def get_prices(self, market_id: str) -> Tuple[Decimal, List[Decimal]]:
        """(base token price, collateral prices in market asset order) in USD"""
        market = await self.get_market(market_id)
        results = await self.client.aggregate(self._price_calls(market))
        return self._decode_prices(market, results)

    def _price_calls(self, market: Market) -> List[Call]:
        """getPrice calls: the custom base feed (if any) first, then base, then every asset"""
        feeds = [market.base_token_price_feed] + [asset.price_feed for asset in market.assets]
        custom_feed = get_custom_base_token_price_feed(self.chain_id, market.market_id)
        if custom_feed:
            feeds.insert(0, custom_feed)
        return [Call(market.comet_address, "getPrice(address)", (feed,), ("uint256",)) for feed in feeds]

    def _decode_prices(self, market: Market, results: Sequence[tuple]) -> Tuple[Decimal, List[Decimal]]:
        raw_prices = [result[0] for result in results]
        if get_custom_base_token_price_feed(self.chain_id, market.market_id):
            custom_price = raw_prices.pop(0)
            raw_prices = [price * custom_price // PRICE_SCALE for price in raw_prices]

        prices = [TokenAmount.from_wei(price, PRICE_DECIMALS).to_decimal() for price in raw_prices]
        return prices[0], prices[1:]

    async def get_user_balances(self, market_id: str, account: Optional[str] = None) -> Tuple[Decimal, Decimal, List[Decimal]]:
        """(supply balance, borrow balance, collateral balances) in token units"""
        market = await self.get_market(market_id)
        calls = self._balance_calls(market, account)
        results = await self.client.aggregate(calls) if calls else []
        return self._decode_balances(market, results)

    @staticmethod
    def _balance_calls(market: Market, account: Optional[str]) -> List[Call]:
        if not account:
            return []
        comet = market.comet_address
        calls = [
            Call(comet, "balanceOf(address)", (account,), ("uint256",)),
            Call(comet, "borrowBalanceOf(address)", (account,), ("uint256",)),
        ]
        calls.extend(
            Call(comet, "collateralBalanceOf(address,address)", (account, asset.asset.address), ("uint128",))
            for asset in market.assets
        )
        return calls

    @staticmethod
    def _decode_balances(market: Market, results: Sequence[tuple]) -> Tuple[Decimal, Decimal, List[Decimal]]:
        if not results:
            return Decimal(0), Decimal(0), [Decimal(0)] * market.num_assets

        decimals = market.base_token.decimals
        supply_balance = TokenAmount.from_wei(results[0][0], decimals).to_decimal()
        borrow_balance = TokenAmount.from_wei(results[1][0], decimals).to_decimal()
        collateral_balances = [
            TokenAmount.from_wei(result[0], asset.asset.decimals).to_decimal()
            for asset, result in zip(market.assets, results[2:])
        ]
        return supply_balance, borrow_balance, collateral_balances

    async def get_market_info(self, market_id: str, account: Optional[str] = None) -> MarketInfo:
        market = await self.get_market(market_id)

        # Utilization, prices and balances are independent reads: one round trip
        price_calls = self._price_calls(market)
        balance_calls = self._balance_calls(market, account)
        results = await self.client.aggregate([self._utilization_call(market), *price_calls, *balance_calls])
        (utilization,) = results[0]
        base_token_price, asset_prices = self._decode_prices(market, results[1:1 + len(price_calls)])
        supply_balance, borrow_balance, collateral_balances = self._decode_balances(
            market, results[1 + len(price_calls):]
        )
        supply_apr, borrow_apr = await self._get_aprs_at(market, utilization)

        base_decimals = market.base_token.decimals
        supply_usd = _usd(supply_balance * base_token_price)
        borrow_usd = _usd(borrow_balance * base_token_price)

        total_collateral_usd = Decimal(0)
        total_borrow_capacity_usd = Decimal(0)
        liquidation_limit = Decimal(0)
        collaterals = []
        for asset, asset_price, collateral_balance in zip(market.assets, asset_prices, collateral_balances):
            collateral_usd = collateral_balance * asset_price
            borrow_capacity_usd = collateral_usd * asset.borrow_collateral_factor
            total_collateral_usd += collateral_usd
            total_borrow_capacity_usd += borrow_capacity_usd
            liquidation_limit += collateral_usd * asset.liquidate_collateral_factor

            collaterals.append(CollateralInfo(
                asset=asset.asset.unwrapped,
                asset_price=asset_price,
                borrow_collateral_factor=asset.borrow_collateral_factor,
                liquidate_collateral_factor=asset.liquidate_collateral_factor,
                collateral_balance=collateral_balance,
                collateral_usd=_usd(collateral_usd),
                borrow_capacity=to_decimal(calc_borrow_capacity(base_decimals, borrow_capacity_usd, base_token_price)),
                borrow_capacity_usd=_usd(borrow_capacity_usd),
            ))

        borrow_capacity = Decimal(0)
        available_to_borrow = Decimal(0)
        available_to_borrow_usd = Decimal(0)
        if total_borrow_capacity_usd != 0:
            borrow_capacity = to_decimal(calc_borrow_capacity(base_decimals, total_borrow_capacity_usd, base_token_price))
            available_to_borrow = borrow_capacity - borrow_balance
            available_to_borrow_usd = _usd(available_to_borrow * base_token_price)

        liquidation_threshold = to_decimal(calc_liquidation_threshold(liquidation_limit, total_collateral_usd))
        liquidation_risk = to_decimal(calc_liquidation_risk(borrow_usd, liquidation_limit))
        liquidation_point, liquidation_point_usd = calc_liquidation_point(
            base_decimals, total_collateral_usd, liquidation_risk, base_token_price
        )

        return MarketInfo(
            base_token=market.base_token.unwrapped,
            base_token_price=base_token_price,
            base_borrow_min=market.base_borrow_min,
            supply_apr=supply_apr,
            supply_balance=supply_balance,
            supply_usd=supply_usd,
            borrow_apr=borrow_apr,
            borrow_balance=borrow_balance,
            borrow_usd=borrow_usd,
            collateral_usd=_usd(total_collateral_usd),
            borrow_capacity=borrow_capacity,
            borrow_capacity_usd=_usd(total_borrow_capacity_usd),
            available_to_borrow=available_to_borrow,
            available_to_borrow_usd=available_to_borrow_usd,
            liquidation_limit=_usd(liquidation_limit),
            liquidation_threshold=liquidation_threshold,
            liquidation_risk=liquidation_risk,
            liquidation_point=to_decimal(liquidation_point),
            liquidation_point_usd=to_decimal(liquidation_point_usd),
            utilization=calc_utilization(total_borrow_capacity_usd, borrow_usd),
            health_rate=calc_health_rate(total_collateral_usd, borrow_usd, liquidation_threshold),
            net_apr=calc_net_apr(supply_usd, supply_apr, total_collateral_usd, borrow_usd, borrow_apr),
            collaterals=collaterals,
        )

    async def fetch_market_info(self, market_id: str, account: Optional[str] = None) -> Result[MarketInfo]:
        """get_market_info, with any read failure returned instead of raised"""
        try:
            return Result.success(await self.get_market_info(market_id, account))
        except Exception as e:
            logger.error(f"[{self.chain_id}] Failed to build {market_id} market info for {account}: {e}")
            return Result.failure(e)
