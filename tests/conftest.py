"""Shared fixtures: the Polygon USDC market as it was at block 45221016."""
import pytest

from services.market_service import MarketService
from utils.cache import WriteOnceCache

POLYGON = 137
COMET = "0xF25212E676D1F7F89Cd72fFEe66158f541246445"
ACCOUNT = "0x9fC7D6E7a3d4aB7b8b28d813f68674C8A6e91e83"

USDC = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
WETH = "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619"
WBTC = "0x1BFD67037B42Cf73acF2047067bd4F2C47D9BfD6"
WMATIC = "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270"
MATIC = "0x0000000000000000000000000000000000001010"

USDC_FEED = "0xfE4A8cc5b5B2366C1B58Bea3858e81843581b2F7"
WETH_FEED = "0xF9680D99D6C9589e2a93a78A04A279e509205945"
WBTC_FEED = "0xDE31F8bFBD8c84b5360CFACCa3539B938dd78ae6"
WMATIC_FEED = "0xAB594600376Ec9fD91F8e885dADF0CE036862dE0"

UTILIZATION = 796389769840623049

TOKENS = {
    USDC: (6, "USDC", "USD Coin (PoS)"),
    WETH: (18, "WETH", "Wrapped Ether"),
    WBTC: (8, "WBTC", "(PoS) Wrapped BTC"),
    WMATIC: (18, "WMATIC", "Wrapped Matic"),
    COMET: (6, "cUSDCv3", "Compound USDC"),
}

ASSETS = [
    # (asset, price feed, borrow CF, liquidate CF)
    (WETH, WETH_FEED, 775 * 10**15, 825 * 10**15),
    (WBTC, WBTC_FEED, 700 * 10**15, 750 * 10**15),
    (WMATIC, WMATIC_FEED, 650 * 10**15, 700 * 10**15),
]

PRICES = {
    USDC_FEED: 99995719,
    WETH_FEED: 190179700000,
    WBTC_FEED: 3003514459631,
    WMATIC_FEED: 75599807,
}


def _key(target, signature, args):
    return (target.lower(), signature, tuple(a.lower() if isinstance(a, str) else a for a in args))


def polygon_usdc_responses(supply=0, borrow=171000920, weth_collateral=184444655243193813):
    responses = {
        _key(COMET, "baseToken()", ()): (USDC.lower(),),
        _key(COMET, "baseTokenPriceFeed()", ()): (USDC_FEED.lower(),),
        _key(COMET, "numAssets()", ()): (len(ASSETS),),
        _key(COMET, "baseBorrowMin()", ()): (100 * 10**6,),
        _key(COMET, "getUtilization()", ()): (UTILIZATION,),
        _key(COMET, "getSupplyRate(uint256)", (UTILIZATION,)): (818000000,),
        _key(COMET, "getBorrowRate(uint256)", (UTILIZATION,)): (1357000000,),
        _key(COMET, "balanceOf(address)", (ACCOUNT,)): (supply,),
        _key(COMET, "borrowBalanceOf(address)", (ACCOUNT,)): (borrow,),
    }
    for i, (asset, feed, borrow_cf, liquidate_cf) in enumerate(ASSETS):
        responses[_key(COMET, "getAssetInfo(uint8)", (i,))] = (
            (i, asset.lower(), feed.lower(), 10**TOKENS[asset][0], borrow_cf, liquidate_cf, 9 * 10**17, 10**30),
        )
        balance = weth_collateral if asset == WETH else 0
        responses[_key(COMET, "collateralBalanceOf(address,address)", (ACCOUNT, asset))] = (balance,)
    for feed, price in PRICES.items():
        responses[_key(COMET, "getPrice(address)", (feed,))] = (price,)
    for address, (decimals, symbol, name) in TOKENS.items():
        responses[_key(address, "decimals()", ())] = (decimals,)
        responses[_key(address, "symbol()", ())] = (symbol,)
        responses[_key(address, "name()", ())] = (name,)
    return responses


class FakeChainClient:
    """Answers multicall batches from a table of decoded results"""

    def __init__(self, responses):
        self.responses = responses
        self.batches = []

    async def aggregate(self, calls):
        self.batches.append(list(calls))
        return [self.responses[_key(call.target, call.signature, call.args)] for call in calls]


@pytest.fixture
def chain_client():
    return FakeChainClient(polygon_usdc_responses())


@pytest.fixture
def market_service(chain_client):
    return MarketService(POLYGON, chain_client, cache=WriteOnceCache(), c_token_cache=WriteOnceCache())


@pytest.fixture
def account():
    return ACCOUNT


@pytest.fixture
def make_market_service():
    """MarketService over the same market with different account balances (raw units)"""
    def make(**balances):
        client = FakeChainClient(polygon_usdc_responses(**balances))
        return MarketService(POLYGON, client, cache=WriteOnceCache(), c_token_cache=WriteOnceCache())
    return make


# Mainnet ETH market: Comet prices collaterals in ETH, rescaled to USD by the ETH/USD feed
ETH_COMET = "0xA17581A9E3356d9A858b789D68B4d866e593aE94"
ETH_USD_FEED = "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"
MAINNET_WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
CBETH = "0xBe9895146f7AF43049ca1c1AE358B0541Ea49704"
WSTETH = "0x7f39C581F595B53c5cb19bD0b3f8dA6c935E2Ca0"
WETH_ETH_FEED = "0xD72ac1bCE9177CFe7aEb5d0516a38c88a64cE0AB"
CBETH_ETH_FEED = "0x23a982b74a3236A5F2297856d4391B2edBBB5549"
WSTETH_ETH_FEED = "0x4F67e4d9BD67eFa28236013288737D39AeF48e79"

ETH_MARKET_PRICES = {
    ETH_USD_FEED: 300000000001,
    WETH_ETH_FEED: 100000000,
    CBETH_ETH_FEED: 150000001,
    WSTETH_ETH_FEED: 50000000,
}


def mainnet_eth_responses():
    tokens = {
        MAINNET_WETH: (18, "WETH", "Wrapped Ether"),
        CBETH: (18, "cbETH", "Coinbase Wrapped Staked ETH"),
        WSTETH: (18, "wstETH", "Wrapped liquid staked Ether 2.0"),
    }
    assets = [(CBETH, CBETH_ETH_FEED), (WSTETH, WSTETH_ETH_FEED)]
    responses = {
        _key(ETH_COMET, "baseToken()", ()): (MAINNET_WETH.lower(),),
        _key(ETH_COMET, "baseTokenPriceFeed()", ()): (WETH_ETH_FEED.lower(),),
        _key(ETH_COMET, "numAssets()", ()): (len(assets),),
        _key(ETH_COMET, "baseBorrowMin()", ()): (10**17,),
    }
    for i, (asset, feed) in enumerate(assets):
        responses[_key(ETH_COMET, "getAssetInfo(uint8)", (i,))] = (
            (i, asset.lower(), feed.lower(), 10**18, 900 * 10**15, 930 * 10**15, 975 * 10**15, 10**24),
        )
    for feed, price in ETH_MARKET_PRICES.items():
        responses[_key(ETH_COMET, "getPrice(address)", (feed,))] = (price,)
    for address, (decimals, symbol, name) in tokens.items():
        responses[_key(address, "decimals()", ())] = (decimals,)
        responses[_key(address, "symbol()", ())] = (symbol,)
        responses[_key(address, "name()", ())] = (name,)
    return responses


@pytest.fixture
def eth_market_service():
    client = FakeChainClient(mainnet_eth_responses())
    return MarketService(1, client, cache=WriteOnceCache(), c_token_cache=WriteOnceCache())
