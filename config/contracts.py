"""Contract addresses and constants"""
from pathlib import Path

from config.networks import ARBITRUM_CHAIN_ID, BASE_CHAIN_ID, MAINNET_CHAIN_ID, POLYGON_CHAIN_ID

# Multicall3 is deployed at the same address on every supported chain
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

# ABI Paths
ABI_DIR = Path(__file__).resolve().parent / "abi"
MULTICALL3_ABI_PATH = ABI_DIR / "multicall3.json"

# Comet fixed-point scales
FACTOR_SCALE = 10**18
PRICE_SCALE = 10**8
PRICE_DECIMALS = 8
SECONDS_PER_YEAR = 60 * 60 * 24 * 365

# Compound V3 markets (Comet proxies) keyed by chain ID, then by upper-case market ID
COMPOUND_V3_MARKETS = {
    MAINNET_CHAIN_ID: {
        "USDC": {"comet_address": "0xc3d688B66703497DAA19211EEdff47f25384cdc3"},
        "ETH": {"comet_address": "0xA17581A9E3356d9A858b789D68B4d866e593aE94"},
    },
    POLYGON_CHAIN_ID: {
        "USDC": {"comet_address": "0xF25212E676D1F7F89Cd72fFEe66158f541246445"},
    },
    ARBITRUM_CHAIN_ID: {
        # bridged USDC market, shown to users as USDC.e
        "USDC": {"comet_address": "0xA5EDBDD9646f8dFF606d7448e414884C7d905dCA", "label": "USDC.e"},
    },
    BASE_CHAIN_ID: {
        "USDBC": {"comet_address": "0x9c4ec768c28520B50860ea7a15bd7213a9fF58bf", "label": "USDbC"},
        "ETH": {"comet_address": "0x46e6b214b524310239732D51387075E0e70970bf"},
    },
}

# Markets whose base token price is quoted against the base token itself
# (e.g. the ETH market prices in ETH); readings are rescaled into USD with this feed.
CUSTOM_BASE_TOKEN_PRICE_FEEDS = {
    MAINNET_CHAIN_ID: {
        "ETH": "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419",
    },
}


def get_market_config(chain_id: int, market_id: str) -> dict:
    """Gets the Comet configuration for a market, raising ValueError when unknown."""
    markets = COMPOUND_V3_MARKETS.get(chain_id, {})
    config = markets.get(market_id.upper())
    if not config:
        raise ValueError(f"Unsupported Compound V3 market {market_id} on chain ID {chain_id}")
    return config


def get_custom_base_token_price_feed(chain_id: int, market_id: str):
    return CUSTOM_BASE_TOKEN_PRICE_FEEDS.get(chain_id, {}).get(market_id.upper())


def get_market_label(chain_id: int, market_id: str) -> str:
    config = get_market_config(chain_id, market_id)
    return config.get("label", market_id.upper())
