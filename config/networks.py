# config/networks.py
import os

# Define Chain IDs
MAINNET_CHAIN_ID = 1
POLYGON_CHAIN_ID = 137
ARBITRUM_CHAIN_ID = 42161
BASE_CHAIN_ID = 8453

ETH_NATIVE_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

DEFAULT_PROTOCOLINK_API_URL = "https://api.protocolink.com"

# --- Network Configuration Mapping ---

NETWORKS = {
    MAINNET_CHAIN_ID: {
        "name": "Ethereum",
        "rpc_alchemy_network": "eth-mainnet",
        "native_token": {
            "address": ETH_NATIVE_ADDRESS,
            "decimals": 18,
            "symbol": "ETH",
            "name": "Ethereum",
        },
        "wrapped_native_token": {
            "address": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            "decimals": 18,
            "symbol": "WETH",
            "name": "Wrapped Ether",
        },
    },
    POLYGON_CHAIN_ID: {
        "name": "Polygon",
        "rpc_alchemy_network": "polygon-mainnet",
        # Polygon's native token is exposed through its system contract address
        "native_token": {
            "address": "0x0000000000000000000000000000000000001010",
            "decimals": 18,
            "symbol": "MATIC",
            "name": "Matic Token",
        },
        "wrapped_native_token": {
            "address": "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
            "decimals": 18,
            "symbol": "WMATIC",
            "name": "Wrapped Matic",
        },
    },
    ARBITRUM_CHAIN_ID: {
        "name": "Arbitrum",
        "rpc_alchemy_network": "arb-mainnet",
        "native_token": {
            "address": ETH_NATIVE_ADDRESS,
            "decimals": 18,
            "symbol": "ETH",
            "name": "Ethereum",
        },
        "wrapped_native_token": {
            "address": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
            "decimals": 18,
            "symbol": "WETH",
            "name": "Wrapped Ether",
        },
    },
    BASE_CHAIN_ID: {
        "name": "Base",
        "rpc_alchemy_network": "base-mainnet",
        "native_token": {
            "address": ETH_NATIVE_ADDRESS,
            "decimals": 18,
            "symbol": "ETH",
            "name": "Ethereum",
        },
        "wrapped_native_token": {
            "address": "0x4200000000000000000000000000000000000006",
            "decimals": 18,
            "symbol": "WETH",
            "name": "Wrapped Ether",
        },
    },
}


def is_supported_chain(chain_id: int) -> bool:
    return chain_id in NETWORKS


def get_network_config(chain_id: int) -> dict:
    """Retrieve the configuration for a given chain ID."""
    config = NETWORKS.get(chain_id)
    if not config:
        raise ValueError(f"Unsupported chain ID: {chain_id}. No configuration found in config/networks.py")
    return config


def get_rpc_url(chain_id: int) -> str:
    """Resolve the RPC URL for a chain.

    ``RPC_URL_<chainId>`` wins when set, otherwise the URL is built from the
    Alchemy network name and ``ALCHEMY_API_KEY``.
    """
    override = os.getenv(f"RPC_URL_{chain_id}")
    if override:
        return override

    config = get_network_config(chain_id)
    network_name = config.get("rpc_alchemy_network")
    if not network_name:
        raise ValueError(f"rpc_alchemy_network not configured for chain ID {chain_id}")

    api_key = os.getenv("ALCHEMY_API_KEY")
    if not api_key:
        raise ValueError(f"Neither RPC_URL_{chain_id} nor ALCHEMY_API_KEY environment variable is set.")

    return f"https://{network_name}.g.alchemy.com/v2/{api_key}"


def get_protocolink_api_url() -> str:
    """Base URL of the Protocolink routing API."""
    return os.getenv("PROTOCOLINK_API_URL", DEFAULT_PROTOCOLINK_API_URL).rstrip("/")


def get_native_token_config(chain_id: int) -> dict:
    return get_network_config(chain_id)["native_token"]


def get_wrapped_native_token_config(chain_id: int) -> dict:
    return get_network_config(chain_id)["wrapped_native_token"]

