import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from clients.blockchain_client import BlockchainClient
from clients.protocolink_client import ProtocolinkClient
from config.networks import is_supported_chain
from services.market_service import MarketService
from services.quotation_service import OPERATIONS, ApiResponse, QuotationService, list_market_groups
from utils.logging import setup_logging

# Initialize logger for the module
logger = logging.getLogger(__name__)


def build_service(chain_id: int, block: Optional[str] = None) -> QuotationService:
    block_identifier = int(block) if block and block.isdigit() else (block or "latest")
    client = BlockchainClient(chain_id, block_identifier=block_identifier)
    return QuotationService(chain_id, MarketService(chain_id, client), ProtocolinkClient(chain_id))


def load_body(value: str) -> dict:
    """Request body given inline as JSON or as @path/to/file.json"""
    if value.startswith("@"):
        with open(value[1:]) as f:
            return json.load(f)
    return json.loads(value)


async def run(args: argparse.Namespace) -> ApiResponse:
    if args.command == "markets":
        return ApiResponse(200, list_market_groups())

    if not is_supported_chain(args.chain_id):
        message = "chain does not exist" if args.command == "zap-tokens" else "market does not exist"
        return ApiResponse(400, {"code": "400.1", "message": message})

    service = build_service(args.chain_id, args.block)
    if args.command == "zap-tokens":
        return await service.get_zap_tokens()
    if args.command == "market":
        return await service.get_market(args.market_id, args.account)
    return await service.handle(args.operation, args.market_id, load_body(args.body), args.permit2_type)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compound V3 position and quotation engine")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    parser.add_argument("--block", default=None, help="Block number or tag to read chain state at")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("markets", help="List supported markets")

    zap_tokens = subparsers.add_parser("zap-tokens", help="List tokens usable in zap operations")
    zap_tokens.add_argument("chain_id", type=int)

    market = subparsers.add_parser("market", help="Show market info, optionally for an account")
    market.add_argument("chain_id", type=int)
    market.add_argument("market_id")
    market.add_argument("--account", default=None)

    quote = subparsers.add_parser("quote", help="Quote an operation")
    quote.add_argument("chain_id", type=int)
    quote.add_argument("market_id")
    quote.add_argument("operation", choices=OPERATIONS)
    quote.add_argument("--body", required=True, help="JSON request body, or @file")
    quote.add_argument("--permit2-type", dest="permit2_type", default=None)

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging(args.log_level)

    try:
        response = asyncio.run(run(args))
    except ValueError as ve:
        # Configuration errors (missing RPC URL, malformed body)
        logger.error(f"Configuration error: {ve}")
        return 2

    print(json.dumps(response.body, indent=2))
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
