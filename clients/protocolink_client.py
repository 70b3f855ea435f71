import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout

from config.networks import get_protocolink_api_url
from models.token import Token
from utils.errors import UpstreamError

logger = logging.getLogger(__name__)

BPS_BASE = 10_000

# Logic ids understood by the router
SWAP_TOKEN_RID = "paraswap-v5:swap-token"
FLASH_LOAN_AGGREGATOR_RID = "utility:flash-loan-aggregator"
SUPPLY_COLLATERAL_RID = "compound-v3:supply-collateral"
SUPPLY_BASE_RID = "compound-v3:supply-base"
WITHDRAW_COLLATERAL_RID = "compound-v3:withdraw-collateral"
WITHDRAW_BASE_RID = "compound-v3:withdraw-base"
BORROW_RID = "compound-v3:borrow"
REPAY_RID = "compound-v3:repay"


def token_amount(token: Token, amount: str) -> dict:
    """Token amount object in the shape the routing API expects"""
    return {"token": token.to_dict(), "amount": amount}


def calc_slippage(amount_wei: int, slippage: int) -> int:
    """Apply a slippage in basis points to a raw amount, rounding down"""
    return amount_wei * (BPS_BASE - slippage) // BPS_BASE


def new_logic(rid: str, fields: dict) -> dict:
    return {"rid": rid, "fields": fields}


def new_swap_token_logic(quotation: dict) -> dict:
    return new_logic(SWAP_TOKEN_RID, dict(quotation))


def new_flash_loan_aggregator_logic_pair(protocol_id: str, loans: List[dict]) -> Tuple[dict, dict]:
    """Loan and repay halves of one flash loan; they share an id so the router can pair them"""
    pair_id = str(uuid.uuid4())
    loan_logic = new_logic(
        FLASH_LOAN_AGGREGATOR_RID,
        {"id": pair_id, "protocolId": protocol_id, "loans": loans, "isLoan": True},
    )
    repay_logic = new_logic(
        FLASH_LOAN_AGGREGATOR_RID,
        {"id": pair_id, "protocolId": protocol_id, "loans": loans, "isLoan": False},
    )
    return loan_logic, repay_logic


def new_supply_collateral_logic(market_id: str, input: dict, balance_bps: Optional[int] = None) -> dict:
    fields = {"marketId": market_id, "input": input}
    if balance_bps is not None:
        fields["balanceBps"] = balance_bps
    return new_logic(SUPPLY_COLLATERAL_RID, fields)


def new_supply_base_logic(quotation: dict, balance_bps: Optional[int] = None) -> dict:
    fields = dict(quotation)
    if balance_bps is not None:
        fields["balanceBps"] = balance_bps
    return new_logic(SUPPLY_BASE_RID, fields)


def new_withdraw_collateral_logic(market_id: str, output: dict) -> dict:
    return new_logic(WITHDRAW_COLLATERAL_RID, {"marketId": market_id, "output": output})


def new_withdraw_base_logic(quotation: dict, balance_bps: Optional[int] = None) -> dict:
    fields = dict(quotation)
    if balance_bps is not None:
        fields["balanceBps"] = balance_bps
    return new_logic(WITHDRAW_BASE_RID, fields)


def new_borrow_logic(market_id: str, output: dict) -> dict:
    return new_logic(BORROW_RID, {"marketId": market_id, "output": output})


def new_repay_logic(market_id: str, borrower: str, input: dict, balance_bps: Optional[int] = None) -> dict:
    fields = {"marketId": market_id, "borrower": borrower, "input": input}
    if balance_bps is not None:
        fields["balanceBps"] = balance_bps
    return new_logic(REPAY_RID, fields)


class ProtocolinkClient:
    """Thin async client for the Protocolink routing API.

    Quotations and estimates are returned as the API's JSON objects; the
    caller only reads amounts from them and passes them back inside logics.
    """
    TIMEOUT_SECONDS = 30

    def __init__(self, chain_id: int, api_url: Optional[str] = None):
        self.chain_id = chain_id
        self.api_url = (api_url or get_protocolink_api_url()).rstrip("/")
        logger.info(f"[{self.chain_id}] Using Protocolink API: {self.api_url}")

    def _protocol_path(self, protocol: str, logic: str, action: str) -> str:
        return f"/v1/protocols/{self.chain_id}/{protocol}/{logic}/{action}"

    async def _request(self, method: str, path: str, json: Optional[dict] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.api_url}{path}"
        logger.debug(f"[{self.chain_id}] {method} {url}")
        timeout = ClientTimeout(total=self.TIMEOUT_SECONDS)
        try:
            async with ClientSession(timeout=timeout) as session:
                async with session.request(method, url, json=json, params=params) as response:
                    if response.status < 200 or response.status >= 300:
                        text = await response.text()
                        logger.error(f"[{self.chain_id}] {method} {path} returned HTTP {response.status}: {text[:200]}")
                        raise UpstreamError(f"Routing API {path} returned HTTP {response.status}")
                    return await response.json()
        except ClientError as e:
            logger.error(f"[{self.chain_id}] {method} {path} failed: {e}")
            raise UpstreamError(f"Routing API {path} request failed", e) from e

    async def get_swap_token_quotation(self, params: dict) -> dict:
        """Quote a swap; params carry either ``input`` + ``tokenOut`` or ``tokenIn`` + ``output``"""
        return await self._request("POST", self._protocol_path("paraswap-v5", "swap-token", "quote"), json=params)

    async def get_flash_loan_aggregator_quotation(self, params: dict) -> dict:
        """Resolve the flash loan source; params carry either ``loans`` or ``repays``"""
        return await self._request(
            "POST", self._protocol_path("utility", "flash-loan-aggregator", "quote"), json=params
        )

    async def get_supply_base_quotation(self, params: dict) -> dict:
        return await self._request("POST", self._protocol_path("compound-v3", "supply-base", "quote"), json=params)

    async def get_withdraw_base_quotation(self, params: dict) -> dict:
        return await self._request("POST", self._protocol_path("compound-v3", "withdraw-base", "quote"), json=params)

    async def get_repay_quotation(self, params: dict) -> dict:
        return await self._request("POST", self._protocol_path("compound-v3", "repay", "quote"), json=params)

    async def estimate_router_data(self, router_data: dict, permit2_type: Optional[str] = None) -> dict:
        """Fees, approvals and (optionally) permit data needed before the logics can execute"""
        params = {"permit2Type": permit2_type} if permit2_type else None
        return await self._request("POST", "/v1/transactions/estimate", json=router_data, params=params)

    async def get_swap_token_list(self) -> List[dict]:
        return await self._request("GET", f"/v1/protocols/{self.chain_id}/paraswap-v5/swap-token/tokens")
