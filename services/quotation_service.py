import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from clients.protocolink_client import (
    BPS_BASE,
    ProtocolinkClient,
    calc_slippage,
    new_borrow_logic,
    new_flash_loan_aggregator_logic_pair,
    new_repay_logic,
    new_supply_base_logic,
    new_supply_collateral_logic,
    new_swap_token_logic,
    new_withdraw_base_logic,
    new_withdraw_collateral_logic,
    token_amount,
)
from config.contracts import COMPOUND_V3_MARKETS, get_market_label
from config.networks import is_supported_chain
from models.compound_v3 import MarketGroup, MarketInfo, Position
from models.token import Token
from services.market_service import MarketService
from services.position_projector import (
    collateral_swap_delta,
    deleverage_delta,
    leverage_delta,
    project_position,
    to_usd,
    zap_borrow_delta,
    zap_repay_delta,
    zap_supply_delta,
    zap_withdraw_delta,
)
from utils.address import normalize_address
from utils.errors import QuotationError, UpstreamError
from utils.format import format_decimal, strip_zeros, to_decimal
from utils.token_amount import TokenAmount

logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {"message": "Internal Server Error"}
NOT_FOUND_BODY = {"message": "Not Found"}

# Each operation is handled by the QuotationService method of the same name
OPERATIONS = ("leverage", "deleverage", "collateral-swap", "zap-supply", "zap-withdraw", "zap-borrow", "zap-repay")


@dataclass
class ApiResponse:
    status_code: int
    body: Dict[str, Any]


def list_market_groups() -> dict:
    """Every supported market, grouped by chain"""
    groups = [
        MarketGroup(
            chain_id=chain_id,
            markets=[{"id": market_id, "label": get_market_label(chain_id, market_id)} for market_id in markets],
        )
        for chain_id, markets in COMPOUND_V3_MARKETS.items()
    ]
    return {"marketGroups": [group.to_dict() for group in groups]}


def is_supported_market(chain_id: int, market_id: str) -> bool:
    return isinstance(market_id, str) and market_id.upper() in COMPOUND_V3_MARKETS.get(chain_id, {})


def parse_token(value: Any, chain_id: int) -> Token:
    """Token from a request body; it must live on the chain being quoted"""
    try:
        token = Token.from_dict(value)
    except ValueError:
        raise QuotationError("400.8", "token is invalid")
    if token.chain_id != chain_id or not is_supported_chain(token.chain_id):
        raise QuotationError("400.8", "token is invalid")
    return token


def parse_amount(value: Any) -> Optional[Decimal]:
    """Decimal amount from a request body; None when the field is absent"""
    if value is None or value == "":
        return None
    if isinstance(value, float):
        # JSON numbers arrive as floats; their shortest repr is what the client sent
        value = repr(value)
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError):
        raise QuotationError("400.9", "amount is invalid")
    if not amount.is_finite():
        raise QuotationError("400.9", "amount is invalid")
    return amount


def parse_slippage(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= BPS_BASE:
        raise QuotationError("400.10", "slippage is invalid")
    return value


def is_active(amount: Optional[Decimal]) -> bool:
    return amount is not None and amount > 0


def to_token_units(amount: Decimal, token: Token) -> TokenAmount:
    """Amount in the token's precision, rejecting digits the token cannot hold"""
    try:
        return TokenAmount.from_units(amount, token.decimals)
    except ValueError:
        raise QuotationError("400.9", "amount is invalid")


def with_slippage(params: dict, slippage: Optional[int]) -> dict:
    if slippage is not None:
        params["slippage"] = slippage
    return params


class QuotationService:
    """Validates quotation requests, sequences routing API calls and projects
    the resulting position for one chain."""

    def __init__(self, chain_id: int, market_service: MarketService, router: ProtocolinkClient):
        self.chain_id = chain_id
        self.market_service = market_service
        self.router = router
        self._handlers: Dict[str, Callable[..., Awaitable[dict]]] = {
            operation: getattr(self, operation.replace("-", "_")) for operation in OPERATIONS
        }

    async def handle(self, operation: str, market_id: str, body: Optional[dict],
                     permit2_type: Optional[str] = None) -> ApiResponse:
        handler = self._handlers.get(operation)
        if handler is None:
            logger.warning(f"[{self.chain_id}] Unknown operation: {operation}")
            return ApiResponse(404, dict(NOT_FOUND_BODY))
        return await self._respond(f"{operation} {market_id}", handler(market_id, body, permit2_type))

    async def get_market(self, market_id: str, account: Optional[str] = None) -> ApiResponse:
        return await self._respond(f"market {market_id}", self._market_info_body(market_id, account))

    async def get_zap_tokens(self) -> ApiResponse:
        return await self._respond("zap-tokens", self._zap_tokens_body())

    async def _respond(self, label: str, work: Awaitable[dict]) -> ApiResponse:
        """Map the outcome of one request to a status code and body"""
        try:
            return ApiResponse(200, await work)
        except QuotationError as e:
            logger.info(f"[{self.chain_id}] {label} rejected: {e.code} {e.message}")
            return ApiResponse(e.status_code, e.to_body())
        except Exception as e:
            logger.error(f"[{self.chain_id}] {label} failed: {e!r}", exc_info=True)
            return ApiResponse(500, dict(INTERNAL_ERROR_BODY))

    async def _market_info_body(self, market_id: str, account: Optional[str]) -> dict:
        if not is_supported_market(self.chain_id, market_id):
            raise QuotationError("400.1", "market does not exist")
        if account:
            try:
                account = normalize_address(account)
            except ValueError:
                raise QuotationError("400.2", "account is invalid")
        market_info = await self._fetch_market_info(market_id.upper(), account)
        return market_info.to_dict()

    async def _zap_tokens_body(self) -> dict:
        if not is_supported_chain(self.chain_id):
            raise QuotationError("400.1", "chain does not exist")
        tokens = await self.router.get_swap_token_list()
        return {"tokens": tokens}

    async def _fetch_market_info(self, market_id: str, account: Optional[str]) -> MarketInfo:
        result = await self.market_service.fetch_market_info(market_id, account)
        if not result.ok:
            raise UpstreamError(f"Could not read {market_id} market state", result.error)
        return result.value

    async def _prepare(self, market_id: str, body: Optional[dict]) -> Tuple[str, str, MarketInfo]:
        """Checks shared by every operation, in order, then the account's market snapshot"""
        if not is_supported_market(self.chain_id, market_id):
            raise QuotationError("400.1", "market does not exist")
        if not body or not isinstance(body, dict):
            raise QuotationError("400.2", "body is invalid")

        account = body.get("account")
        if not account:
            raise QuotationError("400.3", "account can't be blank")
        try:
            account = normalize_address(account)
        except ValueError:
            raise QuotationError("400.4", "account is invalid")

        market_id = market_id.upper()
        return market_id, account, await self._fetch_market_info(market_id, account)

    async def _estimate(self, account: str, logics: List[dict], permit2_type: Optional[str]) -> dict:
        router_data = {"chainId": self.chain_id, "account": account, "logics": logics}
        return await self.router.estimate_router_data(router_data, permit2_type)

    @staticmethod
    def _quotation_body(fields: dict, current: Position, target: Position,
                        logics: Optional[List[dict]] = None, estimate: Optional[dict] = None) -> dict:
        estimate = estimate or {}
        body = {
            "quotation": {**fields, "currentPosition": current.to_dict(), "targetPosition": target.to_dict()},
            "fees": estimate.get("fees", []),
            "approvals": estimate.get("approvals", []),
        }
        if estimate.get("permitData"):
            body["permitData"] = estimate["permitData"]
        body["logics"] = logics or []
        return body

    async def leverage(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        """Flash-loan collateral, supply it, borrow base and swap it to repay the loan"""
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("collateralAmount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("collateralToken") or not is_active(amount):
            return self._quotation_body({"leverageTimes": "0"}, current, current)

        collateral_token = parse_token(body["collateralToken"], self.chain_id)
        collateral = info.find_collateral(collateral_token)
        if collateral is None:
            raise QuotationError("400.5", "leverage token is not collateral")
        collateral_amount = to_token_units(amount, collateral_token).amount
        base_token = info.base_token

        # 1. flash loan the collateral; the quotation says what has to be repaid
        flash_loan = await self.router.get_flash_loan_aggregator_quotation({
            "loans": [token_amount(collateral_token.wrapped, collateral_amount)],
        })
        repay = flash_loan["repays"][0]

        # 2. how much base has to be borrowed to buy back the repay amount
        swap = await self.router.get_swap_token_quotation(with_slippage({
            "tokenIn": base_token.wrapped.to_dict(),
            "output": repay,
        }, slippage))
        borrow_amount = swap["input"]["amount"]

        if info.borrow_balance + to_decimal(borrow_amount) < info.base_borrow_min:
            raise QuotationError(
                "400.6", f"target borrow balance is less than baseBorrowMin: {strip_zeros(info.base_borrow_min)}"
            )

        loan_logic, repay_logic = new_flash_loan_aggregator_logic_pair(flash_loan["protocolId"], flash_loan["loans"])
        logics = [
            loan_logic,
            new_supply_collateral_logic(market_id, token_amount(collateral_token.wrapped, collateral_amount)),
            new_borrow_logic(market_id, token_amount(base_token.wrapped, borrow_amount)),
            new_swap_token_logic(swap),
            repay_logic,
        ]
        estimate = await self._estimate(account, logics, permit2_type)

        leverage_usd = to_usd(collateral_amount, collateral.asset_price)
        borrow_usd = to_usd(borrow_amount, info.base_token_price)
        leverage_times = "0"
        if info.borrow_capacity_usd != 0:
            leverage_times = format_decimal(leverage_usd / info.borrow_capacity_usd, 2)

        target = project_position(info, leverage_delta(collateral, leverage_usd, borrow_usd))
        logger.info(f"[{self.chain_id}] Leverage {collateral_amount} {collateral_token.symbol} on {market_id} "
                    f"for {account}: borrow {borrow_amount} {base_token.symbol}")
        return self._quotation_body({"leverageTimes": leverage_times}, current, target, logics, estimate)

    async def deleverage(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        """Flash-loan collateral, swap it to base, repay, then withdraw collateral to close the loan"""
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("baseAmount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("collateralToken") or not is_active(amount):
            return self._quotation_body({}, current, current)

        collateral_token = parse_token(body["collateralToken"], self.chain_id)
        collateral = info.find_collateral(collateral_token)
        if collateral is None:
            raise QuotationError("400.5", "deleverage token is not collateral")
        base_token = info.base_token
        base_amount = to_token_units(amount, base_token).amount

        # 1. collateral needed to buy the requested base amount
        swap = await self.router.get_swap_token_quotation(with_slippage({
            "tokenIn": collateral_token.wrapped.to_dict(),
            "output": token_amount(base_token.wrapped, base_amount),
        }, slippage))
        if to_decimal(swap["input"]["amount"]) > collateral.collateral_balance:
            raise QuotationError("400.6", "insufficient collateral for deleverage")

        # 2. flash loan that collateral; the repay amount is what gets withdrawn
        flash_loan = await self.router.get_flash_loan_aggregator_quotation({
            "loans": [token_amount(collateral_token.wrapped, swap["input"]["amount"])],
        })
        withdraw_amount = flash_loan["repays"][0]["amount"]

        loan_logic, repay_logic = new_flash_loan_aggregator_logic_pair(flash_loan["protocolId"], flash_loan["loans"])
        logics = [
            loan_logic,
            new_swap_token_logic(swap),
            new_repay_logic(market_id, account, token_amount(base_token.wrapped, base_amount), BPS_BASE),
            new_withdraw_collateral_logic(market_id, token_amount(collateral_token.wrapped, withdraw_amount)),
            repay_logic,
        ]
        estimate = await self._estimate(account, logics, permit2_type)

        delta = deleverage_delta(
            collateral,
            to_usd(withdraw_amount, collateral.asset_price),
            to_usd(base_amount, info.base_token_price),
        )
        target = project_position(info, delta)
        return self._quotation_body({}, current, target, logics, estimate)

    async def collateral_swap(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("srcAmount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("srcToken") or not body.get("destToken") or not is_active(amount):
            return self._quotation_body({"destAmount": "0"}, current, current)

        src_token = parse_token(body["srcToken"], self.chain_id)
        src_collateral = info.find_collateral(src_token)
        if src_collateral is None:
            raise QuotationError("400.5", "source token is not collateral")
        if amount > src_collateral.collateral_balance:
            raise QuotationError("400.6", "source amount is greater than available amount")
        dest_token = parse_token(body["destToken"], self.chain_id)
        dest_collateral = info.find_collateral(dest_token)
        if dest_collateral is None:
            raise QuotationError("400.7", "destination token is not collateral")

        withdrawal = token_amount(src_token.wrapped, to_token_units(amount, src_token).amount)

        # 1. flash loan whatever repays exactly the withdrawn source collateral
        flash_loan = await self.router.get_flash_loan_aggregator_quotation({"repays": [withdrawal]})
        loans = flash_loan["loans"]

        # 2. swap the loan into the destination collateral
        swap = await self.router.get_swap_token_quotation(with_slippage({
            "input": loans[0],
            "tokenOut": dest_token.wrapped.to_dict(),
        }, slippage))
        dest_amount = swap["output"]["amount"]

        loan_logic, repay_logic = new_flash_loan_aggregator_logic_pair(flash_loan["protocolId"], loans)
        logics = [
            loan_logic,
            new_swap_token_logic(swap),
            new_supply_collateral_logic(market_id, token_amount(dest_token.wrapped, dest_amount), BPS_BASE),
            new_withdraw_collateral_logic(market_id, withdrawal),
            repay_logic,
        ]
        estimate = await self._estimate(account, logics, permit2_type)

        delta = collateral_swap_delta(
            src_collateral,
            to_usd(withdrawal["amount"], src_collateral.asset_price),
            dest_collateral,
            to_usd(dest_amount, dest_collateral.asset_price),
        )
        target = project_position(info, delta)
        return self._quotation_body({"destAmount": dest_amount}, current, target, logics, estimate)

    async def zap_supply(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        """Swap any token into the base token or a collateral and supply it"""
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("srcAmount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("srcToken") or not body.get("destToken") or not is_active(amount):
            return self._quotation_body({"destAmount": "0"}, current, current)

        src_token = parse_token(body["srcToken"], self.chain_id)
        dest_token = parse_token(body["destToken"], self.chain_id)
        dest_collateral = info.find_collateral(dest_token)
        supply_base = info.is_base_token(dest_token)
        if dest_collateral is None and not supply_base:
            raise QuotationError("400.5", "destination token is not collateral nor base")
        if supply_base and info.borrow_usd != 0:
            raise QuotationError("400.6", "borrow USD is not zero")
        src_amount = to_token_units(amount, src_token).amount

        logics = []
        if src_token.wrapped.is_same(dest_token.wrapped):
            supply_token = src_token
            dest_amount = src_amount
        else:
            supply_token = dest_token.wrapped
            swap = await self.router.get_swap_token_quotation(with_slippage({
                "input": token_amount(src_token, src_amount),
                "tokenOut": supply_token.to_dict(),
            }, slippage))
            dest_amount = swap["output"]["amount"]
            logics.append(new_swap_token_logic(swap))

        if supply_base:
            c_token = await self.market_service.get_c_token(market_id)
            supply_quotation = await self.router.get_supply_base_quotation({
                "marketId": market_id,
                "input": token_amount(supply_token, dest_amount),
                "tokenOut": c_token.to_dict(),
            })
            logics.append(new_supply_base_logic(supply_quotation, BPS_BASE))
            delta = zap_supply_delta(to_usd(dest_amount, info.base_token_price))
        else:
            logics.append(new_supply_collateral_logic(market_id, token_amount(supply_token, dest_amount), BPS_BASE))
            delta = zap_supply_delta(to_usd(dest_amount, dest_collateral.asset_price), dest_collateral)

        estimate = await self._estimate(account, logics, permit2_type)
        target = project_position(info, delta)
        return self._quotation_body({"destAmount": dest_amount}, current, target, logics, estimate)

    async def zap_withdraw(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        """Withdraw supplied base or a collateral and optionally swap it to another token"""
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("srcAmount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("srcToken") or not body.get("destToken") or not is_active(amount):
            return self._quotation_body({"destAmount": "0"}, current, current)

        src_token = parse_token(body["srcToken"], self.chain_id)
        dest_token = parse_token(body["destToken"], self.chain_id)
        withdrawal = to_token_units(amount, src_token)

        logics = []
        src_collateral = None
        if info.is_base_token(src_token):
            if info.supply_balance < amount:
                raise QuotationError("400.5", "source amount is greater than available base amount")
            c_token = await self.market_service.get_c_token(market_id)
            withdrawal_token = dest_token if dest_token.wrapped.is_same(info.base_token.wrapped) else src_token.wrapped
            # cToken balance is 2 wei short after the permit2 pull
            withdrawal = withdrawal.sub_wei(2)
            withdraw_quotation = await self.router.get_withdraw_base_quotation({
                "marketId": market_id,
                "input": token_amount(c_token, withdrawal.amount),
                "tokenOut": withdrawal_token.to_dict(),
            })
            logics.append(new_withdraw_base_logic(withdraw_quotation, BPS_BASE))
            # and 1 wei less base token comes out
            withdrawal = withdrawal.sub_wei(1)
            price = info.base_token_price
        else:
            src_collateral = info.find_collateral(src_token)
            if src_collateral is None:
                raise QuotationError("400.6", "source token is not collateral nor base")
            if src_collateral.collateral_balance < amount:
                raise QuotationError("400.7", "source amount is greater than available collateral amount")
            withdrawal_token = dest_token if dest_token.wrapped.is_same(src_token.wrapped) else src_token.wrapped
            logics.append(new_withdraw_collateral_logic(market_id, token_amount(withdrawal_token, withdrawal.amount)))
            price = src_collateral.asset_price

        if src_token.wrapped.is_same(dest_token.wrapped):
            dest_amount = withdrawal.amount
        else:
            swap = await self.router.get_swap_token_quotation(with_slippage({
                "input": token_amount(withdrawal_token, withdrawal.amount),
                "tokenOut": dest_token.to_dict(),
            }, slippage))
            dest_amount = swap["output"]["amount"]
            logics.append(new_swap_token_logic(swap))

        estimate = await self._estimate(account, logics, permit2_type)
        target = project_position(info, zap_withdraw_delta(to_usd(withdrawal.to_decimal(), price), src_collateral))
        return self._quotation_body({"destAmount": dest_amount}, current, target, logics, estimate)

    async def zap_borrow(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        """Borrow base token and optionally swap it to the target token"""
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("amount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("targetToken") or not is_active(amount):
            return self._quotation_body({"targetTokenAmount": "0"}, current, current)

        target_token = parse_token(body["targetToken"], self.chain_id)
        if info.supply_usd != 0:
            raise QuotationError("400.5", "supply USD is not zero")
        if amount > info.available_to_borrow:
            raise QuotationError("400.6", "borrow amount is greater than available amount")
        if info.borrow_balance + amount < info.base_borrow_min:
            raise QuotationError(
                "400.7", f"target borrow balance is less than baseBorrowMin: {strip_zeros(info.base_borrow_min)}"
            )

        base_token = info.base_token
        borrow_amount = to_token_units(amount, base_token).amount
        borrow_base = info.is_base_token(target_token)
        borrow_token = target_token if borrow_base else base_token.wrapped

        logics = [new_borrow_logic(market_id, token_amount(borrow_token, borrow_amount))]
        if borrow_base:
            target_token_amount = borrow_amount
        else:
            swap = await self.router.get_swap_token_quotation(with_slippage({
                "input": token_amount(base_token.wrapped, borrow_amount),
                "tokenOut": target_token.to_dict(),
            }, slippage))
            target_token_amount = swap["output"]["amount"]
            logics.append(new_swap_token_logic(swap))

        estimate = await self._estimate(account, logics, permit2_type)
        target = project_position(info, zap_borrow_delta(to_usd(borrow_amount, info.base_token_price)))
        return self._quotation_body({"targetTokenAmount": target_token_amount}, current, target, logics, estimate)

    async def zap_repay(self, market_id: str, body: Optional[dict], permit2_type: Optional[str] = None) -> dict:
        """Swap any token into base and repay, never more than the outstanding debt"""
        market_id, account, info = await self._prepare(market_id, body)
        current = info.current_position()

        amount = parse_amount(body.get("amount"))
        slippage = parse_slippage(body.get("slippage"))
        if not body.get("sourceToken") or not is_active(amount):
            return self._quotation_body({"targetTokenAmount": "0"}, current, current)

        source_token = parse_token(body["sourceToken"], self.chain_id)
        if info.borrow_usd == 0:
            raise QuotationError("400.5", "borrow USD is zero")
        source_amount = to_token_units(amount, source_token).amount
        base_token = info.base_token

        logics = []
        if info.is_base_token(source_token):
            repay_token = source_token
            target_token_amount = source_amount
        else:
            swap = await self.router.get_swap_token_quotation(with_slippage({
                "input": token_amount(source_token, source_amount),
                "tokenOut": base_token.wrapped.to_dict(),
            }, slippage))
            target_token_amount = swap["output"]["amount"]
            if slippage:
                output = TokenAmount.from_units(target_token_amount, base_token.decimals, truncate=True)
                target_token_amount = TokenAmount(calc_slippage(output.raw, slippage), base_token.decimals).amount
            repay_token = base_token.wrapped
            logics.append(new_swap_token_logic(swap))

        repay_quotation = await self.router.get_repay_quotation({
            "marketId": market_id,
            "tokenIn": repay_token.to_dict(),
            "borrower": account,
        })
        # the quotation input is the full outstanding debt
        debt_amount = repay_quotation["input"]["amount"]
        if to_decimal(debt_amount) < to_decimal(target_token_amount):
            target_token_amount = debt_amount
        repay_input = {**repay_quotation["input"], "amount": target_token_amount}
        logics.append(new_repay_logic(market_id, account, repay_input, BPS_BASE))

        estimate = await self._estimate(account, logics, permit2_type)
        target = project_position(info, zap_repay_delta(to_usd(target_token_amount, info.base_token_price)))
        return self._quotation_body({"targetTokenAmount": target_token_amount}, current, target, logics, estimate)
