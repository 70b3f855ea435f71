import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from config.contracts import MULTICALL3_ABI_PATH, MULTICALL3_ADDRESS
from config.networks import get_network_config, get_rpc_url
from utils.errors import UpstreamError

logger = logging.getLogger(__name__)

BlockIdentifier = Union[str, int]


@dataclass(frozen=True)
class Call:
    """One read-only contract call, batched through Multicall3.

    ``signature`` is the canonical function signature, e.g.
    ``collateralBalanceOf(address,address)``; ``returns`` lists the ABI types
    of the outputs, e.g. ``("uint128",)``.
    """
    target: str
    signature: str
    args: Tuple[Any, ...] = ()
    returns: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def arg_types(self) -> List[str]:
        inner = self.signature[self.signature.index("(") + 1:self.signature.rindex(")")]
        return [t for t in inner.split(",") if t]

    def encode(self) -> bytes:
        selector = function_signature_to_4byte_selector(self.signature)
        if not self.arg_types:
            return selector
        return selector + encode(self.arg_types, list(self.args))

    def decode(self, data: bytes) -> tuple:
        return decode(list(self.returns), data)


class BlockchainClient:
    """Read-only chain access for one network.

    Every request goes through Multicall3 so a whole batch of independent
    reads costs a single ``eth_call``.
    """

    def __init__(self, chain_id: int, w3: Optional[AsyncWeb3] = None, block_identifier: BlockIdentifier = "latest"):
        self.chain_id = chain_id
        self.block_identifier = block_identifier

        if w3 is None:
            get_network_config(self.chain_id)  # Handles unsupported chain error
            rpc_url = get_rpc_url(self.chain_id)
            logger.info(f"[{self.chain_id}] Using RPC URL ending with ...{rpc_url[-10:]}")
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.w3 = w3

        try:
            with open(MULTICALL3_ABI_PATH) as f:
                multicall_abi = json.load(f)
        except FileNotFoundError:
            logger.error(f"Multicall3 ABI file not found at: {MULTICALL3_ABI_PATH}")
            raise

        self.multicall = self.w3.eth.contract(
            address=Web3.to_checksum_address(MULTICALL3_ADDRESS),
            abi=multicall_abi
        )

    async def aggregate(self, calls: Sequence[Call]) -> List[tuple]:
        """Execute calls in one round trip and return decoded outputs in call order"""
        if not calls:
            return []

        payload = [(Web3.to_checksum_address(call.target), call.encode()) for call in calls]
        logger.debug(f"[{self.chain_id}] Multicall with {len(payload)} calls at block {self.block_identifier}")

        try:
            _, return_data = await self.multicall.functions.aggregate(payload).call(
                block_identifier=self.block_identifier
            )
        except Exception as e:
            logger.error(f"[{self.chain_id}] Multicall failed: {e}")
            raise UpstreamError(f"Multicall of {len(payload)} calls failed on chain {self.chain_id}", e) from e

        if len(return_data) != len(calls):
            raise UpstreamError(
                f"Multicall returned {len(return_data)} results for {len(calls)} calls on chain {self.chain_id}"
            )

        try:
            return [call.decode(data) for call, data in zip(calls, return_data)]
        except Exception as e:
            logger.error(f"[{self.chain_id}] Failed to decode multicall results: {e}")
            raise UpstreamError(f"Could not decode multicall results on chain {self.chain_id}", e) from e
