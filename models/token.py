from dataclasses import dataclass
import logging

from config.networks import get_native_token_config, get_wrapped_native_token_config
from utils.address import normalize_address

logger = logging.getLogger(__name__)

TOKEN_FIELDS = ("chainId", "address", "decimals", "symbol", "name")


@dataclass(frozen=True)
class Token:
    chain_id: int
    address: str
    decimals: int
    symbol: str
    name: str

    @classmethod
    def from_dict(cls, data: dict) -> 'Token':
        """Create a Token from the camelCase token object used by the routing API"""
        if not isinstance(data, dict):
            raise ValueError(f"Token must be an object, got {type(data).__name__}")
        missing_fields = [field for field in TOKEN_FIELDS if field not in data]
        if missing_fields:
            raise ValueError(f"Token is missing fields: {', '.join(missing_fields)}")
        try:
            return cls(
                chain_id=int(data['chainId']),
                address=normalize_address(data['address']),
                decimals=int(data['decimals']),
                symbol=str(data['symbol']),
                name=str(data['name']),
            )
        except (TypeError, ValueError) as e:
            logger.debug(f"Invalid token object {data}: {e}")
            raise ValueError(f"Invalid token object: {e}")

    @classmethod
    def native(cls, chain_id: int) -> 'Token':
        return cls._from_config(chain_id, get_native_token_config(chain_id))

    @classmethod
    def wrapped_native(cls, chain_id: int) -> 'Token':
        return cls._from_config(chain_id, get_wrapped_native_token_config(chain_id))

    @classmethod
    def _from_config(cls, chain_id: int, config: dict) -> 'Token':
        return cls(
            chain_id=chain_id,
            address=config['address'],
            decimals=config['decimals'],
            symbol=config['symbol'],
            name=config['name'],
        )

    def to_dict(self) -> dict:
        return {
            'chainId': self.chain_id,
            'address': self.address,
            'decimals': self.decimals,
            'symbol': self.symbol,
            'name': self.name,
        }

    def is_same(self, other: 'Token') -> bool:
        return self.chain_id == other.chain_id and self.address.lower() == other.address.lower()

    @property
    def is_native(self) -> bool:
        return self.address.lower() == get_native_token_config(self.chain_id)['address'].lower()

    @property
    def is_wrapped_native(self) -> bool:
        return self.address.lower() == get_wrapped_native_token_config(self.chain_id)['address'].lower()

    @property
    def wrapped(self) -> 'Token':
        """The ERC-20 form of this token (native -> wrapped native)"""
        return Token.wrapped_native(self.chain_id) if self.is_native else self

    @property
    def unwrapped(self) -> 'Token':
        """The user-facing form of this token (wrapped native -> native)"""
        return Token.native(self.chain_id) if self.is_wrapped_native else self
