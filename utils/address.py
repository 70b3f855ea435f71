from web3 import Web3


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksummed form of an account address.

    Raises ValueError for anything that is not a 20-byte hex address, including
    mixed-case input with a wrong checksum.
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)
