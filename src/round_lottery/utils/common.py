"""Common utility functions for the lottery backend."""

from web3 import Web3


def shorten_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.
    Returns the first 6 and last 4 hex characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksum form of ``address``.

    Raises ValueError for anything that is not a 20-byte hex address.
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"not an address: {address!r}")
    return Web3.to_checksum_address(address)


def format_wei(amount: int) -> str:
    return f"{Web3.from_wei(amount, 'ether')} ETH"
