"""
Account model.

An account is identified by its 20-byte address. Addresses are kept in one
canonical form everywhere (storage keys, equality, lookups): "0x" followed by
40 lower-case hex digits.
"""

from dataclasses import dataclass

from eth_utils import to_checksum_address

ADDRESS_SIZE = 20  # bytes


def normalize_address(address: str) -> str:
    """
    Return the canonical form of an address.

    Accepts input with or without a 0x/0X prefix, in any case.

    Raises:
        ValueError: If the input is not 20 bytes of hex
    """
    if not isinstance(address, str):
        raise ValueError(f"Address must be a string, got {type(address).__name__}")

    addr = address.strip()
    if addr.startswith("0x") or addr.startswith("0X"):
        addr = addr[2:]

    if len(addr) != ADDRESS_SIZE * 2:
        raise ValueError(f"Invalid address length: {address!r}")
    try:
        bytes.fromhex(addr)
    except ValueError as e:
        raise ValueError(f"Invalid address: {address!r}") from e

    return "0x" + addr.lower()


@dataclass(frozen=True)
class Account:
    """A wallet account, referenced by value."""
    address: str    # canonical 0x... lower-case

    def __post_init__(self):
        object.__setattr__(self, "address", normalize_address(self.address))

    @property
    def checksum_address(self) -> str:
        """EIP-55 mixed-case form, for display."""
        return to_checksum_address(self.address)

    @property
    def short_address(self) -> str:
        """Abbreviated form for logs: 0x1234...abcd"""
        return f"{self.address[:6]}...{self.address[-4:]}"

    def __str__(self) -> str:
        return self.address
