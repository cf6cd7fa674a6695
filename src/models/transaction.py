"""
Signable transaction model.

Transient description of a legacy (EIP-155) transaction to be signed by one
of the wallet's accounts. Never persisted.
"""

from dataclasses import dataclass

from eth_utils import to_checksum_address

from .account import Account, normalize_address


@dataclass
class SignableTransaction:
    """A transaction waiting for a signature."""
    nonce: int
    to: str                 # destination address (0x...)
    value: int              # wei
    gas_limit: int
    gas_price: int          # wei
    data: bytes
    chain_id: int
    account: Account        # signing account

    def __post_init__(self):
        self.to = normalize_address(self.to)
        if isinstance(self.data, str):
            payload = self.data[2:] if self.data.startswith("0x") else self.data
            self.data = bytes.fromhex(payload)
        for name in ("nonce", "value", "gas_limit", "gas_price"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.chain_id <= 0:
            raise ValueError("chain_id must be positive")

    def to_eth_dict(self) -> dict:
        """Build the transaction dict understood by eth_account."""
        return {
            "nonce": self.nonce,
            "to": to_checksum_address(self.to),
            "value": self.value,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "data": self.data,
            "chainId": self.chain_id,
        }
