"""
Test helpers shared across modules.
"""

from services import MemorySecretStore
from services.secret_store import DEFAULT_ACCESS

# Private key from the EIP-155 example transaction (do not use on-chain)
EIP155_PRIVATE_KEY = "0x" + "46" * 32
EIP155_ADDRESS = "0x9d8a62f656a8d1615c1294fd71e9cfb3e4855a4f"
EIP155_SIGNED_TX = (
    "f86c098504a817c800825208943535353535353535353535353535353535353535"
    "880de0b6b3a76400008025a028ef61340bd939bc2195fe537567866003e1a15d3c"
    "71ff63e1590620aa636276a067cbe9d8997f761aecb703304b3800ccf555c9f3dc"
    "64214b297fb1966a3b6d83"
)


class FlakySecretStore(MemorySecretStore):
    """Memory store whose writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def set(self, key, value, access=DEFAULT_ACCESS):
        if self.fail_writes:
            return False
        return super().set(key, value, access)
