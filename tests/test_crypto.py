"""
Test the keystore file codec.

Covers encryption round trips, tamper and wrong-password detection,
malformed records, and interoperability with eth_account's keyfile support.
"""

import json
import secrets

import pytest
from eth_account import Account as EthAccount

from custody import (
    KeystoreCodec,
    EncryptedKeyRecord,
    DecryptionFailed,
    InvalidKeystoreRecord,
    parse_private_key,
    address_from_key,
    generate_password,
)
from custody.crypto import DEFAULT_KDF_ITERATIONS, compute_mac, derive_key
from helpers import EIP155_PRIVATE_KEY, EIP155_ADDRESS


@pytest.fixture
def private_key():
    return bytes.fromhex("46" * 32)


class TestEncrypt:
    def test_record_layout(self, codec, private_key):
        record = codec.encrypt(private_key, "pw").to_dict()

        crypto = record["crypto"]
        assert record["version"] == 3
        assert isinstance(record["id"], str)
        assert crypto["cipher"] == "aes-128-ctr"
        assert crypto["kdf"] == "pbkdf2"
        assert crypto["kdfparams"]["prf"] == "hmac-sha256"
        assert crypto["kdfparams"]["c"] == DEFAULT_KDF_ITERATIONS
        assert crypto["kdfparams"]["dklen"] == 32
        assert len(bytes.fromhex(crypto["kdfparams"]["salt"])) == 32
        assert len(bytes.fromhex(crypto["cipherparams"]["iv"])) == 16
        assert len(bytes.fromhex(crypto["ciphertext"])) == 32
        assert len(bytes.fromhex(crypto["mac"])) == 32
        assert record["address"] == EIP155_ADDRESS[2:]

    def test_mac_matches_derived_key(self, codec, private_key):
        record = codec.encrypt(private_key, "pw")
        salt = bytes.fromhex(record.kdfparams["salt"])
        derived = derive_key("pw", salt, DEFAULT_KDF_ITERATIONS)

        assert compute_mac(derived, record.ciphertext) == record.mac

    def test_fresh_salt_and_iv_each_time(self, codec, private_key):
        first = codec.encrypt(private_key, "pw")
        second = codec.encrypt(private_key, "pw")

        assert first.kdfparams["salt"] != second.kdfparams["salt"]
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_configurable_iterations(self, private_key):
        codec = KeystoreCodec(iterations=5000)
        record = codec.encrypt(private_key, "pw")

        assert record.kdfparams["c"] == 5000
        assert codec.decrypt(record, "pw") == private_key

    @pytest.mark.parametrize("iterations", [0, -1, 1.5, True, "2214"])
    def test_rejects_bad_iterations(self, iterations):
        with pytest.raises(ValueError):
            KeystoreCodec(iterations=iterations)


class TestDecrypt:
    def test_round_trip(self, codec):
        for _ in range(3):
            key = secrets.token_bytes(32)
            password = generate_password()
            assert codec.decrypt(codec.encrypt(key, password), password) == key

    def test_accepts_json_and_dict(self, codec, private_key):
        record = codec.encrypt(private_key, "pw")

        assert codec.decrypt(record.to_json(), "pw") == private_key
        assert codec.decrypt(record.to_dict(), "pw") == private_key

    def test_unicode_password(self, codec, private_key):
        record = codec.encrypt(private_key, "pässwörd 🔑")
        assert codec.decrypt(record, "pässwörd 🔑") == private_key

    def test_wrong_password(self, codec, private_key):
        record = codec.encrypt(private_key, "pw1")

        with pytest.raises(DecryptionFailed) as exc_info:
            codec.decrypt(record, "pw2")
        assert not isinstance(exc_info.value, InvalidKeystoreRecord)

    @pytest.mark.parametrize("field", ["ciphertext", "mac"])
    @pytest.mark.parametrize("bit", [0, 7, 100, 255])
    def test_bit_flip_detected(self, codec, private_key, field, bit):
        data = codec.encrypt(private_key, "pw").to_dict()
        raw = bytearray.fromhex(data["crypto"][field])
        raw[bit // 8] ^= 1 << (bit % 8)
        data["crypto"][field] = raw.hex()

        with pytest.raises(DecryptionFailed):
            codec.decrypt(data, "pw")

    def test_tamper_and_wrong_password_look_the_same(self, codec, private_key):
        data = codec.encrypt(private_key, "pw").to_dict()
        with pytest.raises(DecryptionFailed) as wrong_info:
            codec.decrypt(data, "other")

        data["crypto"]["mac"] = "00" * 32
        with pytest.raises(DecryptionFailed) as tampered_info:
            codec.decrypt(data, "pw")

        assert type(wrong_info.value) is type(tampered_info.value)
        assert str(wrong_info.value) == str(tampered_info.value)


class TestMalformedRecords:
    def _record(self, codec):
        return codec.encrypt(bytes.fromhex("46" * 32), "pw").to_dict()

    def test_not_json(self, codec):
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt("{not json", "pw")

    def test_not_an_object(self, codec):
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt("[1, 2, 3]", "pw")

    def test_missing_crypto(self, codec):
        data = self._record(codec)
        del data["crypto"]
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_missing_field(self, codec):
        data = self._record(codec)
        del data["crypto"]["cipherparams"]
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_bad_hex(self, codec):
        data = self._record(codec)
        data["crypto"]["ciphertext"] = "zz"
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_unsupported_version(self, codec):
        data = self._record(codec)
        data["version"] = 1
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_unsupported_cipher(self, codec):
        data = self._record(codec)
        data["crypto"]["cipher"] = "aes-128-cbc"
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_unsupported_kdf(self, codec):
        data = self._record(codec)
        data["crypto"]["kdf"] = "bcrypt"
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_unsupported_prf(self, codec):
        data = self._record(codec)
        data["crypto"]["kdfparams"]["prf"] = "hmac-sha512"
        with pytest.raises(InvalidKeystoreRecord):
            codec.decrypt(data, "pw")

    def test_malformed_is_a_decryption_failure(self, codec):
        data = self._record(codec)
        data["crypto"]["kdf"] = "bcrypt"
        with pytest.raises(DecryptionFailed):
            codec.decrypt(data, "pw")

    def test_capitalised_crypto_section(self, codec):
        data = self._record(codec)
        data["Crypto"] = data.pop("crypto")
        assert codec.decrypt(data, "pw") == bytes.fromhex("46" * 32)


class TestInterop:
    def test_eth_account_reads_our_records(self, codec, private_key):
        record = codec.encrypt(private_key, "pw")

        assert bytes(EthAccount.decrypt(record.to_dict(), "pw")) == private_key

    def test_we_read_eth_account_pbkdf2_records(self, codec, private_key):
        keyfile = EthAccount.encrypt(private_key, "pw", kdf="pbkdf2", iterations=1000)

        assert codec.decrypt(json.dumps(keyfile), "pw") == private_key

    def test_we_read_eth_account_scrypt_records(self, codec, private_key):
        keyfile = EthAccount.encrypt(private_key, "pw", kdf="scrypt", iterations=16)

        assert keyfile["crypto"]["kdf"] == "scrypt"
        assert codec.decrypt(keyfile, "pw") == private_key

    def test_scrypt_wrong_password(self, codec, private_key):
        keyfile = EthAccount.encrypt(private_key, "pw", kdf="scrypt", iterations=16)

        with pytest.raises(DecryptionFailed):
            codec.decrypt(keyfile, "nope")


class TestRecordSerialization:
    def test_from_json_keeps_fields(self, codec, private_key):
        record = codec.encrypt(private_key, "pw")
        parsed = EncryptedKeyRecord.from_json(record.to_json())

        assert parsed == record

    def test_address_is_normalized(self, codec, private_key):
        data = codec.encrypt(private_key, "pw").to_dict()
        data["address"] = "0x" + data["address"].upper()

        assert EncryptedKeyRecord.from_dict(data).address == EIP155_ADDRESS[2:]


class TestKeyHelpers:
    @pytest.mark.parametrize("value", [
        EIP155_PRIVATE_KEY,
        EIP155_PRIVATE_KEY[2:],
        "  " + EIP155_PRIVATE_KEY.upper().replace("0X", "0x") + "\n",
    ])
    def test_parse_private_key(self, value):
        assert parse_private_key(value) == bytes.fromhex("46" * 32)

    @pytest.mark.parametrize("value", [
        "",
        "0x1234",
        "0x" + "zz" * 32,
        "0x" + "00" * 32,
        "0x" + "ff" * 32,
        "0x" + "46" * 33,
    ])
    def test_parse_private_key_rejects(self, value):
        with pytest.raises(ValueError):
            parse_private_key(value)

    def test_address_from_key(self):
        assert address_from_key(bytes.fromhex("46" * 32)) == EIP155_ADDRESS

    def test_generated_passwords_differ(self):
        assert generate_password() != generate_password()
        assert len(generate_password()) >= 32
