"""
Tests for request signing.
"""

import base64
import hashlib
from urllib.parse import unquote

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from erpsync.vendor.signing import aes_key, canonical_string, generate_sign

PARAMS = {
    "app_key": "ak_test_app_id",
    "access_token": "token-1",
    "timestamp": "1700000000",
    "offset": 0,
    "length": 100,
}


def decrypt(app_id, sign):
    raw = base64.b64decode(unquote(sign))
    decryptor = Cipher(algorithms.AES(aes_key(app_id)), modes.ECB()).decryptor()
    padded = decryptor.update(raw) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")


class TestCanonicalString:
    def test_sorted_and_joined(self):
        assert canonical_string({"b": 2, "a": 1}) == "a=1&b=2"

    def test_skips_sign_and_empty(self):
        assert canonical_string({"a": 1, "sign": "x", "c": ""}) == "a=1"

    def test_value_forms(self):
        s = canonical_string({"n": None, "t": True, "f": False, "l": [1, 2], "d": {"k": "v"}})
        assert s == 'd={"k":"v"}&f=false&l=[1,2]&n=null&t=true'


class TestAesKey:
    def test_padded_to_valid_lengths(self):
        assert len(aes_key("short")) == 16
        assert len(aes_key("x" * 20)) == 24
        assert len(aes_key("x" * 28)) == 32
        assert len(aes_key("x" * 40)) == 32
        assert aes_key("x" * 16) == b"x" * 16


class TestGenerateSign:
    def test_deterministic(self):
        assert generate_sign("ak_test_app_id", PARAMS) == generate_sign("ak_test_app_id", dict(PARAMS))

    def test_order_independent(self):
        reordered = dict(reversed(list(PARAMS.items())))
        assert generate_sign("ak_test_app_id", PARAMS) == generate_sign("ak_test_app_id", reordered)

    def test_changes_with_params(self):
        other = {**PARAMS, "offset": 100}
        assert generate_sign("ak_test_app_id", PARAMS) != generate_sign("ak_test_app_id", other)

    def test_decrypts_to_uppercase_md5(self):
        sign = generate_sign("ak_test_app_id", PARAMS)
        expected = hashlib.md5(canonical_string(PARAMS).encode("utf-8")).hexdigest().upper()
        assert decrypt("ak_test_app_id", sign) == expected

    def test_url_encoded(self):
        sign = generate_sign("ak_test_app_id", PARAMS)
        for ch in "+/=":
            assert ch not in sign
