"""Tests for RSA-OAEP key wrapping."""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from dotveil_engine.asymmetric import (
    RsaKeyWrap,
    load_public_key,
    max_payload_size,
    public_key_from_private,
)
from dotveil_engine.crypto import SecureKey
from dotveil_engine.errors import WrapError


class TestRsaKeyWrap:
    def test_round_trip(self, keypairs):
        pair = keypairs["a"]
        key = SecureKey.generate().as_bytes()
        wrapped = RsaKeyWrap.wrap(key, pair.public_key)
        assert wrapped != key
        assert len(wrapped) == 512
        assert RsaKeyWrap.unwrap(wrapped, pair.private_key) == key

    def test_wrap_is_randomized(self, keypairs):
        key = SecureKey.generate().as_bytes()
        assert RsaKeyWrap.wrap(key, keypairs["a"].public_key) != RsaKeyWrap.wrap(
            key, keypairs["a"].public_key
        )

    def test_max_payload(self, keypairs):
        limit = max_payload_size(4096)
        assert limit == 446
        RsaKeyWrap.wrap(b"\x01" * limit, keypairs["a"].public_key)
        with pytest.raises(WrapError):
            RsaKeyWrap.wrap(b"\x01" * (limit + 1), keypairs["a"].public_key)

    def test_wrong_private_key(self, keypairs):
        wrapped = RsaKeyWrap.wrap(b"project-key", keypairs["a"].public_key)
        with pytest.raises(WrapError):
            RsaKeyWrap.unwrap(wrapped, keypairs["b"].private_key)

    def test_malformed_ciphertext(self, keypairs):
        with pytest.raises(WrapError):
            RsaKeyWrap.unwrap(b"\x00" * 10, keypairs["a"].private_key)
        wrapped = bytearray(RsaKeyWrap.wrap(b"project-key", keypairs["a"].public_key))
        wrapped[100] ^= 0xFF
        with pytest.raises(WrapError):
            RsaKeyWrap.unwrap(bytes(wrapped), keypairs["a"].private_key)

    def test_malformed_public_key(self):
        with pytest.raises(WrapError):
            RsaKeyWrap.wrap(b"project-key", "-----BEGIN PUBLIC KEY-----\nnope\n-----END PUBLIC KEY-----\n")

    def test_small_public_key_rejected(self):
        small = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        pem = small.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode("ascii")
        with pytest.raises(WrapError):
            load_public_key(pem)

    def test_public_key_from_private(self, keypairs):
        pair = keypairs["c"]
        assert public_key_from_private(pair.private_key) == pair.public_key
