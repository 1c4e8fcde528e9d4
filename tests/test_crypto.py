"""Tests for AES-256-GCM primitives and text encodings."""

import pytest

from dotveil_engine.crypto import (
    AES_256_KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    AesGcmCipher,
    EncryptedData,
    SecureKey,
    content_digest,
    digests_match,
    from_base64,
    from_hex,
    to_base64,
    to_hex,
)
from dotveil_engine.errors import AuthenticationError, SerializationError


class TestSecureKey:
    def test_generate_length(self):
        assert len(SecureKey.generate()) == AES_256_KEY_SIZE

    def test_generated_keys_unique(self):
        keys = {SecureKey.generate().as_bytes() for _ in range(10)}
        assert len(keys) == 10

    def test_repr_is_redacted(self):
        key = SecureKey.generate()
        assert "REDACTED" in repr(key)
        assert key.to_hex() not in repr(key)

    def test_hex_round_trip(self):
        key = SecureKey.generate()
        assert SecureKey.from_hex(key.to_hex()) == key

    def test_rejects_non_bytes(self):
        with pytest.raises(TypeError):
            SecureKey("not bytes")  # type: ignore[arg-type]


class TestAesGcmCipher:
    def test_round_trip(self):
        key = SecureKey.generate()
        for plaintext in (b"", b"x", b"API_KEY=abc\n" * 200):
            encrypted = AesGcmCipher.encrypt(key, plaintext)
            assert AesGcmCipher.decrypt(key, encrypted) == plaintext

    def test_ciphertext_includes_tag(self):
        key = SecureKey.generate()
        encrypted = AesGcmCipher.encrypt(key, b"hello")
        assert len(encrypted.nonce) == NONCE_SIZE
        assert len(encrypted.ciphertext) == len(b"hello") + TAG_SIZE

    def test_fresh_nonce_per_call(self):
        key = SecureKey.generate()
        nonces = {AesGcmCipher.encrypt(key, b"same").nonce for _ in range(50)}
        assert len(nonces) == 50

    def test_every_bit_flip_detected(self):
        key = SecureKey.generate()
        encrypted = AesGcmCipher.encrypt(key, b"DB_PASSWORD=hunter2")
        for i in range(len(encrypted.ciphertext) * 8):
            tampered = bytearray(encrypted.ciphertext)
            tampered[i // 8] ^= 1 << (i % 8)
            with pytest.raises(AuthenticationError):
                AesGcmCipher.decrypt(key, EncryptedData(encrypted.nonce, bytes(tampered)))

    def test_nonce_flip_detected(self):
        key = SecureKey.generate()
        encrypted = AesGcmCipher.encrypt(key, b"payload")
        nonce = bytearray(encrypted.nonce)
        nonce[0] ^= 0x01
        with pytest.raises(AuthenticationError):
            AesGcmCipher.decrypt(key, EncryptedData(bytes(nonce), encrypted.ciphertext))

    def test_wrong_key_always_fails(self):
        key = SecureKey.generate()
        encrypted = AesGcmCipher.encrypt(key, b"payload")
        for _ in range(100):
            with pytest.raises(AuthenticationError):
                AesGcmCipher.decrypt(SecureKey.generate(), encrypted)

    def test_aad_must_match(self):
        key = SecureKey.generate()
        encrypted = AesGcmCipher.encrypt(key, b"payload", b"context-a")
        with pytest.raises(AuthenticationError):
            AesGcmCipher.decrypt(key, encrypted, b"context-b")

    def test_truncated_ciphertext(self):
        key = SecureKey.generate()
        encrypted = AesGcmCipher.encrypt(key, b"payload")
        with pytest.raises(AuthenticationError):
            AesGcmCipher.decrypt(key, EncryptedData(encrypted.nonce, encrypted.ciphertext[:4]))

    def test_invalid_key_size(self):
        with pytest.raises(ValueError):
            AesGcmCipher.encrypt(SecureKey(b"short"), b"payload")


class TestEncodings:
    def test_hex_and_base64(self):
        data = bytes(range(256))
        assert from_hex(to_hex(data)) == data
        assert from_base64(to_base64(data)) == data

    def test_bad_hex(self):
        with pytest.raises(SerializationError):
            from_hex("zz")

    def test_bad_base64(self):
        with pytest.raises(SerializationError):
            from_base64("not base64!")

    def test_digest(self):
        digest = content_digest(b"ciphertext")
        assert len(digest) == 64
        assert digests_match(digest, digest.upper())
        assert not digests_match(digest, content_digest(b"ciphertexT"))
