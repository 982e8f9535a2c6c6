"""Summary: Authenticated encryption for stored integration credentials.

Importance: Keeps OAuth tokens and PATs unreadable and tamper-evident at rest.
Alternatives: Use a dedicated secrets manager or an AEAD cipher from a crypto library.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets


NONCE_BYTES = 12
TAG_BYTES = 16


class TokenCodec:
    """Summary: Encrypts credentials into ``nonce:tag:ciphertext`` strings.

    Importance: Provides one format for every credential column.
    Alternatives: Store credentials in plaintext behind database access controls.
    """

    def __init__(self, secret: str) -> None:
        """Summary: Derive key material from the configured secret.

        Importance: A 64-character hex key is used as raw bytes; any other value as UTF-8.
        Alternatives: Require a binary key file.
        """

        self._secret = _key_bytes(secret)

    def encode(self, plaintext: str) -> str:
        self._require_key()
        nonce = secrets.token_bytes(NONCE_BYTES)
        raw = plaintext.encode("utf-8")
        key = _keystream(self._secret, nonce, len(raw))
        ciphertext = bytes([b ^ k for b, k in zip(raw, key)])
        tag = _tag(self._secret, nonce, ciphertext)
        return ":".join(_b64(part) for part in (nonce, tag, ciphertext))

    def decode(self, payload: str) -> str:
        """Summary: Decrypt a payload produced by ``encode``.

        Importance: Rejects tampered or foreign payloads with ValueError.
        Alternatives: Return None for unreadable payloads.
        """

        self._require_key()
        parts = payload.split(":")
        if len(parts) != 3:
            raise ValueError("Invalid encrypted payload format")
        nonce, tag, ciphertext = (base64.b64decode(part) for part in parts)
        expected = _tag(self._secret, nonce, ciphertext)
        if not hmac.compare_digest(tag, expected):
            raise ValueError("Encrypted payload failed authentication")
        key = _keystream(self._secret, nonce, len(ciphertext))
        return bytes([b ^ k for b, k in zip(ciphertext, key)]).decode("utf-8")

    def decode_if_encoded(self, value: str | None) -> str | None:
        if value is None or ":" not in value:
            return value
        return self.decode(value)

    def _require_key(self) -> None:
        if not self._secret:
            raise ValueError("ENCRYPTION_KEY is not configured")


def _key_bytes(secret: str) -> bytes:
    if len(secret) == 64:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass
    return secret.encode("utf-8")


def _keystream(secret: bytes, nonce: bytes, length: int) -> bytes:
    output = b""
    counter = 0
    while len(output) < length:
        output += hashlib.sha256(secret + nonce + counter.to_bytes(4, "big")).digest()
        counter += 1
    return output[:length]


def _tag(secret: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    return hmac.new(secret, nonce + ciphertext, hashlib.sha256).digest()[:TAG_BYTES]


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")
