"""Authenticated encryption of per-account secret bundles.

A bundle is serialised to JSON, sealed with AES-256-GCM under a fresh random
96-bit nonce, and stored as ``base64(nonce || ciphertext || tag)`` in
``Account.encrypted_secret``. The 32-byte key lives only in the OS secret
store (see :mod:`launchauth.credentials.secret_store`), never in the accounts file.

Decryption fails closed: bad base64, truncation, a flipped bit, or the wrong
key all raise :class:`~launchauth.exceptions.CodecError` and never return a
partially decoded bundle.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from typing import TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ValidationError

from launchauth.exceptions import CodecError
from launchauth.models import SecretBundle

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

M = TypeVar("M", bound=BaseModel)


def random_key() -> bytes:
    """Return a new random 256-bit key."""
    return secrets.token_bytes(KEY_SIZE)


def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_SIZE:
        raise CodecError(f"invalid key size {len(key)}, expected {KEY_SIZE} bytes")
    return AESGCM(key)


def encrypt(bundle: BaseModel, key: bytes) -> str:
    """Encrypt *bundle* with *key* and return base64 text.

    Raises:
        CodecError: If the key is not 32 bytes long.
    """
    plaintext = bundle.model_dump_json(by_alias=True).encode("utf-8")
    nonce = secrets.token_bytes(NONCE_SIZE)
    sealed = _cipher(key).encrypt(nonce, plaintext, None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(ciphertext: str, key: bytes, model: type[M] = SecretBundle) -> M:  # type: ignore[assignment]
    """Decrypt base64 *ciphertext* with *key* into an instance of *model*.

    Raises:
        CodecError: On malformed input, tampering, truncation or a wrong key.
    """
    try:
        raw = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CodecError(f"cannot decode encrypted secret: {exc}") from exc

    # b64decode ignores unused trailing bits; reject non-canonical text so
    # that every change to the stored string is detected.
    if base64.b64encode(raw).decode("ascii") != ciphertext:
        raise CodecError("cannot decode encrypted secret: non-canonical encoding")

    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise CodecError("encrypted secret is truncated")

    nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plaintext = _cipher(key).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise CodecError("cannot decrypt secret: integrity check failed") from exc

    try:
        return model.model_validate_json(plaintext)
    except ValidationError as exc:
        raise CodecError(f"cannot parse decrypted secret: {exc}") from exc
