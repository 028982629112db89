"""Encryption of platform credentials at rest.

OAuth access/refresh tokens and client secrets are stored as

    ENC:v1:<base64(nonce || ciphertext || tag)>

using AES-GCM with a key derived from ``settings.secret_key`` via HKDF-SHA256.
Values without the prefix are treated as legacy plain text and returned
unchanged by :func:`decrypt`.
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from stocksync.config import settings


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12
_KEY_SIZE = 32


def _get_key() -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"stocksync-credential-encryption",
    )
    return hkdf.derive(settings.secret_key.encode("utf-8"))


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(_PREFIX)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None
    if is_encrypted(plaintext):
        return plaintext

    nonce = os.urandom(_NONCE_SIZE)
    ct = AESGCM(_get_key()).encrypt(nonce, str(plaintext).encode("utf-8"), associated_data=None)
    return _PREFIX + base64.b64encode(nonce + ct).decode("ascii")


def decrypt(value: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by :func:`encrypt`.

    Plain-text values pass through. A blob that fails authentication (e.g.
    after a secret rotation) is logged and returned as ``None`` so callers
    treat the credential as missing and ask the user to reconnect.
    """
    if value is None or not is_encrypted(value):
        return value

    try:
        raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        return AESGCM(_get_key()).decrypt(nonce, ct, associated_data=None).decode("utf-8")
    except (InvalidTag, ValueError) as e:
        from stocksync.utils.logger import logger
        logger.error(f"Credential decryption failed: {type(e).__name__}")
        return None
