"""Signed requests and encrypted responses for the papers proxy.

A browser asks the proxy for catalog data with three headers:

  X-Request-Token      32 random bytes, hex
  X-Request-Timestamp  unix milliseconds
  X-Request-Signature  hex HMAC-SHA256 over "{token}:{timestamp}" with the shared key

Requests whose timestamp is more than `window_ms` away from the server clock are
rejected even when the signature is correct, which bounds how long a captured
request can be replayed.

Responses are JSON, encrypted with Fernet under a key derived from the same
shared secret (PBKDF2-SHA256), then wrapped as base64 JSON `{"v": "1", "d": ...}`.
Fernet tokens carry their creation time, so the reader enforces a max age.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

HEADER_TOKEN = "X-Request-Token"
HEADER_TIMESTAMP = "X-Request-Timestamp"
HEADER_SIGNATURE = "X-Request-Signature"

DEFAULT_WINDOW_MS = 30_000
DEFAULT_SALT = "papernexus-salt"
KDF_ITERATIONS = 100_000
WRAPPER_VERSION = "1"


class ResponseDecryptionError(Exception):
    """Encrypted payload is malformed, tampered with, under another key, or too old."""


@dataclass(frozen=True)
class SignedRequest:
    token: str
    timestamp: int
    signature: str

    def to_headers(self) -> Dict[str, str]:
        return {
            HEADER_TOKEN: self.token,
            HEADER_TIMESTAMP: str(self.timestamp),
            HEADER_SIGNATURE: self.signature,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


def sign(token: str, timestamp: int, key: str) -> str:
    message = f"{token}:{int(timestamp)}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def create_signed_request(key: str, *, now_ms: Optional[int] = None) -> SignedRequest:
    if not key:
        raise ValueError("signature_key_blank")
    token = secrets.token_hex(32)
    timestamp = _now_ms() if now_ms is None else int(now_ms)
    return SignedRequest(token=token, timestamp=timestamp, signature=sign(token, timestamp, key))


def validate_signed_request(
    token: Optional[str],
    timestamp: Any,
    signature: Optional[str],
    key: Optional[str],
    *,
    window_ms: int = DEFAULT_WINDOW_MS,
    now_ms: Optional[int] = None,
) -> bool:
    """True only for a fresh request signed with `key`. Never raises."""
    if not key or not token or not signature:
        return False
    try:
        ts = int(str(timestamp).strip())
    except (TypeError, ValueError):
        return False

    now = _now_ms() if now_ms is None else int(now_ms)
    if abs(now - ts) > int(window_ms):
        return False

    sig = signature.strip().lower()
    # compare_digest rejects non-ASCII str with TypeError.
    if not sig.isascii():
        return False
    return hmac.compare_digest(sign(token, ts, key), sig)


@lru_cache(maxsize=8)
def _fernet(key: str, salt: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode("utf-8"),
        iterations=KDF_ITERATIONS,
    )
    derived = kdf.derive(key.encode("utf-8"))
    return Fernet(base64.urlsafe_b64encode(derived))


def encrypt_response(data: Any, key: str, *, salt: str = DEFAULT_SALT) -> str:
    if not key:
        raise ValueError("signature_key_blank")
    token = _fernet(key, salt).encrypt(json.dumps(data).encode("utf-8"))
    wrapper = {"v": WRAPPER_VERSION, "d": token.decode("ascii")}
    return base64.b64encode(json.dumps(wrapper).encode("utf-8")).decode("ascii")


def decrypt_response(
    payload: str,
    key: str,
    *,
    salt: str = DEFAULT_SALT,
    max_age_seconds: Optional[int] = 30,
) -> Any:
    if not key:
        raise ResponseDecryptionError("signature key is not set")
    try:
        wrapper = json.loads(base64.b64decode(payload, validate=True))
        if not isinstance(wrapper, dict) or wrapper.get("v") != WRAPPER_VERSION:
            raise ResponseDecryptionError("unsupported payload")
        plain = _fernet(key, salt).decrypt(str(wrapper["d"]).encode("ascii"), ttl=max_age_seconds)
        return json.loads(plain)
    except ResponseDecryptionError:
        raise
    except (InvalidToken, ValueError, KeyError, TypeError) as e:
        raise ResponseDecryptionError("Failed to decrypt response") from e
