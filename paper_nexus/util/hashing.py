import hashlib
import secrets


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def random_token_hex(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)
