from __future__ import annotations

import json
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken


OAUTH_STATE_TTL_SECONDS = 15 * 60


@lru_cache(maxsize=4)
def _get_cipher(key: str) -> Fernet:
    return Fernet(key.encode("utf-8"))


def encrypt_token(key: str, value: str) -> str:
    return _get_cipher(key).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_token(key: str, value: str) -> str:
    try:
        decrypted = _get_cipher(key).decrypt(value.encode("utf-8"))
    except InvalidToken as exc:
        raise ValueError("Stored token cannot be decrypted with the configured key") from exc
    return decrypted.decode("utf-8")


def encode_oauth_state(key: str, payload: dict[str, str]) -> str:
    serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return _get_cipher(key).encrypt(serialized).decode("utf-8")


def decode_oauth_state(key: str, token: str, *, ttl: int = OAUTH_STATE_TTL_SECONDS) -> dict[str, str]:
    try:
        decrypted = _get_cipher(key).decrypt(token.encode("utf-8"), ttl=ttl)
    except InvalidToken as exc:
        raise ValueError("Invalid or expired OAuth state token") from exc
    data = json.loads(decrypted.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Invalid OAuth state payload")
    return {str(k): str(v) for k, v in data.items()}
