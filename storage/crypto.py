"""
storage/crypto.py

At-rest encryption for stored collections (the patients collection when
``MN_ENCRYPT_PATIENTS`` is on). A collection is written as a single Fernet
token string instead of a JSON list; ``is_token`` tells the two apart on
load.

The key comes from APP_DATA_KEY (``Fernet.generate_key()`` output). Without
it a throwaway key is generated for the life of the process, so encrypted
collections from a previous run cannot be read back.
"""

import json
import logging
import os
from functools import lru_cache
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "APP_DATA_KEY"

# every Fernet token starts with the base64 of its 0x80 version byte
_TOKEN_PREFIX = "gAAAAA"


@lru_cache(maxsize=1)
def _cipher() -> Fernet:
    configured = os.environ.get(KEY_ENV_VAR, "").strip()
    if not configured:
        logger.warning(
            "%s is not set; using a temporary key. Encrypted collections will be unreadable after a restart.",
            KEY_ENV_VAR,
        )
        return Fernet(Fernet.generate_key())
    try:
        cipher = Fernet(configured.encode("ascii"))
    except ValueError:
        logger.error("%s is not a valid Fernet key.", KEY_ENV_VAR)
        raise
    logger.debug("Loaded data key from %s", KEY_ENV_VAR)
    return cipher


def reset_key_cache() -> None:
    """Drop the cached cipher; the next call reads APP_DATA_KEY again."""
    _cipher.cache_clear()


def encrypt_json(data: Any) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
    return _cipher().encrypt(payload).decode("ascii")


def decrypt_json(token: str) -> Any:
    """
    Raises:
        InvalidToken: Wrong key or tampered data.
    """
    try:
        payload = _cipher().decrypt(token.encode("ascii"))
    except InvalidToken:
        logger.error("Could not decrypt stored collection (wrong %s or corrupted data).", KEY_ENV_VAR)
        raise
    return json.loads(payload.decode("utf-8"))


def is_token(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(_TOKEN_PREFIX)
