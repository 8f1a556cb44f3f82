"""
Request signing for the LingXing open API.

The signature is a pure function of the app id and the full parameter set
(business params plus access_token, app_key and timestamp):

    1. Merge app_key and timestamp into the params when absent.
    2. Drop `sign` and every empty-string value (None is kept as `null`).
    3. Sort keys by code point and join as `key1=value1&key2=value2`,
       JSON-encoding lists and dicts.
    4. Upper-case MD5 hex digest of that string.
    5. AES/ECB/PKCS7 encrypt the digest, keyed by the (padded) app id.
    6. Base64, then percent-encode for transport.

Example:
    >>> from lxapi._signing import generate_sign
    >>> sign = generate_sign("my-app-id", {"access_token": token, "offset": 0, "length": 20})
"""

from __future__ import annotations

import base64
import hashlib
import json
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# Characters left unescaped by JavaScript's encodeURIComponent.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def current_timestamp() -> str:
    """Unix timestamp in whole seconds, as sent in the `timestamp` parameter."""
    return str(int(time.time()))


def serialize_value(value: Any) -> str:
    """
    Render one parameter value as it appears in the string to sign.

    Lists and dicts become compact JSON, None becomes `null`, booleans
    become `true`/`false`, everything else its string form.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_sign_string(params: Mapping[str, Any]) -> str:
    """
    Build the canonical `key=value&...` string from already merged params.

    Example:
        >>> build_sign_string({"b": [1, 2], "a": "x", "sign": "old", "c": ""})
        'a=x&b=[1,2]'
    """
    keys = sorted(k for k, v in params.items() if k != "sign" and not (isinstance(v, str) and v == ""))
    return "&".join(f"{key}={serialize_value(params[key])}" for key in keys)


def pad_aes_key(app_id: str) -> bytes:
    """
    Derive the AES key from the app id.

    Shorter than 16 bytes is right-padded with '0' to 16; strictly between 16
    and 24 is padded to 24; strictly between 24 and 32 is padded to 32;
    longer than 32 is truncated to 32. Exact 16/24/32 byte keys are used as is.
    """
    key = app_id.encode("utf-8")
    size = len(key)
    if size < 16:
        return key.ljust(16, b"0")
    if 16 < size < 24:
        return key.ljust(24, b"0")
    if 24 < size < 32:
        return key.ljust(32, b"0")
    if size > 32:
        return key[:32]
    return key


def _aes_ecb_encrypt(plaintext: bytes, key: bytes) -> bytes:
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def generate_sign(app_id: str, params: Mapping[str, Any] | None = None, timestamp: str | None = None) -> str:
    """
    Compute the `sign` parameter for a request.

    Args:
        app_id: The app id; used as `app_key` and as the AES key.
        params: Every parameter of the request (business params plus
            access_token/app_key/timestamp when already known).
        timestamp: Timestamp to merge when params carry none. Defaults to now.

    Returns:
        The percent-encoded signature.
    """
    assert app_id, "app_id cannot be empty."

    merged: dict[str, Any] = dict(params or {})
    if not merged.get("app_key"):
        merged["app_key"] = app_id
    if not merged.get("timestamp"):
        merged["timestamp"] = timestamp or current_timestamp()

    digest = hashlib.md5(build_sign_string(merged).encode("utf-8")).hexdigest().upper()
    ciphertext = _aes_ecb_encrypt(digest.encode("utf-8"), pad_aes_key(app_id))
    return quote(base64.b64encode(ciphertext).decode("ascii"), safe=_URI_COMPONENT_SAFE)
