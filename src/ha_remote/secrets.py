"""Encrypted store for the hub access token and other secrets.

File layout::

    [8 bytes:  magic "HUBSECRT"]
    [1 byte:   version = 0x01]
    [12 bytes: nonce]
    [N bytes:  AES-256-GCM ciphertext + 16-byte tag]

The magic and version bytes are bound to the ciphertext as associated
data.  The key is a raw 32-byte file, created with mode ``0600``.
"""

from __future__ import annotations

import os
from pathlib import Path

import orjson
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

MAGIC = b"HUBSECRT"
VERSION = 0x01
NONCE_LEN = 12
KEY_LEN = 32
_HEADER = MAGIC + bytes([VERSION])


def _read_key(key_file: str | Path) -> bytes:
    key = Path(key_file).read_bytes()
    if len(key) != KEY_LEN:
        raise ValueError(f"Key file must be exactly {KEY_LEN} bytes, got {len(key)}")
    return key


def _write_private(path: Path, data: bytes) -> None:
    path.write_bytes(data)
    os.chmod(path, 0o600)


def init_store(store_file: str | Path, key_file: str | Path) -> None:
    """Create an empty store, generating the key file if it does not exist."""
    kf = Path(key_file)
    if not kf.exists():
        _write_private(kf, AESGCM.generate_key(bit_length=256))
    save_secrets(store_file, key_file, {})


def load_secrets(store_file: str | Path, key_file: str | Path) -> dict[str, str]:
    """Decrypt and return every stored secret."""
    data = Path(store_file).read_bytes()
    if data[:len(MAGIC)] != MAGIC:
        raise ValueError("Invalid secrets file (bad magic)")
    if data[len(MAGIC)] != VERSION:
        raise ValueError(f"Unsupported secrets file version: {data[len(MAGIC)]}")

    nonce = data[len(_HEADER):len(_HEADER) + NONCE_LEN]
    ciphertext = data[len(_HEADER) + NONCE_LEN:]
    plaintext = AESGCM(_read_key(key_file)).decrypt(nonce, ciphertext, _HEADER)
    return orjson.loads(plaintext)


def save_secrets(store_file: str | Path, key_file: str | Path, secrets: dict[str, str]) -> None:
    """Encrypt *secrets* with a fresh nonce and overwrite the store."""
    nonce = os.urandom(NONCE_LEN)
    ciphertext = AESGCM(_read_key(key_file)).encrypt(nonce, orjson.dumps(secrets), _HEADER)
    _write_private(Path(store_file), _HEADER + nonce + ciphertext)


def set_secret(store_file: str | Path, key_file: str | Path, name: str, value: str) -> None:
    secrets = load_secrets(store_file, key_file)
    secrets[name] = value
    save_secrets(store_file, key_file, secrets)


def list_secrets(store_file: str | Path, key_file: str | Path) -> list[str]:
    """Names (never values) of the stored secrets."""
    return sorted(load_secrets(store_file, key_file))
