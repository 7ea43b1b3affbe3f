"""Auxiliary transport keys used to encrypt key backups between trustees

A trustee publishes an X25519 public key during AUX_KEYS. Each backup is
sealed to the recipient with an ephemeral key: ECDH, HKDF-SHA256, AES-GCM.
The sealed blob is ephemeral public key (32 bytes) || nonce (12) || ciphertext,
hex encoded. Sender and recipient indices are bound as associated data.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import ConfigurationError, ProofError

_INFO = b"threshold-election-backup"
_KEY_LEN = 32
_NONCE_LEN = 12


def generate_aux_key() -> X25519PrivateKey:
    return X25519PrivateKey.generate()


def public_key_hex(private_key: X25519PrivateKey) -> str:
    raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )
    return raw.hex().upper()


def load_public_key(key_hex: str) -> X25519PublicKey:
    try:
        raw = bytes.fromhex(key_hex)
        return X25519PublicKey.from_public_bytes(raw)
    except ValueError as e:
        raise ConfigurationError("malformed auxiliary key", str(e)) from e


def _derive(shared: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=_KEY_LEN, salt=None, info=_INFO).derive(shared)


def _aad(sender_index: int, recipient_index: int) -> bytes:
    return f"{sender_index};{recipient_index}".encode()


def seal(recipient_key_hex: str, plaintext: bytes, sender_index: int, recipient_index: int) -> str:
    recipient = load_public_key(recipient_key_hex)
    ephemeral = X25519PrivateKey.generate()
    key = _derive(ephemeral.exchange(recipient))
    nonce = os.urandom(_NONCE_LEN)
    ct = AESGCM(key).encrypt(nonce, plaintext, _aad(sender_index, recipient_index))
    eph_raw = ephemeral.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )
    return (eph_raw + nonce + ct).hex().upper()


def unseal(
    private_key: X25519PrivateKey, blob_hex: str, sender_index: int, recipient_index: int
) -> bytes:
    try:
        blob = bytes.fromhex(blob_hex)
    except ValueError as e:
        raise ConfigurationError("malformed backup", str(e)) from e
    if len(blob) <= 32 + _NONCE_LEN:
        raise ConfigurationError("malformed backup", "sealed blob too short")

    nonce = blob[32 : 32 + _NONCE_LEN]
    try:
        eph = X25519PublicKey.from_public_bytes(blob[:32])
        key = _derive(private_key.exchange(eph))
    except ValueError as e:
        raise ProofError(f"backup from trustee {sender_index} has a bad ephemeral key", str(e)) from e
    try:
        return AESGCM(key).decrypt(nonce, blob[32 + _NONCE_LEN :], _aad(sender_index, recipient_index))
    except InvalidTag:
        raise ProofError(
            f"backup from trustee {sender_index} to trustee {recipient_index} failed to decrypt"
        ) from None
