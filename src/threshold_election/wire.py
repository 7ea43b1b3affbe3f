"""Delimited text forms used at the HTTP boundary

Integers are uppercase hex. Inside the engines everything is a structured
record; these helpers are the only place the `;` and `|` joined strings exist.
"""

from __future__ import annotations

from typing import List, Tuple

from .errors import ConfigurationError
from .group import Ciphertext, from_hex, to_hex
from .proofs import (
    ChaumPedersenProof,
    ConstantChaumPedersenProof,
    DisjunctiveChaumPedersenProof,
    SchnorrProof,
)


def _parse_fields(text: str, sep: str, count: int, what: str) -> List[str]:
    if not isinstance(text, str):
        raise ConfigurationError(f"malformed {what}", f"expected a string, got {type(text).__name__}")
    parts = text.split(sep)
    if len(parts) != count:
        raise ConfigurationError(
            f"malformed {what}", f"expected {count} fields separated by '{sep}', got {len(parts)}"
        )
    return parts


def _parse_hex(parts: List[str], what: str) -> List[int]:
    try:
        return [from_hex(x) for x in parts]
    except ValueError as e:
        raise ConfigurationError(f"malformed {what}", str(e)) from e


def encode_ciphertext(ct: Ciphertext) -> str:
    return f"{to_hex(ct.pad)};{to_hex(ct.data)}"


def decode_ciphertext(text: str) -> Ciphertext:
    pad, data = _parse_hex(_parse_fields(text, ";", 2, "ciphertext"), "ciphertext")
    return Ciphertext(pad, data)


def encode_generic_proof(proof: ChaumPedersenProof) -> str:
    return ";".join(to_hex(x) for x in (proof.pad, proof.data, proof.challenge, proof.response))


def decode_generic_proof(text: str) -> ChaumPedersenProof:
    pad, data, c, v = _parse_hex(_parse_fields(text, ";", 4, "proof"), "proof")
    return ChaumPedersenProof(pad, data, c, v)


def encode_constant_proof(proof: ConstantChaumPedersenProof) -> str:
    return ";".join(
        to_hex(x) for x in (proof.pad, proof.data, proof.challenge, proof.response, proof.constant)
    )


def decode_constant_proof(text: str) -> ConstantChaumPedersenProof:
    pad, data, c, v, k = _parse_hex(_parse_fields(text, ";", 5, "constant proof"), "constant proof")
    return ConstantChaumPedersenProof(pad, data, c, v, k)


def encode_disjunctive_proof(proof: DisjunctiveChaumPedersenProof) -> str:
    return "|".join(
        [
            encode_generic_proof(proof.proof0),
            encode_generic_proof(proof.proof1),
            to_hex(proof.challenge),
        ]
    )


def decode_disjunctive_proof(text: str) -> DisjunctiveChaumPedersenProof:
    p0, p1, c = _parse_fields(text, "|", 3, "disjunctive proof")
    (challenge,) = _parse_hex([c], "disjunctive proof")
    return DisjunctiveChaumPedersenProof(decode_generic_proof(p0), decode_generic_proof(p1), challenge)


def encode_schnorr_proof(order: int, proof: SchnorrProof) -> str:
    return ";".join(
        to_hex(x)
        for x in (order, proof.public_key, proof.commitment, proof.challenge, proof.response)
    )


def decode_schnorr_proof(text: str) -> Tuple[int, SchnorrProof]:
    """Returns (coefficient order, proof)"""

    order, k, h, c, u = _parse_hex(_parse_fields(text, ";", 5, "schnorr proof"), "schnorr proof")
    return order, SchnorrProof(k, h, c, u)


def encode_backup(sender_index: int, blob: str) -> str:
    return f"{to_hex(sender_index)};{blob.upper()}"


def decode_backup(text: str) -> Tuple[int, str]:
    sender, blob = _parse_fields(text, ";", 2, "backup")
    try:
        return from_hex(sender), blob.upper()
    except ValueError as e:
        raise ConfigurationError("malformed backup", str(e)) from e
