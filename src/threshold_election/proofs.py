"""Schnorr and Chaum-Pedersen proofs (Fiat-Shamir, non-interactive)

Proofs are tagged records; each tag has one verification function and one
prover. Verification never raises for a bad proof, it returns False, and the
engines turn that into a ProofError for the request.

Challenge inputs, in order:
- Schnorr:      H(K, h)
- disjunctive:  H(Qbar, alpha, beta, a0, b0, a1, b1)
- constant:     H(Qbar, alpha, beta, a, b)
- decryption:   H(Qbar, alpha, beta, a, b, M)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from .group import (
    Ciphertext,
    add_q,
    g_pow_p,
    hash_elems,
    is_valid_exponent,
    is_valid_residue,
    mult_p,
    pow_p,
    rand_q,
)

logger = logging.getLogger(__name__)


class ProofKind(Enum):
    SCHNORR = "schnorr"
    GENERIC = "generic"
    DISJUNCTIVE = "disjunctive"
    CONSTANT = "constant"


@dataclass(frozen=True)
class SchnorrProof:
    """Knowledge of the discrete log of `public_key`; `commitment` is h = g^r"""

    public_key: int
    commitment: int
    challenge: int
    response: int

    kind: ClassVar[ProofKind] = ProofKind.SCHNORR


@dataclass(frozen=True)
class ChaumPedersenProof:
    pad: int
    data: int
    challenge: int
    response: int

    kind: ClassVar[ProofKind] = ProofKind.GENERIC


@dataclass(frozen=True)
class DisjunctiveChaumPedersenProof:
    proof0: ChaumPedersenProof
    proof1: ChaumPedersenProof
    challenge: int

    kind: ClassVar[ProofKind] = ProofKind.DISJUNCTIVE


@dataclass(frozen=True)
class ConstantChaumPedersenProof:
    pad: int
    data: int
    challenge: int
    response: int
    constant: int

    kind: ClassVar[ProofKind] = ProofKind.CONSTANT


# ---------------------------------------------------------------------------
# Verification


def verify_schnorr(proof: SchnorrProof) -> bool:
    """Accept iff g^u == h * K^c with c = H(K, h)

    Args
    - proof: Schnorr proof carrying its own public key K

    Returns: True when the proof is valid
    """

    k, h, u = proof.public_key, proof.commitment, proof.response
    if not (is_valid_residue(k) and is_valid_residue(h) and is_valid_exponent(u)):
        logger.debug("schnorr proof has out-of-group values")
        return False
    c = hash_elems(k, h)
    if c != proof.challenge:
        logger.debug("schnorr challenge mismatch")
        return False
    return g_pow_p(u) == mult_p(h, pow_p(k, c))


def verify_disjunctive(
    proof: DisjunctiveChaumPedersenProof,
    ciphertext: Ciphertext,
    public_key: int,
    extended_base_hash: int,
) -> bool:
    """Accept iff the ciphertext encrypts 0 or 1 under `public_key`"""

    alpha, beta = ciphertext.pad, ciphertext.data
    p0, p1 = proof.proof0, proof.proof1
    a0, b0, c0, v0 = p0.pad, p0.data, p0.challenge, p0.response
    a1, b1, c1, v1 = p1.pad, p1.data, p1.challenge, p1.response

    in_bounds = (
        is_valid_residue(alpha)
        and is_valid_residue(beta)
        and all(is_valid_residue(x) for x in (a0, b0, a1, b1))
        and all(is_valid_exponent(x) for x in (c0, v0, c1, v1))
    )
    if not in_bounds:
        logger.debug("disjunctive proof has out-of-group values")
        return False

    c = hash_elems(extended_base_hash, alpha, beta, a0, b0, a1, b1)
    if c != proof.challenge or add_q(c0, c1) != c:
        logger.debug("disjunctive challenge mismatch")
        return False

    return (
        g_pow_p(v0) == mult_p(a0, pow_p(alpha, c0))
        and pow_p(public_key, v0) == mult_p(b0, pow_p(beta, c0))
        and g_pow_p(v1) == mult_p(a1, pow_p(alpha, c1))
        and mult_p(g_pow_p(c1), pow_p(public_key, v1)) == mult_p(b1, pow_p(beta, c1))
    )


def verify_constant(
    proof: ConstantChaumPedersenProof,
    ciphertext: Ciphertext,
    public_key: int,
    extended_base_hash: int,
    expected_constant: int | None = None,
) -> bool:
    """Accept iff the ciphertext encrypts `proof.constant`

    When `expected_constant` is given the proof must also claim exactly that
    constant, which is how a contest's selection limit is enforced.
    """

    if expected_constant is not None and proof.constant != expected_constant:
        logger.debug(
            "constant proof claims %s, expected %s", proof.constant, expected_constant
        )
        return False

    alpha, beta = ciphertext.pad, ciphertext.data
    a, b, c, v = proof.pad, proof.data, proof.challenge, proof.response
    in_bounds = (
        is_valid_residue(alpha)
        and is_valid_residue(beta)
        and is_valid_residue(a)
        and is_valid_residue(b)
        and is_valid_exponent(c)
        and is_valid_exponent(v)
        and proof.constant >= 0
    )
    if not in_bounds:
        logger.debug("constant proof has out-of-group values")
        return False

    if hash_elems(extended_base_hash, alpha, beta, a, b) != c:
        logger.debug("constant challenge mismatch")
        return False

    return g_pow_p(v) == mult_p(a, pow_p(alpha, c)) and mult_p(
        g_pow_p(c * proof.constant), pow_p(public_key, v)
    ) == mult_p(b, pow_p(beta, c))


def verify_generic(
    proof: ChaumPedersenProof,
    ciphertext: Ciphertext,
    public_key: int,
    share: int,
    extended_base_hash: int,
) -> bool:
    """Accept iff log_g(public_key) == log_alpha(share)

    Used for partial decryptions (public_key is the trustee's primary key) and
    for compensations (public_key is the recovery key for the missing trustee).
    """

    alpha, beta = ciphertext.pad, ciphertext.data
    a, b, c, v = proof.pad, proof.data, proof.challenge, proof.response
    in_bounds = (
        is_valid_residue(alpha)
        and is_valid_residue(beta)
        and is_valid_residue(share)
        and is_valid_residue(a)
        and is_valid_residue(b)
        and is_valid_exponent(c)
        and is_valid_exponent(v)
    )
    if not in_bounds:
        logger.debug("decryption proof has out-of-group values")
        return False

    if hash_elems(extended_base_hash, alpha, beta, a, b, share) != c:
        logger.debug("decryption challenge mismatch")
        return False

    return g_pow_p(v) == mult_p(a, pow_p(public_key, c)) and pow_p(alpha, v) == mult_p(
        b, pow_p(share, c)
    )


_VERIFIERS = {
    ProofKind.SCHNORR: verify_schnorr,
    ProofKind.GENERIC: verify_generic,
    ProofKind.DISJUNCTIVE: verify_disjunctive,
    ProofKind.CONSTANT: verify_constant,
}


def verify_proof(proof, *args, **kwargs) -> bool:
    """Dispatch on the proof's tag; remaining arguments go to the verifier"""

    return _VERIFIERS[proof.kind](proof, *args, **kwargs)


# ---------------------------------------------------------------------------
# Construction (clients, tests and the automated trustee)


def make_schnorr_proof(secret: int, nonce: int | None = None) -> SchnorrProof:
    r = nonce if nonce is not None else rand_q()
    k = g_pow_p(secret)
    h = g_pow_p(r)
    c = hash_elems(k, h)
    u = add_q(r, c * secret)
    return SchnorrProof(public_key=k, commitment=h, challenge=c, response=u)


def make_disjunctive_proof(
    ciphertext: Ciphertext,
    nonce: int,
    public_key: int,
    extended_base_hash: int,
    plaintext: int,
    seed: int | None = None,
) -> DisjunctiveChaumPedersenProof:
    """Prove that `ciphertext` = Enc(plaintext, nonce) with plaintext in {0, 1}

    The branch for the true plaintext is proven honestly; the other branch is
    simulated from a random challenge and response.

    Args
    - ciphertext: (alpha, beta) = (g^r, g^m K^r)
    - nonce: r
    - public_key: K
    - extended_base_hash: Qbar
    - plaintext: m, 0 or 1
    - seed: optional fixed witness for reproducible proofs
    """

    if plaintext not in (0, 1):
        raise ValueError("disjunctive proof only covers plaintexts 0 and 1")

    alpha, beta = ciphertext.pad, ciphertext.data
    u = seed if seed is not None else rand_q()
    c_sim = rand_q()
    v_sim = rand_q()

    if plaintext == 0:
        a0, b0 = g_pow_p(u), pow_p(public_key, u)
        a1 = mult_p(g_pow_p(v_sim), pow_p(alpha, -c_sim))
        b1 = mult_p(g_pow_p(c_sim), pow_p(public_key, v_sim), pow_p(beta, -c_sim))
        c = hash_elems(extended_base_hash, alpha, beta, a0, b0, a1, b1)
        c0 = add_q(c, -c_sim)
        v0 = add_q(u, c0 * nonce)
        proof0 = ChaumPedersenProof(a0, b0, c0, v0)
        proof1 = ChaumPedersenProof(a1, b1, c_sim, v_sim)
    else:
        a0 = mult_p(g_pow_p(v_sim), pow_p(alpha, -c_sim))
        b0 = mult_p(pow_p(public_key, v_sim), pow_p(beta, -c_sim))
        a1, b1 = g_pow_p(u), pow_p(public_key, u)
        c = hash_elems(extended_base_hash, alpha, beta, a0, b0, a1, b1)
        c1 = add_q(c, -c_sim)
        v1 = add_q(u, c1 * nonce)
        proof0 = ChaumPedersenProof(a0, b0, c_sim, v_sim)
        proof1 = ChaumPedersenProof(a1, b1, c1, v1)

    return DisjunctiveChaumPedersenProof(proof0=proof0, proof1=proof1, challenge=c)


def make_constant_proof(
    ciphertext: Ciphertext,
    nonce: int,
    public_key: int,
    extended_base_hash: int,
    constant: int,
    seed: int | None = None,
) -> ConstantChaumPedersenProof:
    """Prove that `ciphertext` encrypts `constant`; `nonce` is the aggregate nonce"""

    u = seed if seed is not None else rand_q()
    a = g_pow_p(u)
    b = pow_p(public_key, u)
    c = hash_elems(extended_base_hash, ciphertext.pad, ciphertext.data, a, b)
    v = add_q(u, c * nonce)
    return ConstantChaumPedersenProof(pad=a, data=b, challenge=c, response=v, constant=constant)


def make_generic_proof(
    ciphertext: Ciphertext,
    secret: int,
    share: int,
    extended_base_hash: int,
    seed: int | None = None,
) -> ChaumPedersenProof:
    """Prove that share = alpha^secret for the key g^secret"""

    u = seed if seed is not None else rand_q()
    a = g_pow_p(u)
    b = pow_p(ciphertext.pad, u)
    c = hash_elems(extended_base_hash, ciphertext.pad, ciphertext.data, a, b, share)
    v = add_q(u, c * secret)
    return ChaumPedersenProof(pad=a, data=b, challenge=c, response=v)


__all__ = [
    "ProofKind",
    "SchnorrProof",
    "ChaumPedersenProof",
    "DisjunctiveChaumPedersenProof",
    "ConstantChaumPedersenProof",
    "verify_schnorr",
    "verify_disjunctive",
    "verify_constant",
    "verify_generic",
    "verify_proof",
    "make_schnorr_proof",
    "make_disjunctive_proof",
    "make_constant_proof",
    "make_generic_proof",
]
