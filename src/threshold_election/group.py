"""Safe-prime group arithmetic, exponential ElGamal and hashing

Everything above this module works on plain Python ints: elements of the
order-q subgroup of Z_p^* and exponents mod q. The group is the RFC 3526
2048-bit MODP group (p = 2q + 1, g = 2), which the rest of the package treats
as fixed.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from math import ceil, isqrt
from typing import Iterable, Sequence

# RFC 3526 2048-bit MODP Group (Group 14) prime p
# Source for prime: https://datatracker.ietf.org/doc/html/rfc3526
_P_HEX = (
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE65381"
    "FFFFFFFFFFFFFFFF"
)


@dataclass(frozen=True)
class GroupParams:
    """Group params

    Attributes
    - p: safe prime modulus
    - q: large prime such that p = 2q + 1
    - g: generator of the subgroup of order q (here: g=2)
    """

    p: int
    q: int
    g: int


def default_params() -> GroupParams:
    """Return the RFC 3526 group-14 parameters with q = (p-1)//2"""

    p = int(_P_HEX, 16)
    return GroupParams(p=p, q=(p - 1) // 2, g=2)


PARAMS = default_params()
P = PARAMS.p
Q = PARAMS.q
G = PARAMS.g


def rand_q() -> int:
    """Return a random scalar in [1 to q-1]"""

    return secrets.randbelow(Q - 1) + 1


def g_pow_p(e: int) -> int:
    return pow(G, e % Q, P)


def pow_p(base: int, e: int) -> int:
    # exponents live in Z_q; negative ones are folded the same way
    return pow(base, e % Q, P)


def mult_p(*elems: int) -> int:
    out = 1
    for e in elems:
        out = (out * e) % P
    return out


def div_p(a: int, b: int) -> int:
    """a / b mod p, with the inverse taken by Fermat: b^(p-2)"""

    return (a * pow(b, P - 2, P)) % P


def add_q(*elems: int) -> int:
    return sum(elems) % Q


def is_valid_residue(x: int) -> bool:
    """True when x is a member of the order-q subgroup"""

    return 0 < x < P and pow(x, Q, P) == 1


def is_valid_exponent(x: int) -> bool:
    return 0 <= x < Q


def to_hex(x: int) -> str:
    """Uppercase hex with no prefix, the encoding used on the wire and in hashes"""

    return format(x, "X")


def from_hex(s: str) -> int:
    return int(s, 16)


@dataclass(frozen=True)
class Ciphertext:
    """Exponential ElGamal ciphertext (pad, data) = (g^r, g^m * K^r)"""

    pad: int
    data: int

    def add(self, other: "Ciphertext") -> "Ciphertext":
        """Homomorphic addition: Enc(m1) * Enc(m2) = Enc(m1 + m2)"""

        return Ciphertext(mult_p(self.pad, other.pad), mult_p(self.data, other.data))

    def partial_decrypt(self, secret: int) -> int:
        return pow_p(self.pad, secret)

    def crypto_hash(self) -> int:
        return hash_elems(self.pad, self.data)

    def is_valid(self) -> bool:
        return is_valid_residue(self.pad) and is_valid_residue(self.data)


# Encryption of 0 with nonce 0, the neutral element for homomorphic addition
ZERO_CIPHERTEXT = Ciphertext(1, 1)


def elgamal_encrypt(m: int, nonce: int, public_key: int) -> Ciphertext:
    """Encrypt a small non-negative integer using exponent encoding

    Args
    - m: plaintext, a selection bit or a small count
    - nonce: encryption randomness in [1 to q-1]
    - public_key: the election's joint public key K
    """

    if m < 0:
        raise ValueError("exponential ElGamal only encodes non-negative integers")
    return Ciphertext(g_pow_p(nonce), mult_p(g_pow_p(m), pow_p(public_key, nonce)))


def elgamal_add(ciphertexts: Iterable[Ciphertext]) -> Ciphertext:
    out = ZERO_CIPHERTEXT
    for c in ciphertexts:
        out = out.add(c)
    return out


def hash_elems(*elements) -> int:
    """Fiat-Shamir hash over a sequence of values, reduced into Z_q

    Each element contributes its text form followed by "|": ints as uppercase
    hex, strings verbatim, None as "null", ciphertexts by their own hash and
    nested sequences by a recursive hash.
    """

    h = hashlib.sha256()
    h.update(b"|")
    for e in elements:
        if e is None:
            part = "null"
        elif isinstance(e, Ciphertext):
            part = to_hex(e.crypto_hash())
        elif isinstance(e, bool):
            part = "1" if e else "0"
        elif isinstance(e, int):
            part = to_hex(e)
        elif isinstance(e, str):
            part = e
        elif isinstance(e, (list, tuple)):
            part = to_hex(hash_elems(*e))
        else:
            part = str(e)
        h.update((part + "|").encode("utf-8"))
    return int.from_bytes(h.digest(), "big") % Q


def discrete_log(value: int, max_k: int, base: int = G) -> int | None:
    """Baby-step giant-step discrete log: find k such that base^k = value (mod p), k <= max_k

    Returns k or None if not found within bound.
    """

    if value == 1:
        return 0

    m = isqrt(max_k) + 1

    # Baby steps: store base^j -> j for j in [0, m)
    baby = {}
    cur = 1
    for j in range(m):
        if cur not in baby:
            baby[cur] = j
        cur = (cur * base) % P

    base_m_inv = pow(pow(base, m, P), P - 2, P)

    # Giant steps: look for i such that value * (base^{-m})^i is in baby
    gamma = value
    for i in range(ceil(max_k / m) + 1):
        if gamma in baby:
            k = i * m + baby[gamma]
            return k if k <= max_k else None
        gamma = (gamma * base_m_inv) % P
    return None


def lagrange_coefficient(index: int, others: Sequence[int]) -> int:
    """Interpolation weight at zero for `index` over the set {index} + others

    w_i = prod_{j != i} j / (j - i)  (mod q)
    """

    numerator = 1
    denominator = 1
    for j in others:
        if j == index:
            continue
        numerator = (numerator * j) % Q
        denominator = (denominator * (j - index)) % Q
    return (numerator * pow(denominator, -1, Q)) % Q
