"""Voter-side ballot encryption and proof generation

The server never calls into this module while handling a request; it is what
a voting device (or a test) uses to produce a BallotSubmission.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .group import Ciphertext, add_q, elgamal_add, elgamal_encrypt, rand_q
from .models import BallotSubmission, Contest
from .proofs import make_constant_proof, make_disjunctive_proof


def encode_selections(
    contests: Sequence[Contest], choices: Mapping[int, Sequence[int]]
) -> Dict[int, List[int]]:
    """Turn chosen option indices into 0/1 vectors padded with placeholders

    Placeholders are set so every contest sums to exactly its selection limit.

    Args
    - contests: ballot shape
    - choices: contest index -> indices of the selected real options

    Returns: contest index -> bit per option, placeholders last
    """

    encoded: Dict[int, List[int]] = {}
    for contest in contests:
        chosen = set(choices.get(contest.index, ()))
        for idx in chosen:
            if not 0 <= idx < len(contest.options):
                raise ValueError(
                    f"option {idx} not on the ballot for contest '{contest.name}'"
                )
        if len(chosen) > contest.max_selections:
            raise ValueError(
                f"contest '{contest.name}' allows at most {contest.max_selections} selections"
            )
        bits = [1 if i in chosen else 0 for i in range(len(contest.options))]
        unused = contest.max_selections - len(chosen)
        bits.extend([1] * unused + [0] * (contest.max_selections - unused))
        encoded[contest.index] = bits
    return encoded


def encrypt_ballot_with_rands(
    public_key: int, encoded: Mapping[int, Sequence[int]]
) -> Tuple[Dict[int, List[Ciphertext]], Dict[int, List[int]]]:
    """Encrypt each bit and return the nonce used for every ciphertext"""

    out: Dict[int, List[Ciphertext]] = {}
    rands: Dict[int, List[int]] = {}
    for contest_index, bits in encoded.items():
        r_row = [rand_q() for _ in bits]
        out[contest_index] = [elgamal_encrypt(b, r, public_key) for b, r in zip(bits, r_row)]
        rands[contest_index] = r_row
    return out, rands


def encrypt_ballot(
    public_key: int,
    extended_base_hash: int,
    contests: Sequence[Contest],
    encoded: Mapping[int, Sequence[int]],
    encryption_id: str,
    timestamp: datetime,
    device_info: str = "",
    claimed_constants: Optional[Mapping[int, int]] = None,
) -> Tuple[BallotSubmission, Dict[int, List[int]]]:
    """Encrypt an encoded ballot and attach every proof the server checks

    Each contest gets one constant proof over the homomorphic sum of its
    ciphertexts, proving it encrypts the selection limit. `claimed_constants`
    overrides the claimed sum per contest.

    Returns: (submission, nonces)
    """

    ciphertexts, rands = encrypt_ballot_with_rands(public_key, encoded)
    option_proofs = {}
    contest_proofs = {}
    for contest in contests:
        bits = encoded[contest.index]
        cts = ciphertexts[contest.index]
        nonces = rands[contest.index]
        option_proofs[contest.index] = [
            make_disjunctive_proof(ct, r, public_key, extended_base_hash, b)
            for ct, r, b in zip(cts, nonces, bits)
        ]
        constant = contest.max_selections
        if claimed_constants is not None and contest.index in claimed_constants:
            constant = claimed_constants[contest.index]
        contest_proofs[contest.index] = make_constant_proof(
            elgamal_add(cts), add_q(*nonces), public_key, extended_base_hash, constant
        )

    submission = BallotSubmission(
        encryption_id=encryption_id,
        timestamp=timestamp,
        ciphertexts=ciphertexts,
        option_proofs=option_proofs,
        contest_proofs=contest_proofs,
        device_info=device_info,
    )
    return submission, rands
