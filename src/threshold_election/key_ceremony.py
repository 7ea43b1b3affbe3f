"""Key ceremony: joint key, backup shares and the extended base hash"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .errors import ConfigurationError, ProofError, StateError
from .group import PARAMS, g_pow_p, hash_elems, mult_p, pow_p
from .lifecycle import require_phase
from .models import Election, Phase, Trustee
from .proofs import SchnorrProof, verify_schnorr
from .tracking import manifest_hash
from .transport import load_public_key

logger = logging.getLogger(__name__)

# (recipient index, sender index, sender commitments, sealed backup) -> None, raises ProofError
BackupInspector = Callable[[int, int, Sequence[SchnorrProof], str], None]


def combine_joint_key(public_keys: Iterable[int]) -> int:
    """Group product of the trustees' primary public keys"""

    return mult_p(*public_keys)


def generate_backup_share(commitments: Sequence[int], recipient_index: int) -> int:
    """g^P(i) computed from the public commitments K_j = g^(a_j): prod_j K_j^(i^j)

    Args
    - commitments: sender's coefficient commitments, constant term first
    - recipient_index: i, never 0

    Returns: the recovery key a backup for `recipient_index` must match
    """

    if recipient_index == 0:
        raise ConfigurationError("trustee index 0 would reveal the secret")
    out = 1
    power = 1
    for k in commitments:
        out = mult_p(out, pow_p(k, power))
        power *= recipient_index
    return out


def verify_backup(commitments: Sequence[int], share: int, recipient_index: int) -> bool:
    """True when g^share matches the sender's commitments evaluated at the recipient"""

    return g_pow_p(share) == generate_backup_share(commitments, recipient_index)


def commitment_hash(trustees: Sequence[Trustee]) -> int:
    return hash_elems(*[[c.public_key for c in t.commitments] for t in trustees])


def extended_base_hash(
    trustee_count: int, threshold: int, manifest: int, commitments: int
) -> int:
    q_hash = hash_elems(PARAMS.p, PARAMS.q, PARAMS.g, trustee_count, threshold, manifest)
    return hash_elems(q_hash, commitments)


class KeyCeremonyEngine:
    def __init__(self, repository):
        self.repository = repository

    def submit_aux_key(self, election: Election, trustee: Trustee, aux_key: str):
        load_public_key(aux_key)
        with self.repository.lock(election.id):
            require_phase(election, Phase.AUX_KEYS)
            if trustee.aux_key is not None:
                raise StateError(f"trustee {trustee.index} already submitted an auxiliary key")
            trustee.aux_key = aux_key.upper()
            trustee.waiting = True
        logger.info("election %s: auxiliary key from trustee %s", election.id, trustee.index)

    def submit_keys_and_backups(
        self,
        election: Election,
        trustee: Trustee,
        commitments: Sequence[SchnorrProof],
        backups: Mapping[int, str],
        inspect: Optional[BackupInspector] = None,
    ):
        """Store a trustee's coefficient commitments and hand out its backups

        The submission is all or nothing: exactly `t` valid Schnorr proofs and
        exactly one backup per other trustee, each accepted by `inspect` when
        given (the automated trustee checks the backups addressed to it).
        """

        eid = election.id
        with self.repository.lock(eid):
            require_phase(election, Phase.EPKB)
            if trustee.commitments:
                raise StateError(f"trustee {trustee.index} already submitted keys and backups")

            if len(commitments) != election.threshold:
                raise ConfigurationError(
                    f"expected {election.threshold} commitments, got {len(commitments)}"
                )

            others = {t.index for t in self.repository.trustees(eid) if t.index != trustee.index}
            if set(backups) != others:
                raise ConfigurationError(
                    "backups must cover every other trustee exactly once",
                    f"expected {sorted(others)}, got {sorted(backups)}",
                )

            for j, proof in enumerate(commitments):
                if not verify_schnorr(proof):
                    logger.warning(
                        "election %s: trustee %s commitment %s failed its Schnorr proof",
                        eid,
                        trustee.index,
                        j,
                    )
                    raise ProofError(f"Schnorr proof {j} of trustee {trustee.index} is invalid")

            if inspect is not None:
                for recipient, blob in sorted(backups.items()):
                    inspect(recipient, trustee.index, commitments, blob)

            trustee.commitments = list(commitments)
            for recipient, blob in backups.items():
                self.repository.trustee(eid, recipient).backups[trustee.index] = blob.upper()
            trustee.waiting = True
        logger.info("election %s: keys and backups from trustee %s", eid, trustee.index)

    def finish(self, election: Election):
        """Fix the joint key and hashes on entering KEYCEREMONY_FINISHED"""

        trustees = self.repository.trustees(election.id)
        election.joint_key = combine_joint_key(t.primary_key for t in trustees)
        election.manifest_hash = manifest_hash(election.title, election.contests)
        election.commitment_hash = commitment_hash(trustees)
        election.extended_base_hash = extended_base_hash(
            election.trustee_count,
            election.threshold,
            election.manifest_hash,
            election.commitment_hash,
        )
        logger.info("election %s: joint key and extended base hash fixed", election.id)
