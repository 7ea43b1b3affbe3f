"""Trustee-side key material and the participants the service notifies

`GuardianKeys` is everything one trustee holds privately: its polynomial
coefficients and its auxiliary transport key. Remote trustees run it on their
own machines; the automated trustee runs it inside the server.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from .auth import Caller, Role
from .errors import ConfigurationError, ProofError
from .group import Ciphertext, Q, from_hex, pow_p, rand_q, to_hex
from .key_ceremony import verify_backup
from .models import DecryptionShare, DecryptionSubmission, Election, OptionKey, Phase
from .proofs import SchnorrProof, make_generic_proof, make_schnorr_proof
from .transport import generate_aux_key, public_key_hex, seal, unseal

logger = logging.getLogger(__name__)


class GuardianKeys:
    def __init__(
        self,
        index: int,
        threshold: int,
        coefficients: Optional[Sequence[int]] = None,
        aux_key: Optional[X25519PrivateKey] = None,
    ):
        if index < 1:
            raise ConfigurationError("trustee indices start at 1")
        self.index = index
        self.threshold = threshold
        self.coefficients = (
            list(coefficients) if coefficients is not None else [rand_q() for _ in range(threshold)]
        )
        if len(self.coefficients) != threshold:
            raise ConfigurationError(f"expected {threshold} coefficients")
        self.aux_key = aux_key or generate_aux_key()
        self.commitments: List[SchnorrProof] = [make_schnorr_proof(a) for a in self.coefficients]

    @property
    def secret(self) -> int:
        return self.coefficients[0]

    @property
    def public_key(self) -> int:
        return self.commitments[0].public_key

    def aux_public_key(self) -> str:
        return public_key_hex(self.aux_key)

    def polynomial_at(self, x: int) -> int:
        out = 0
        for a in reversed(self.coefficients):
            out = (out * x + a) % Q
        return out

    def backups_for(self, aux_keys: Mapping[int, str]) -> Dict[int, str]:
        """Seal P(i) to every other trustee's auxiliary key"""

        return {
            recipient: seal(key, to_hex(self.polynomial_at(recipient)).encode(), self.index, recipient)
            for recipient, key in aux_keys.items()
            if recipient != self.index
        }

    def open_backup(self, sender_index: int, blob: str) -> int:
        plain = unseal(self.aux_key, blob, sender_index, self.index)
        try:
            return from_hex(plain.decode())
        except ValueError as e:
            raise ProofError(f"backup from trustee {sender_index} is not a share", str(e)) from e

    def check_backup(self, sender_index: int, commitments: Sequence[int], blob: str) -> int:
        """Open a backup and check it against the sender's commitments

        Returns: the share P_sender(self.index)
        """

        share = self.open_backup(sender_index, blob)
        if not verify_backup(commitments, share, self.index):
            raise ProofError(
                f"backup from trustee {sender_index} does not match its commitments"
            )
        return share

    def decryption_share(self, ciphertext: Ciphertext, qbar: int, secret: Optional[int] = None) -> DecryptionShare:
        s = self.secret if secret is None else secret
        share = pow_p(ciphertext.pad, s)
        return DecryptionShare(share, make_generic_proof(ciphertext, s, share, qbar))

    def decrypt(
        self, targets: Mapping[OptionKey, Ciphertext], qbar: int, secret: Optional[int] = None
    ) -> DecryptionSubmission:
        """Shares for every target, shaped as target -> contest -> option list"""

        return build_submission(targets, lambda ct: self.decryption_share(ct, qbar, secret))


def build_submission(
    targets: Mapping[OptionKey, Ciphertext], make_share: Callable[[Ciphertext], DecryptionShare]
) -> DecryptionSubmission:
    nested: Dict = {}
    for (target, c, o), ct in sorted(targets.items(), key=lambda kv: (kv[0][0] or 0, kv[0][1], kv[0][2])):
        nested.setdefault(target, {}).setdefault(c, []).append(make_share(ct))
    return nested


class TrusteeParticipant:
    """One trustee as seen by the service"""

    identity: str
    index: int

    def on_phase(self, election: Election, phase: Phase):
        raise NotImplementedError

    def inspect_backup(self, sender_index: int, commitments: Sequence[SchnorrProof], blob: str):
        """Raise ProofError when a backup addressed to this trustee is unusable"""
        raise NotImplementedError


class RemoteTrustee(TrusteeParticipant):
    """A human trustee; everything arrives through the service entry points"""

    def __init__(self, identity: str, index: int):
        self.identity = identity
        self.index = index

    def on_phase(self, election: Election, phase: Phase):
        pass

    def inspect_backup(self, sender_index, commitments, blob):
        # checked on the trustee's own machine once it fetches its backups
        pass


class AutomatedTrustee(TrusteeParticipant):
    """Server-side trustee answering every phase synchronously through the service"""

    def __init__(self, service, identity: str, index: int, threshold: int, keys: Optional[GuardianKeys] = None):
        self.service = service
        self.identity = identity
        self.index = index
        self.keys = keys or GuardianKeys(index, threshold)
        self.caller = Caller(identity, Role.TRUSTEE)

    def start(self, election_id: int):
        self.service.submit_aux_key(self.caller, election_id, self.keys.aux_public_key())

    def on_phase(self, election: Election, phase: Phase):
        handler = {
            Phase.EPKB: self.submit_keys,
            Phase.P_DECRYPTION: self.decrypt,
            Phase.PP_DECRYPTION: self.compensate,
        }.get(phase)
        if handler is not None:
            handler(election)

    def inspect_backup(self, sender_index, commitments, blob):
        self.keys.check_backup(sender_index, [c.public_key for c in commitments], blob)

    def submit_keys(self, election: Election):
        aux_keys = self.service.get_aux_keys(election.id)
        self.service.submit_keys_and_backups(
            self.caller, election.id, self.keys.commitments, self.keys.backups_for(aux_keys)
        )

    def decrypt(self, election: Election):
        targets = self.service.get_decryption_targets(election.id)
        submission = self.keys.decrypt(targets, election.extended_base_hash)
        self.service.submit_partial_decryption(self.caller, election.id, submission)

    def compensate(self, election: Election):
        backups = self.service.get_backups_for(self.caller, election.id)
        commitments = self.service.get_commitments(election.id)
        targets = self.service.get_decryption_targets(election.id)
        submissions = {}
        for missing in self.service.get_missing_trustees(election.id):
            share = self.keys.check_backup(
                missing, [c.public_key for c in commitments[missing]], backups[missing]
            )
            submissions[missing] = self.keys.decrypt(targets, election.extended_base_hash, secret=share)
        logger.info(
            "election %s: automated trustee compensating for %s", election.id, sorted(submissions)
        )
        self.service.submit_compensations(self.caller, election.id, submissions)
