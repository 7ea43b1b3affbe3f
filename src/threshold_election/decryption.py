"""Threshold decryption: partial decryptions, compensation and combination

After voting closes every available trustee submits a decryption share per
tally option and per option of every spoiled ballot (phase P). If some
trustees never showed up, the available ones each submit, per missing
trustee, a compensating share computed from the backup they hold (phase PP).
A missing trustee's share is rebuilt as the product of the compensating
shares raised to their Lagrange coefficients at zero.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Tuple

from .errors import CompletenessError, ConfigurationError, ProofError, StateError
from .group import Ciphertext, discrete_log, div_p, lagrange_coefficient, mult_p, pow_p
from .key_ceremony import generate_backup_share
from .lifecycle import require_phase
from .models import (
    DecryptionShare,
    DecryptionSubmission,
    Election,
    OptionKey,
    PartialDecryption,
    PartialPartialDecryption,
    Phase,
    Target,
    Trustee,
)
from .proofs import verify_generic

logger = logging.getLogger(__name__)

DEFAULT_DLOG_MAX = 200_000


class ThresholdDecryptionEngine:
    def __init__(self, repository, dlog_max: int = DEFAULT_DLOG_MAX, workers: int = 4):
        self.repository = repository
        self.dlog_max = dlog_max
        self.workers = workers

    # -- what has to be decrypted

    def targets(self, election: Election) -> Dict[OptionKey, Ciphertext]:
        """Every ciphertext trustees must decrypt: tallies and spoiled ballots

        Placeholder options are included, they are part of each ballot.
        """

        eid = election.id
        out: Dict[OptionKey, Ciphertext] = {}
        for tally in self.repository.tallies(eid):
            out[(None, tally.contest_index, tally.option_index)] = tally.ciphertext
        for ballot in self.repository.ballots(eid, submitted=False):
            for option in ballot.options:
                out[(ballot.id, option.contest_index, option.option_index)] = option.ciphertext
        return out

    def available_trustees(self, election: Election) -> List[Trustee]:
        return [t for t in self.repository.trustees(election.id) if t.available]

    def missing_trustees(self, election: Election) -> List[Trustee]:
        return [t for t in self.repository.trustees(election.id) if not t.available]

    def _flatten(
        self, election: Election, submission: DecryptionSubmission
    ) -> Dict[OptionKey, DecryptionShare]:
        """Index a submission by option and require it to cover every target exactly"""

        expected = self.targets(election)
        got: Dict[OptionKey, DecryptionShare] = {}
        for target, per_contest in submission.items():
            for contest_index, shares in per_contest.items():
                for option_index, share in enumerate(shares):
                    got[(target, contest_index, option_index)] = share

        missing = set(expected) - set(got)
        extra = set(got) - set(expected)
        if missing or extra:
            raise ConfigurationError(
                "decryption submission must cover every tally and spoiled ballot option",
                f"{len(missing)} missing, {len(extra)} unexpected",
            )
        return got

    # -- phase P

    def submit_partial_decryption(
        self, election: Election, trustee: Trustee, submission: DecryptionSubmission
    ):
        """Accept one trustee's shares for every target, all proofs checked first"""

        eid = election.id
        if trustee.available or self.repository.has_partial_decryptions(eid, trustee.index):
            raise StateError(f"trustee {trustee.index} already submitted partial decryptions")

        shares = self._flatten(election, submission)
        targets = self.targets(election)
        public_key = trustee.primary_key
        qbar = election.extended_base_hash
        for key, share in shares.items():
            if not verify_generic(share.proof, targets[key], public_key, share.share, qbar):
                logger.warning(
                    "election %s: partial decryption of trustee %s rejected at %s",
                    eid,
                    trustee.index,
                    key,
                )
                raise ProofError(f"decryption proof of trustee {trustee.index} is invalid at {key}")

        with self.repository.lock(eid):
            require_phase(election, Phase.P_DECRYPTION)
            if trustee.available:
                raise StateError(f"trustee {trustee.index} already submitted partial decryptions")
            self.repository.add_partial_decryptions(
                eid,
                [
                    PartialDecryption(trustee.index, t, c, o, s.share, s.proof)
                    for (t, c, o), s in shares.items()
                ],
            )
            trustee.available = True
            trustee.waiting = True
        logger.info(
            "election %s: %d partial decryptions from trustee %s", eid, len(shares), trustee.index
        )

    # -- phase PP

    def recovery_key(self, election: Election, missing: Trustee, computing_index: int) -> int:
        """Public key the compensating shares of `computing_index` for `missing` must match"""

        return generate_backup_share([c.public_key for c in missing.commitments], computing_index)

    def submit_compensations(
        self,
        election: Election,
        trustee: Trustee,
        submissions: Mapping[int, DecryptionSubmission],
    ):
        """Accept compensating shares for every missing trustee

        Args
        - election: election in PP_DECRYPTION
        - trustee: computing trustee, must have taken part in phase P
        - submissions: missing trustee index -> shares computed from its backup
        """

        eid = election.id
        if not trustee.available:
            raise StateError(f"trustee {trustee.index} did not take part in decryption")
        if self.repository.has_compensations(eid, trustee.index):
            raise StateError(f"trustee {trustee.index} already submitted compensations")

        missing = {t.index: t for t in self.missing_trustees(election)}
        not_missing = sorted(set(submissions) - set(missing))
        if not_missing:
            raise StateError(f"trustees {not_missing} are not missing, nothing to compensate")
        if set(submissions) != set(missing):
            raise ConfigurationError(
                "compensations must cover every missing trustee",
                f"expected {sorted(missing)}, got {sorted(submissions)}",
            )

        targets = self.targets(election)
        qbar = election.extended_base_hash
        accepted: List[PartialPartialDecryption] = []
        for missing_index, submission in sorted(submissions.items()):
            shares = self._flatten(election, submission)
            recovery = self.recovery_key(election, missing[missing_index], trustee.index)
            for key, share in shares.items():
                if not verify_generic(share.proof, targets[key], recovery, share.share, qbar):
                    logger.warning(
                        "election %s: compensation of trustee %s for %s rejected at %s",
                        eid,
                        trustee.index,
                        missing_index,
                        key,
                    )
                    raise ProofError(
                        f"compensation proof of trustee {trustee.index} for trustee "
                        f"{missing_index} is invalid at {key}"
                    )
                t, c, o = key
                accepted.append(
                    PartialPartialDecryption(trustee.index, missing_index, t, c, o, share.share, share.proof)
                )

        with self.repository.lock(eid):
            require_phase(election, Phase.PP_DECRYPTION)
            if self.repository.has_compensations(eid, trustee.index):
                raise StateError(f"trustee {trustee.index} already submitted compensations")
            self.repository.add_compensations(eid, accepted)
            trustee.waiting = True
        logger.info(
            "election %s: trustee %s compensated for %s",
            eid,
            trustee.index,
            sorted(submissions),
        )

    # -- combination

    def compute_lagrange_coefficients(self, election: Election) -> Dict[int, int]:
        """Interpolation weights at zero over the currently available indices"""

        with self.repository.lock(election.id):
            available = self.available_trustees(election)
            indices = tuple(t.index for t in available)
            for t in available:
                t.lagrange_coefficient = lagrange_coefficient(t.index, indices)
                t.lagrange_set = indices
        logger.debug("election %s: lagrange coefficients over %s", election.id, indices)
        return {t.index: t.lagrange_coefficient for t in available}

    def _coefficients(self, election: Election) -> Dict[int, int]:
        available = self.available_trustees(election)
        if len(available) < election.threshold:
            raise CompletenessError(
                f"{len(available)} trustees available, {election.threshold} needed"
            )
        indices = tuple(t.index for t in available)
        if any(t.lagrange_set != indices for t in available):
            return self.compute_lagrange_coefficients(election)
        return {t.index: t.lagrange_coefficient for t in available}

    def reconstruct_missing_share(
        self,
        election: Election,
        missing_index: int,
        target: Target,
        contest_index: int,
        option_index: int,
    ) -> int:
        """prod over available A of (compensating share of A for M) ^ w_A"""

        weights = self._coefficients(election)
        comps = self.repository.compensations(
            election.id, missing_index, target, contest_index, option_index
        )
        out = 1
        for index, weight in weights.items():
            comp = comps.get(index)
            if comp is None:
                raise CompletenessError(
                    f"trustee {index} has not compensated for trustee {missing_index} "
                    f"at {(target, contest_index, option_index)}"
                )
            out = mult_p(out, pow_p(comp.share, weight))
        return out

    def decode(self, element: int) -> int:
        """Recover m from g^m, bounded by dlog_max"""

        value = discrete_log(element, self.dlog_max)
        if value is None:
            raise CompletenessError(
                f"plaintext exceeds the discrete log bound of {self.dlog_max}"
            )
        return value

    def combine_shares(
        self,
        election: Election,
        target: Target,
        contest_index: int,
        option_index: int,
        ciphertext: Ciphertext,
    ) -> int:
        partials = self.repository.partial_decryptions(
            election.id, target, contest_index, option_index
        )
        product = 1
        for trustee in self.repository.trustees(election.id):
            if trustee.available:
                partial = partials.get(trustee.index)
                if partial is None:
                    raise CompletenessError(
                        f"trustee {trustee.index} has no share for "
                        f"{(target, contest_index, option_index)}"
                    )
                share = partial.share
            else:
                share = self.reconstruct_missing_share(
                    election, trustee.index, target, contest_index, option_index
                )
            product = mult_p(product, share)
        return self.decode(div_p(ciphertext.data, product))

    def evaluate_result(
        self, election: Election
    ) -> Tuple[Dict[int, List[int]], Dict[int, Dict[int, List[int]]]]:
        """Decrypt every real option of the tallies and of each spoiled ballot

        Returns: (result per contest, spoiled ballot id -> selections per contest)
        """

        self._coefficients(election)
        targets = self.targets(election)
        jobs = [
            (key, ct)
            for key, ct in sorted(targets.items(), key=lambda kv: (kv[0][0] or 0, kv[0][1], kv[0][2]))
            if not election.contest(key[1]).is_placeholder(key[2])
        ]

        def run(job):
            (target, c, o), ct = job
            return self.combine_shares(election, target, c, o, ct)

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            values = list(pool.map(run, jobs))

        result: Dict[int, List[int]] = {
            c.index: [0] * len(c.options) for c in election.contests
        }
        spoiled: Dict[int, Dict[int, List[int]]] = {}
        for ((target, c, o), _), value in zip(jobs, values):
            if target is None:
                result[c][o] = value
            else:
                per_ballot = spoiled.setdefault(
                    target, {x.index: [0] * len(x.options) for x in election.contests}
                )
                per_ballot[c][o] = value
        logger.info("election %s: result %s", election.id, result)
        return result, spoiled
