"""Ballot acceptance, confirmation and homomorphic tally accumulation"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List

from .errors import ConfigurationError, IdentityError, ProofError, StateError
from .group import elgamal_add
from .lifecycle import require_phase
from .models import Ballot, BallotSubmission, Election, EncryptedOption, Phase, Tally
from .proofs import verify_constant, verify_disjunctive

logger = logging.getLogger(__name__)


class BallotCryptoEngine:
    def __init__(self, repository, chain, clock, clock_skew_ms: int = 0):
        self.repository = repository
        self.chain = chain
        self.clock = clock
        self.clock_skew = timedelta(milliseconds=clock_skew_ms)

    def check_shape(self, election: Election, submission: BallotSubmission):
        expected = {c.index for c in election.contests}
        for name, per_contest in (
            ("ciphertexts", submission.ciphertexts),
            ("option proofs", submission.option_proofs),
            ("contest proofs", submission.contest_proofs),
        ):
            if set(per_contest) != expected:
                raise ConfigurationError(
                    f"ballot {name} do not match the contests of election {election.id}",
                    f"expected contests {sorted(expected)}, got {sorted(per_contest)}",
                )
        for contest in election.contests:
            n_ct = len(submission.ciphertexts[contest.index])
            n_pf = len(submission.option_proofs[contest.index])
            if n_ct != contest.size or n_pf != contest.size:
                raise ConfigurationError(
                    f"contest {contest.index} needs {contest.size} ciphertexts and proofs",
                    f"got {n_ct} ciphertexts and {n_pf} proofs",
                )

    def check_timestamp(self, election: Election, submission: BallotSubmission):
        now = self.clock()
        earliest = election.start_time - self.clock_skew
        if not earliest <= submission.timestamp <= now + self.clock_skew:
            raise ConfigurationError(
                "ballot timestamp outside the voting period",
                f"{submission.timestamp.isoformat()} not in [{earliest.isoformat()}, {now.isoformat()}]",
            )

    def verify_proofs(self, election: Election, submission: BallotSubmission):
        """Raise ProofError on the first proof that does not verify"""

        k, qbar = election.joint_key, election.extended_base_hash
        for contest in election.contests:
            cts = submission.ciphertexts[contest.index]
            for i, (ct, proof) in enumerate(zip(cts, submission.option_proofs[contest.index])):
                if not verify_disjunctive(proof, ct, k, qbar):
                    raise ProofError(
                        f"selection proof for contest {contest.index} option {i} is invalid"
                    )
            if not verify_constant(
                submission.contest_proofs[contest.index],
                elgamal_add(cts),
                k,
                qbar,
                expected_constant=contest.max_selections,
            ):
                raise ProofError(
                    f"contest {contest.index} does not sum to its limit of {contest.max_selections}"
                )

    def submit_ballot(self, election: Election, voter: str, submission: BallotSubmission) -> Ballot:
        """Validate and store an encrypted ballot as spoiled; returns it with its tracking code"""

        eid = election.id
        self.check_shape(election, submission)
        self.check_timestamp(election, submission)
        if self.repository.has_voted(eid, voter):
            raise StateError(f"{voter} already submitted a ballot")
        try:
            self.verify_proofs(election, submission)
        except ProofError as e:
            logger.warning("election %s: ballot from %s rejected: %s", eid, voter, e)
            raise

        options = tuple(
            EncryptedOption(contest.index, i, ct, proof)
            for contest in election.contests
            for i, (ct, proof) in enumerate(
                zip(submission.ciphertexts[contest.index], submission.option_proofs[contest.index])
            )
        )
        with self.repository.lock(eid):
            require_phase(election, Phase.OPEN)
            if self.repository.has_voted(eid, voter):
                raise StateError(f"{voter} already submitted a ballot")
            ballot = self.repository.add_ballot(
                Ballot(
                    id=0,
                    election_id=eid,
                    encryption_id=submission.encryption_id,
                    voter=voter,
                    device_info=submission.device_info,
                    timestamp=submission.timestamp,
                    options=options,
                    contest_proofs=dict(submission.contest_proofs),
                )
            )
            self.chain.append(election, ballot)
        return ballot

    def submit_confirmation(self, election: Election, voter: str, tracking_code: str) -> Ballot:
        """Cast the spoiled ballot carrying `tracking_code`; irreversible"""

        eid = election.id
        with self.repository.lock(eid):
            require_phase(election, Phase.OPEN)
            ballot = self.repository.ballot_by_tracking_code(eid, tracking_code)
            if ballot.voter != voter:
                raise IdentityError(f"ballot {ballot.id} was not cast by {voter}")
            if self.repository.has_voted(eid, voter):
                raise StateError(f"{voter} already submitted a ballot")
            ballot.submitted = True
            self.repository.mark_voted(eid, voter)
        logger.info("election %s: ballot %s submitted", eid, ballot.id)
        return ballot

    def accumulate_tallies(self, election: Election) -> List[Tally]:
        """Sum every submitted ballot per (contest, option), from scratch"""

        submitted = self.repository.ballots(election.id, submitted=True)
        tallies = []
        for contest in election.contests:
            for i in range(contest.size):
                ct = elgamal_add(b.option(contest.index, i).ciphertext for b in submitted)
                tallies.append(Tally(election.id, contest.index, i, ct))
        logger.info(
            "election %s: %d tallies over %d submitted ballots",
            election.id,
            len(tallies),
            len(submitted),
        )
        return tallies
