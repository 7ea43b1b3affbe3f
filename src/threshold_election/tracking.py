"""Election description hashes and the per-ballot tracking-code chain"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from .errors import ConfigurationError
from .group import Ciphertext, from_hex, hash_elems, to_hex
from .models import Ballot, Contest, Election
from .utils import to_epoch_ms

logger = logging.getLogger(__name__)


def option_description_hash(contest: Contest, option_index: int) -> int:
    text = "placeholder" if contest.is_placeholder(option_index) else contest.options[option_index]
    return hash_elems(contest.option_id(option_index), option_index, text)


def contest_description_hash(contest: Contest) -> int:
    return hash_elems(
        contest.contest_id,
        contest.index,
        contest.name,
        contest.max_selections,
        [option_description_hash(contest, i) for i in range(contest.size)],
    )


def manifest_hash(title: str, contests: Sequence[Contest]) -> int:
    return hash_elems(title, [contest_description_hash(c) for c in contests])


def election_fingerprint(election: Election, trustee_identities: Sequence[str]) -> int:
    """Hash over the immutable election metadata, fixed when voting opens"""

    return hash_elems(
        election.title,
        election.authority,
        to_epoch_ms(election.start_time),
        to_epoch_ms(election.end_time),
        list(trustee_identities),
        election.has_bot,
        election.threshold,
        election.joint_key,
        election.manifest_hash,
        election.extended_base_hash,
    )


def contest_hash(contest: Contest, ciphertexts: Sequence[Ciphertext]) -> int:
    return hash_elems(
        contest.contest_id,
        contest_description_hash(contest),
        *[
            hash_elems(contest.option_id(i), option_description_hash(contest, i), ct)
            for i, ct in enumerate(ciphertexts)
        ],
    )


def ballot_crypto_hash(
    encryption_id: str,
    manifest: int,
    contests: Sequence[Contest],
    ciphertexts: Sequence[Sequence[Ciphertext]],
) -> int:
    """H(encryption id, manifest hash, contest hashes...) in contest order"""

    return hash_elems(
        encryption_id,
        manifest,
        *[contest_hash(c, cts) for c, cts in zip(contests, ciphertexts)],
    )


def next_tracking_code(latest: int, timestamp_ms: int, crypto_hash: int) -> int:
    return hash_elems(latest, timestamp_ms, crypto_hash)


class TrackingChain:
    """Appends ballots to an election's tracking-code chain

    The chain head lives on the Election record and is only read and written
    under the repository's per-election lock.
    """

    def __init__(self, repository):
        self.repository = repository

    def genesis(self, election: Election) -> int:
        if election.extended_base_hash is None:
            raise ConfigurationError(f"election {election.id} has no extended base hash yet")
        return election.extended_base_hash

    def crypto_hash(self, election: Election, ballot: Ballot) -> int:
        return ballot_crypto_hash(
            ballot.encryption_id,
            election.manifest_hash,
            election.contests,
            [ballot.ciphertexts_for(c.index) for c in election.contests],
        )

    def append(self, election: Election, ballot: Ballot) -> str:
        """Compute the ballot's tracking code and advance the chain head"""

        with self.repository.lock(election.id):
            if election.latest_tracking_code is None:
                latest = self.genesis(election)
            else:
                latest = from_hex(election.latest_tracking_code)
            code = next_tracking_code(
                latest, to_epoch_ms(ballot.timestamp), self.crypto_hash(election, ballot)
            )
            ballot.previous_tracking_code = to_hex(latest)
            ballot.latest_tracking_code = to_hex(code)
            election.latest_tracking_code = ballot.latest_tracking_code
        logger.info(
            "election %s: ballot %s appended with tracking code %s",
            election.id,
            ballot.id,
            ballot.latest_tracking_code,
        )
        return ballot.latest_tracking_code

    def recompute(self, election: Election, ballots: Iterable[Ballot]) -> List[str]:
        """Tracking codes recomputed from genesis for `ballots` in the given order"""

        latest = self.genesis(election)
        codes = []
        for ballot in ballots:
            latest = next_tracking_code(
                latest, to_epoch_ms(ballot.timestamp), self.crypto_hash(election, ballot)
            )
            codes.append(to_hex(latest))
        return codes

    def verify_chain(self, election: Election) -> bool:
        ballots = self.repository.ballots(election.id)
        codes = self.recompute(election, ballots)
        for ballot, code in zip(ballots, codes):
            if ballot.latest_tracking_code != code:
                logger.warning(
                    "election %s: tracking chain broken at ballot %s", election.id, ballot.id
                )
                return False
        head = codes[-1] if codes else None
        return election.latest_tracking_code == head
