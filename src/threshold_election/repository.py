"""In-memory election store with one re-entrant lock per election"""

from __future__ import annotations

import itertools
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import NotFoundError
from .models import (
    Ballot,
    Election,
    PartialDecryption,
    PartialPartialDecryption,
    Tally,
    Target,
    Trustee,
)


class ElectionRepository:
    def __init__(self):
        self._guard = threading.Lock()
        self._election_ids = itertools.count(1)
        self._ballot_ids = itertools.count(1)
        self._locks: Dict[int, threading.RLock] = {}
        self._elections: Dict[int, Election] = {}
        self._trustees: Dict[int, Dict[int, Trustee]] = {}
        self._ballots: Dict[int, Dict[int, Ballot]] = {}
        self._tallies: Dict[int, Dict[Tuple[int, int], Tally]] = {}
        self._partials: Dict[int, Dict[tuple, Dict[int, PartialDecryption]]] = {}
        self._compensations: Dict[int, Dict[tuple, Dict[int, PartialPartialDecryption]]] = {}
        self._voted: Dict[int, set] = {}

    def lock(self, election_id: int) -> threading.RLock:
        """The lock serializing phase, chain head, trustee and voter flags"""

        self.get_election(election_id)
        return self._locks[election_id]

    # elections

    def add_election(self, election: Election, trustees: Iterable[Trustee]) -> Election:
        with self._guard:
            election.id = next(self._election_ids)
            eid = election.id
            self._elections[eid] = election
            self._locks[eid] = threading.RLock()
            self._trustees[eid] = {t.index: t for t in trustees}
            self._ballots[eid] = {}
            self._tallies[eid] = {}
            self._partials[eid] = {}
            self._compensations[eid] = {}
            self._voted[eid] = set()
        return election

    def get_election(self, election_id: int) -> Election:
        try:
            return self._elections[election_id]
        except KeyError:
            raise NotFoundError(f"election {election_id} not found") from None

    def elections(self) -> List[Election]:
        return list(self._elections.values())

    # trustees

    def trustees(self, election_id: int) -> List[Trustee]:
        self.get_election(election_id)
        return [t for _, t in sorted(self._trustees[election_id].items())]

    def trustee(self, election_id: int, index: int) -> Trustee:
        self.get_election(election_id)
        try:
            return self._trustees[election_id][index]
        except KeyError:
            raise NotFoundError(f"trustee {index} not found in election {election_id}") from None

    def trustee_by_identity(self, election_id: int, identity: str) -> Trustee:
        for t in self.trustees(election_id):
            if t.identity == identity:
                return t
        raise NotFoundError(f"{identity} is not a trustee of election {election_id}")

    # ballots

    def add_ballot(self, ballot: Ballot) -> Ballot:
        with self._guard:
            ballot.id = next(self._ballot_ids)
        self._ballots[ballot.election_id][ballot.id] = ballot
        return ballot

    def ballot(self, election_id: int, ballot_id: int) -> Ballot:
        self.get_election(election_id)
        try:
            return self._ballots[election_id][ballot_id]
        except KeyError:
            raise NotFoundError(f"ballot {ballot_id} not found in election {election_id}") from None

    def ballots(self, election_id: int, submitted: Optional[bool] = None) -> List[Ballot]:
        """Ballots in submission order, optionally filtered by the submitted flag"""

        self.get_election(election_id)
        out = [b for _, b in sorted(self._ballots[election_id].items())]
        if submitted is None:
            return out
        return [b for b in out if b.submitted == submitted]

    def ballot_by_tracking_code(self, election_id: int, tracking_code: str) -> Ballot:
        code = tracking_code.upper()
        for b in self.ballots(election_id):
            if b.latest_tracking_code == code:
                return b
        raise NotFoundError(f"no ballot with tracking code {tracking_code}")

    def has_voted(self, election_id: int, voter: str) -> bool:
        self.get_election(election_id)
        return voter in self._voted[election_id]

    def mark_voted(self, election_id: int, voter: str):
        self._voted[election_id].add(voter)

    # tallies

    def replace_tallies(self, election_id: int, tallies: Iterable[Tally]):
        self.get_election(election_id)
        self._tallies[election_id] = {(t.contest_index, t.option_index): t for t in tallies}

    def tally(self, election_id: int, contest_index: int, option_index: int) -> Tally:
        self.get_election(election_id)
        try:
            return self._tallies[election_id][(contest_index, option_index)]
        except KeyError:
            raise NotFoundError(
                f"no tally for contest {contest_index} option {option_index}"
            ) from None

    def tallies(self, election_id: int) -> List[Tally]:
        self.get_election(election_id)
        return [t for _, t in sorted(self._tallies[election_id].items())]

    # decryption shares

    def add_partial_decryptions(self, election_id: int, partials: Iterable[PartialDecryption]):
        store = self._partials[election_id]
        for p in partials:
            store.setdefault((p.target, p.contest_index, p.option_index), {})[p.trustee_index] = p

    def partial_decryptions(
        self,
        election_id: int,
        target: Target,
        contest_index: int,
        option_index: int,
    ) -> Dict[int, PartialDecryption]:
        """Shares for one option keyed by trustee index"""

        self.get_election(election_id)
        return dict(self._partials[election_id].get((target, contest_index, option_index), {}))

    def has_partial_decryptions(self, election_id: int, trustee_index: int) -> bool:
        self.get_election(election_id)
        return any(trustee_index in by_trustee for by_trustee in self._partials[election_id].values())

    def add_compensations(self, election_id: int, shares: Iterable[PartialPartialDecryption]):
        store = self._compensations[election_id]
        for p in shares:
            key = (p.missing_index, p.target, p.contest_index, p.option_index)
            store.setdefault(key, {})[p.trustee_index] = p

    def compensations(
        self,
        election_id: int,
        missing_index: int,
        target: Target,
        contest_index: int,
        option_index: int,
    ) -> Dict[int, PartialPartialDecryption]:
        """Compensating shares for one missing trustee and option, keyed by computing trustee"""

        self.get_election(election_id)
        key = (missing_index, target, contest_index, option_index)
        return dict(self._compensations[election_id].get(key, {}))

    def has_compensations(self, election_id: int, trustee_index: int) -> bool:
        self.get_election(election_id)
        return any(
            trustee_index in by_trustee for by_trustee in self._compensations[election_id].values()
        )
