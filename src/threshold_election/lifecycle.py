"""Election phases, the guarded transitions between them and their entry hooks"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Tuple

from .errors import ElectionError, StateError
from .models import Election, Phase
from .tracking import election_fingerprint

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[Phase, Tuple[Phase, ...]] = {
    Phase.AUX_KEYS: (Phase.EPKB,),
    Phase.EPKB: (Phase.KEYCEREMONY_FINISHED,),
    Phase.KEYCEREMONY_FINISHED: (Phase.OPEN,),
    Phase.OPEN: (Phase.P_DECRYPTION,),
    Phase.P_DECRYPTION: (Phase.PP_DECRYPTION, Phase.DONE),
    Phase.PP_DECRYPTION: (Phase.DONE,),
    Phase.DONE: (),
}

PhaseListener = Callable[[Election, Phase], None]


def require_phase(election: Election, *phases: Phase):
    """Raise StateError unless the election is in one of `phases`"""

    if election.phase not in phases:
        allowed = ", ".join(p.value for p in phases)
        raise StateError(
            f"election {election.id} is in {election.phase.value}, expected {allowed}"
        )


class ElectionLifecycle:
    """Compare-and-set phase changes under the per-election lock

    A transition either commits completely (guard, entry hook, new phase) or
    raises StateError and leaves the election untouched. Listeners are told
    about the new phase after it is committed; a listener that fails with an
    ElectionError is logged and does not undo the transition.
    """

    def __init__(self, repository, clock, key_ceremony, ballots, decryption):
        self.repository = repository
        self.clock = clock
        self.key_ceremony = key_ceremony
        self.ballots = ballots
        self.decryption = decryption
        self.listeners: List[PhaseListener] = []

    def require(self, election: Election, *phases: Phase):
        require_phase(election, *phases)

    def check_closing(self, election: Election) -> Phase:
        """The one automatic transition: OPEN becomes P_DECRYPTION after closing time"""

        with self.repository.lock(election.id):
            if election.phase is Phase.OPEN and self.clock() >= election.end_time:
                logger.info("election %s: closing time passed", election.id)
                self.test_and_set(election, Phase.P_DECRYPTION)
        return election.phase

    def test_and_set(self, election: Election, target: Phase) -> Phase:
        with self.repository.lock(election.id):
            current = election.phase
            if target not in TRANSITIONS[current]:
                raise StateError(
                    f"election {election.id} cannot go from {current.value} to {target.value}"
                )
            guard = getattr(self, f"_guard_{current.name.lower()}_to_{target.name.lower()}")
            guard(election)
            commit = getattr(self, f"_enter_{target.name.lower()}")(election)
            if commit is not None:
                commit()
            election.phase = target
            logger.info(
                "election %s: %s -> %s", election.id, current.value, target.value
            )
            for listener in self.listeners:
                try:
                    listener(election, target)
                except ElectionError:
                    # the phase is already committed
                    logger.exception(
                        "election %s: participant failed on entering %s", election.id, target.value
                    )
        return election.phase

    # -- guards

    def _trustees(self, election: Election):
        return self.repository.trustees(election.id)

    def _guard_aux_keys_to_epkb(self, election: Election):
        waiting = [t.index for t in self._trustees(election) if t.aux_key is None]
        if waiting:
            raise StateError(f"trustees {waiting} have not submitted auxiliary keys")

    def _guard_epkb_to_keyceremony_finished(self, election: Election):
        waiting = [t.index for t in self._trustees(election) if not t.commitments]
        if waiting:
            raise StateError(f"trustees {waiting} have not submitted keys and backups")

    def _guard_keyceremony_finished_to_open(self, election: Election):
        if self.clock() >= election.end_time:
            raise StateError(f"election {election.id} closing time is already past")

    def _guard_open_to_p_decryption(self, election: Election):
        if self.clock() < election.end_time:
            raise StateError(f"election {election.id} is still open for voting")

    def _guard_p_decryption_to_done(self, election: Election):
        missing = [t.index for t in self._trustees(election) if not t.available]
        if missing:
            raise StateError(f"trustees {missing} have not decrypted")

    def _guard_p_decryption_to_pp_decryption(self, election: Election):
        available = sum(1 for t in self._trustees(election) if t.available)
        if available < election.threshold:
            raise StateError(
                f"only {available} trustees decrypted, {election.threshold} needed"
            )
        if available == election.trustee_count:
            raise StateError("every trustee decrypted, nothing to compensate")

    def _guard_pp_decryption_to_done(self, election: Election):
        pending = [
            t.index
            for t in self._trustees(election)
            if t.available and not self.repository.has_compensations(election.id, t.index)
        ]
        if pending:
            raise StateError(f"trustees {pending} have not submitted compensations")

    # -- entry hooks; each computes first and returns a commit for the side effects

    def _reset_waiting(self, election: Election):
        for t in self._trustees(election):
            t.waiting = False

    def _enter_epkb(self, election: Election):
        return lambda: self._reset_waiting(election)

    def _enter_keyceremony_finished(self, election: Election):
        return lambda: self.key_ceremony.finish(election)

    def _enter_open(self, election: Election):
        def commit():
            election.start_time = self.clock()
            identities = [t.identity for t in self._trustees(election)]
            election.fingerprint = election_fingerprint(election, identities)

        return commit

    def _enter_p_decryption(self, election: Election):
        tallies = self.ballots.accumulate_tallies(election)

        def commit():
            self.repository.replace_tallies(election.id, tallies)
            self._reset_waiting(election)

        return commit

    def _enter_pp_decryption(self, election: Election):
        def commit():
            for t in self._trustees(election):
                # trustees absent from phase P have nothing to do here
                t.waiting = not t.available
            self.decryption.compute_lagrange_coefficients(election)

        return commit

    def _enter_done(self, election: Election):
        result, spoiled = self.decryption.evaluate_result(election)

        def commit():
            election.result = result
            for ballot_id, selections in spoiled.items():
                self.repository.ballot(election.id, ballot_id).decrypted = selections

        return commit
