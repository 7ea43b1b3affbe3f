"""Entry points for every protocol step

Each call checks the caller, consults the lifecycle and then hands the plain
data to one engine. Engines validate completely before they write anything.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .auth import Caller, Role, require_role
from .ballots import BallotCryptoEngine
from .config import EngineConfig
from .decryption import ThresholdDecryptionEngine
from .errors import ConfigurationError, IdentityError, NotFoundError
from .group import Ciphertext
from .key_ceremony import KeyCeremonyEngine
from .lifecycle import ElectionLifecycle
from .models import (
    Ballot,
    BallotSubmission,
    Contest,
    DecryptionSubmission,
    Election,
    OptionKey,
    Phase,
    Tally,
    Trustee,
)
from .proofs import SchnorrProof
from .repository import ElectionRepository
from .tracking import TrackingChain
from .trustee import AutomatedTrustee, RemoteTrustee, TrusteeParticipant
from .utils import utc_now

logger = logging.getLogger(__name__)


class ElectionService:
    def __init__(
        self,
        repository: Optional[ElectionRepository] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository or ElectionRepository()
        self.config = config or EngineConfig()
        self.clock = clock
        self.chain = TrackingChain(self.repository)
        self.key_ceremony = KeyCeremonyEngine(self.repository)
        self.ballots = BallotCryptoEngine(
            self.repository, self.chain, clock, clock_skew_ms=self.config.clock_skew_ms
        )
        self.decryption = ThresholdDecryptionEngine(
            self.repository, dlog_max=self.config.dlog_max, workers=self.config.decrypt_workers
        )
        self.lifecycle = ElectionLifecycle(
            self.repository, clock, self.key_ceremony, self.ballots, self.decryption
        )
        self.lifecycle.listeners.append(self._notify_participants)
        self.participants: Dict[int, Dict[int, TrusteeParticipant]] = {}

    # -- helpers

    def _notify_participants(self, election: Election, phase: Phase):
        for participant in self.participants[election.id].values():
            participant.on_phase(election, phase)

    def _trustee_for(self, caller: Caller, election_id: int) -> Trustee:
        require_role(caller, Role.TRUSTEE)
        try:
            return self.repository.trustee_by_identity(election_id, caller.identity)
        except NotFoundError:
            raise IdentityError(f"{caller.identity} is not a trustee of election {election_id}") from None

    def _require_authority(self, caller: Caller, election: Election):
        require_role(caller, Role.AUTHORITY)
        if caller.identity != election.authority:
            raise IdentityError(f"{caller.identity} does not administer election {election.id}")

    def _require_voter(self, caller: Caller, election: Election):
        require_role(caller, Role.VOTER)
        if election.voters and caller.identity not in election.voters:
            raise IdentityError(f"{caller.identity} is not eligible in election {election.id}")

    def _inspect_backup(self, election_id: int):
        participants = self.participants[election_id]

        def inspect(recipient: int, sender: int, commitments: Sequence[SchnorrProof], blob: str):
            participants[recipient].inspect_backup(sender, commitments, blob)

        return inspect

    # -- election setup

    def create_election(
        self,
        caller: Caller,
        title: str,
        end_time: datetime,
        contests: Sequence[Contest],
        trustees: Sequence[str],
        threshold: int,
        voters: Sequence[str] = (),
        has_bot: bool = False,
    ) -> Election:
        """Create an election in AUX_KEYS with trustees indexed 1..n

        The automated trustee, when requested, takes index n and submits its
        auxiliary key immediately.
        """

        require_role(caller, Role.AUTHORITY)
        identities = list(trustees) + ([self.config.bot_identity] if has_bot else [])
        n = len(identities)
        if len(set(identities)) != n:
            raise ConfigurationError("trustee identities must be unique")
        if not 1 <= threshold <= n:
            raise ConfigurationError(f"threshold must be between 1 and {n}, got {threshold}")
        if not contests:
            raise ConfigurationError("an election needs at least one contest")
        for i, contest in enumerate(contests):
            if contest.index != i:
                raise ConfigurationError("contest indices must be 0..k-1 in order")
            if not contest.options:
                raise ConfigurationError(f"contest {i} has no options")
            if not 1 <= contest.max_selections <= len(contest.options):
                raise ConfigurationError(
                    f"contest {i} selection limit must be between 1 and {len(contest.options)}"
                )
        if end_time <= self.clock():
            raise ConfigurationError("closing time must be in the future")

        election = Election(
            id=0,
            title=title,
            authority=caller.identity,
            threshold=threshold,
            trustee_count=n,
            end_time=end_time,
            contests=tuple(contests),
            voters=tuple(voters),
            has_bot=has_bot,
        )
        records = [
            Trustee(identity=identity, index=i, is_bot=has_bot and i == n)
            for i, identity in enumerate(identities, start=1)
        ]
        self.repository.add_election(election, records)

        participants: Dict[int, TrusteeParticipant] = {
            t.index: RemoteTrustee(t.identity, t.index) for t in records if not t.is_bot
        }
        self.participants[election.id] = participants
        if has_bot:
            bot = AutomatedTrustee(self, self.config.bot_identity, n, threshold)
            participants[n] = bot
            bot.start(election.id)

        logger.info(
            "election %s created: %d trustees, threshold %d, %d contests",
            election.id,
            n,
            threshold,
            len(contests),
        )
        return election

    def transition(self, caller: Caller, election_id: int, target: Phase) -> Phase:
        election = self.repository.get_election(election_id)
        self._require_authority(caller, election)
        before = election.phase
        self.lifecycle.check_closing(election)
        if election.phase is target and before is not target:
            # closing time had already moved the election where it was asked to go
            return election.phase
        return self.lifecycle.test_and_set(election, target)

    # -- key ceremony

    def submit_aux_key(self, caller: Caller, election_id: int, aux_key: str):
        election = self.repository.get_election(election_id)
        trustee = self._trustee_for(caller, election_id)
        self.lifecycle.require(election, Phase.AUX_KEYS)
        self.key_ceremony.submit_aux_key(election, trustee, aux_key)

    def get_aux_keys(self, election_id: int) -> Dict[int, str]:
        return {
            t.index: t.aux_key
            for t in self.repository.trustees(election_id)
            if t.aux_key is not None
        }

    def submit_keys_and_backups(
        self,
        caller: Caller,
        election_id: int,
        commitments: Sequence[SchnorrProof],
        backups: Mapping[int, str],
    ):
        election = self.repository.get_election(election_id)
        trustee = self._trustee_for(caller, election_id)
        self.lifecycle.require(election, Phase.EPKB)
        self.key_ceremony.submit_keys_and_backups(
            election, trustee, commitments, backups, inspect=self._inspect_backup(election_id)
        )

    def get_commitments(self, election_id: int) -> Dict[int, List[SchnorrProof]]:
        return {t.index: list(t.commitments) for t in self.repository.trustees(election_id)}

    def get_backups_for(self, caller: Caller, election_id: int, missing_only: bool = False) -> Dict[int, str]:
        """Sealed backups addressed to the caller, keyed by sender index"""

        election = self.repository.get_election(election_id)
        trustee = self._trustee_for(caller, election_id)
        self.lifecycle.require(
            election,
            Phase.KEYCEREMONY_FINISHED,
            Phase.OPEN,
            Phase.P_DECRYPTION,
            Phase.PP_DECRYPTION,
            Phase.DONE,
        )
        backups = dict(trustee.backups)
        if missing_only:
            missing = {t.index for t in self.decryption.missing_trustees(election)}
            backups = {k: v for k, v in backups.items() if k in missing}
        return backups

    # -- voting

    def submit_ballot(self, caller: Caller, election_id: int, submission: BallotSubmission) -> Ballot:
        election = self.repository.get_election(election_id)
        self._require_voter(caller, election)
        self.lifecycle.check_closing(election)
        self.lifecycle.require(election, Phase.OPEN)
        return self.ballots.submit_ballot(election, caller.identity, submission)

    def submit_confirmation(self, caller: Caller, election_id: int, tracking_code: str) -> Ballot:
        election = self.repository.get_election(election_id)
        self._require_voter(caller, election)
        self.lifecycle.check_closing(election)
        self.lifecycle.require(election, Phase.OPEN)
        return self.ballots.submit_confirmation(election, caller.identity, tracking_code)

    def verify_tracking_chain(self, election_id: int) -> bool:
        return self.chain.verify_chain(self.repository.get_election(election_id))

    # -- decryption

    def get_decryption_targets(self, election_id: int) -> Dict[OptionKey, Ciphertext]:
        election = self.get_election(election_id)
        self.lifecycle.require(election, Phase.P_DECRYPTION, Phase.PP_DECRYPTION, Phase.DONE)
        return self.decryption.targets(election)

    def get_missing_trustees(self, election_id: int) -> List[int]:
        election = self.get_election(election_id)
        self.lifecycle.require(election, Phase.PP_DECRYPTION, Phase.DONE)
        return [t.index for t in self.decryption.missing_trustees(election)]

    def submit_partial_decryption(
        self, caller: Caller, election_id: int, submission: DecryptionSubmission
    ):
        election = self.repository.get_election(election_id)
        trustee = self._trustee_for(caller, election_id)
        self.lifecycle.check_closing(election)
        self.lifecycle.require(election, Phase.P_DECRYPTION)
        self.decryption.submit_partial_decryption(election, trustee, submission)

    def submit_compensations(
        self,
        caller: Caller,
        election_id: int,
        submissions: Mapping[int, DecryptionSubmission],
    ):
        election = self.repository.get_election(election_id)
        trustee = self._trustee_for(caller, election_id)
        self.lifecycle.require(election, Phase.PP_DECRYPTION)
        self.decryption.submit_compensations(election, trustee, submissions)

    # -- reads

    def get_election(self, election_id: int) -> Election:
        """The election record, after applying a due closing transition"""

        election = self.repository.get_election(election_id)
        self.lifecycle.check_closing(election)
        return election

    def get_tallies(self, election_id: int) -> List[Tally]:
        election = self.get_election(election_id)
        self.lifecycle.require(election, Phase.P_DECRYPTION, Phase.PP_DECRYPTION, Phase.DONE)
        return self.repository.tallies(election_id)

    def get_spoiled_ballots(self, election_id: int) -> List[Ballot]:
        election = self.get_election(election_id)
        self.lifecycle.require(election, Phase.P_DECRYPTION, Phase.PP_DECRYPTION, Phase.DONE)
        return self.repository.ballots(election_id, submitted=False)

    def get_result(self, election_id: int) -> Dict[int, List[int]]:
        election = self.get_election(election_id)
        self.lifecycle.require(election, Phase.DONE)
        return election.result
