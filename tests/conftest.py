import os
import sys
from datetime import datetime, timedelta, timezone

import pytest


# Ensure repository src directory is on sys.path for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from threshold_election.auth import Caller, Role  # noqa: E402
from threshold_election.config import EngineConfig  # noqa: E402
from threshold_election.encrypt import encode_selections, encrypt_ballot  # noqa: E402
from threshold_election.models import Contest, Phase  # noqa: E402
from threshold_election.service import ElectionService  # noqa: E402
from threshold_election.trustee import GuardianKeys  # noqa: E402


AUTHORITY = Caller("admin@example.org", Role.AUTHORITY)

CHAIR = Contest(index=0, name="Chair", options=("Ada", "Grace", "Alan"), max_selections=1)


def trustee_caller(index: int) -> Caller:
    return Caller(f"trustee{index}@example.org", Role.TRUSTEE)


def voter_caller(name: str) -> Caller:
    return Caller(name, Role.VOTER)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ElectionFlow:
    """Drives an election through the service the way real trustees and voters would"""

    def __init__(self, service: ElectionService, clock: FakeClock):
        self.service = service
        self.clock = clock
        self.keys = {}

    def create(self, n=3, t=2, contests=(CHAIR,), has_bot=False, voters=()):
        humans = n - 1 if has_bot else n
        election = self.service.create_election(
            AUTHORITY,
            title="Board election",
            end_time=self.clock() + timedelta(days=1),
            contests=list(contests),
            trustees=[trustee_caller(i).identity for i in range(1, humans + 1)],
            threshold=t,
            voters=voters,
            has_bot=has_bot,
        )
        self.keys = {i: GuardianKeys(i, t) for i in range(1, humans + 1)}
        return election

    def key_ceremony(self, election):
        eid = election.id
        for i, k in self.keys.items():
            self.service.submit_aux_key(trustee_caller(i), eid, k.aux_public_key())
        self.service.transition(AUTHORITY, eid, Phase.EPKB)
        aux = self.service.get_aux_keys(eid)
        for i, k in self.keys.items():
            self.service.submit_keys_and_backups(
                trustee_caller(i), eid, k.commitments, k.backups_for(aux)
            )
        self.service.transition(AUTHORITY, eid, Phase.KEYCEREMONY_FINISHED)
        return election

    def setup(self, **kwargs):
        election = self.key_ceremony(self.create(**kwargs))
        self.service.transition(AUTHORITY, election.id, Phase.OPEN)
        return election

    def encrypt(self, election, choices, encryption_id="device-1", **kwargs):
        encoded = encode_selections(election.contests, choices)
        submission, _ = encrypt_ballot(
            election.joint_key,
            election.extended_base_hash,
            election.contests,
            encoded,
            encryption_id,
            self.clock(),
            **kwargs,
        )
        return submission

    def vote(self, election, voter, choices, confirm=True):
        submission = self.encrypt(election, choices, encryption_id=f"enc-{voter}")
        ballot = self.service.submit_ballot(voter_caller(voter), election.id, submission)
        if confirm:
            self.service.submit_confirmation(voter_caller(voter), election.id, ballot.latest_tracking_code)
        return ballot

    def close(self, election):
        self.clock.advance(days=2)
        return self.service.get_election(election.id).phase

    def partial_decrypt(self, election, available):
        eid = election.id
        targets = self.service.get_decryption_targets(eid)
        for i in available:
            self.service.submit_partial_decryption(
                trustee_caller(i), eid, self.keys[i].decrypt(targets, election.extended_base_hash)
            )

    def compensate(self, election, available):
        eid = election.id
        targets = self.service.get_decryption_targets(eid)
        missing = self.service.get_missing_trustees(eid)
        commitments = self.service.get_commitments(eid)
        for i in available:
            keys = self.keys[i]
            backups = self.service.get_backups_for(trustee_caller(i), eid)
            submissions = {}
            for m in missing:
                share = keys.check_backup(m, [c.public_key for c in commitments[m]], backups[m])
                submissions[m] = keys.decrypt(targets, election.extended_base_hash, secret=share)
            self.service.submit_compensations(trustee_caller(i), eid, submissions)

    def decrypt(self, election, available=None):
        """Run phase P (and PP when someone is missing), then finish"""

        eid = election.id
        available = sorted(self.keys if available is None else available)
        self.partial_decrypt(election, available)
        if all(t.available for t in self.service.repository.trustees(eid)):
            self.service.transition(AUTHORITY, eid, Phase.DONE)
        else:
            self.service.transition(AUTHORITY, eid, Phase.PP_DECRYPTION)
            self.compensate(election, available)
            self.service.transition(AUTHORITY, eid, Phase.DONE)
        return self.service.get_result(eid)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(clock):
    return ElectionService(config=EngineConfig(decrypt_workers=2), clock=clock)


@pytest.fixture
def flow(service, clock):
    return ElectionFlow(service, clock)
