import dataclasses
from itertools import permutations

import pytest

from conftest import AUTHORITY, trustee_caller
from threshold_election.errors import ConfigurationError, IdentityError, ProofError, StateError
from threshold_election.group import Q, g_pow_p, hash_elems, rand_q, to_hex
from threshold_election.key_ceremony import (
    combine_joint_key,
    generate_backup_share,
    verify_backup,
)
from threshold_election.models import Phase
from threshold_election.transport import seal
from threshold_election.trustee import GuardianKeys


def test_joint_key_is_order_independent():
    keys = [g_pow_p(rand_q()) for _ in range(4)]
    expected = combine_joint_key(keys)
    for perm in permutations(keys):
        assert combine_joint_key(perm) == expected


def test_backup_share_matches_polynomial():
    keys = GuardianKeys(1, 3)
    commitments = [c.public_key for c in keys.commitments]
    for i in (2, 3, 7):
        assert generate_backup_share(commitments, i) == g_pow_p(keys.polynomial_at(i))
        assert verify_backup(commitments, keys.polynomial_at(i), i)
        assert not verify_backup(commitments, (keys.polynomial_at(i) + 1) % Q, i)


def test_backup_share_is_deterministic():
    keys = GuardianKeys(2, 2)
    commitments = [c.public_key for c in keys.commitments]
    assert generate_backup_share(commitments, 3) == generate_backup_share(commitments, 3)


def test_index_zero_is_refused():
    keys = GuardianKeys(1, 2)
    with pytest.raises(ConfigurationError):
        generate_backup_share([c.public_key for c in keys.commitments], 0)


def test_backups_open_only_for_their_recipient():
    sender, recipient, other = GuardianKeys(1, 2), GuardianKeys(2, 2), GuardianKeys(3, 2)
    backups = sender.backups_for({2: recipient.aux_public_key(), 3: other.aux_public_key()})
    commitments = [c.public_key for c in sender.commitments]
    assert recipient.check_backup(1, commitments, backups[2]) == sender.polynomial_at(2)
    with pytest.raises(ProofError):
        recipient.open_backup(1, backups[3])


def test_full_ceremony_fixes_joint_key_and_hashes(flow, service):
    election = flow.setup(n=3, t=2)
    assert election.phase is Phase.OPEN
    assert election.joint_key == combine_joint_key(k.public_key for k in flow.keys.values())
    assert election.extended_base_hash is not None
    assert election.fingerprint is not None
    assert election.start_time == flow.clock()
    for index, trustee in enumerate(service.repository.trustees(election.id), start=1):
        assert sorted(trustee.backups) == [i for i in (1, 2, 3) if i != index]


def test_extended_base_hash_depends_on_commitments(flow, service, clock):
    first = flow.key_ceremony(flow.create(n=2, t=2))
    second = flow.key_ceremony(flow.create(n=2, t=2))
    assert first.manifest_hash == second.manifest_hash
    assert first.extended_base_hash != second.extended_base_hash


def _to_epkb(flow, service, n=3, t=2, has_bot=False):
    election = flow.create(n=n, t=t, has_bot=has_bot)
    for i, k in flow.keys.items():
        service.submit_aux_key(trustee_caller(i), election.id, k.aux_public_key())
    service.transition(AUTHORITY, election.id, Phase.EPKB)
    return election


def test_duplicate_aux_key_rejected(flow, service):
    election = flow.create(n=2, t=1)
    service.submit_aux_key(trustee_caller(1), election.id, flow.keys[1].aux_public_key())
    with pytest.raises(StateError):
        service.submit_aux_key(trustee_caller(1), election.id, flow.keys[1].aux_public_key())


def test_unknown_trustee_rejected(flow, service):
    election = flow.create(n=2, t=1)
    with pytest.raises(IdentityError):
        service.submit_aux_key(trustee_caller(9), election.id, flow.keys[1].aux_public_key())


def test_keys_rejected_outside_epkb(flow, service):
    election = flow.create(n=2, t=1)
    keys = flow.keys[1]
    with pytest.raises(StateError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments, {})


def test_wrong_number_of_commitments_rejected(flow, service):
    election = _to_epkb(flow, service)
    keys = flow.keys[1]
    backups = keys.backups_for(service.get_aux_keys(election.id))
    with pytest.raises(ConfigurationError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments[:1], backups)
    assert service.repository.trustee(election.id, 1).commitments == []


def test_incomplete_backups_rejected_without_partial_writes(flow, service):
    election = _to_epkb(flow, service)
    keys = flow.keys[1]
    backups = keys.backups_for(service.get_aux_keys(election.id))
    del backups[3]
    with pytest.raises(ConfigurationError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments, backups)
    assert service.repository.trustee(election.id, 2).backups == {}


def test_bad_schnorr_proof_rejects_whole_submission(flow, service):
    election = _to_epkb(flow, service)
    keys = flow.keys[1]
    backups = keys.backups_for(service.get_aux_keys(election.id))
    broken = list(keys.commitments)
    broken[1] = dataclasses.replace(broken[1], response=(broken[1].response + 1) % Q)
    with pytest.raises(ProofError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, broken, backups)
    assert service.repository.trustee(election.id, 1).commitments == []
    assert service.repository.trustee(election.id, 2).backups == {}


def test_duplicate_key_submission_rejected(flow, service):
    election = _to_epkb(flow, service)
    keys = flow.keys[1]
    backups = keys.backups_for(service.get_aux_keys(election.id))
    service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments, backups)
    with pytest.raises(StateError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments, backups)


def test_automated_trustee_joins_on_its_own(flow, service):
    election = _to_epkb(flow, service, n=3, t=2, has_bot=True)
    bot = service.repository.trustee(election.id, 3)
    assert bot.is_bot
    assert bot.identity == service.config.bot_identity
    # entering EPKB made the bot publish commitments and backups
    assert len(bot.commitments) == 2
    assert 3 in service.repository.trustee(election.id, 1).backups


def test_automated_trustee_rejects_bad_backup(flow, service):
    election = _to_epkb(flow, service, n=3, t=2, has_bot=True)
    keys = flow.keys[1]
    aux = service.get_aux_keys(election.id)
    backups = keys.backups_for(aux)
    # a share that does not lie on trustee 1's polynomial, sealed correctly to the bot
    wrong = to_hex((keys.polynomial_at(3) + 1) % Q).encode()
    backups[3] = seal(aux[3], wrong, 1, 3)
    with pytest.raises(ProofError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments, backups)
    assert service.repository.trustee(election.id, 1).commitments == []
    assert 1 not in service.repository.trustee(election.id, 2).backups


def test_automated_trustee_rejects_undecryptable_backup(flow, service):
    election = _to_epkb(flow, service, n=3, t=2, has_bot=True)
    keys = flow.keys[1]
    aux = service.get_aux_keys(election.id)
    backups = keys.backups_for(aux)
    # sealed to the bot's key but claiming to come from trustee 2
    backups[3] = seal(aux[3], to_hex(keys.polynomial_at(3)).encode(), 2, 3)
    with pytest.raises(ProofError):
        service.submit_keys_and_backups(trustee_caller(1), election.id, keys.commitments, backups)


def test_finish_requires_every_trustee(flow, service):
    election = _to_epkb(flow, service)
    keys = flow.keys[1]
    service.submit_keys_and_backups(
        trustee_caller(1), election.id, keys.commitments, keys.backups_for(service.get_aux_keys(election.id))
    )
    with pytest.raises(StateError):
        service.transition(AUTHORITY, election.id, Phase.KEYCEREMONY_FINISHED)
    assert election.phase is Phase.EPKB
    assert election.joint_key is None


def test_hash_of_commitments_in_index_order(flow, service):
    election = flow.key_ceremony(flow.create(n=2, t=1))
    expected = hash_elems(
        [flow.keys[1].public_key],
        [flow.keys[2].public_key],
    )
    assert election.commitment_hash == expected
