import dataclasses
from itertools import combinations

import pytest

from conftest import AUTHORITY, trustee_caller
from threshold_election.errors import (
    CompletenessError,
    ConfigurationError,
    ProofError,
    StateError,
)
from threshold_election.group import Q, g_pow_p
from threshold_election.models import Contest, Phase


def _cast_standard_ballots(flow, election):
    flow.vote(election, "alice@example.org", {0: [0]})
    flow.vote(election, "bob@example.org", {0: [2]})
    flow.vote(election, "carol@example.org", {0: [0]})
    # a spoiled ballot, decrypted for inspection
    return flow.vote(election, "dave@example.org", {0: [1]}, confirm=False)


def test_single_ballot_with_all_trustees(flow):
    election = flow.setup(n=3, t=2)
    flow.vote(election, "alice@example.org", {0: [0]})
    flow.close(election)
    assert flow.decrypt(election) == {0: [1, 0, 0]}


def test_single_ballot_with_trustee_two_missing(flow):
    election = flow.setup(n=3, t=2)
    flow.vote(election, "alice@example.org", {0: [0]})
    flow.close(election)
    assert flow.decrypt(election, available=[1, 3]) == {0: [1, 0, 0]}


def test_round_trip_multiple_contests(flow):
    contests = (
        Contest(0, "Chair", ("Ada", "Grace", "Alan"), 1),
        Contest(1, "Committee", ("Barbara", "Edsger", "Donald", "Frances"), 2),
    )
    election = flow.setup(n=2, t=2, contests=contests)
    flow.vote(election, "alice@example.org", {0: [1], 1: [0, 3]})
    flow.vote(election, "bob@example.org", {0: [1], 1: [3]})
    flow.close(election)
    assert flow.decrypt(election) == {0: [0, 2, 0], 1: [1, 0, 0, 2]}


@pytest.mark.parametrize("available", [(1, 2), (1, 3), (2, 3), (1, 2, 3)])
def test_any_threshold_subset_gives_the_same_result(flow, service, available):
    election = flow.setup(n=3, t=2)
    _cast_standard_ballots(flow, election)
    flow.close(election)
    assert flow.decrypt(election, available=available) == {0: [2, 0, 1]}


def test_threshold_three_of_four_every_subset(flow, service):
    # one election per subset; results must match the full decryption
    results = []
    for available in list(combinations((1, 2, 3, 4), 3)) + [(1, 2, 3, 4)]:
        election = flow.setup(n=4, t=3)
        flow.vote(election, "alice@example.org", {0: [2]})
        flow.close(election)
        results.append(flow.decrypt(election, available=available))
    assert all(r == {0: [0, 0, 1]} for r in results)


def test_spoiled_ballots_are_decrypted(flow, service):
    election = flow.setup(n=3, t=2)
    spoiled = _cast_standard_ballots(flow, election)
    flow.close(election)
    flow.decrypt(election, available=[2, 3])
    assert spoiled.decrypted == {0: [0, 1, 0]}
    assert service.repository.ballots(election.id, submitted=True)[0].decrypted is None


def test_partial_decryption_proof_failure_rejects_whole_submission(flow, service):
    election = flow.setup(n=2, t=2)
    flow.vote(election, "alice@example.org", {0: [0]})
    flow.close(election)
    targets = service.get_decryption_targets(election.id)
    submission = flow.keys[1].decrypt(targets, election.extended_base_hash)
    shares = list(submission[None][0])
    shares[2] = dataclasses.replace(shares[2], share=g_pow_p(5))
    submission[None][0] = shares
    with pytest.raises(ProofError):
        service.submit_partial_decryption(trustee_caller(1), election.id, submission)
    trustee = service.repository.trustee(election.id, 1)
    assert not trustee.available
    assert service.repository.partial_decryptions(election.id, None, 0, 0) == {}


def test_partial_decryption_with_another_trustees_key_rejected(flow, service):
    election = flow.setup(n=2, t=2)
    flow.close(election)
    targets = service.get_decryption_targets(election.id)
    submission = flow.keys[2].decrypt(targets, election.extended_base_hash)
    with pytest.raises(ProofError):
        service.submit_partial_decryption(trustee_caller(1), election.id, submission)


def test_incomplete_partial_decryption_rejected(flow, service):
    election = flow.setup(n=2, t=2)
    spoiled = flow.vote(election, "alice@example.org", {0: [0]}, confirm=False)
    flow.close(election)
    targets = service.get_decryption_targets(election.id)
    submission = flow.keys[1].decrypt(targets, election.extended_base_hash)
    del submission[spoiled.id]
    with pytest.raises(ConfigurationError):
        service.submit_partial_decryption(trustee_caller(1), election.id, submission)


def test_duplicate_partial_decryption_rejected(flow, service):
    election = flow.setup(n=2, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1])
    with pytest.raises(StateError):
        flow.partial_decrypt(election, [1])


def test_partial_decryption_only_in_phase_p(flow, service):
    election = flow.setup(n=2, t=2)
    with pytest.raises(StateError):
        service.submit_partial_decryption(trustee_caller(1), election.id, {None: {}})


def test_compensation_for_present_trustee_rejected(flow, service):
    election = flow.setup(n=3, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1, 3])
    service.transition(AUTHORITY, election.id, Phase.PP_DECRYPTION)
    targets = service.get_decryption_targets(election.id)
    keys = flow.keys[1]
    bogus = keys.decrypt(targets, election.extended_base_hash)
    with pytest.raises(StateError):
        service.submit_compensations(trustee_caller(1), election.id, {3: bogus})


def test_compensation_with_wrong_backup_rejected(flow, service):
    election = flow.setup(n=3, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1, 3])
    service.transition(AUTHORITY, election.id, Phase.PP_DECRYPTION)
    targets = service.get_decryption_targets(election.id)
    # trustee 1 uses its own secret instead of the backup it holds for trustee 2
    submission = flow.keys[1].decrypt(targets, election.extended_base_hash)
    with pytest.raises(ProofError):
        service.submit_compensations(trustee_caller(1), election.id, {2: submission})
    assert not service.repository.has_compensations(election.id, 1)


def test_missing_trustee_cannot_compensate(flow, service):
    election = flow.setup(n=3, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1, 3])
    service.transition(AUTHORITY, election.id, Phase.PP_DECRYPTION)
    with pytest.raises(StateError):
        service.submit_compensations(trustee_caller(2), election.id, {})


def test_duplicate_compensation_rejected(flow, service):
    election = flow.setup(n=3, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1, 3])
    service.transition(AUTHORITY, election.id, Phase.PP_DECRYPTION)
    flow.compensate(election, [1])
    with pytest.raises(StateError):
        flow.compensate(election, [1])


def test_lagrange_coefficients_follow_available_set(flow, service):
    election = flow.setup(n=3, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1, 3])
    service.transition(AUTHORITY, election.id, Phase.PP_DECRYPTION)
    weights = service.decryption.compute_lagrange_coefficients(election)
    assert sorted(weights) == [1, 3]
    # w_1 = 3 / (3 - 1), w_3 = 1 / (1 - 3)
    assert weights[1] == (3 * pow(2, -1, Q)) % Q
    assert weights[3] == (1 * pow(-2, -1, Q)) % Q


def test_reconstruction_without_compensation_is_incomplete(flow, service):
    election = flow.setup(n=3, t=2)
    flow.close(election)
    flow.partial_decrypt(election, [1, 3])
    service.transition(AUTHORITY, election.id, Phase.PP_DECRYPTION)
    with pytest.raises(CompletenessError):
        service.decryption.reconstruct_missing_share(election, 2, None, 0, 0)


def test_decode_respects_discrete_log_bound(service):
    engine = service.decryption
    assert engine.dlog_max == 200_000
    assert engine.decode(g_pow_p(200_000)) == 200_000
    with pytest.raises(CompletenessError):
        engine.decode(g_pow_p(200_001))


def test_automated_trustee_covers_a_missing_human(flow, service):
    election = flow.setup(n=3, t=2, has_bot=True)
    flow.vote(election, "alice@example.org", {0: [0]})
    flow.vote(election, "bob@example.org", {0: [1]})
    flow.close(election)
    # the bot decrypted on entering P_DECRYPTION
    assert service.repository.trustee(election.id, 3).available
    assert flow.decrypt(election, available=[1]) == {0: [1, 1, 0]}


def test_result_not_available_before_done(flow, service):
    election = flow.setup(n=2, t=2)
    flow.close(election)
    with pytest.raises(StateError):
        service.get_result(election.id)
