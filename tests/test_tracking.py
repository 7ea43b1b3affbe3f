from concurrent.futures import ThreadPoolExecutor

from threshold_election.group import Ciphertext, from_hex, g_pow_p, hash_elems, to_hex
from threshold_election.tracking import (
    ballot_crypto_hash,
    contest_description_hash,
    contest_hash,
    manifest_hash,
    next_tracking_code,
    option_description_hash,
)
from threshold_election.utils import to_epoch_ms

from conftest import CHAIR, voter_caller


def test_next_tracking_code_layout():
    assert next_tracking_code(1, 2, 3) == hash_elems(1, 2, 3)


def test_contest_hash_folds_options_in_order():
    cts = [Ciphertext(g_pow_p(i + 1), g_pow_p(i + 2)) for i in range(CHAIR.size)]
    expected = hash_elems(
        CHAIR.contest_id,
        contest_description_hash(CHAIR),
        *[
            hash_elems(CHAIR.option_id(i), option_description_hash(CHAIR, i), hash_elems(ct.pad, ct.data))
            for i, ct in enumerate(cts)
        ],
    )
    assert contest_hash(CHAIR, cts) == expected
    assert contest_hash(CHAIR, list(reversed(cts))) != expected


def test_manifest_hash_changes_with_ballot_shape():
    assert manifest_hash("Board", [CHAIR]) != manifest_hash("Board 2", [CHAIR])
    assert option_description_hash(CHAIR, 0) != option_description_hash(CHAIR, 3)


def test_first_ballot_chains_from_extended_base_hash(flow, service):
    election = flow.setup(n=2, t=2)
    ballot = flow.vote(election, "alice@example.org", {0: [0]}, confirm=False)
    assert ballot.previous_tracking_code == to_hex(election.extended_base_hash)
    crypto = ballot_crypto_hash(
        ballot.encryption_id,
        election.manifest_hash,
        election.contests,
        [ballot.ciphertexts_for(0)],
    )
    expected = next_tracking_code(election.extended_base_hash, to_epoch_ms(ballot.timestamp), crypto)
    assert ballot.latest_tracking_code == to_hex(expected)


def test_chain_links_consecutive_ballots(flow, service, clock):
    election = flow.setup(n=2, t=2)
    ballots = []
    for voter in ("alice@example.org", "bob@example.org", "carol@example.org"):
        clock.advance(seconds=1)
        ballots.append(flow.vote(election, voter, {0: [1]}, confirm=False))
    for prev, cur in zip(ballots, ballots[1:]):
        assert cur.previous_tracking_code == prev.latest_tracking_code
    assert election.latest_tracking_code == ballots[-1].latest_tracking_code
    assert service.verify_tracking_chain(election.id)


def test_recomputing_from_genesis_reproduces_every_code(flow, service):
    election = flow.setup(n=2, t=2)
    ballots = [flow.vote(election, v, {0: [0]}) for v in ("alice@example.org", "bob@example.org")]
    assert service.chain.recompute(election, ballots) == [b.latest_tracking_code for b in ballots]


def test_altering_one_ballot_breaks_every_later_code(flow, service, clock):
    election = flow.setup(n=2, t=2)
    ballots = []
    for voter in ("alice@example.org", "bob@example.org", "carol@example.org", "dave@example.org"):
        clock.advance(seconds=1)
        ballots.append(flow.vote(election, voter, {0: [2]}))
    original = [b.latest_tracking_code for b in ballots]

    ballots[1].encryption_id = "forged-device"
    recomputed = service.chain.recompute(election, ballots)
    assert recomputed[0] == original[0]
    for before, after in zip(original[1:], recomputed[1:]):
        assert before != after
    assert not service.verify_tracking_chain(election.id)


def test_tracking_code_is_hex_of_hash_output(flow):
    election = flow.setup(n=2, t=2)
    ballot = flow.vote(election, "alice@example.org", {0: [0]}, confirm=False)
    code = ballot.latest_tracking_code
    assert code == code.upper()
    assert to_hex(from_hex(code)) == code


def test_concurrent_submissions_keep_one_linear_chain(flow, service):
    election = flow.setup(n=2, t=2)
    voters = [f"voter{i}@example.org" for i in range(8)]
    submissions = {
        v: flow.encrypt(election, {0: [i % CHAIR.size]}, encryption_id=f"enc-{v}")
        for i, v in enumerate(voters)
    }

    def submit(voter):
        return service.submit_ballot(voter_caller(voter), election.id, submissions[voter])

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(submit, voters))

    ballots = service.repository.ballots(election.id)
    assert len(ballots) == len(voters)
    assert ballots[0].previous_tracking_code == to_hex(election.extended_base_hash)
    for prev, cur in zip(ballots, ballots[1:]):
        assert cur.previous_tracking_code == prev.latest_tracking_code
    assert election.latest_tracking_code == ballots[-1].latest_tracking_code
    assert service.verify_tracking_chain(election.id)
