"""Flask API over ElectionService.

Endpoints (all under /elections):
- POST /                          -> create an election (authority)
- GET  /<id>                      -> election record
- POST /<id>/state                -> request a phase transition (authority)
- POST /<id>/aux-key, GET /<id>/aux-keys
- POST /<id>/keys, GET /<id>/commitments, GET /<id>/backups
- POST /<id>/ballots, POST /<id>/confirm, GET /<id>/tracking-chain
- GET  /<id>/tallies, GET /<id>/spoiled
- POST /<id>/decryptions, POST /<id>/compensations
- GET  /<id>/result

Every request carries `Authorization: Bearer <token>.<mac>` (see auth.py).
Errors come back as {"error": <kind>, "detail": <message>}.
"""

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, g, jsonify, request

from .auth import Caller, parse_bearer_header
from .config import load_config
from .errors import ConfigurationError, ElectionError
from .group import to_hex
from .models import BallotSubmission, Contest, DecryptionShare, Election, Phase
from .service import ElectionService
from .utils import from_epoch_ms, setup_logging, to_epoch_ms
from .wire import (
    decode_ciphertext,
    decode_constant_proof,
    decode_disjunctive_proof,
    decode_generic_proof,
    decode_schnorr_proof,
    encode_backup,
    encode_ciphertext,
    encode_schnorr_proof,
)

logger = logging.getLogger(__name__)


def _hex(x: Optional[int]) -> Optional[str]:
    return None if x is None else to_hex(x)


def election_to_json(election: Election) -> Dict[str, Any]:
    return {
        "id": election.id,
        "title": election.title,
        "authority": election.authority,
        "state": election.phase.value,
        "threshold": election.threshold,
        "trustee_count": election.trustee_count,
        "has_bot": election.has_bot,
        "start_time": to_epoch_ms(election.start_time) if election.start_time else None,
        "end_time": to_epoch_ms(election.end_time),
        "contests": [
            {"index": c.index, "name": c.name, "options": list(c.options), "max": c.max_selections}
            for c in election.contests
        ],
        "joint_key": _hex(election.joint_key),
        "manifest_hash": _hex(election.manifest_hash),
        "extended_base_hash": _hex(election.extended_base_hash),
        "fingerprint": _hex(election.fingerprint),
        "latest_tracking_code": election.latest_tracking_code,
    }


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ConfigurationError("request body must be a JSON object")
    return data


def _field(data: Dict[str, Any], name: str, kind=None):
    if name not in data:
        raise ConfigurationError(f"missing field '{name}'")
    value = data[name]
    if kind is not None and not isinstance(value, kind):
        raise ConfigurationError(f"field '{name}' has the wrong type")
    return value


def _int_keys(mapping: Dict[str, Any], what: str) -> Dict[int, Any]:
    try:
        return {int(k): v for k, v in mapping.items()}
    except (TypeError, ValueError, AttributeError):
        raise ConfigurationError(f"{what} must be keyed by integers") from None


def _decode_shares(per_contest: Dict[str, Any]):
    out = {}
    for contest_index, entry in _int_keys(per_contest, "contests").items():
        shares = _field(entry, "shares", list)
        proofs = _field(entry, "proofs", list)
        if len(shares) != len(proofs):
            raise ConfigurationError(f"contest {contest_index}: shares and proofs differ in length")
        try:
            out[contest_index] = [
                DecryptionShare(int(s, 16), decode_generic_proof(p)) for s, p in zip(shares, proofs)
            ]
        except (TypeError, ValueError):
            raise ConfigurationError(f"contest {contest_index}: malformed share") from None
    return out


def decode_decryption_submission(data: Dict[str, Any]):
    submission = {None: _decode_shares(_field(data, "tally", dict))}
    for ballot_id, per_contest in _int_keys(data.get("spoiled", {}), "spoiled ballots").items():
        submission[ballot_id] = _decode_shares(per_contest)
    return submission


def decode_ballot_submission(data: Dict[str, Any]) -> BallotSubmission:
    contests = _int_keys(_field(data, "contests", dict), "contests")
    ciphertexts, option_proofs, contest_proofs = {}, {}, {}
    for index, entry in contests.items():
        ciphertexts[index] = [decode_ciphertext(c) for c in _field(entry, "ciphertexts", list)]
        option_proofs[index] = [decode_disjunctive_proof(p) for p in _field(entry, "proofs", list)]
        contest_proofs[index] = decode_constant_proof(_field(entry, "sum_proof", str))
    return BallotSubmission(
        encryption_id=_field(data, "encryption_id", str),
        timestamp=from_epoch_ms(_field(data, "timestamp", int)),
        ciphertexts=ciphertexts,
        option_proofs=option_proofs,
        contest_proofs=contest_proofs,
        device_info=str(data.get("device_info", "")),
    )


def create_app(service: Optional[ElectionService] = None, token_key: Optional[bytes] = None) -> Flask:
    app = Flask(__name__)
    service = service or ElectionService()
    if token_key is None:
        token_key = os.environ.get("ELECTION_TOKEN_KEY", "").encode() or os.urandom(32)
    app.config["SERVICE"] = service
    app.config["TOKEN_KEY"] = token_key

    @app.before_request
    def authenticate():
        g.caller = parse_bearer_header(token_key, request.headers.get("Authorization"))

    @app.errorhandler(ElectionError)
    def election_error(e: ElectionError):
        if e.status >= 500:
            logger.error("%s: %s", type(e).__name__, e)
        else:
            logger.warning("%s %s rejected: %s", request.method, request.path, e)
        return jsonify(e.to_dict()), e.status

    def caller() -> Caller:
        return g.caller

    @app.route("/elections", methods=["POST"])
    def create_election():
        data = _body()
        contests = [
            Contest(
                index=i,
                name=str(_field(c, "name")),
                options=tuple(str(o) for o in _field(c, "options", list)),
                max_selections=int(_field(c, "max", int)),
            )
            for i, c in enumerate(_field(data, "contests", list))
        ]
        election = service.create_election(
            caller(),
            title=_field(data, "title", str),
            end_time=from_epoch_ms(_field(data, "end_time", int)),
            contests=contests,
            trustees=_field(data, "trustees", list),
            threshold=_field(data, "threshold", int),
            voters=data.get("voters", []),
            has_bot=bool(data.get("has_bot", False)),
        )
        return jsonify({"election": election_to_json(election)}), 201

    @app.route("/elections/<int:election_id>", methods=["GET"])
    def get_election(election_id: int):
        return jsonify({"election": election_to_json(service.get_election(election_id))})

    @app.route("/elections/<int:election_id>/state", methods=["POST"])
    def transition(election_id: int):
        target = _field(_body(), "state", str)
        try:
            phase = Phase(target)
        except ValueError:
            raise ConfigurationError(f"unknown state {target!r}") from None
        return jsonify({"state": service.transition(caller(), election_id, phase).value})

    @app.route("/elections/<int:election_id>/aux-key", methods=["POST"])
    def submit_aux_key(election_id: int):
        service.submit_aux_key(caller(), election_id, _field(_body(), "aux_key", str))
        return jsonify({"status": "accepted"}), 201

    @app.route("/elections/<int:election_id>/aux-keys", methods=["GET"])
    def get_aux_keys(election_id: int):
        keys = service.get_aux_keys(election_id)
        return jsonify({"aux_keys": {str(k): v for k, v in keys.items()}})

    @app.route("/elections/<int:election_id>/keys", methods=["POST"])
    def submit_keys(election_id: int):
        data = _body()
        decoded = sorted(
            (decode_schnorr_proof(p) for p in _field(data, "proofs", list)), key=lambda d: d[0]
        )
        orders = [order for order, _ in decoded]
        if orders != list(range(len(orders))):
            raise ConfigurationError("proof orders must be 0..t-1 without gaps")
        backups = _int_keys(_field(data, "backups", dict), "backups")
        service.submit_keys_and_backups(
            caller(), election_id, [proof for _, proof in decoded], backups
        )
        return jsonify({"status": "accepted"}), 201

    @app.route("/elections/<int:election_id>/commitments", methods=["GET"])
    def get_commitments(election_id: int):
        commitments = service.get_commitments(election_id)
        return jsonify(
            {
                "commitments": {
                    str(index): [encode_schnorr_proof(j, p) for j, p in enumerate(proofs)]
                    for index, proofs in commitments.items()
                }
            }
        )

    @app.route("/elections/<int:election_id>/backups", methods=["GET"])
    def get_backups(election_id: int):
        missing_only = request.args.get("missing_only", "false").lower() == "true"
        backups = service.get_backups_for(caller(), election_id, missing_only=missing_only)
        return jsonify({"backups": [encode_backup(s, b) for s, b in sorted(backups.items())]})

    @app.route("/elections/<int:election_id>/ballots", methods=["POST"])
    def submit_ballot(election_id: int):
        ballot = service.submit_ballot(caller(), election_id, decode_ballot_submission(_body()))
        return jsonify({"tracking_code": ballot.latest_tracking_code, "ballot_id": ballot.id}), 201

    @app.route("/elections/<int:election_id>/confirm", methods=["POST"])
    def confirm_ballot(election_id: int):
        code = _field(_body(), "tracking_code", str)
        ballot = service.submit_confirmation(caller(), election_id, code)
        return jsonify({"status": "submitted", "ballot_id": ballot.id})

    @app.route("/elections/<int:election_id>/tracking-chain", methods=["GET"])
    def verify_chain(election_id: int):
        return jsonify({"valid": service.verify_tracking_chain(election_id)})

    @app.route("/elections/<int:election_id>/tallies", methods=["GET"])
    def get_tallies(election_id: int):
        out: Dict[str, list] = {}
        for tally in service.get_tallies(election_id):
            out.setdefault(str(tally.contest_index), []).append(encode_ciphertext(tally.ciphertext))
        return jsonify({"tallies": out})

    @app.route("/elections/<int:election_id>/spoiled", methods=["GET"])
    def get_spoiled(election_id: int):
        out = {}
        for ballot in service.get_spoiled_ballots(election_id):
            out[str(ballot.id)] = {
                str(c.index): [encode_ciphertext(ct) for ct in ballot.ciphertexts_for(c.index)]
                for c in service.get_election(election_id).contests
            }
        return jsonify({"ballots": out})

    @app.route("/elections/<int:election_id>/decryptions", methods=["POST"])
    def submit_decryption(election_id: int):
        service.submit_partial_decryption(
            caller(), election_id, decode_decryption_submission(_body())
        )
        return jsonify({"status": "accepted"}), 201

    @app.route("/elections/<int:election_id>/compensations", methods=["POST"])
    def submit_compensations(election_id: int):
        data = _int_keys(_body(), "missing trustees")
        submissions = {m: decode_decryption_submission(entry) for m, entry in data.items()}
        service.submit_compensations(caller(), election_id, submissions)
        return jsonify({"status": "accepted"}), 201

    @app.route("/elections/<int:election_id>/result", methods=["GET"])
    def get_result(election_id: int):
        result = service.get_result(election_id)
        return jsonify({"result": {str(k): v for k, v in result.items()}})

    return app


def main():
    config = load_config(os.environ.get("ELECTION_CONFIG"))
    setup_logging(config.log_level, config.log_file)
    app = create_app(ElectionService(config=config))
    app.run(host=os.environ.get("ELECTION_HOST", "127.0.0.1"), port=int(os.environ.get("ELECTION_PORT", "5000")))


if __name__ == "__main__":
    main()
