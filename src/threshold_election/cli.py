"""Small CLI for talking to the election server.

Usage examples:
    threshold-election token --key secret --identity admin@example.org --role authority
    threshold-election show 1
    threshold-election state 1 EPKB
    threshold-election confirm 1 --code 3FA2...
    threshold-election result 1
"""

import argparse
import json
import logging
import os
import sys

import requests

from .auth import Caller, Role, bearer_header
from .utils import setup_logging

logger = logging.getLogger(__name__)

BASE = os.environ.get("ELECTION_URL", "http://127.0.0.1:5000")
TIMEOUT = 10


def _headers(auth: str):
    return {"Authorization": auth} if auth else {}


def _show(r):
    print(json.dumps(r.json(), indent=2, sort_keys=True))
    if r.status_code >= 400:
        logger.warning("server answered %s", r.status_code)
    return r.status_code < 400


def token(key: str, identity: str, role: str):
    print(bearer_header(key.encode(), Caller(identity, Role(role))))
    return True


def show(election_id: int, auth: str):
    r = requests.get(f"{BASE}/elections/{election_id}", headers=_headers(auth), timeout=TIMEOUT)
    return _show(r)


def state(election_id: int, target: str, auth: str):
    r = requests.post(
        f"{BASE}/elections/{election_id}/state",
        json={"state": target},
        headers=_headers(auth),
        timeout=TIMEOUT,
    )
    return _show(r)


def confirm(election_id: int, code: str, auth: str):
    r = requests.post(
        f"{BASE}/elections/{election_id}/confirm",
        json={"tracking_code": code},
        headers=_headers(auth),
        timeout=TIMEOUT,
    )
    return _show(r)


def tallies(election_id: int, auth: str):
    r = requests.get(f"{BASE}/elections/{election_id}/tallies", headers=_headers(auth), timeout=TIMEOUT)
    return _show(r)


def result(election_id: int, auth: str):
    r = requests.get(f"{BASE}/elections/{election_id}/result", headers=_headers(auth), timeout=TIMEOUT)
    return _show(r)


def verify_chain(election_id: int, auth: str):
    r = requests.get(
        f"{BASE}/elections/{election_id}/tracking-chain", headers=_headers(auth), timeout=TIMEOUT
    )
    return _show(r)


def main(argv=None):
    p = argparse.ArgumentParser(prog="threshold-election")
    p.add_argument("--auth", default=os.environ.get("ELECTION_AUTH", ""),
                   help="Authorization header value, see the token command")
    p.add_argument("--log-level", default="WARNING")
    sub = p.add_subparsers(dest="cmd")

    t = sub.add_parser("token")
    t.add_argument("--key", required=True)
    t.add_argument("--identity", required=True)
    t.add_argument("--role", required=True, choices=[r.value for r in Role])

    for name in ("show", "tallies", "result", "verify-chain"):
        s = sub.add_parser(name)
        s.add_argument("election_id", type=int)

    s = sub.add_parser("state")
    s.add_argument("election_id", type=int)
    s.add_argument("target")

    c = sub.add_parser("confirm")
    c.add_argument("election_id", type=int)
    c.add_argument("--code", required=True)

    args = p.parse_args(argv)
    setup_logging(args.log_level)

    if args.cmd == "token":
        ok = token(args.key, args.identity, args.role)
    elif args.cmd == "show":
        ok = show(args.election_id, args.auth)
    elif args.cmd == "state":
        ok = state(args.election_id, args.target, args.auth)
    elif args.cmd == "confirm":
        ok = confirm(args.election_id, args.code, args.auth)
    elif args.cmd == "tallies":
        ok = tallies(args.election_id, args.auth)
    elif args.cmd == "result":
        ok = result(args.election_id, args.auth)
    elif args.cmd == "verify-chain":
        ok = verify_chain(args.election_id, args.auth)
    else:
        p.print_help()
        return 2
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
