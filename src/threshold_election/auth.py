from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .errors import IdentityError


class Role(str, Enum):
    AUTHORITY = "authority"
    TRUSTEE = "trustee"
    VOTER = "voter"


@dataclass(frozen=True)
class Caller:
    """Identity and role of whoever is calling an entry point

    The transport layer establishes this before any engine call; the engines
    only compare identities against election membership.
    """

    identity: str
    role: Role


def issue_caller_token(k_token: bytes, caller: Caller) -> Tuple[str, str]:
    """Issue a bearer token naming the caller and its MAC

    Args
    - k_token: server-side secret key for token MACs
    - caller: identity and role to bind into the token

    Returns: (token_hex, mac_hex)
    """

    if not isinstance(k_token, (bytes, bytearray)):
        raise TypeError("k_token must be bytes")

    token = f"{caller.role.value}|{caller.identity}".encode("utf-8")
    mac = hmac.new(k_token, token, hashlib.sha256).hexdigest()

    return token.hex(), mac


def verify_caller_token(k_token: bytes, token_hex: str, mac_hex: str) -> Caller:
    """Check a presented token's MAC and return the caller it names"""

    try:
        token = bytes.fromhex(token_hex)
    except ValueError:
        raise IdentityError("malformed caller token") from None

    expected = hmac.new(k_token, token, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, mac_hex):
        raise IdentityError("caller token MAC does not verify")

    role, _, identity = token.decode("utf-8").partition("|")
    try:
        return Caller(identity=identity, role=Role(role))
    except ValueError:
        raise IdentityError(f"unknown role {role!r}") from None


def bearer_header(k_token: bytes, caller: Caller) -> str:
    """Value for the Authorization header: 'Bearer <token>.<mac>'"""

    token_hex, mac_hex = issue_caller_token(k_token, caller)
    return f"Bearer {token_hex}.{mac_hex}"


def parse_bearer_header(k_token: bytes, header: str | None) -> Caller:
    if not header or not header.startswith("Bearer "):
        raise IdentityError("missing bearer token")
    token_hex, _, mac_hex = header[len("Bearer "):].partition(".")
    return verify_caller_token(k_token, token_hex, mac_hex)


def require_role(caller: Caller, *roles: Role):
    if caller.role not in roles:
        raise IdentityError(f"{caller.identity} acts as {caller.role.value}, not allowed here")
