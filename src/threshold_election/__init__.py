"""threshold_election - threshold ElGamal election engine

Key ceremony, ballot verification, hash-chained tracking codes and threshold
decryption with compensation for absent trustees, driven through
`ElectionService` and gated by the election lifecycle. Voters build their
submissions with `encode_selections` and `encrypt_ballot`.
"""

from .auth import Caller, Role
from .config import EngineConfig, load_config
from .encrypt import encode_selections, encrypt_ballot
from .errors import (
    CompletenessError,
    ConfigurationError,
    ElectionError,
    IdentityError,
    NotFoundError,
    ProofError,
    StateError,
)
from .models import Contest, Phase
from .service import ElectionService

__all__ = [
    "Caller",
    "Role",
    "EngineConfig",
    "load_config",
    "encode_selections",
    "encrypt_ballot",
    "ElectionError",
    "ConfigurationError",
    "StateError",
    "ProofError",
    "NotFoundError",
    "CompletenessError",
    "IdentityError",
    "Contest",
    "Phase",
    "ElectionService",
]
