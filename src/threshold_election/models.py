"""Records shared by the engines and the repository"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .group import Ciphertext
from .proofs import (
    ChaumPedersenProof,
    ConstantChaumPedersenProof,
    DisjunctiveChaumPedersenProof,
    SchnorrProof,
)


class Phase(str, Enum):
    AUX_KEYS = "AUX_KEYS"
    EPKB = "EPKB"
    KEYCEREMONY_FINISHED = "KEYCEREMONY_FINISHED"
    OPEN = "OPEN"
    P_DECRYPTION = "P_DECRYPTION"
    PP_DECRYPTION = "PP_DECRYPTION"
    DONE = "DONE"


@dataclass(frozen=True)
class Contest:
    """Static ballot shape for one contest

    Attributes
    - index: position on the ballot, from 0
    - name: contest text
    - options: option texts; placeholders are not listed here
    - max_selections: selection limit, also the number of placeholders
    """

    index: int
    name: str
    options: Tuple[str, ...]
    max_selections: int

    @property
    def contest_id(self) -> str:
        return f"contest-{self.index}"

    @property
    def size(self) -> int:
        """Ciphertexts carried per ballot: real options plus placeholders"""

        return len(self.options) + self.max_selections

    def option_id(self, option_index: int) -> str:
        if option_index < len(self.options):
            return f"{self.contest_id}-option-{option_index}"
        return f"{self.contest_id}-placeholder-{option_index - len(self.options)}"

    def is_placeholder(self, option_index: int) -> bool:
        return option_index >= len(self.options)


@dataclass
class Trustee:
    identity: str
    index: int
    is_bot: bool = False
    aux_key: Optional[str] = None
    # commitments[j] proves knowledge of the j-th polynomial coefficient
    commitments: List[SchnorrProof] = field(default_factory=list)
    # encrypted backups addressed to this trustee, keyed by sender index
    backups: Dict[int, str] = field(default_factory=dict)
    available: bool = False
    waiting: bool = False
    lagrange_coefficient: Optional[int] = None
    lagrange_set: Tuple[int, ...] = ()

    @property
    def primary_key(self) -> int:
        return self.commitments[0].public_key


@dataclass
class Election:
    id: int
    title: str
    authority: str
    threshold: int
    trustee_count: int
    end_time: datetime
    contests: Tuple[Contest, ...]
    voters: Tuple[str, ...] = ()
    has_bot: bool = False
    phase: Phase = Phase.AUX_KEYS
    start_time: Optional[datetime] = None
    joint_key: Optional[int] = None
    manifest_hash: Optional[int] = None
    commitment_hash: Optional[int] = None
    extended_base_hash: Optional[int] = None
    fingerprint: Optional[int] = None
    latest_tracking_code: Optional[str] = None
    result: Optional[Dict[int, List[int]]] = None

    def contest(self, index: int) -> Contest:
        return self.contests[index]


@dataclass(frozen=True)
class EncryptedOption:
    contest_index: int
    option_index: int
    ciphertext: Ciphertext
    proof: DisjunctiveChaumPedersenProof


@dataclass
class Ballot:
    id: int
    election_id: int
    encryption_id: str
    voter: str
    device_info: str
    timestamp: datetime
    options: Tuple[EncryptedOption, ...]
    contest_proofs: Dict[int, ConstantChaumPedersenProof]
    submitted: bool = False
    latest_tracking_code: Optional[str] = None
    previous_tracking_code: Optional[str] = None
    decrypted: Optional[Dict[int, List[int]]] = None

    def ciphertexts_for(self, contest_index: int) -> List[Ciphertext]:
        return [
            o.ciphertext
            for o in sorted(self.options, key=lambda o: o.option_index)
            if o.contest_index == contest_index
        ]

    def option(self, contest_index: int, option_index: int) -> EncryptedOption:
        for o in self.options:
            if o.contest_index == contest_index and o.option_index == option_index:
                return o
        raise KeyError((contest_index, option_index))


@dataclass(frozen=True)
class Tally:
    election_id: int
    contest_index: int
    option_index: int
    ciphertext: Ciphertext


@dataclass(frozen=True)
class BallotSubmission:
    """What a voter device sends: ciphertexts and proofs per contest index"""

    encryption_id: str
    timestamp: datetime
    ciphertexts: Mapping[int, Sequence[Ciphertext]]
    option_proofs: Mapping[int, Sequence[DisjunctiveChaumPedersenProof]]
    contest_proofs: Mapping[int, ConstantChaumPedersenProof]
    device_info: str = ""


@dataclass(frozen=True)
class DecryptionShare:
    share: int
    proof: ChaumPedersenProof


# A decryption target is a spoiled ballot id, or None for the tally
Target = Optional[int]
OptionKey = Tuple[Target, int, int]

# target -> contest index -> one share per option (placeholders included)
DecryptionSubmission = Mapping[Target, Mapping[int, Sequence[DecryptionShare]]]


@dataclass(frozen=True)
class PartialDecryption:
    trustee_index: int
    target: Target
    contest_index: int
    option_index: int
    share: int
    proof: ChaumPedersenProof


@dataclass(frozen=True)
class PartialPartialDecryption:
    trustee_index: int
    missing_index: int
    target: Target
    contest_index: int
    option_index: int
    share: int
    proof: ChaumPedersenProof
