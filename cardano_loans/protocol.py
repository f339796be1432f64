"""
protocol.py - Deployment parameters of one protocol instance

A protocol instance is a beacon policy id paired with a loan script hash.
Both are fixed at deployment, so every validator and builder receives the
same frozen LoanProtocol instead of reading globals.
"""

from __future__ import annotations
from dataclasses import dataclass
import hashlib
from typing import Optional

from .core import (
    Address, Credential, CredentialType, HASH_BYTES,
    _require_hash,
)
from . import tokens


DEFAULT_SEED = "cardano-loans-v1"


def _blake2b_224(data: bytes) -> str:
    return hashlib.blake2b(data, digest_size=HASH_BYTES).hexdigest()


@dataclass(frozen=True, slots=True)
class LoanProtocol:
    """
    One deployment of the loan protocol.

    Attributes:
        beacon_policy_id: Policy id of the beacon minting policy.
        loan_script_hash: Hash of the loan validator; the payment credential
            of every loan address.
        name: Label used in ledger output.

    Example:
        protocol = LoanProtocol.derive()
        addr = protocol.loan_address(borrower_stake_hash)
        protocol.ask_beacon   # policy id + "41736b"
    """
    beacon_policy_id: str
    loan_script_hash: str
    name: str = "loans"

    def __post_init__(self):
        _require_hash(self.beacon_policy_id, "beacon_policy_id")
        _require_hash(self.loan_script_hash, "loan_script_hash")

    @classmethod
    def derive(cls, seed: str = DEFAULT_SEED, name: Optional[str] = None) -> LoanProtocol:
        """Derive both script identifiers deterministically from a seed string."""
        script_hash = _blake2b_224(f"{seed}/loan-validator".encode())
        # The beacon policy is parameterised by the validator it indexes.
        policy_id = _blake2b_224(f"{seed}/beacon-policy/{script_hash}".encode())
        return cls(policy_id, script_hash, name or seed)

    def loan_address(self, stake_key_hash: str) -> Address:
        """Loan script address owned (through its staking credential) by a borrower."""
        return Address(Credential.script(self.loan_script_hash), Credential.key(stake_key_hash))

    def is_loan_address(self, address: Address) -> bool:
        return (address.payment.kind is CredentialType.SCRIPT
                and address.payment.hash == self.loan_script_hash)

    @property
    def ask_beacon(self) -> str:
        return tokens.ask_beacon(self.beacon_policy_id)

    @property
    def offer_beacon(self) -> str:
        return tokens.offer_beacon(self.beacon_policy_id)

    @property
    def active_beacon(self) -> str:
        return tokens.active_beacon(self.beacon_policy_id)

    def identity_token(self, key_hash: str) -> str:
        return tokens.identity_token(self.beacon_policy_id, key_hash)

    def __repr__(self) -> str:
        return (f"LoanProtocol({self.name}: policy={self.beacon_policy_id[:8]}, "
                f"script={self.loan_script_hash[:8]})")
