"""
Core types and pure helpers for the loan validator.

This module provides the foundational data structures shared by every other module:
1. Constants: beacon tags, the lovelace unit, identifier sizes
2. Exceptions: LoanError and one subclass per rejection reason
3. Type aliases: AssetId, Value, Slot
4. Immutable ledger view types: Credential, Address, TxOutRef, TxOut,
   TxInInfo, ValidityInterval, TxInfo
5. Value helpers: multi-asset arithmetic on plain dicts

Nothing in this module mutates ledger state. A TxInfo is the read-only view
of one candidate transaction; validators only judge it.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
import hashlib
from typing import (
    Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Unit string used for the ledger's native currency in every value map.
LOVELACE = "lovelace"

# AssetId of the native currency (empty policy, empty name).
LOVELACE_ASSET: Tuple[str, str] = ("", "")

# Beacon tags. Token names are these strings ASCII-encoded, then hex-encoded.
ASK_TAG = "Ask"
OFFER_TAG = "Offer"
ACTIVE_TAG = "Active"

# Key hashes, script hashes and policy ids are blake2b-224 digests.
HASH_BYTES = 28
HASH_HEX_LENGTH = HASH_BYTES * 2

# The reference workflow advances the emulator 20 slots per block.
SLOTS_PER_BLOCK = 20


# ============================================================================
# TYPE ALIASES
# ============================================================================

# (policy_id, token_name), both hex. ("", "") is lovelace.
AssetId = Tuple[str, str]

# Mapping from asset unit (policy_id + token_name, or "lovelace") to quantity.
Value = Dict[str, int]

# Absolute slot number.
Slot = int


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LoanError(Exception):
    """Base exception for every reason a loan transaction can be rejected."""
    pass


class LoanArithmeticError(LoanError, ArithmeticError):
    """Raised for a malformed fraction or a non-positive principal or term."""
    pass


class MintingPolicyViolation(LoanError):
    """Raised when beacon or identity tokens are minted, burned or placed incorrectly."""
    pass


class SignerMissing(LoanError):
    """Raised when a required key hash neither signed nor proved possession of its token."""
    pass


class OverRepayment(LoanError):
    """Raised when a repayment would push the outstanding balance below zero."""
    pass


class PrematureClaim(LoanError):
    """Raised when a lender claims an unpaid loan before its expiration slot."""
    pass


class UnknownCollateralAsset(LoanError):
    """Raised when a transaction names collateral the offer does not price."""
    pass


class StaleValidityInterval(LoanError):
    """Raised when the validity interval cannot support the expiration check."""
    pass


class RecordShapeMismatch(LoanError):
    """Raised when a datum or redeemer does not decode to the expected variant."""
    pass


class LoanTermsMismatch(LoanError):
    """Raised when matched terms or a successor datum differ from what the transition requires."""
    pass


class InsufficientCollateral(LoanError):
    """Raised when locked collateral falls below what the outstanding balance requires."""
    pass


class MisdirectedFunds(LoanError):
    """Raised when claimed value is not paid to the lender."""
    pass


# ============================================================================
# IDENTIFIERS
# ============================================================================

def _require_hash(value: str, what: str) -> None:
    """Check that value is a lowercase hex digest of HASH_BYTES bytes."""
    if not isinstance(value, str) or len(value) != HASH_HEX_LENGTH:
        raise ValueError(f"{what} must be {HASH_HEX_LENGTH} hex characters, got {value!r}")
    try:
        bytes.fromhex(value)
    except ValueError:
        raise ValueError(f"{what} must be hex, got {value!r}") from None
    if value != value.lower():
        raise ValueError(f"{what} must be lowercase hex, got {value!r}")


def asset_unit(asset: AssetId) -> str:
    """Return the value-map unit of an asset id ("lovelace" for the native currency)."""
    policy_id, token_name = asset
    if not policy_id:
        if token_name:
            raise ValueError(f"Asset {asset!r} has a token name but no policy")
        return LOVELACE
    return policy_id + token_name


def split_unit(unit: str) -> AssetId:
    """Inverse of asset_unit()."""
    if unit == LOVELACE:
        return LOVELACE_ASSET
    if len(unit) < HASH_HEX_LENGTH:
        raise ValueError(f"Unit {unit!r} is shorter than a policy id")
    return unit[:HASH_HEX_LENGTH], unit[HASH_HEX_LENGTH:]


# ============================================================================
# ADDRESSES
# ============================================================================

class CredentialType(Enum):
    """Whether a credential is a public key hash or a script hash."""
    KEY = "key"
    SCRIPT = "script"


@dataclass(frozen=True, slots=True)
class Credential:
    """
    A payment or staking credential.

    Attributes:
        kind: KEY for a public key hash, SCRIPT for a validator hash.
        hash: 28-byte hash, hex encoded.
    """
    kind: CredentialType
    hash: str

    def __post_init__(self):
        if not isinstance(self.kind, CredentialType):
            raise ValueError(f"Credential kind must be CredentialType, got {type(self.kind)}")
        _require_hash(self.hash, "Credential hash")

    @classmethod
    def key(cls, key_hash: str) -> Credential:
        return cls(CredentialType.KEY, key_hash)

    @classmethod
    def script(cls, script_hash: str) -> Credential:
        return cls(CredentialType.SCRIPT, script_hash)

    def __repr__(self) -> str:
        return f"{self.kind.value}:{self.hash[:8]}"


@dataclass(frozen=True, slots=True)
class Address:
    """
    A ledger address: a payment credential and an optional staking credential.

    Loan records live at addresses whose payment credential is the loan
    script and whose staking credential is the borrower's stake key. The
    staking credential is what the borrower signs with to approve spends.
    """
    payment: Credential
    stake: Optional[Credential] = None

    @property
    def stake_key_hash(self) -> Optional[str]:
        """Return the staking key hash, or None for script or absent stake credentials."""
        if self.stake is None or self.stake.kind is not CredentialType.KEY:
            return None
        return self.stake.hash

    def __repr__(self) -> str:
        if self.stake is None:
            return f"Address({self.payment!r})"
        return f"Address({self.payment!r}, stake={self.stake!r})"


# ============================================================================
# VALUES
# ============================================================================

def _checked_value(value: Mapping[str, int], what: str) -> Value:
    """Copy a value map, dropping zero entries and rejecting non-integer quantities."""
    checked: Value = {}
    for unit, quantity in value.items():
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValueError(f"{what} quantity for {unit!r} must be int, got {type(quantity)}")
        if quantity != 0:
            checked[unit] = quantity
    return checked


def quantity_of(value: Mapping[str, int], unit: str) -> int:
    """Return the quantity of unit in value (0 when absent)."""
    return value.get(unit, 0)


def merge_values(*values: Mapping[str, int]) -> Value:
    """Add value maps together. Zero entries are dropped."""
    total: Value = {}
    for value in values:
        for unit, quantity in value.items():
            total[unit] = total.get(unit, 0) + quantity
    return {unit: q for unit, q in total.items() if q != 0}


def subtract_values(left: Mapping[str, int], right: Mapping[str, int]) -> Value:
    """Return left - right. Zero entries are dropped; negative entries are kept."""
    return merge_values(left, {unit: -q for unit, q in right.items()})


def value_covers(have: Mapping[str, int], need: Mapping[str, int]) -> bool:
    """Return True if have holds at least need of every unit."""
    return all(have.get(unit, 0) >= quantity for unit, quantity in need.items())


# ============================================================================
# TRANSACTION VIEW
# ============================================================================

@dataclass(frozen=True, slots=True)
class TxOutRef:
    """Reference to an output: the producing transaction id and the output index."""
    tx_id: str
    index: int

    def __post_init__(self):
        if not self.tx_id:
            raise ValueError("TxOutRef tx_id cannot be empty")
        if self.index < 0:
            raise ValueError(f"TxOutRef index must be non-negative, got {self.index}")

    def __repr__(self) -> str:
        return f"{self.tx_id[:12]}#{self.index}"


@dataclass(frozen=True, slots=True)
class TxOut:
    """
    A transaction output.

    Attributes:
        address: Where the value is locked.
        value: Unit -> positive quantity.
        datum: Inline datum as Plutus data, or None.
    """
    address: Address
    value: Mapping[str, int]
    datum: Any = None

    def __post_init__(self):
        checked = _checked_value(self.value, "Output")
        negative = {unit: q for unit, q in checked.items() if q < 0}
        if negative:
            raise ValueError(f"Output value cannot hold negative quantities: {negative}")
        object.__setattr__(self, 'value', checked)

    def quantity(self, unit: str) -> int:
        return quantity_of(self.value, unit)


@dataclass(frozen=True, slots=True)
class TxInInfo:
    """A consumed output together with the reference it was spent from."""
    out_ref: TxOutRef
    resolved: TxOut


@dataclass(frozen=True, slots=True)
class ValidityInterval:
    """
    Slot range [lower, upper] within which the ledger accepts a transaction.

    None on either side means unbounded. Validators only ever compare
    expiration against these bounds, never against a wall clock.
    """
    lower: Optional[Slot] = None
    upper: Optional[Slot] = None

    def __post_init__(self):
        if self.lower is not None and self.lower < 0:
            raise ValueError(f"Validity lower bound must be non-negative, got {self.lower}")
        if self.lower is not None and self.upper is not None and self.lower > self.upper:
            raise ValueError(
                f"Validity interval is empty: lower {self.lower} > upper {self.upper}"
            )

    def contains(self, slot: Slot) -> bool:
        if self.lower is not None and slot < self.lower:
            return False
        if self.upper is not None and slot > self.upper:
            return False
        return True


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dict insertion order and set ordering never change the output, so
    semantically equal transactions hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"I:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, bytes):
        return f"B:{value.hex()}"
    if isinstance(value, Enum):
        return f"E:{type(value).__name__}.{value.name}"
    if is_dataclass(value) and not isinstance(value, type):
        parts = ",".join(
            f"{f.name}={_canonicalize(getattr(value, f.name))}"
            for f in fields(value) if f.init
        )
        return f"{type(value).__name__}({parts})"
    if isinstance(value, Mapping):
        items = sorted(
            ((_canonicalize(k), _canonicalize(v)) for k, v in value.items())
        )
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(value, (frozenset, set)):
        return "<" + ",".join(sorted(_canonicalize(item) for item in value)) + ">"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    raise TypeError(f"Cannot canonicalize {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class TxInfo:
    """
    Read-only view of one candidate transaction, as supplied by the ledger.

    Attributes:
        inputs: Consumed outputs, resolved.
        outputs: Outputs the transaction would create.
        mint: Unit -> signed quantity minted (positive) or burned (negative).
        signatories: Key hashes that signed (payment and stake keys alike).
        validity: Slot interval the transaction is valid in.
        spend_redeemers: Redeemer (Plutus data) per consumed script output.
        mint_redeemers: Redeemer (Plutus data) per minting policy id.
        fee: Fee in lovelace; carried for display, never validated here.
        tx_id: Content hash, computed on construction.
    """
    inputs: Tuple[TxInInfo, ...]
    outputs: Tuple[TxOut, ...]
    mint: Mapping[str, int] = field(default_factory=dict)
    signatories: FrozenSet[str] = frozenset()
    validity: ValidityInterval = field(default_factory=ValidityInterval)
    spend_redeemers: Mapping[TxOutRef, Any] = field(default_factory=dict)
    mint_redeemers: Mapping[str, Any] = field(default_factory=dict)
    fee: int = 0
    tx_id: str = field(init=False, default="")

    def __post_init__(self):
        object.__setattr__(self, 'inputs', tuple(self.inputs))
        object.__setattr__(self, 'outputs', tuple(self.outputs))
        object.__setattr__(self, 'mint', _checked_value(self.mint, "Mint"))
        object.__setattr__(self, 'signatories', frozenset(self.signatories))
        object.__setattr__(self, 'spend_redeemers', dict(self.spend_redeemers))
        object.__setattr__(self, 'mint_redeemers', dict(self.mint_redeemers))
        if not self.inputs:
            raise ValueError("Transaction must consume at least one input")
        refs = [i.out_ref for i in self.inputs]
        if len(set(refs)) != len(refs):
            raise ValueError("Transaction consumes the same output twice")
        for unit in self.mint:
            if unit == LOVELACE:
                raise ValueError("Lovelace cannot be minted or burned")
        object.__setattr__(self, 'tx_id', _compute_tx_id(self))

    def find_input(self, out_ref: TxOutRef) -> Optional[TxInInfo]:
        for tx_in in self.inputs:
            if tx_in.out_ref == out_ref:
                return tx_in
        return None

    def outputs_at(self, address: Address) -> List[TxOut]:
        return [out for out in self.outputs if out.address == address]

    def signed_by(self, key_hash: str) -> bool:
        return key_hash in self.signatories

    def __repr__(self) -> str:
        return (f"TxInfo({self.tx_id[:12]}: {len(self.inputs)} in, "
                f"{len(self.outputs)} out, mint={self.mint})")


def _compute_tx_id(tx: TxInfo) -> str:
    """
    Compute a deterministic content hash for a transaction.

    Same content always produces the same id, which is what the ledger
    keys idempotency and output references on.
    """
    content = "|".join([
        "inputs:" + _canonicalize([i.out_ref for i in tx.inputs]),
        "outputs:" + _canonicalize(tx.outputs),
        "mint:" + _canonicalize(tx.mint),
        "signatories:" + _canonicalize(tx.signatories),
        "validity:" + _canonicalize(tx.validity),
        "spend_redeemers:" + _canonicalize(tx.spend_redeemers),
        "mint_redeemers:" + _canonicalize(tx.mint_redeemers),
        f"fee:{tx.fee}",
    ])
    return hashlib.sha256(content.encode()).hexdigest()


def values_of(outputs: Iterable[TxOut]) -> Value:
    """Sum the values of a collection of outputs."""
    return merge_values(*(out.value for out in outputs))
