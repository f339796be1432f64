"""
datums.py - Loan Records and Redeemers

A loan record is one of three states, each its own frozen dataclass:

    AskDatum     (constructor 0)  borrower's request, created with an Ask beacon
    OfferDatum   (constructor 1)  lender's offer, created with an Offer beacon
                                  and the lender's identity token
    ActiveDatum  (constructor 2)  the live loan, created by AcceptOffer and
                                  rewritten by every RepayLoan

LoanDatum is the closed union of the three. The validator matches on it
exhaustively; there is no base class to extend.

Field order is fixed and bit-exact with the on-ledger encoding:
hashes and policy ids are byte strings, asset ids and rationals are
Constr 0 pairs, Ask collateral is a list of asset ids and collateral rates
are a map from asset id to rational.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Tuple, Union

from .core import (
    AssetId, LOVELACE_ASSET, HASH_BYTES,
    LoanArithmeticError, RecordShapeMismatch,
    _require_hash,
)
from .plutus_data import (
    Constr, PlutusData,
    as_bytes, as_constr, as_int, as_list, as_map,
)
from .rational import Rational
from . import calculator


# ============================================================================
# FIELD CHECKS
# ============================================================================

def _require_positive(value: int, what: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise LoanArithmeticError(f"{what} must be an integer, got {type(value).__name__}")
    if value <= 0:
        raise LoanArithmeticError(f"{what} must be positive, got {value}")


def _check_asset(asset: AssetId, what: str) -> AssetId:
    if not isinstance(asset, tuple) or len(asset) != 2:
        raise ValueError(f"{what} must be a (policy_id, token_name) pair, got {asset!r}")
    policy_id, token_name = asset
    if asset == LOVELACE_ASSET:
        return asset
    _require_hash(policy_id, f"{what} policy id")
    try:
        name_bytes = bytes.fromhex(token_name)
    except (TypeError, ValueError):
        raise ValueError(f"{what} token name must be hex, got {token_name!r}") from None
    if len(name_bytes) > 32:
        raise ValueError(f"{what} token name exceeds 32 bytes")
    return asset


def _check_rates(rates: Mapping[AssetId, Rational]) -> dict:
    if not rates:
        raise ValueError("collateral_rates cannot be empty")
    checked = {}
    for asset, rate in rates.items():
        _check_asset(asset, "Collateral asset")
        if not isinstance(rate, Rational):
            raise LoanArithmeticError(f"Collateral rate for {asset} must be Rational, got {type(rate).__name__}")
        if rate <= 0:
            raise LoanArithmeticError(f"Collateral rate for {asset} must be positive, got {rate}")
        checked[asset] = rate
    return checked


def _check_interest(interest: Rational) -> None:
    if not isinstance(interest, Rational):
        raise LoanArithmeticError(f"interest must be Rational, got {type(interest).__name__}")
    if interest < 0:
        raise LoanArithmeticError(f"interest cannot be negative, got {interest}")


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AskDatum:
    """
    A borrower's request for a loan.

    Attributes:
        beacon_policy: Policy id of the beacon tokens indexing this protocol instance.
        borrower_id: Borrower's stake key hash.
        loan_asset: Asset the borrower wants to borrow.
        principal: Amount asked for, in loan_asset units.
        term: Loan duration in slots.
        collateral: Assets the borrower is willing to lock.
    """
    beacon_policy: str
    borrower_id: str
    loan_asset: AssetId
    principal: int
    term: int
    collateral: Tuple[AssetId, ...]

    def __post_init__(self):
        _require_hash(self.beacon_policy, "beacon_policy")
        _require_hash(self.borrower_id, "borrower_id")
        _check_asset(self.loan_asset, "loan_asset")
        _require_positive(self.principal, "principal")
        _require_positive(self.term, "term")
        collateral = tuple(_check_asset(a, "Collateral asset") for a in self.collateral)
        if not collateral:
            raise ValueError("collateral cannot be empty")
        if len(set(collateral)) != len(collateral):
            raise ValueError("collateral lists an asset twice")
        if self.loan_asset in collateral:
            raise ValueError("the loan asset cannot also be collateral")
        object.__setattr__(self, 'collateral', collateral)


@dataclass(frozen=True, slots=True)
class OfferDatum:
    """
    A lender's offer to fund an Ask with the same loan asset, principal and term.

    collateral_rates maps each accepted collateral asset to the number of
    collateral units required per unit of loan asset.
    """
    beacon_policy: str
    lender_id: str
    loan_asset: AssetId
    principal: int
    term: int
    interest: Rational
    collateral_rates: Mapping[AssetId, Rational]

    def __post_init__(self):
        _require_hash(self.beacon_policy, "beacon_policy")
        _require_hash(self.lender_id, "lender_id")
        _check_asset(self.loan_asset, "loan_asset")
        _require_positive(self.principal, "principal")
        _require_positive(self.term, "term")
        _check_interest(self.interest)
        object.__setattr__(self, 'collateral_rates', _check_rates(self.collateral_rates))
        if self.loan_asset in self.collateral_rates:
            raise ValueError("the loan asset cannot also be collateral")


@dataclass(frozen=True, slots=True)
class ActiveDatum:
    """
    A live loan.

    expiration_slot is fixed at acceptance. balance_owed only ever moves
    toward zero.
    """
    beacon_policy: str
    lender_id: str
    borrower_id: str
    loan_asset: AssetId
    principal: int
    term: int
    interest: Rational
    collateral_rates: Mapping[AssetId, Rational]
    expiration_slot: int
    balance_owed: Rational

    def __post_init__(self):
        _require_hash(self.beacon_policy, "beacon_policy")
        _require_hash(self.lender_id, "lender_id")
        _require_hash(self.borrower_id, "borrower_id")
        _check_asset(self.loan_asset, "loan_asset")
        _require_positive(self.principal, "principal")
        _require_positive(self.term, "term")
        _check_interest(self.interest)
        object.__setattr__(self, 'collateral_rates', _check_rates(self.collateral_rates))
        if self.loan_asset in self.collateral_rates:
            raise ValueError("the loan asset cannot also be collateral")
        if isinstance(self.expiration_slot, bool) or not isinstance(self.expiration_slot, int):
            raise LoanArithmeticError(f"expiration_slot must be an int, got {type(self.expiration_slot).__name__}")
        if self.expiration_slot < 0:
            raise LoanArithmeticError(f"expiration_slot cannot be negative, got {self.expiration_slot}")
        if not isinstance(self.balance_owed, Rational):
            raise LoanArithmeticError(f"balance_owed must be Rational, got {type(self.balance_owed).__name__}")
        if self.balance_owed < 0:
            raise LoanArithmeticError(f"balance_owed cannot be negative, got {self.balance_owed}")

    @property
    def is_repaid(self) -> bool:
        return self.balance_owed.is_zero()


LoanDatum = Union[AskDatum, OfferDatum, ActiveDatum]


def activate(ask: AskDatum, offer: OfferDatum, acceptance_slot: int) -> ActiveDatum:
    """
    Build the ActiveDatum an AcceptOffer must produce.

    Terms come from the offer, the borrower from the ask. The expiration is
    the acceptance slot plus the term; the opening balance is principal plus
    interest.
    """
    return ActiveDatum(
        beacon_policy=offer.beacon_policy,
        lender_id=offer.lender_id,
        borrower_id=ask.borrower_id,
        loan_asset=offer.loan_asset,
        principal=offer.principal,
        term=offer.term,
        interest=offer.interest,
        collateral_rates=dict(offer.collateral_rates),
        expiration_slot=calculator.expiration_slot(acceptance_slot, offer.term),
        balance_owed=calculator.initial_balance(offer.principal, offer.interest),
    )


def with_balance(active: ActiveDatum, balance_owed: Rational) -> ActiveDatum:
    """Return the successor datum of a repayment: identical except for the balance."""
    return replace(active, balance_owed=balance_owed)


# ============================================================================
# ENCODING
# ============================================================================

def encode_asset(asset: AssetId) -> Constr:
    policy_id, token_name = asset
    return Constr(0, (bytes.fromhex(policy_id), bytes.fromhex(token_name)))


def decode_asset(data: PlutusData, what: str = "asset") -> AssetId:
    c = as_constr(data, what, 2)
    if c.index != 0:
        raise RecordShapeMismatch(f"{what}: expected constructor 0, got {c.index}")
    return (as_bytes(c.fields[0], what).hex(), as_bytes(c.fields[1], what).hex())


def encode_rational(value: Rational) -> Constr:
    return Constr(0, (value.numerator, value.denominator))


def decode_rational(data: PlutusData, what: str = "rational") -> Rational:
    c = as_constr(data, what, 2)
    if c.index != 0:
        raise RecordShapeMismatch(f"{what}: expected constructor 0, got {c.index}")
    return Rational(as_int(c.fields[0], what), as_int(c.fields[1], what))


def _decode_hash(data: PlutusData, what: str) -> str:
    raw = as_bytes(data, what)
    if len(raw) != HASH_BYTES:
        raise RecordShapeMismatch(f"{what}: expected {HASH_BYTES} bytes, got {len(raw)}")
    return raw.hex()


def _encode_rates(rates: Mapping[AssetId, Rational]) -> dict:
    return {encode_asset(asset): encode_rational(rate) for asset, rate in rates.items()}


def _decode_rates(data: PlutusData) -> dict:
    return {
        decode_asset(k, "collateral asset"): decode_rational(v, "collateral rate")
        for k, v in as_map(data, "collateral_rates").items()
    }


def encode_datum(datum: LoanDatum) -> Constr:
    """Encode a loan record as constructor-indexed Plutus data."""
    match datum:
        case AskDatum():
            return Constr(0, (
                bytes.fromhex(datum.beacon_policy),
                bytes.fromhex(datum.borrower_id),
                encode_asset(datum.loan_asset),
                datum.principal,
                datum.term,
                [encode_asset(a) for a in datum.collateral],
            ))
        case OfferDatum():
            return Constr(1, (
                bytes.fromhex(datum.beacon_policy),
                bytes.fromhex(datum.lender_id),
                encode_asset(datum.loan_asset),
                datum.principal,
                datum.term,
                encode_rational(datum.interest),
                _encode_rates(datum.collateral_rates),
            ))
        case ActiveDatum():
            return Constr(2, (
                bytes.fromhex(datum.beacon_policy),
                bytes.fromhex(datum.lender_id),
                bytes.fromhex(datum.borrower_id),
                encode_asset(datum.loan_asset),
                datum.principal,
                datum.term,
                encode_rational(datum.interest),
                _encode_rates(datum.collateral_rates),
                datum.expiration_slot,
                encode_rational(datum.balance_owed),
            ))
    raise TypeError(f"Not a loan datum: {type(datum).__name__}")


_DATUM_ARITY = {0: 6, 1: 7, 2: 10}


def decode_datum(data: PlutusData) -> LoanDatum:
    """
    Decode Plutus data into one of the three loan records.

    Raises:
        RecordShapeMismatch: for an unknown constructor, wrong field count,
            wrongly typed field or otherwise malformed record.
        LoanArithmeticError: for a zero-denominator rational or a
            non-positive principal or term.
    """
    c = as_constr(data, "loan datum")
    if c.index not in _DATUM_ARITY:
        raise RecordShapeMismatch(f"loan datum: unknown constructor {c.index}")
    f = as_constr(data, "loan datum", _DATUM_ARITY[c.index]).fields
    try:
        if c.index == 0:
            return AskDatum(
                beacon_policy=_decode_hash(f[0], "beacon_policy"),
                borrower_id=_decode_hash(f[1], "borrower_id"),
                loan_asset=decode_asset(f[2], "loan_asset"),
                principal=as_int(f[3], "principal"),
                term=as_int(f[4], "term"),
                collateral=tuple(decode_asset(a, "collateral") for a in as_list(f[5], "collateral")),
            )
        if c.index == 1:
            return OfferDatum(
                beacon_policy=_decode_hash(f[0], "beacon_policy"),
                lender_id=_decode_hash(f[1], "lender_id"),
                loan_asset=decode_asset(f[2], "loan_asset"),
                principal=as_int(f[3], "principal"),
                term=as_int(f[4], "term"),
                interest=decode_rational(f[5], "interest"),
                collateral_rates=_decode_rates(f[6]),
            )
        return ActiveDatum(
            beacon_policy=_decode_hash(f[0], "beacon_policy"),
            lender_id=_decode_hash(f[1], "lender_id"),
            borrower_id=_decode_hash(f[2], "borrower_id"),
            loan_asset=decode_asset(f[3], "loan_asset"),
            principal=as_int(f[4], "principal"),
            term=as_int(f[5], "term"),
            interest=decode_rational(f[6], "interest"),
            collateral_rates=_decode_rates(f[7]),
            expiration_slot=as_int(f[8], "expiration_slot"),
            balance_owed=decode_rational(f[9], "balance_owed"),
        )
    except ValueError as e:
        raise RecordShapeMismatch(f"loan datum: {e}") from e


# ============================================================================
# REDEEMERS
# ============================================================================

class LoanRedeemer(Enum):
    """Spending intent for a loan record. The value is the constructor index."""
    CLOSE_ASK = 0
    CLOSE_OFFER = 1
    ACCEPT_OFFER = 2
    REPAY_LOAN = 3
    CLAIM = 4

    def to_data(self) -> Constr:
        return Constr(self.value)


def decode_loan_redeemer(data: PlutusData) -> LoanRedeemer:
    c = as_constr(data, "loan redeemer", 0)
    try:
        return LoanRedeemer(c.index)
    except ValueError:
        raise RecordShapeMismatch(f"loan redeemer: unknown constructor {c.index}") from None


@dataclass(frozen=True, slots=True)
class MintAsk:
    """Mint one Ask beacon for the borrower's new Ask record."""
    borrower_id: str


@dataclass(frozen=True, slots=True)
class MintOffer:
    """Mint one Offer beacon and one identity token for the lender."""
    lender_id: str


@dataclass(frozen=True, slots=True)
class MintActive:
    """Burn an Ask and an Offer beacon; mint an Active beacon and the borrower's identity token."""
    borrower_id: str
    lender_id: str


@dataclass(frozen=True, slots=True)
class BurnBeacon:
    """Burn-only action used when records are closed, repaid or claimed."""
    pass


BeaconRedeemer = Union[MintAsk, MintOffer, MintActive, BurnBeacon]


def encode_beacon_redeemer(redeemer: BeaconRedeemer) -> Constr:
    match redeemer:
        case MintAsk(borrower_id=borrower):
            return Constr(0, (bytes.fromhex(borrower),))
        case MintOffer(lender_id=lender):
            return Constr(1, (bytes.fromhex(lender),))
        case MintActive(borrower_id=borrower, lender_id=lender):
            return Constr(2, (bytes.fromhex(borrower), bytes.fromhex(lender)))
        case BurnBeacon():
            return Constr(3)
    raise TypeError(f"Not a beacon redeemer: {type(redeemer).__name__}")


def decode_beacon_redeemer(data: PlutusData) -> BeaconRedeemer:
    c = as_constr(data, "beacon redeemer")
    if c.index == 0:
        f = as_constr(data, "MintAsk", 1).fields
        return MintAsk(_decode_hash(f[0], "borrower_id"))
    if c.index == 1:
        f = as_constr(data, "MintOffer", 1).fields
        return MintOffer(_decode_hash(f[0], "lender_id"))
    if c.index == 2:
        f = as_constr(data, "MintActive", 2).fields
        return MintActive(_decode_hash(f[0], "borrower_id"), _decode_hash(f[1], "lender_id"))
    if c.index == 3:
        as_constr(data, "BurnBeacon", 0)
        return BurnBeacon()
    raise RecordShapeMismatch(f"beacon redeemer: unknown constructor {c.index}")
