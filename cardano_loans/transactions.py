"""
transactions.py - Loan Transaction Builders

=== TRANSACTION SHAPES ===

    create_ask     wallet -> Ask record           mint {Ask: +1}             MintAsk
    close_ask      Ask record -> wallet           burn {Ask: -1}             BurnBeacon
    create_offer   wallet -> Offer record         mint {Offer, lender: +1}   MintOffer
    close_offer    Offer record -> wallet         burn {Offer, lender: -1}   BurnBeacon
    accept_offer   Ask + Offer -> Active record   {Active, borrower: +1,     MintActive
                                                   Ask, Offer: -1}
    repay_loan     Active -> Active               partial: nothing minted
                                                  full: burn {borrower: -1}  BurnBeacon
    claim          Active -> lender wallet        burn every protocol token  BurnBeacon
                                                  left in the record

=== BALANCING ===

Builders only assemble transaction views. The caller picks the wallet
outputs that fund the transaction; whatever is left after the record
outputs and the fee is returned to the acting party as one change
output. Coin selection and fee estimation stay with the caller.

Every builder attaches the signer set of the acting party: the borrower
signs with its payment and stake keys, the lender with its payment key.
"""

from __future__ import annotations
from dataclasses import dataclass
import hashlib
from typing import FrozenSet, List, Mapping, Optional, Sequence

from .core import (
    LOVELACE, HASH_BYTES, AssetId, Address, Credential, TxInfo, TxInInfo, TxOut,
    ValidityInterval, Value,
    asset_unit, merge_values, subtract_values, values_of,
    RecordShapeMismatch, _require_hash,
)
from .datums import (
    AskDatum, OfferDatum, ActiveDatum, LoanRedeemer,
    MintAsk, MintOffer, MintActive, BurnBeacon,
    activate, with_balance, decode_datum, encode_datum, encode_beacon_redeemer,
)
from .protocol import LoanProtocol
from .rational import Rational
from . import calculator
from . import tokens


# =============================================================================
# CONSTANTS
# =============================================================================

# Lovelace locked alongside each record kind.
ASK_DEPOSIT = 2_000_000
OFFER_DEPOSIT = 3_000_000
ACTIVE_DEPOSIT = 3_000_000


# =============================================================================
# PARTIES
# =============================================================================

@dataclass(frozen=True, slots=True)
class Party:
    """
    A wallet: a payment key and an optional stake key.

    A borrower is identified by its stake key hash, a lender by its payment
    key hash.
    """
    payment_key_hash: str
    stake_key_hash: Optional[str] = None

    def __post_init__(self):
        _require_hash(self.payment_key_hash, "payment_key_hash")
        if self.stake_key_hash is not None:
            _require_hash(self.stake_key_hash, "stake_key_hash")

    @classmethod
    def from_seed(cls, seed: str) -> Party:
        """Deterministic wallet keys for tests and examples."""
        payment = hashlib.blake2b(f"{seed}/payment".encode(), digest_size=HASH_BYTES).hexdigest()
        stake = hashlib.blake2b(f"{seed}/stake".encode(), digest_size=HASH_BYTES).hexdigest()
        return cls(payment, stake)

    @property
    def address(self) -> Address:
        stake = Credential.key(self.stake_key_hash) if self.stake_key_hash else None
        return Address(Credential.key(self.payment_key_hash), stake)

    @property
    def borrower_id(self) -> str:
        if self.stake_key_hash is None:
            raise ValueError("A borrower needs a stake key")
        return self.stake_key_hash

    @property
    def lender_id(self) -> str:
        return self.payment_key_hash

    @property
    def signers(self) -> FrozenSet[str]:
        keys = {self.payment_key_hash}
        if self.stake_key_hash:
            keys.add(self.stake_key_hash)
        return frozenset(keys)


# =============================================================================
# HELPERS
# =============================================================================

def _change(
    party: Party,
    inputs: Sequence[TxInInfo],
    outputs: Sequence[TxOut],
    mint: Mapping[str, int],
    fee: int,
) -> List[TxOut]:
    """Outputs plus one change output returning the surplus to party."""
    surplus = subtract_values(
        merge_values(values_of(i.resolved for i in inputs), mint),
        merge_values(values_of(outputs), {LOVELACE: fee}),
    )
    short = {unit: -q for unit, q in surplus.items() if q < 0}
    if short:
        raise ValueError(f"Funding inputs are short of {short}")
    if surplus:
        return list(outputs) + [TxOut(party.address, surplus)]
    return list(outputs)


def _record_datum(record: TxInInfo):
    if record.resolved.datum is None:
        raise RecordShapeMismatch(f"{record.out_ref!r} carries no datum")
    return decode_datum(record.resolved.datum)


def _burn_all(protocol: LoanProtocol, records: Sequence[TxInInfo]) -> Value:
    """Mint map burning every protocol token held by records."""
    policy = protocol.beacon_policy_id
    held = tokens.policy_tokens(values_of(r.resolved for r in records), policy)
    return {policy + name: -q for name, q in held.items()}


def _principal_value(asset: AssetId, principal: int, deposit: int) -> Value:
    return merge_values({asset_unit(asset): principal}, {LOVELACE: deposit})


# =============================================================================
# ASK
# =============================================================================

def create_ask(
    protocol: LoanProtocol,
    borrower: Party,
    funding: Sequence[TxInInfo],
    loan_asset: AssetId,
    principal: int,
    term: int,
    collateral: Sequence[AssetId],
    deposit: int = ASK_DEPOSIT,
    fee: int = 0,
) -> TxInfo:
    """Open an Ask at the borrower's loan address."""
    policy = protocol.beacon_policy_id
    datum = AskDatum(policy, borrower.borrower_id, loan_asset, principal, term, tuple(collateral))
    mint = {protocol.ask_beacon: 1}
    record = TxOut(
        protocol.loan_address(borrower.borrower_id),
        {LOVELACE: deposit, protocol.ask_beacon: 1},
        encode_datum(datum),
    )
    return TxInfo(
        inputs=tuple(funding),
        outputs=tuple(_change(borrower, funding, [record], mint, fee)),
        mint=mint,
        signatories=borrower.signers,
        mint_redeemers={policy: encode_beacon_redeemer(MintAsk(borrower.borrower_id))},
        fee=fee,
    )


def close_ask(
    protocol: LoanProtocol,
    borrower: Party,
    asks: Sequence[TxInInfo],
    funding: Sequence[TxInInfo] = (),
    fee: int = 0,
) -> TxInfo:
    """Close Asks, burning their beacons and returning the deposits."""
    inputs = list(asks) + list(funding)
    mint = _burn_all(protocol, asks)
    return TxInfo(
        inputs=tuple(inputs),
        outputs=tuple(_change(borrower, inputs, [], mint, fee)),
        mint=mint,
        signatories=borrower.signers,
        spend_redeemers={a.out_ref: LoanRedeemer.CLOSE_ASK.to_data() for a in asks},
        mint_redeemers={protocol.beacon_policy_id: encode_beacon_redeemer(BurnBeacon())},
        fee=fee,
    )


# =============================================================================
# OFFER
# =============================================================================

def create_offer(
    protocol: LoanProtocol,
    lender: Party,
    funding: Sequence[TxInInfo],
    borrower_id: str,
    loan_asset: AssetId,
    principal: int,
    term: int,
    interest: Rational,
    collateral_rates: Mapping[AssetId, Rational],
    deposit: int = OFFER_DEPOSIT,
    fee: int = 0,
) -> TxInfo:
    """
    Lock the principal in an Offer at the borrower's loan address.

    The Offer holds the principal plus the deposit, the Offer beacon and the
    lender's identity token.
    """
    policy = protocol.beacon_policy_id
    lender_unit = protocol.identity_token(lender.lender_id)
    datum = OfferDatum(policy, lender.lender_id, loan_asset, principal, term, interest,
                       dict(collateral_rates))
    mint = {protocol.offer_beacon: 1, lender_unit: 1}
    record = TxOut(
        protocol.loan_address(borrower_id),
        merge_values(_principal_value(loan_asset, principal, deposit), mint),
        encode_datum(datum),
    )
    return TxInfo(
        inputs=tuple(funding),
        outputs=tuple(_change(lender, funding, [record], mint, fee)),
        mint=mint,
        signatories=frozenset({lender.payment_key_hash}),
        mint_redeemers={policy: encode_beacon_redeemer(MintOffer(lender.lender_id))},
        fee=fee,
    )


def close_offer(
    protocol: LoanProtocol,
    lender: Party,
    offers: Sequence[TxInInfo],
    funding: Sequence[TxInInfo] = (),
    fee: int = 0,
) -> TxInfo:
    """Withdraw Offers, burning their beacons and lender tokens."""
    inputs = list(offers) + list(funding)
    mint = _burn_all(protocol, offers)
    return TxInfo(
        inputs=tuple(inputs),
        outputs=tuple(_change(lender, inputs, [], mint, fee)),
        mint=mint,
        signatories=frozenset({lender.payment_key_hash}),
        spend_redeemers={o.out_ref: LoanRedeemer.CLOSE_OFFER.to_data() for o in offers},
        mint_redeemers={protocol.beacon_policy_id: encode_beacon_redeemer(BurnBeacon())},
        fee=fee,
    )


# =============================================================================
# ACTIVE LOAN
# =============================================================================

def accept_offer(
    protocol: LoanProtocol,
    borrower: Party,
    ask: TxInInfo,
    offer: TxInInfo,
    funding: Sequence[TxInInfo],
    acceptance_slot: int,
    collateral: Optional[Mapping[AssetId, int]] = None,
    deposit: int = ACTIVE_DEPOSIT,
    fee: int = 0,
) -> TxInfo:
    """
    Match an Ask with an Offer, locking collateral in a new Active record.

    Args:
        acceptance_slot: Validity lower bound; the loan expires at
            acceptance_slot + term.
        collateral: Asset -> quantity to lock. Defaults to the requirement
            for the first collateral asset the Ask lists.

    The principal and both record deposits flow to the borrower's change
    output.
    """
    ask_datum = _record_datum(ask)
    offer_datum = _record_datum(offer)
    if not isinstance(ask_datum, AskDatum) or not isinstance(offer_datum, OfferDatum):
        raise RecordShapeMismatch("accept_offer needs an Ask and an Offer")
    policy = protocol.beacon_policy_id
    active = activate(ask_datum, offer_datum, acceptance_slot)

    if collateral is None:
        first = ask_datum.collateral[0]
        required = calculator.required_collateral(
            active.principal, {first: active.collateral_rates[first]}
        )
        collateral = required

    borrower_unit = protocol.identity_token(active.borrower_id)
    lender_unit = protocol.identity_token(active.lender_id)
    mint = {
        protocol.active_beacon: 1,
        borrower_unit: 1,
        protocol.ask_beacon: -1,
        protocol.offer_beacon: -1,
    }
    record = TxOut(
        ask.resolved.address,
        merge_values(
            {LOVELACE: deposit, protocol.active_beacon: 1, borrower_unit: 1, lender_unit: 1},
            {asset_unit(asset): q for asset, q in collateral.items()},
        ),
        encode_datum(active),
    )
    inputs = [ask, offer] + list(funding)
    redeemer = LoanRedeemer.ACCEPT_OFFER.to_data()
    return TxInfo(
        inputs=tuple(inputs),
        outputs=tuple(_change(borrower, inputs, [record], mint, fee)),
        mint=mint,
        signatories=borrower.signers,
        validity=ValidityInterval(lower=acceptance_slot),
        spend_redeemers={ask.out_ref: redeemer, offer.out_ref: redeemer},
        mint_redeemers={policy: encode_beacon_redeemer(MintActive(active.borrower_id, active.lender_id))},
        fee=fee,
    )


def repay_loan(
    protocol: LoanProtocol,
    borrower: Party,
    loan: TxInInfo,
    amount: int,
    funding: Sequence[TxInInfo],
    valid_to: int,
    release: Optional[Mapping[AssetId, int]] = None,
    fee: int = 0,
) -> TxInfo:
    """
    Repay part or all of an Active loan.

    The successor record gains amount of the loan asset and gives back
    collateral: by default the most release_on_repayment() allows. A
    repayment that clears the balance burns the borrower token.

    Args:
        valid_to: Validity upper bound; must not pass the expiration slot.
    """
    datum = _record_datum(loan)
    if not isinstance(datum, ActiveDatum):
        raise RecordShapeMismatch("repay_loan needs an Active record")
    new_balance = calculator.remaining_balance(datum.balance_owed, amount)
    if release is None:
        locked = {a: loan.resolved.quantity(asset_unit(a)) for a in datum.collateral_rates}
        release = calculator.release_on_repayment(locked, datum.balance_owed, amount)

    borrower_unit = protocol.identity_token(datum.borrower_id)
    value = merge_values(
        loan.resolved.value,
        {asset_unit(datum.loan_asset): amount},
        {asset_unit(asset): -q for asset, q in release.items()},
    )
    mint: Value = {}
    mint_redeemers = {}
    if new_balance.is_zero():
        mint = {borrower_unit: -1}
        mint_redeemers = {protocol.beacon_policy_id: encode_beacon_redeemer(BurnBeacon())}
        value = subtract_values(value, {borrower_unit: 1})
    record = TxOut(loan.resolved.address, value, encode_datum(with_balance(datum, new_balance)))

    inputs = [loan] + list(funding)
    return TxInfo(
        inputs=tuple(inputs),
        outputs=tuple(_change(borrower, inputs, [record], mint, fee)),
        mint=mint,
        signatories=borrower.signers,
        validity=ValidityInterval(upper=valid_to),
        spend_redeemers={loan.out_ref: LoanRedeemer.REPAY_LOAN.to_data()},
        mint_redeemers=mint_redeemers,
        fee=fee,
    )


def claim(
    protocol: LoanProtocol,
    lender: Party,
    loans: Sequence[TxInInfo],
    valid_from: int,
    funding: Sequence[TxInInfo] = (),
    fee: int = 0,
) -> TxInfo:
    """
    Collect Active records: burn their protocol tokens and pay the rest to the lender.

    Args:
        valid_from: Validity lower bound; at or after the expiration slot
            unless the loans are repaid and their collateral collected.
    """
    inputs = list(loans) + list(funding)
    mint = _burn_all(protocol, loans)
    return TxInfo(
        inputs=tuple(inputs),
        outputs=tuple(_change(lender, inputs, [], mint, fee)),
        mint=mint,
        signatories=frozenset({lender.payment_key_hash}),
        validity=ValidityInterval(lower=valid_from),
        spend_redeemers={loan.out_ref: LoanRedeemer.CLAIM.to_data() for loan in loans},
        mint_redeemers={protocol.beacon_policy_id: encode_beacon_redeemer(BurnBeacon())},
        fee=fee,
    )
