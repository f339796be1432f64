"""
beacon_policy.py - Beacon Minting Policy

Governs every mint and burn of the protocol's tokens:

    MintAsk(borrower)           {Ask: +1}
    MintOffer(lender)           {Offer: +1, lender: +1}
    MintActive(borrower, lender){Active: +1, borrower: +1, Ask: -1, Offer: -1}
    BurnBeacon()                every non-zero quantity negative

Besides the exact token deltas, each minting action checks who authorised
it and where the fresh tokens land, so a beacon can only ever index a
well-formed record at a loan address. The policy does no arithmetic on
loan terms; that belongs to the validator.

All checks raise on failure. The first failing rule is the reason.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Mapping, Optional

from .core import (
    TxInfo, TxInInfo, TxOut, asset_unit,
    MintingPolicyViolation, SignerMissing, RecordShapeMismatch,
)
from .datums import (
    AskDatum, OfferDatum, ActiveDatum, LoanDatum,
    BeaconRedeemer, MintAsk, MintOffer, MintActive, BurnBeacon,
    decode_datum,
)
from .protocol import LoanProtocol
from . import tokens

logger = logging.getLogger(__name__)


def _read_datum(out: TxOut, where: str) -> LoanDatum:
    if out.datum is None:
        raise RecordShapeMismatch(f"{where} carries no datum")
    return decode_datum(out.datum)


def _require_deltas(actual: Mapping[str, int], expected: Mapping[str, int], action: str) -> None:
    if dict(actual) != dict(expected):
        raise MintingPolicyViolation(
            f"{action} must mint exactly {_render(expected)}, got {_render(actual)}"
        )


def _render(deltas: Mapping[str, int]) -> str:
    names = {
        tokens.ASK_TOKEN_NAME: "Ask",
        tokens.OFFER_TOKEN_NAME: "Offer",
        tokens.ACTIVE_TOKEN_NAME: "Active",
    }
    parts = [f"{names.get(name, name[:8])}:{q:+d}" for name, q in sorted(deltas.items())]
    return "{" + ", ".join(parts) + "}"


def _holding(outputs, unit: str) -> List[TxOut]:
    return [out for out in outputs if out.quantity(unit) > 0]


def _single_destination(tx: TxInfo, unit: str, label: str, protocol: LoanProtocol) -> TxOut:
    """The one output a freshly minted beacon lands in; it must be a loan address."""
    holders = _holding(tx.outputs, unit)
    if len(holders) != 1 or holders[0].quantity(unit) != 1:
        raise MintingPolicyViolation(f"{label} beacon must land in exactly one output, once")
    out = holders[0]
    if not protocol.is_loan_address(out.address):
        raise MintingPolicyViolation(f"{label} beacon must be locked at a loan address")
    return out


def _consumed_holding(tx: TxInfo, unit: str) -> List[TxInInfo]:
    return [i for i in tx.inputs if i.resolved.quantity(unit) > 0]


def validate_mint(
    tx: TxInfo,
    policy_id: str,
    redeemer: BeaconRedeemer,
    protocol: LoanProtocol,
    deltas: Optional[Dict[str, int]] = None,
) -> None:
    """
    Validate this policy's token deltas against the redeemer.

    Args:
        tx: Candidate transaction.
        policy_id: Policy being validated (the protocol's beacon policy).
        redeemer: Decoded beacon redeemer.
        protocol: Deployment parameters (loan script hash).
        deltas: Precomputed token name -> signed quantity for this policy.

    Raises:
        MintingPolicyViolation: wrong token accounting or placement.
        SignerMissing: the party named in the redeemer did not authorise.
        RecordShapeMismatch: a record the tokens index does not decode.
    """
    if deltas is None:
        deltas = tokens.policy_deltas(tokens.token_deltas(tx.mint), policy_id)

    ask_unit = tokens.ask_beacon(policy_id)
    offer_unit = tokens.offer_beacon(policy_id)
    active_unit = tokens.active_beacon(policy_id)

    match redeemer:
        case MintAsk(borrower_id=borrower):
            _require_deltas(deltas, {tokens.ASK_TOKEN_NAME: 1}, "MintAsk")
            if not tx.signed_by(borrower):
                raise SignerMissing(f"MintAsk: borrower {borrower[:8]} did not sign")
            out = _single_destination(tx, ask_unit, "Ask", protocol)
            if out.address.stake_key_hash != borrower:
                raise MintingPolicyViolation("Ask beacon must sit at the borrower's loan address")
            datum = _read_datum(out, "Ask output")
            if not isinstance(datum, AskDatum):
                raise RecordShapeMismatch(f"Ask output holds a {type(datum).__name__}")
            if datum.beacon_policy != policy_id or datum.borrower_id != borrower:
                raise MintingPolicyViolation("Ask datum does not name this policy and borrower")

        case MintOffer(lender_id=lender):
            _require_deltas(deltas, {tokens.OFFER_TOKEN_NAME: 1, lender: 1}, "MintOffer")
            if not tx.signed_by(lender):
                raise SignerMissing(f"MintOffer: lender {lender[:8]} did not sign")
            out = _single_destination(tx, offer_unit, "Offer", protocol)
            if out.quantity(tokens.identity_token(policy_id, lender)) != 1:
                raise MintingPolicyViolation("Lender token must be locked with the Offer beacon")
            datum = _read_datum(out, "Offer output")
            if not isinstance(datum, OfferDatum):
                raise RecordShapeMismatch(f"Offer output holds a {type(datum).__name__}")
            if datum.beacon_policy != policy_id or datum.lender_id != lender:
                raise MintingPolicyViolation("Offer datum does not name this policy and lender")
            if out.quantity(asset_unit(datum.loan_asset)) < datum.principal:
                raise MintingPolicyViolation("Offer output does not hold the principal")

        case MintActive(borrower_id=borrower, lender_id=lender):
            _require_deltas(
                deltas,
                {
                    tokens.ACTIVE_TOKEN_NAME: 1,
                    borrower: 1,
                    tokens.ASK_TOKEN_NAME: -1,
                    tokens.OFFER_TOKEN_NAME: -1,
                },
                "MintActive",
            )
            if not tx.signed_by(borrower):
                raise SignerMissing(f"MintActive: borrower {borrower[:8]} did not sign")

            asks = _consumed_holding(tx, ask_unit)
            offers = _consumed_holding(tx, offer_unit)
            if len(asks) != 1 or len(offers) != 1:
                raise MintingPolicyViolation("MintActive must consume exactly one Ask and one Offer")
            ask = _read_datum(asks[0].resolved, "Consumed Ask")
            offer = _read_datum(offers[0].resolved, "Consumed Offer")
            if not isinstance(ask, AskDatum) or ask.borrower_id != borrower:
                raise MintingPolicyViolation("Consumed Ask does not belong to the borrower")
            if not isinstance(offer, OfferDatum) or offer.lender_id != lender:
                raise MintingPolicyViolation("Consumed Offer does not belong to the lender")

            # The lender authorised the match when creating the Offer: the
            # lender token locked in it is the capability.
            lender_unit = tokens.identity_token(policy_id, lender)
            if not tokens.is_authorized(lender, lender_unit, tx.signatories, offers[0].resolved.value):
                raise SignerMissing(f"MintActive: lender {lender[:8]} neither signed nor holds its token")

            out = _single_destination(tx, active_unit, "Active", protocol)
            borrower_unit = tokens.identity_token(policy_id, borrower)
            if out.quantity(borrower_unit) != 1 or out.quantity(lender_unit) != 1:
                raise MintingPolicyViolation("Active output must hold both identity tokens")
            datum = _read_datum(out, "Active output")
            if not isinstance(datum, ActiveDatum):
                raise RecordShapeMismatch(f"Active output holds a {type(datum).__name__}")
            if (datum.beacon_policy != policy_id or datum.borrower_id != borrower
                    or datum.lender_id != lender):
                raise MintingPolicyViolation("Active datum does not name this policy and both parties")

        case BurnBeacon():
            minted = {name: q for name, q in deltas.items() if q > 0}
            if minted:
                raise MintingPolicyViolation(f"BurnBeacon cannot mint: {_render(minted)}")

        case _:
            raise RecordShapeMismatch(f"Not a beacon redeemer: {type(redeemer).__name__}")

    logger.debug("beacon policy %s accepted %s with %s",
                 policy_id[:8], type(redeemer).__name__, _render(deltas))
