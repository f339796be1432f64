"""
validator.py - Loan Record Validator

The state machine deciding, for every transaction that consumes a loan
record, whether the transition is legal.

States and transitions:

    Ask    --CloseAsk-->     (closed)
    Offer  --CloseOffer-->   (closed)
    Ask + Offer --AcceptOffer--> Active
    Active --RepayLoan-->    Active (partial) | Active with balance 0 (full)
    Active --Claim-->        (closed)

validate_spend() judges one consumed record. validate_transaction()
co-invokes it for every consumed loan record and the beacon policy for
the protocol's tokens, and returns a Verdict. Nothing here mutates
anything: the same transaction always gets the same verdict.

The dispatch is one match over (record, redeemer); a pair outside the
transition table is a RecordShapeMismatch.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Dict, List, Optional, Tuple

from .core import (
    LOVELACE, AssetId, Address, CredentialType, TxInfo, TxInInfo, TxOut, TxOutRef, Value,
    asset_unit, merge_values, value_covers, values_of,
    LoanError, MintingPolicyViolation, SignerMissing, OverRepayment, PrematureClaim,
    UnknownCollateralAsset, StaleValidityInterval, RecordShapeMismatch,
    LoanTermsMismatch, InsufficientCollateral, MisdirectedFunds,
)
from .datums import (
    AskDatum, OfferDatum, ActiveDatum, LoanDatum, LoanRedeemer,
    BeaconRedeemer, BurnBeacon, MintActive,
    activate, with_balance, decode_datum, decode_loan_redeemer, decode_beacon_redeemer,
)
from .protocol import LoanProtocol
from .beacon_policy import validate_mint
from . import calculator
from . import tokens

logger = logging.getLogger(__name__)


# ============================================================================
# VERDICT
# ============================================================================

@dataclass(frozen=True, slots=True)
class Verdict:
    """
    Outcome of validating one transaction.

    Attributes:
        accepted: True if every co-invoked check passed.
        reason: Message of the first failing check ("" when accepted).
        error: The LoanError raised by the first failing check.
    """
    accepted: bool
    reason: str = ""
    error: Optional[LoanError] = None

    @property
    def error_kind(self) -> Optional[type]:
        return type(self.error) if self.error is not None else None

    def __bool__(self) -> bool:
        return self.accepted


# ============================================================================
# TRANSACTION CONTEXT
# ============================================================================

class _TxContext:
    """Per-call facts about a transaction, computed once and shared by every check."""

    def __init__(self, tx: TxInfo, protocol: LoanProtocol):
        self.tx = tx
        self.protocol = protocol
        self.policy_id = protocol.beacon_policy_id
        self.deltas: Dict[str, int] = tokens.policy_deltas(tokens.token_deltas(tx.mint), self.policy_id)

        self.loan_inputs: List[Tuple[TxInInfo, LoanDatum]] = []
        wallet = []
        for tx_in in tx.inputs:
            address = tx_in.resolved.address
            if protocol.is_loan_address(address):
                if tx_in.resolved.datum is None:
                    raise RecordShapeMismatch(f"Loan input {tx_in.out_ref!r} carries no datum")
                self.loan_inputs.append((tx_in, decode_datum(tx_in.resolved.datum)))
            elif address.payment.kind is CredentialType.KEY:
                wallet.append(tx_in.resolved)
        # Value the transaction's signers bring from their own wallets.
        self.wallet_holdings: Value = values_of(wallet)
        self.consumed_tokens: Dict[str, int] = tokens.policy_tokens(
            values_of(i.resolved for i, _ in self.loan_inputs), self.policy_id
        )

        raw = tx.mint_redeemers.get(self.policy_id)
        self.mint_redeemer: Optional[BeaconRedeemer] = (
            decode_beacon_redeemer(raw) if raw is not None else None
        )

    def datum_of(self, out_ref: TxOutRef) -> LoanDatum:
        for tx_in, datum in self.loan_inputs:
            if tx_in.out_ref == out_ref:
                return datum
        raise RecordShapeMismatch(f"{out_ref!r} is not a consumed loan record")

    def spend_redeemer(self, out_ref: TxOutRef) -> LoanRedeemer:
        raw = self.tx.spend_redeemers.get(out_ref)
        if raw is None:
            raise RecordShapeMismatch(f"No redeemer for loan input {out_ref!r}")
        return decode_loan_redeemer(raw)

    def unit(self, name: str) -> str:
        return self.policy_id + name


# ============================================================================
# SHARED CHECKS
# ============================================================================

def _require_signed(tx: TxInfo, key_hash: Optional[str], who: str) -> None:
    if key_hash is None or not tx.signed_by(key_hash):
        shown = key_hash[:8] if key_hash else "(none)"
        raise SignerMissing(f"{who} {shown} did not sign")


def _require_policy(ctx: _TxContext, datum: LoanDatum) -> None:
    if datum.beacon_policy != ctx.policy_id:
        raise LoanTermsMismatch(
            f"Record belongs to policy {datum.beacon_policy[:8]}, not {ctx.policy_id[:8]}"
        )


def _require_burned(ctx: _TxContext, names, transition: str) -> None:
    """Every token named that sits in a consumed loan record must be burned, and only under BurnBeacon."""
    for name in names:
        held = ctx.consumed_tokens.get(name, 0)
        burned = -ctx.deltas.get(name, 0)
        if burned != held:
            raise MintingPolicyViolation(
                f"{transition}: {held} of token {name[:12]} consumed but {burned} burned"
            )
    if ctx.deltas and not isinstance(ctx.mint_redeemer, BurnBeacon):
        raise MintingPolicyViolation(f"{transition} burns only under BurnBeacon")


def _successor(ctx: _TxContext, address: Address, transition: str) -> Tuple[TxOut, ActiveDatum]:
    outs = ctx.tx.outputs_at(address)
    if len(outs) != 1:
        raise RecordShapeMismatch(f"{transition} must produce exactly one output at the loan address, got {len(outs)}")
    out = outs[0]
    if out.datum is None:
        raise RecordShapeMismatch(f"{transition} successor carries no datum")
    datum = decode_datum(out.datum)
    if not isinstance(datum, ActiveDatum):
        raise RecordShapeMismatch(f"{transition} successor holds a {type(datum).__name__}")
    return out, datum


def _locked(out: TxOut, datum) -> Dict[AssetId, int]:
    """Collateral held by an output, per priced asset."""
    return {asset: out.quantity(asset_unit(asset)) for asset in datum.collateral_rates}


def _require_known_units(ctx: _TxContext, out: TxOut, datum, transition: str) -> None:
    allowed = {LOVELACE, asset_unit(datum.loan_asset)}
    allowed.update(asset_unit(asset) for asset in datum.collateral_rates)
    for unit in out.value:
        if unit in allowed or unit.startswith(ctx.policy_id):
            continue
        raise UnknownCollateralAsset(f"{transition}: {unit[:16]} is not priced by the loan")


def _require_tokens(ctx: _TxContext, out: TxOut, expected: Dict[str, int], transition: str) -> None:
    held = tokens.policy_tokens(out.value, ctx.policy_id)
    if held != expected:
        raise MintingPolicyViolation(
            f"{transition}: successor must hold exactly {len(expected)} protocol tokens, got {held}"
        )


# ============================================================================
# TRANSITIONS
# ============================================================================

def _close_ask(ctx: _TxContext, tx_in: TxInInfo, datum: AskDatum) -> None:
    _require_policy(ctx, datum)
    _require_signed(ctx.tx, tx_in.resolved.address.stake_key_hash, "CloseAsk: staking credential")
    _require_burned(ctx, [tokens.ASK_TOKEN_NAME], "CloseAsk")


def _close_offer(ctx: _TxContext, tx_in: TxInInfo, datum: OfferDatum) -> None:
    _require_policy(ctx, datum)
    _require_signed(ctx.tx, datum.lender_id, "CloseOffer: lender")
    _require_burned(ctx, [tokens.OFFER_TOKEN_NAME, datum.lender_id], "CloseOffer")


def _accept_offer(ctx: _TxContext, tx_in: TxInInfo) -> None:
    tx = ctx.tx
    address = tx_in.resolved.address
    asks = [(i, d) for i, d in ctx.loan_inputs if isinstance(d, AskDatum)]
    offers = [(i, d) for i, d in ctx.loan_inputs if isinstance(d, OfferDatum)]
    if len(asks) != 1 or len(offers) != 1 or len(ctx.loan_inputs) != 2:
        raise RecordShapeMismatch("AcceptOffer consumes exactly one Ask and one Offer")
    (ask_in, ask), (offer_in, offer) = asks[0], offers[0]
    if ask_in.resolved.address != address or offer_in.resolved.address != address:
        raise LoanTermsMismatch("Ask and Offer must sit at the same loan address")

    _require_signed(tx, ask.borrower_id, "AcceptOffer: borrower")
    _require_signed(tx, address.stake_key_hash, "AcceptOffer: staking credential")

    _require_policy(ctx, ask)
    _require_policy(ctx, offer)
    if (ask.loan_asset, ask.principal, ask.term) != (offer.loan_asset, offer.principal, offer.term):
        raise LoanTermsMismatch("Offer does not match the Ask's loan asset, principal and term")
    unpriced = [asset for asset in ask.collateral if asset not in offer.collateral_rates]
    if unpriced:
        raise UnknownCollateralAsset(f"Offer has no rate for Ask collateral {unpriced}")
    if set(offer.collateral_rates) != set(ask.collateral):
        raise LoanTermsMismatch("Offer prices collateral the Ask did not list")

    if tx.validity.lower is None:
        raise StaleValidityInterval("AcceptOffer needs a validity lower bound to fix the expiration")

    out, successor = _successor(ctx, address, "AcceptOffer")
    expected = activate(ask, offer, tx.validity.lower)
    if successor != expected:
        raise LoanTermsMismatch("Active datum differs from the accepted terms")

    _require_tokens(
        ctx, out,
        {tokens.ACTIVE_TOKEN_NAME: 1, offer.lender_id: 1, ask.borrower_id: 1},
        "AcceptOffer",
    )
    _require_known_units(ctx, out, successor, "AcceptOffer")
    coverage = calculator.collateral_coverage(_locked(out, successor), successor.collateral_rates)
    if coverage < successor.principal:
        raise InsufficientCollateral(
            f"Locked collateral covers {coverage}, principal is {successor.principal}"
        )
    if not isinstance(ctx.mint_redeemer, MintActive):
        raise MintingPolicyViolation("AcceptOffer requires the MintActive action")


def _repay_loan(ctx: _TxContext, tx_in: TxInInfo, datum: ActiveDatum) -> None:
    tx = ctx.tx
    address = tx_in.resolved.address
    if len(ctx.loan_inputs) != 1:
        raise RecordShapeMismatch("RepayLoan consumes exactly one loan record per transaction")
    _require_policy(ctx, datum)
    _require_signed(tx, address.stake_key_hash, "RepayLoan: staking credential")
    if datum.is_repaid:
        raise OverRepayment("Loan is already fully repaid")

    upper = tx.validity.upper
    if upper is None or upper > datum.expiration_slot:
        raise StaleValidityInterval(
            f"RepayLoan upper bound {upper} must be set and at most {datum.expiration_slot}"
        )

    out, successor = _successor(ctx, address, "RepayLoan")
    loan_unit = asset_unit(datum.loan_asset)
    repayment = out.quantity(loan_unit) - tx_in.resolved.quantity(loan_unit)
    if repayment < 0:
        raise LoanTermsMismatch(f"RepayLoan withdraws {-repayment} of the loan asset")
    new_balance = calculator.remaining_balance(datum.balance_owed, repayment)
    if successor != with_balance(datum, new_balance):
        raise LoanTermsMismatch(f"Successor datum must only change the balance to {new_balance}")

    _require_known_units(ctx, out, datum, "RepayLoan")
    minimum = calculator.remaining_collateral(_locked(tx_in.resolved, datum), datum.balance_owed, repayment)
    short = {asset: q for asset, q in minimum.items() if out.quantity(asset_unit(asset)) < q}
    if short:
        raise InsufficientCollateral(f"RepayLoan releases more collateral than repaid: {short}")

    borrower_unit = ctx.unit(datum.borrower_id)
    if new_balance.is_zero():
        if not tokens.is_authorized(datum.borrower_id, borrower_unit, tx.signatories, ctx.wallet_holdings):
            raise SignerMissing(f"RepayLoan: borrower {datum.borrower_id[:8]} neither signed nor holds its token")
        if ctx.deltas != {datum.borrower_id: -1}:
            raise MintingPolicyViolation("Full repayment burns exactly the borrower token")
        if not isinstance(ctx.mint_redeemer, BurnBeacon):
            raise MintingPolicyViolation("Full repayment burns only under BurnBeacon")
        _require_tokens(ctx, out, {tokens.ACTIVE_TOKEN_NAME: 1, datum.lender_id: 1}, "RepayLoan")
    else:
        _require_signed(tx, datum.borrower_id, "RepayLoan: borrower")
        if ctx.deltas:
            raise MintingPolicyViolation("Partial repayment cannot mint or burn protocol tokens")
        _require_tokens(
            ctx, out,
            {tokens.ACTIVE_TOKEN_NAME: 1, datum.lender_id: 1, datum.borrower_id: 1},
            "RepayLoan",
        )


def _claim(ctx: _TxContext, tx_in: TxInInfo, datum: ActiveDatum) -> None:
    tx = ctx.tx
    _require_policy(ctx, datum)
    lender_unit = ctx.unit(datum.lender_id)
    if not tokens.is_authorized(datum.lender_id, lender_unit, tx.signatories, ctx.wallet_holdings):
        raise SignerMissing(f"Claim: lender {datum.lender_id[:8]} neither signed nor holds its token")

    lower = tx.validity.lower
    expired = lower is not None and lower >= datum.expiration_slot
    if not datum.is_repaid:
        if lower is None:
            raise StaleValidityInterval("Claim on an unpaid loan needs a validity lower bound")
        if not expired:
            raise PrematureClaim(
                f"Loan expires at slot {datum.expiration_slot}, claim is valid from {lower}"
            )
    elif not expired and any(_locked(tx_in.resolved, datum).values()):
        raise PrematureClaim("Repaid loan still holds collateral the borrower has not collected")

    _require_burned(
        ctx, [tokens.ACTIVE_TOKEN_NAME, datum.lender_id, datum.borrower_id], "Claim"
    )

    claimed = [
        tokens.strip_policy(i.resolved.value, ctx.policy_id)
        for i, d in ctx.loan_inputs
        if isinstance(d, ActiveDatum) and d.lender_id == datum.lender_id
        and ctx.spend_redeemer(i.out_ref) is LoanRedeemer.CLAIM
    ]
    paid = values_of(
        out for out in tx.outputs
        if out.address.payment.kind is CredentialType.KEY
        and out.address.payment.hash == datum.lender_id
    )
    if not value_covers(paid, merge_values(*claimed)):
        raise MisdirectedFunds("Claimed value must be paid to the lender")


# ============================================================================
# ENTRY POINTS
# ============================================================================

def _dispatch(ctx: _TxContext, tx_in: TxInInfo, datum: LoanDatum, redeemer: LoanRedeemer) -> None:
    match datum, redeemer:
        case AskDatum(), LoanRedeemer.CLOSE_ASK:
            _close_ask(ctx, tx_in, datum)
        case OfferDatum(), LoanRedeemer.CLOSE_OFFER:
            _close_offer(ctx, tx_in, datum)
        case AskDatum() | OfferDatum(), LoanRedeemer.ACCEPT_OFFER:
            _accept_offer(ctx, tx_in)
        case ActiveDatum(), LoanRedeemer.REPAY_LOAN:
            _repay_loan(ctx, tx_in, datum)
        case ActiveDatum(), LoanRedeemer.CLAIM:
            _claim(ctx, tx_in, datum)
        case _:
            raise RecordShapeMismatch(
                f"{redeemer.name} does not apply to a {type(datum).__name__}"
            )


def validate_spend(
    tx: TxInfo,
    out_ref: TxOutRef,
    protocol: LoanProtocol,
    _ctx: Optional[_TxContext] = None,
) -> None:
    """
    Validate the spend of one consumed loan record.

    Args:
        tx: Candidate transaction.
        out_ref: Reference of the loan record being spent.
        protocol: Deployment parameters.

    Raises:
        LoanError: the subclass naming the first failing check.
    """
    ctx = _ctx if _ctx is not None else _TxContext(tx, protocol)
    tx_in = tx.find_input(out_ref)
    if tx_in is None:
        raise RecordShapeMismatch(f"{out_ref!r} is not consumed by the transaction")
    _dispatch(ctx, tx_in, ctx.datum_of(out_ref), ctx.spend_redeemer(out_ref))


def check_transaction(tx: TxInfo, protocol: LoanProtocol) -> None:
    """
    Co-invoke every validator the transaction triggers; raise the first failure.

    The loan validator runs once per consumed loan record, in input order,
    then the beacon policy runs if the transaction mints or burns its
    tokens or carries a redeemer for it.
    """
    ctx = _TxContext(tx, protocol)
    for tx_in, _ in ctx.loan_inputs:
        validate_spend(tx, tx_in.out_ref, protocol, ctx)

    if ctx.deltas or ctx.mint_redeemer is not None:
        if ctx.mint_redeemer is None:
            raise MintingPolicyViolation("Protocol tokens minted or burned without a beacon redeemer")
        validate_mint(tx, ctx.policy_id, ctx.mint_redeemer, protocol, ctx.deltas)


def validate_transaction(tx: TxInfo, protocol: LoanProtocol) -> Verdict:
    """
    Judge one candidate transaction.

    Returns:
        Verdict(accepted=True) if every check passed, otherwise a rejected
        Verdict carrying the first failing LoanError.

    Example:
        verdict = validate_transaction(tx, protocol)
        if not verdict:
            print(verdict.error_kind.__name__, verdict.reason)
    """
    try:
        check_transaction(tx, protocol)
    except LoanError as e:
        logger.debug("rejected %s: %s: %s", tx.tx_id[:12], type(e).__name__, e)
        return Verdict(False, str(e), e)
    logger.debug("accepted %s", tx.tx_id[:12])
    return Verdict(True)
