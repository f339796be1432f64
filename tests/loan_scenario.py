"""
loan_scenario.py - Test Helper driving a loan through a Ledger

Provides the reference workflow's parties and terms, and a LoanScenario
that funds the wallets and walks a loan from Ask to Claim, asserting that
every step is applied. Tests use it to reach a state, then build the
transaction under test by hand (or tamper with a builder's output).
"""

from __future__ import annotations
from dataclasses import replace
from typing import List, Optional

from cardano_loans import (
    AskDatum, OfferDatum, ActiveDatum, activate,
    ExecuteResult, Ledger, LoanProtocol, Party, Rational, TxInInfo, TxInfo, TxOut, TxOutRef,
    asset_unit, decode_datum, encode_datum,
    create_ask, close_ask, create_offer, close_offer, accept_offer, repay_loan, claim,
)


PROTOCOL = LoanProtocol.derive("cardano-loans-test")
BORROWER = Party.from_seed("borrower")
LENDER = Party.from_seed("lender")
STRANGER = Party.from_seed("stranger")

LOAN_ASSET = ("", "")
COLLATERAL_ASSET = ("c0f8644a01a6bf5db02f4afe30d604975e63dd274f1098a1738e561d", "6c7563696431")
COLLATERAL_UNIT = asset_unit(COLLATERAL_ASSET)
OTHER_ASSET = ("c0f8644a01a6bf5db02f4afe30d604975e63dd274f1098a1738e561d", "6f74686572")
OTHER_UNIT = asset_unit(OTHER_ASSET)

PRINCIPAL = 10_000_000
TERM = 10_000
INTEREST = Rational(1, 20)
COLLATERAL_RATE = Rational(1, 500_000)
REQUIRED_COLLATERAL = 20
START_SLOT = 1_000

LOAN_ADDRESS = PROTOCOL.loan_address(BORROWER.borrower_id)


def with_output(tx: TxInfo, index: int, out: TxOut) -> TxInfo:
    """Return tx with output index replaced."""
    outputs = list(tx.outputs)
    outputs[index] = out
    return replace(tx, outputs=tuple(outputs))


def record_index(tx: TxInfo) -> int:
    """Index of the single output at the loan address."""
    matches = [i for i, out in enumerate(tx.outputs) if out.address == LOAN_ADDRESS]
    assert len(matches) == 1
    return matches[0]


def with_record(tx: TxInfo, value=None, datum=None) -> TxInfo:
    """Return tx with the loan-address output's value and/or datum replaced."""
    i = record_index(tx)
    out = tx.outputs[i]
    new = TxOut(
        out.address,
        out.value if value is None else value,
        out.datum if datum is None else encode_datum(datum),
    )
    return with_output(tx, i, new)


def record_datum(tx: TxInfo):
    return decode_datum(tx.outputs[record_index(tx)].datum)


class LoanScenario:
    """
    A funded ledger plus shortcuts for each step of the reference workflow.

    Example:
        s = LoanScenario()
        s.open_ask(); s.open_offer()
        active = s.accept()
        active = s.repay(5_250_000)
    """

    def __init__(self, start_slot: int = START_SLOT, verbose: bool = False):
        self.protocol = PROTOCOL
        self.ledger = Ledger("test", PROTOCOL, initial_slot=start_slot, verbose=verbose)
        self.ledger.seed(BORROWER.address, {"lovelace": 100_000_000, COLLATERAL_UNIT: 50, OTHER_UNIT: 5})
        self.ledger.seed(LENDER.address, {"lovelace": 100_000_000})
        self.ledger.seed(STRANGER.address, {"lovelace": 100_000_000})
        self.ask: Optional[TxInInfo] = None
        self.offer: Optional[TxInInfo] = None
        self.active: Optional[TxInInfo] = None
        self.acceptance_slot: Optional[int] = None

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------

    def wallet(self, party: Party) -> List[TxInInfo]:
        return self.ledger.utxos_at(party.address)

    def records(self) -> List[TxInInfo]:
        return self.ledger.utxos_at(LOAN_ADDRESS)

    @property
    def expiration(self) -> int:
        return self.acceptance_slot + TERM

    def apply(self, tx: TxInfo) -> TxInfo:
        result = self.ledger.execute(tx)
        assert result == ExecuteResult.APPLIED, self.ledger.last_rejection
        return tx

    # ------------------------------------------------------------------
    # builders bound to the scenario's parties and terms
    # ------------------------------------------------------------------

    def ask_tx(self, **kwargs) -> TxInfo:
        return create_ask(
            PROTOCOL, BORROWER, self.wallet(BORROWER),
            loan_asset=LOAN_ASSET, principal=kwargs.pop("principal", PRINCIPAL),
            term=kwargs.pop("term", TERM),
            collateral=kwargs.pop("collateral", [COLLATERAL_ASSET]),
            **kwargs,
        )

    def offer_tx(self, **kwargs) -> TxInfo:
        return create_offer(
            PROTOCOL, LENDER, self.wallet(LENDER), BORROWER.borrower_id,
            loan_asset=LOAN_ASSET, principal=kwargs.pop("principal", PRINCIPAL),
            term=kwargs.pop("term", TERM),
            interest=kwargs.pop("interest", INTEREST),
            collateral_rates=kwargs.pop("collateral_rates", {COLLATERAL_ASSET: COLLATERAL_RATE}),
            **kwargs,
        )

    def close_ask_tx(self) -> TxInfo:
        return close_ask(PROTOCOL, BORROWER, [self.ask])

    def close_offer_tx(self) -> TxInfo:
        return close_offer(PROTOCOL, LENDER, [self.offer])

    def accept_tx(self, slot: Optional[int] = None, **kwargs) -> TxInfo:
        slot = self.ledger.current_slot if slot is None else slot
        return accept_offer(
            PROTOCOL, BORROWER, self.ask, self.offer, self.wallet(BORROWER), slot, **kwargs
        )

    def repay_tx(self, amount: int, valid_to: Optional[int] = None, **kwargs) -> TxInfo:
        if valid_to is None:
            valid_to = min(self.ledger.current_slot + 500, self.expiration)
        return repay_loan(
            PROTOCOL, BORROWER, self.active, amount, self.wallet(BORROWER), valid_to, **kwargs
        )

    def claim_tx(self, valid_from: Optional[int] = None, **kwargs) -> TxInfo:
        valid_from = self.ledger.current_slot if valid_from is None else valid_from
        return claim(PROTOCOL, LENDER, [self.active], valid_from, **kwargs)

    # ------------------------------------------------------------------
    # workflow steps (asserted APPLIED)
    # ------------------------------------------------------------------

    def open_ask(self, **kwargs) -> TxInInfo:
        tx = self.apply(self.ask_tx(**kwargs))
        self.ask = self.ledger.get_input(_ref(tx, record_index(tx)))
        return self.ask

    def open_offer(self, **kwargs) -> TxInInfo:
        tx = self.apply(self.offer_tx(**kwargs))
        self.offer = self.ledger.get_input(_ref(tx, record_index(tx)))
        return self.offer

    def accept(self) -> TxInInfo:
        if self.ask is None:
            self.open_ask()
        if self.offer is None:
            self.open_offer()
        self.ledger.await_blocks(1)
        self.acceptance_slot = self.ledger.current_slot
        tx = self.apply(self.accept_tx())
        self.ask = self.offer = None
        self.active = self.ledger.get_input(_ref(tx, record_index(tx)))
        return self.active

    def repay(self, amount: int, **kwargs) -> TxInInfo:
        self.ledger.await_blocks(1)
        tx = self.apply(self.repay_tx(amount, **kwargs))
        self.active = self.ledger.get_input(_ref(tx, record_index(tx)))
        return self.active

    def claim(self, valid_from: Optional[int] = None) -> TxInfo:
        tx = self.apply(self.claim_tx(valid_from))
        self.active = None
        return tx


def _ref(tx: TxInfo, index: int) -> TxOutRef:
    return TxOutRef(tx.tx_id, index)


# =============================================================================
# DATUM FACTORIES
# =============================================================================

def make_ask(**overrides) -> AskDatum:
    fields = dict(
        beacon_policy=PROTOCOL.beacon_policy_id,
        borrower_id=BORROWER.borrower_id,
        loan_asset=LOAN_ASSET,
        principal=PRINCIPAL,
        term=TERM,
        collateral=(COLLATERAL_ASSET,),
    )
    fields.update(overrides)
    return AskDatum(**fields)


def make_offer(**overrides) -> OfferDatum:
    fields = dict(
        beacon_policy=PROTOCOL.beacon_policy_id,
        lender_id=LENDER.lender_id,
        loan_asset=LOAN_ASSET,
        principal=PRINCIPAL,
        term=TERM,
        interest=INTEREST,
        collateral_rates={COLLATERAL_ASSET: COLLATERAL_RATE},
    )
    fields.update(overrides)
    return OfferDatum(**fields)


def make_active(acceptance_slot: int = START_SLOT, **overrides) -> ActiveDatum:
    return replace(activate(make_ask(), make_offer(), acceptance_slot), **overrides)
