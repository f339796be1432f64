"""
Unit tests for the loan validator: Ask and Offer records.

Tests cover:
- CloseAsk and CloseOffer authorisation and burning
- AcceptOffer term matching, collateral coverage and the Active datum
- Dispatch of records against redeemers that do not apply to them
"""

from dataclasses import replace

import pytest

from cardano_loans import (
    Rational, ValidityInterval, LoanRedeemer,
    validate_transaction, validate_spend, close_ask, close_offer,
    SignerMissing, MintingPolicyViolation, RecordShapeMismatch, LoanTermsMismatch,
    UnknownCollateralAsset, InsufficientCollateral, StaleValidityInterval,
)

from tests.loan_scenario import (
    PROTOCOL, BORROWER, LENDER, STRANGER,
    COLLATERAL_ASSET, OTHER_ASSET, COLLATERAL_RATE, OTHER_UNIT, COLLATERAL_UNIT,
    TERM, INTEREST,
    record_datum, record_index, with_record,
)


TWO_RATES = {COLLATERAL_ASSET: COLLATERAL_RATE, OTHER_ASSET: Rational(1, 1_000_000)}


def _rejects(tx, kind):
    verdict = validate_transaction(tx, PROTOCOL)
    assert not verdict.accepted
    assert verdict.error_kind is kind, verdict.reason
    return verdict


class TestCloseAsk:
    """Tests for CloseAsk."""

    def test_borrower_closes(self, asked):
        assert validate_transaction(asked.close_ask_tx(), PROTOCOL)

    def test_applied_returns_deposit(self, asked):
        asked.apply(asked.close_ask_tx())
        assert asked.records() == []
        assert asked.ledger.balance_of(BORROWER.address)["lovelace"] == 100_000_000

    def test_stranger_cannot_close(self, asked):
        tx = close_ask(PROTOCOL, STRANGER, [asked.ask])
        _rejects(tx, SignerMissing)

    def test_beacon_must_be_burned(self, asked):
        tx = replace(asked.close_ask_tx(), mint={}, mint_redeemers={})
        _rejects(tx, MintingPolicyViolation)

    def test_burn_needs_burn_redeemer(self, asked):
        tx = replace(asked.close_ask_tx(), mint_redeemers={})
        _rejects(tx, MintingPolicyViolation)

    def test_wrong_redeemer_for_record(self, asked):
        tx = asked.close_ask_tx()
        tx = replace(tx, spend_redeemers={asked.ask.out_ref: LoanRedeemer.CLOSE_OFFER.to_data()})
        verdict = _rejects(tx, RecordShapeMismatch)
        assert "CLOSE_OFFER does not apply to a AskDatum" in verdict.reason

    def test_missing_redeemer(self, asked):
        tx = replace(asked.close_ask_tx(), spend_redeemers={})
        _rejects(tx, RecordShapeMismatch)

    def test_validate_spend_raises(self, asked):
        tx = close_ask(PROTOCOL, STRANGER, [asked.ask])
        with pytest.raises(SignerMissing):
            validate_spend(tx, asked.ask.out_ref, PROTOCOL)


class TestCloseOffer:
    """Tests for CloseOffer."""

    def test_lender_closes(self, offered):
        assert validate_transaction(offered.close_offer_tx(), PROTOCOL)

    def test_applied_returns_principal(self, offered):
        offered.apply(offered.close_offer_tx())
        assert offered.ledger.balance_of(LENDER.address) == {"lovelace": 100_000_000}

    def test_borrower_cannot_close_offer(self, offered):
        tx = close_offer(PROTOCOL, BORROWER, [offered.offer])
        _rejects(tx, SignerMissing)

    def test_lender_token_must_be_burned(self, offered):
        tx = offered.close_offer_tx()
        mint = {PROTOCOL.offer_beacon: -1}
        _rejects(replace(tx, mint=mint), MintingPolicyViolation)


class TestAcceptOffer:
    """Tests for AcceptOffer."""

    def test_reference_acceptance(self, offered):
        tx = offered.accept_tx()
        assert validate_transaction(tx, PROTOCOL)
        active = record_datum(tx)
        assert active.expiration_slot == offered.ledger.current_slot + TERM
        assert active.balance_owed == Rational(10_500_000)
        assert active.interest == INTEREST

    def test_mixed_collateral_accepted(self, scenario):
        scenario.open_ask(collateral=[COLLATERAL_ASSET, OTHER_ASSET])
        scenario.open_offer(collateral_rates=TWO_RATES)
        tx = scenario.accept_tx(collateral={COLLATERAL_ASSET: 10, OTHER_ASSET: 5})
        assert validate_transaction(tx, PROTOCOL)

    def test_insufficient_collateral(self, offered):
        tx = offered.accept_tx(collateral={COLLATERAL_ASSET: 19})
        _rejects(tx, InsufficientCollateral)

    def test_unpriced_ask_collateral(self, scenario):
        scenario.open_ask(collateral=[COLLATERAL_ASSET, OTHER_ASSET])
        scenario.open_offer()
        _rejects(scenario.accept_tx(), UnknownCollateralAsset)

    def test_offer_prices_unlisted_collateral(self, scenario):
        scenario.open_ask()
        scenario.open_offer(collateral_rates=TWO_RATES)
        _rejects(scenario.accept_tx(), LoanTermsMismatch)

    def test_principal_mismatch(self, scenario):
        scenario.open_ask()
        scenario.open_offer(principal=9_000_000)
        _rejects(scenario.accept_tx(), LoanTermsMismatch)

    def test_term_mismatch(self, scenario):
        scenario.open_ask()
        scenario.open_offer(term=TERM + 1)
        _rejects(scenario.accept_tx(), LoanTermsMismatch)

    def test_wrong_expiration(self, offered):
        tx = offered.accept_tx()
        datum = record_datum(tx)
        tx = with_record(tx, datum=replace(datum, expiration_slot=datum.expiration_slot + 1))
        _rejects(tx, LoanTermsMismatch)

    def test_balance_without_interest(self, offered):
        tx = offered.accept_tx()
        datum = record_datum(tx)
        tx = with_record(tx, datum=replace(datum, balance_owed=Rational(10_000_000)))
        _rejects(tx, LoanTermsMismatch)

    def test_needs_lower_bound(self, offered):
        tx = replace(offered.accept_tx(), validity=ValidityInterval())
        _rejects(tx, StaleValidityInterval)

    def test_borrower_must_sign(self, offered):
        tx = replace(offered.accept_tx(), signatories=frozenset({STRANGER.payment_key_hash}))
        _rejects(tx, SignerMissing)

    def test_unpriced_asset_in_active_record(self, offered):
        tx = offered.accept_tx()
        record = tx.outputs[record_index(tx)]
        tx = with_record(tx, value={**record.value, OTHER_UNIT: 1})
        _rejects(tx, UnknownCollateralAsset)

    def test_active_record_without_lender_token(self, offered):
        tx = offered.accept_tx()
        record = tx.outputs[record_index(tx)]
        value = dict(record.value)
        del value[PROTOCOL.identity_token(LENDER.lender_id)]
        _rejects(with_record(tx, value=value), MintingPolicyViolation)

    def test_single_record_cannot_accept(self, asked):
        tx = asked.close_ask_tx()
        tx = replace(tx, spend_redeemers={asked.ask.out_ref: LoanRedeemer.ACCEPT_OFFER.to_data()})
        _rejects(tx, RecordShapeMismatch)

    def test_accepted_collateral_is_locked(self, offered):
        active = offered.accept()
        assert active.resolved.quantity(COLLATERAL_UNIT) == 20
        assert active.resolved.quantity(PROTOCOL.active_beacon) == 1
        assert offered.ledger.balance_of(BORROWER.address)[COLLATERAL_UNIT] == 30

