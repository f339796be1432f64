"""
Unit tests for the beacon minting policy.

Each test builds a valid transaction with the scenario's builders, then
tampers with one aspect and checks the policy names the right failure.
"""

from dataclasses import replace

import pytest

from cardano_loans import (
    TxInInfo, TxOut, validate_mint, validate_transaction,
    MintAsk, MintOffer, MintActive, BurnBeacon,
    MintingPolicyViolation, SignerMissing, RecordShapeMismatch,
)
from cardano_loans.core import subtract_values

from tests.loan_scenario import (
    PROTOCOL, BORROWER, LENDER, STRANGER,
    make_ask, make_offer,
    record_index, with_output, with_record,
)


POLICY = PROTOCOL.beacon_policy_id


def _mint(tx, redeemer):
    validate_mint(tx, POLICY, redeemer, PROTOCOL)


class TestMintAsk:
    """Tests for MintAsk."""

    def test_builder_transaction_passes(self, scenario):
        _mint(scenario.ask_tx(), MintAsk(BORROWER.borrower_id))

    def test_two_beacons(self, scenario):
        tx = replace(scenario.ask_tx(), mint={PROTOCOL.ask_beacon: 2})
        with pytest.raises(MintingPolicyViolation, match="exactly"):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_extra_token(self, scenario):
        tx = scenario.ask_tx()
        tx = replace(tx, mint={PROTOCOL.ask_beacon: 1, PROTOCOL.offer_beacon: 1})
        with pytest.raises(MintingPolicyViolation):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_borrower_must_sign(self, scenario):
        tx = replace(scenario.ask_tx(), signatories=STRANGER.signers)
        with pytest.raises(SignerMissing):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_beacon_at_wallet_address(self, scenario):
        tx = scenario.ask_tx()
        record = tx.outputs[record_index(tx)]
        tx = with_output(tx, record_index(tx), TxOut(BORROWER.address, record.value, record.datum))
        with pytest.raises(MintingPolicyViolation, match="loan address"):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_beacon_at_another_borrowers_address(self, scenario):
        tx = scenario.ask_tx()
        record = tx.outputs[record_index(tx)]
        moved = TxOut(PROTOCOL.loan_address(STRANGER.borrower_id), record.value, record.datum)
        tx = with_output(tx, record_index(tx), moved)
        with pytest.raises(MintingPolicyViolation, match="borrower's loan address"):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_datum_of_wrong_kind(self, scenario):
        tx = with_record(scenario.ask_tx(), datum=make_offer())
        with pytest.raises(RecordShapeMismatch):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_datum_for_another_borrower(self, scenario):
        tx = with_record(scenario.ask_tx(), datum=make_ask(borrower_id=STRANGER.borrower_id))
        with pytest.raises(MintingPolicyViolation, match="policy and borrower"):
            _mint(tx, MintAsk(BORROWER.borrower_id))

    def test_missing_datum(self, scenario):
        tx = scenario.ask_tx()
        record = tx.outputs[record_index(tx)]
        tx = with_output(tx, record_index(tx), TxOut(record.address, record.value))
        with pytest.raises(RecordShapeMismatch, match="no datum"):
            _mint(tx, MintAsk(BORROWER.borrower_id))


class TestMintOffer:
    """Tests for MintOffer."""

    def test_builder_transaction_passes(self, scenario):
        _mint(scenario.offer_tx(), MintOffer(LENDER.lender_id))

    def test_lender_token_missing_from_mint(self, scenario):
        tx = replace(scenario.offer_tx(), mint={PROTOCOL.offer_beacon: 1})
        with pytest.raises(MintingPolicyViolation):
            _mint(tx, MintOffer(LENDER.lender_id))

    def test_lender_must_sign(self, scenario):
        tx = replace(scenario.offer_tx(), signatories=frozenset({STRANGER.payment_key_hash}))
        with pytest.raises(SignerMissing):
            _mint(tx, MintOffer(LENDER.lender_id))

    def test_lender_token_not_locked_with_beacon(self, scenario):
        tx = scenario.offer_tx()
        record = tx.outputs[record_index(tx)]
        lender_unit = PROTOCOL.identity_token(LENDER.lender_id)
        tx = with_record(tx, value=subtract_values(record.value, {lender_unit: 1}))
        with pytest.raises(MintingPolicyViolation, match="Lender token"):
            _mint(tx, MintOffer(LENDER.lender_id))

    def test_principal_not_locked(self, scenario):
        tx = scenario.offer_tx()
        record = tx.outputs[record_index(tx)]
        tx = with_record(tx, value=subtract_values(record.value, {"lovelace": 5_000_000}))
        with pytest.raises(MintingPolicyViolation, match="principal"):
            _mint(tx, MintOffer(LENDER.lender_id))

    def test_datum_for_another_lender(self, scenario):
        tx = with_record(scenario.offer_tx(), datum=make_offer(lender_id=STRANGER.lender_id))
        with pytest.raises(MintingPolicyViolation, match="policy and lender"):
            _mint(tx, MintOffer(LENDER.lender_id))


class TestMintActive:
    """Tests for MintActive."""

    def test_builder_transaction_passes(self, offered):
        _mint(offered.accept_tx(), MintActive(BORROWER.borrower_id, LENDER.lender_id))

    def test_ask_beacon_not_burned(self, offered):
        tx = offered.accept_tx()
        mint = dict(tx.mint)
        del mint[PROTOCOL.ask_beacon]
        with pytest.raises(MintingPolicyViolation):
            _mint(replace(tx, mint=mint), MintActive(BORROWER.borrower_id, LENDER.lender_id))

    def test_borrower_must_sign(self, offered):
        tx = replace(offered.accept_tx(), signatories=frozenset({LENDER.payment_key_hash}))
        with pytest.raises(SignerMissing, match="borrower"):
            _mint(tx, MintActive(BORROWER.borrower_id, LENDER.lender_id))

    def test_offer_from_another_lender(self, offered):
        tx = offered.accept_tx()
        with pytest.raises(MintingPolicyViolation, match="Offer does not belong"):
            _mint(tx, MintActive(BORROWER.borrower_id, STRANGER.lender_id))

    def test_lender_without_token_or_signature(self, offered):
        tx = offered.accept_tx()
        lender_unit = PROTOCOL.identity_token(LENDER.lender_id)
        offer = offered.offer
        stripped = TxInInfo(offer.out_ref, TxOut(
            offer.resolved.address,
            subtract_values(offer.resolved.value, {lender_unit: 1}),
            offer.resolved.datum,
        ))
        inputs = tuple(stripped if i.out_ref == offer.out_ref else i for i in tx.inputs)
        with pytest.raises(SignerMissing, match="lender"):
            _mint(replace(tx, inputs=inputs), MintActive(BORROWER.borrower_id, LENDER.lender_id))

    def test_lender_signature_is_enough(self, offered):
        tx = offered.accept_tx()
        tx = replace(tx, signatories=tx.signatories | {LENDER.payment_key_hash})
        _mint(tx, MintActive(BORROWER.borrower_id, LENDER.lender_id))

    def test_borrower_token_not_in_record(self, offered):
        tx = offered.accept_tx()
        record = tx.outputs[record_index(tx)]
        borrower_unit = PROTOCOL.identity_token(BORROWER.borrower_id)
        tx = with_record(tx, value=subtract_values(record.value, {borrower_unit: 1}))
        with pytest.raises(MintingPolicyViolation, match="both identity tokens"):
            _mint(tx, MintActive(BORROWER.borrower_id, LENDER.lender_id))


class TestBurnBeacon:
    """Tests for BurnBeacon and for the policy's co-invocation."""

    def test_burn_only(self, asked):
        _mint(asked.close_ask_tx(), BurnBeacon())

    def test_cannot_mint(self, scenario):
        with pytest.raises(MintingPolicyViolation, match="cannot mint"):
            _mint(scenario.ask_tx(), BurnBeacon())

    def test_redeemer_must_match_action(self, scenario):
        with pytest.raises(MintingPolicyViolation):
            _mint(scenario.ask_tx(), MintOffer(LENDER.lender_id))

    def test_mint_without_redeemer_rejected(self, scenario):
        tx = replace(scenario.ask_tx(), mint_redeemers={})
        verdict = validate_transaction(tx, PROTOCOL)
        assert verdict.error_kind is MintingPolicyViolation
        assert "without a beacon redeemer" in verdict.reason

    def test_not_a_redeemer(self, scenario):
        with pytest.raises(RecordShapeMismatch):
            _mint(scenario.ask_tx(), "MintAsk")
