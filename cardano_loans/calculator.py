"""
calculator.py - Collateral and Repayment Arithmetic

Pure functions shared by the validator and the transaction builders.

ARCHITECTURE (Pure Function Pattern):
=====================================

Every function takes all of its inputs explicitly: no transaction view,
no ledger, no hidden state. They can be exercised (and stress-tested)
independently of the state machine.

Rounding policy (fixed, lender-favouring):
    required collateral     ceiling(principal * rate)
    released collateral     floor(locked * repayment / old_balance)

Because each release is taken from what is still locked, the collateral
left after a step is ceiling(locked * new_balance / old_balance), and a
repayment of the whole balance releases everything that is left. A full
sequence of repayments therefore releases exactly what was locked: no
dust left behind, no over-release.

Key Formulas:
    initial_balance   = principal + principal * interest
    expiration_slot   = acceptance_slot + term
    coverage          = sum(locked[asset] / rate[asset])  (in loan-asset units)
"""

from __future__ import annotations
from typing import Dict, Mapping

from .core import (
    AssetId,
    LoanArithmeticError, OverRepayment, UnknownCollateralAsset,
)
from .rational import Rational, RationalLike


def _non_negative_int(value: int, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise LoanArithmeticError(f"{what} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise LoanArithmeticError(f"{what} cannot be negative, got {value}")
    return value


def _positive_int(value: int, what: str) -> int:
    if _non_negative_int(value, what) == 0:
        raise LoanArithmeticError(f"{what} must be positive")
    return value


def initial_balance(principal: int, interest: Rational) -> Rational:
    """
    Opening balance of an accepted loan.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Example:
        initial_balance(10_000_000, Rational(1, 20))  # Rational(10500000, 1)
    """
    _positive_int(principal, "principal")
    if interest < 0:
        raise LoanArithmeticError(f"interest cannot be negative, got {interest}")
    return principal + principal * interest


def expiration_slot(acceptance_slot: int, term: int) -> int:
    """Slot after which the loan can no longer be repaid."""
    _non_negative_int(acceptance_slot, "acceptance_slot")
    _positive_int(term, "term")
    return acceptance_slot + term


def required_collateral(
    principal: int,
    collateral_rates: Mapping[AssetId, Rational],
) -> Dict[AssetId, int]:
    """
    Collateral needed to back principal with each asset on its own.

    PURE FUNCTION - All inputs explicit, no hidden state.

    For each asset: quantity = ceiling(principal * rate). Rounding up never
    leaves the lender under-collateralized.

    Args:
        principal: Loan principal in loan-asset units
        collateral_rates: Asset -> collateral units required per loan unit

    Returns:
        Asset -> required quantity.

    Example:
        required_collateral(10_000_000, {asset: Rational(1, 500_000)})
        # {asset: 20}
    """
    _positive_int(principal, "principal")
    required = {}
    for asset, rate in collateral_rates.items():
        if rate <= 0:
            raise LoanArithmeticError(f"Collateral rate for {asset} must be positive, got {rate}")
        required[asset] = (principal * rate).ceiling()
    return required


def collateral_coverage(
    locked: Mapping[AssetId, int],
    collateral_rates: Mapping[AssetId, Rational],
) -> Rational:
    """
    How much loan asset the locked collateral backs, at the offered rates.

    Assets may be mixed: 10 units at 1/500_000 and 5 units at 1/250_000
    together cover 6_250_000.

    Raises:
        UnknownCollateralAsset: if locked names an asset without a rate.
    """
    coverage = Rational(0)
    for asset, quantity in locked.items():
        _non_negative_int(quantity, f"locked {asset}")
        if asset not in collateral_rates:
            raise UnknownCollateralAsset(f"No collateral rate for {asset}")
        coverage = coverage + Rational(quantity) / collateral_rates[asset]
    return coverage


def release_on_repayment(
    locked: Mapping[AssetId, int],
    old_balance: Rational,
    repayment: RationalLike,
) -> Dict[AssetId, int]:
    """
    Collateral the borrower may take back for a repayment.

    PURE FUNCTION - All inputs explicit, no hidden state.

    For each asset: floor(locked * repayment / old_balance), never more
    than locked. Rounding down keeps the remaining collateral at or above
    the proportion still owed.

    Args:
        locked: Asset -> quantity currently locked in the loan
        old_balance: Outstanding balance before the repayment (> 0)
        repayment: Amount repaid in this step (>= 0)

    Returns:
        Asset -> releasable quantity.

    Example:
        release_on_repayment({asset: 20}, Rational(10_500_000), 5_250_000)
        # {asset: 10}
    """
    old_balance = Rational.of(old_balance)
    repayment = Rational.of(repayment)
    if old_balance <= 0:
        raise LoanArithmeticError(f"Nothing to release against a balance of {old_balance}")
    if repayment < 0:
        raise LoanArithmeticError(f"repayment cannot be negative, got {repayment}")
    share = repayment / old_balance
    release = {}
    for asset, quantity in locked.items():
        _non_negative_int(quantity, f"locked {asset}")
        release[asset] = min(quantity, (quantity * share).floor())
    return release


def remaining_balance(old_balance: Rational, repayment: RationalLike) -> Rational:
    """
    Balance after a repayment.

    Repayments move whole units while a balance may be fractional, so a
    loan settles when the repayment reaches the balance rounded up
    (settlement_amount). Anything above that is an over-repayment.

    Raises:
        OverRepayment: if the repayment exceeds the settlement amount,
            including any repayment against a balance that is already zero.
    """
    old_balance = Rational.of(old_balance)
    repayment = Rational.of(repayment)
    if repayment < 0:
        raise LoanArithmeticError(f"repayment cannot be negative, got {repayment}")
    if old_balance.is_zero():
        raise OverRepayment("Loan is already fully repaid")
    if repayment > settlement_amount(old_balance):
        raise OverRepayment(
            f"Repayment of {repayment} exceeds the outstanding balance of {old_balance}"
        )
    new_balance = old_balance - repayment
    if new_balance < 0:
        return Rational(0)
    return new_balance


def settlement_amount(balance: RationalLike) -> int:
    """
    Smallest whole repayment that clears a balance.

    PURE FUNCTION - All inputs explicit.

    Example:
        settlement_amount(Rational(210_000_021, 20))  # 10_500_002
    """
    balance = Rational.of(balance)
    if balance < 0:
        raise LoanArithmeticError(f"balance cannot be negative, got {balance}")
    return balance.ceiling()


def remaining_collateral(
    locked: Mapping[AssetId, int],
    old_balance: Rational,
    repayment: RationalLike,
) -> Dict[AssetId, int]:
    """Minimum collateral that must stay locked after a repayment."""
    release = release_on_repayment(locked, old_balance, repayment)
    return {asset: quantity - release[asset] for asset, quantity in locked.items()}
