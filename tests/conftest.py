"""
conftest.py - Shared pytest fixtures for loan validator tests

Provides common fixtures used across unit, functional and conformance tests:
- The test deployment and the reference parties
- Scenarios advanced to each stage of the loan lifecycle
- Datum factories with the reference workflow's terms
"""

import pytest

from tests.loan_scenario import LoanScenario, make_ask, make_offer, make_active


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ask_datum():
    return make_ask()


@pytest.fixture
def offer_datum():
    return make_offer()


@pytest.fixture
def active_datum():
    return make_active()


@pytest.fixture
def scenario():
    """Funded ledger, nothing opened yet."""
    return LoanScenario()


@pytest.fixture
def asked(scenario):
    """Scenario with an open Ask."""
    scenario.open_ask()
    return scenario


@pytest.fixture
def offered(asked):
    """Scenario with an open Ask and a matching Offer."""
    asked.open_offer()
    return asked


@pytest.fixture
def active(offered):
    """Scenario with a freshly accepted loan (balance 10_500_000, 20 collateral)."""
    offered.accept()
    return offered


@pytest.fixture
def half_repaid(active):
    """Scenario after one repayment of 5_250_000."""
    active.repay(5_250_000)
    return active


@pytest.fixture
def repaid(half_repaid):
    """Scenario after full repayment: balance 0, collateral returned."""
    half_repaid.repay(5_250_000)
    return half_repaid
