"""
cardano_loans - P2P Collateralized Lending Validator

Validation logic for peer-to-peer, collateralized loans on a UTxO ledger
with native multi-asset values: the loan record state machine, its beacon
minting policy, and the collateral and repayment arithmetic they share.

Usage:
    from cardano_loans import (
        Ledger, LoanProtocol, Party, Rational,
        create_ask, create_offer, accept_offer, repay_loan, claim,
    )

    protocol = LoanProtocol.derive()
    ledger = Ledger("emulator", protocol)
    borrower = Party.from_seed("borrower")
    funding = ledger.seed(borrower.address, {"lovelace": 100_000_000})

    tx = create_ask(protocol, borrower, [ledger.get_input(funding)],
                    loan_asset=("", ""), principal=10_000_000, term=10_000,
                    collateral=[collateral_asset])
    result = ledger.execute(tx)

    # Judge a transaction without committing it
    verdict = validate_transaction(tx, protocol)
"""

# Core types
from .core import (
    LOVELACE,
    LOVELACE_ASSET,
    SLOTS_PER_BLOCK,
    AssetId,
    Value,
    CredentialType,
    Credential,
    Address,
    TxOutRef,
    TxOut,
    TxInInfo,
    ValidityInterval,
    TxInfo,
    asset_unit,
    split_unit,
    LoanError,
    LoanArithmeticError,
    MintingPolicyViolation,
    SignerMissing,
    OverRepayment,
    PrematureClaim,
    UnknownCollateralAsset,
    StaleValidityInterval,
    RecordShapeMismatch,
    LoanTermsMismatch,
    InsufficientCollateral,
    MisdirectedFunds,
)

# Exact arithmetic
from .rational import Rational, ceil_div, floor_div

# Ledger data
from .plutus_data import Constr
from .datums import (
    AskDatum,
    OfferDatum,
    ActiveDatum,
    LoanDatum,
    LoanRedeemer,
    MintAsk,
    MintOffer,
    MintActive,
    BurnBeacon,
    BeaconRedeemer,
    activate,
    with_balance,
    encode_datum,
    decode_datum,
    encode_beacon_redeemer,
    decode_beacon_redeemer,
)

# Tokens and deployment
from .tokens import token_deltas, is_authorized
from .protocol import LoanProtocol

# Calculator
from .calculator import (
    required_collateral,
    release_on_repayment,
    initial_balance,
    expiration_slot,
    remaining_balance,
    remaining_collateral,
    settlement_amount,
    collateral_coverage,
)

# Validators
from .beacon_policy import validate_mint
from .validator import Verdict, validate_spend, validate_transaction, check_transaction

# Builders
from .transactions import (
    Party,
    create_ask,
    close_ask,
    create_offer,
    close_offer,
    accept_offer,
    repay_loan,
    claim,
)

# Ledger
from .ledger import Ledger, LedgerEntry, ExecuteResult


__all__ = [
    # Core
    'LOVELACE', 'LOVELACE_ASSET', 'SLOTS_PER_BLOCK',
    'AssetId', 'Value',
    'CredentialType', 'Credential', 'Address',
    'TxOutRef', 'TxOut', 'TxInInfo', 'ValidityInterval', 'TxInfo',
    'asset_unit', 'split_unit',
    # Exceptions
    'LoanError', 'LoanArithmeticError', 'MintingPolicyViolation', 'SignerMissing',
    'OverRepayment', 'PrematureClaim', 'UnknownCollateralAsset',
    'StaleValidityInterval', 'RecordShapeMismatch', 'LoanTermsMismatch',
    'InsufficientCollateral', 'MisdirectedFunds',
    # Arithmetic
    'Rational', 'ceil_div', 'floor_div',
    # Ledger data
    'Constr',
    'AskDatum', 'OfferDatum', 'ActiveDatum', 'LoanDatum', 'LoanRedeemer',
    'MintAsk', 'MintOffer', 'MintActive', 'BurnBeacon', 'BeaconRedeemer',
    'activate', 'with_balance',
    'encode_datum', 'decode_datum', 'encode_beacon_redeemer', 'decode_beacon_redeemer',
    # Tokens and deployment
    'token_deltas', 'is_authorized', 'LoanProtocol',
    # Calculator
    'required_collateral', 'release_on_repayment', 'initial_balance',
    'expiration_slot', 'remaining_balance', 'remaining_collateral',
    'collateral_coverage', 'settlement_amount',
    # Validators
    'validate_mint', 'Verdict', 'validate_spend', 'validate_transaction',
    'check_transaction',
    # Builders
    'Party', 'create_ask', 'close_ask', 'create_offer', 'close_offer',
    'accept_offer', 'repay_loan', 'claim',
    # Ledger
    'Ledger', 'LedgerEntry', 'ExecuteResult',
]

__version__ = '1.0.0'
