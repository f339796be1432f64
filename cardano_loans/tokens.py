"""
tokens.py - Beacon and Identity Token Naming and Accounting

Token names are bit-exact with any off-ledger indexer:

    Ask beacon      policy_id + hex("Ask")       = policy_id + "41736b"
    Offer beacon    policy_id + hex("Offer")     = policy_id + "4f66666572"
    Active beacon   policy_id + hex("Active")    = policy_id + "416374697665"
    Lender token    policy_id + lender payment key hash
    Borrower token  policy_id + borrower stake key hash

Token accounting is a multiset diff: token_deltas() turns a transaction's
mint field into one mapping (policy_id, token_name) -> signed quantity,
computed once per validation call and queried by both validators.
"""

from __future__ import annotations
from typing import Dict, Iterable, Mapping

from .core import (
    ASK_TAG, OFFER_TAG, ACTIVE_TAG, LOVELACE,
    AssetId, split_unit, _require_hash,
)


TokenDeltas = Dict[AssetId, int]


def token_name(tag: str) -> str:
    """Hex token name of an ASCII tag."""
    return tag.encode("ascii").hex()


ASK_TOKEN_NAME = token_name(ASK_TAG)
OFFER_TOKEN_NAME = token_name(OFFER_TAG)
ACTIVE_TOKEN_NAME = token_name(ACTIVE_TAG)


def ask_beacon(policy_id: str) -> str:
    return policy_id + ASK_TOKEN_NAME


def offer_beacon(policy_id: str) -> str:
    return policy_id + OFFER_TOKEN_NAME


def active_beacon(policy_id: str) -> str:
    return policy_id + ACTIVE_TOKEN_NAME


def identity_token(policy_id: str, key_hash: str) -> str:
    """Unit of a lender or borrower identity token: the raw key hash is the name."""
    _require_hash(key_hash, "identity key hash")
    return policy_id + key_hash


def token_deltas(mint: Mapping[str, int]) -> TokenDeltas:
    """
    Split a mint field into (policy_id, token_name) -> signed quantity.

    Zero quantities are dropped, so an absent key means "not touched".
    """
    deltas: TokenDeltas = {}
    for unit, quantity in mint.items():
        if unit == LOVELACE or quantity == 0:
            continue
        asset = split_unit(unit)
        deltas[asset] = deltas.get(asset, 0) + quantity
    return {asset: q for asset, q in deltas.items() if q != 0}


def policy_deltas(deltas: TokenDeltas, policy_id: str) -> Dict[str, int]:
    """Token name -> signed quantity, restricted to one policy."""
    return {name: q for (policy, name), q in deltas.items() if policy == policy_id}


def policy_tokens(value: Mapping[str, int], policy_id: str) -> Dict[str, int]:
    """Token name -> quantity held in a value, restricted to one policy."""
    return {
        unit[len(policy_id):]: q
        for unit, q in value.items()
        if unit != LOVELACE and unit.startswith(policy_id)
    }


def strip_policy(value: Mapping[str, int], policy_id: str) -> Dict[str, int]:
    """Return value without any token of policy_id."""
    return {
        unit: q for unit, q in value.items()
        if unit == LOVELACE or not unit.startswith(policy_id)
    }


def is_authorized(
    key_hash: str,
    token_unit: str,
    signers: Iterable[str],
    holdings: Mapping[str, int],
) -> bool:
    """
    Capability check: did key_hash sign, or does the caller hold its identity token?

    Identity tokens are capability proofs. Possession of the token in the
    supplied holdings authorizes the action just as a signature would.
    Callers choose the holdings: the spender's own wallet inputs for Claim
    and the full-repayment closure, the consumed Offer for MintActive.

    Args:
        key_hash: Key hash that may have signed.
        token_unit: The identity token unit standing in for key_hash.
        signers: Key hashes that signed the transaction.
        holdings: Value the capability may be held in.

    Returns:
        True if either proof is present.
    """
    return key_hash in frozenset(signers) or holdings.get(token_unit, 0) >= 1


