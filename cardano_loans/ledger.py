"""
ledger.py - In-Memory UTxO Ledger

The Ledger class is the only part of the package that mutates state. It
stands in for the ledger a real deployment submits to: it holds the
unspent outputs, keeps a slot clock, and commits a transaction only if
the ledger rules and the loan validators all accept it.

Key responsibilities:
    - Input existence and double-spend rejection (a consumed output is gone)
    - Validity interval checked against the current slot
    - Value conservation: inputs + mint = outputs + fee
    - Co-invocation of the loan validator and beacon policy
    - Atomic commit and an append-only audit log
    - Idempotency on the transaction id
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import hashlib
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from .core import (
    LOVELACE, SLOTS_PER_BLOCK, Address, TxInfo, TxInInfo, TxOut, TxOutRef, Value,
    merge_values, values_of,
)
from .datums import LoanDatum, decode_datum
from .protocol import LoanProtocol
from .validator import Verdict, validate_transaction


class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and committed.
    ALREADY_APPLIED: Transaction id was previously committed (idempotent behavior).
    REJECTED: Transaction failed a ledger rule or a validator.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    An executed transaction, as recorded in the audit log.

    Attributes:
        tx: The committed transaction view.
        slot: Ledger slot at commit time.
        sequence_number: Monotonic position within the ledger.
        ledger_name: Name of the ledger that committed it.
    """
    tx: TxInfo
    slot: int
    sequence_number: int
    ledger_name: str

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        tx = self.tx
        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + tx.tx_id)}│",
            f"├{bar}┤",
            f"│{pad('   ledger_name : ' + self.ledger_name)}│",
            f"│{pad('   slot        : ' + str(self.slot))}│",
            f"│{pad('   sequence    : ' + str(self.sequence_number))}│",
            f"│{pad('   validity    : ' + _interval(tx))}│",
            f"│{pad('   signers     : ' + ', '.join(sorted(k[:8] for k in tx.signatories)))}│",
            f"├{bar}┤",
            f"│{pad(' Inputs (' + str(len(tx.inputs)) + '):')}│",
        ]
        for tx_in in tx.inputs:
            lines.append(f"│{pad(f'   {tx_in.out_ref!r} {_short(tx_in.resolved.value)}')}│")
        lines.append(f"│{pad(' Outputs (' + str(len(tx.outputs)) + '):')}│")
        for i, out in enumerate(tx.outputs):
            tag = " +datum" if out.datum is not None else ""
            lines.append(f"│{pad(f'   [{i}] {out.address!r} {_short(out.value)}{tag}')}│")
        if tx.mint:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Mint: ' + _short(tx.mint))}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _interval(tx: TxInfo) -> str:
    lower = "-inf" if tx.validity.lower is None else str(tx.validity.lower)
    upper = "+inf" if tx.validity.upper is None else str(tx.validity.upper)
    return f"[{lower}, {upper}]"


def _short(value: Mapping[str, int]) -> str:
    parts = []
    for unit, q in sorted(value.items()):
        label = unit if unit == LOVELACE else unit[:8] + "." + unit[56:68]
        parts.append(f"{label}={q}")
    return "{" + ", ".join(parts) + "}"


class Ledger:
    """
    UTxO ledger that commits only validated transactions.

    Design Principles:
        - Always validates: ledger rules first, then the loan validator and
          beacon policy through validate_transaction(). No shortcuts.
        - Always logs: every committed transaction is appended to
          transaction_log; every rejection is kept in rejections.

    Thread Safety:
        Not thread-safe. Each execute() is a single synchronous step; a
        record can be consumed at most once because committing removes it.

    Example:
        ledger = Ledger("emulator", LoanProtocol.derive())
        ref = ledger.seed(borrower.address, {"lovelace": 50_000_000})
        tx = create_ask(ledger.protocol, borrower, [ledger.get_input(ref)], ...)
        result = ledger.execute(tx)
    """

    def __init__(
        self,
        name: str,
        protocol: LoanProtocol,
        initial_slot: int = 0,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            protocol: Deployment whose validators guard the loan address
            initial_slot: Starting slot (default: 0)
            verbose: Print every applied or rejected transaction (default: True)
        """
        if initial_slot < 0:
            raise ValueError(f"initial_slot cannot be negative, got {initial_slot}")
        self.name = name
        self.protocol = protocol
        self.verbose = verbose
        self.utxos: Dict[TxOutRef, TxOut] = {}
        self.seen_tx_ids: Set[str] = set()
        self.transaction_log: List[LedgerEntry] = []
        self.rejections: List[Tuple[str, Verdict]] = []
        self._current_slot = initial_slot
        self._next_sequence = 0
        self._genesis_count = 0

    # ========================================================================
    # READ-ONLY VIEW
    # ========================================================================

    @property
    def current_slot(self) -> int:
        """Current slot of the ledger clock."""
        return self._current_slot

    def get_utxo(self, out_ref: TxOutRef) -> Optional[TxOut]:
        return self.utxos.get(out_ref)

    def get_input(self, out_ref: TxOutRef) -> TxInInfo:
        """
        Resolve an unspent output into a transaction input.

        Raises:
            KeyError: If out_ref is unknown or already spent
        """
        if out_ref not in self.utxos:
            raise KeyError(f"{out_ref!r} is not an unspent output")
        return TxInInfo(out_ref, self.utxos[out_ref])

    def utxos_at(self, address: Address) -> List[TxInInfo]:
        """Unspent outputs at an address, in creation order."""
        return [TxInInfo(ref, out) for ref, out in self.utxos.items() if out.address == address]

    def records_at(self, address: Address) -> List[Tuple[TxInInfo, LoanDatum]]:
        """Unspent loan records at an address, decoded."""
        return [
            (tx_in, decode_datum(tx_in.resolved.datum))
            for tx_in in self.utxos_at(address)
            if tx_in.resolved.datum is not None
        ]

    def balance_of(self, address: Address) -> Value:
        """Total value of the unspent outputs at an address."""
        return values_of(out for out in self.utxos.values() if out.address == address)

    @property
    def last_rejection(self) -> Optional[Verdict]:
        """Verdict of the most recent rejected transaction, if any."""
        return self.rejections[-1][1] if self.rejections else None

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_slot(self, new_slot: int) -> None:
        """
        Move the ledger clock forward.

        Raises:
            ValueError: If new_slot is before the current slot
        """
        if new_slot < self._current_slot:
            raise ValueError(f"Cannot move time backwards: {new_slot} < {self._current_slot}")
        self._current_slot = new_slot

    def await_blocks(self, blocks: int = 1) -> int:
        """Advance the clock by whole blocks. Returns the new slot."""
        if blocks < 0:
            raise ValueError(f"blocks cannot be negative, got {blocks}")
        self._current_slot += blocks * SLOTS_PER_BLOCK
        return self._current_slot

    # ========================================================================
    # MUTATION
    # ========================================================================

    def seed(self, address: Address, value: Mapping[str, int], datum: Any = None) -> TxOutRef:
        """
        Create a genesis output (test funding). Bypasses validation.

        Returns:
            Reference of the new output
        """
        tx_id = hashlib.sha256(f"genesis:{self.name}:{self._genesis_count}".encode()).hexdigest()
        self._genesis_count += 1
        ref = TxOutRef(tx_id, 0)
        self.utxos[ref] = TxOut(address, value, datum)
        return ref

    def execute(self, tx: TxInfo) -> ExecuteResult:
        """
        Validate and commit a transaction atomically.

        Execution is idempotent: a transaction with a tx_id already committed
        is not applied twice.

        Args:
            tx: Candidate transaction

        Returns:
            ExecuteResult.APPLIED if committed
            ExecuteResult.ALREADY_APPLIED if tx_id was already committed
            ExecuteResult.REJECTED if a ledger rule or validator failed
        """
        if tx.tx_id in self.seen_tx_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: tx_id={tx.tx_id}")
            return ExecuteResult.ALREADY_APPLIED

        verdict = self._check_ledger_rules(tx)
        if verdict.accepted:
            verdict = validate_transaction(tx, self.protocol)
        if not verdict.accepted:
            self.rejections.append((tx.tx_id, verdict))
            if self.verbose:
                kind = verdict.error_kind.__name__ if verdict.error_kind else "LedgerRule"
                print(f"✗ REJECTED {tx.tx_id[:12]}: {kind}: {verdict.reason}")
            return ExecuteResult.REJECTED

        for tx_in in tx.inputs:
            del self.utxos[tx_in.out_ref]
        for i, out in enumerate(tx.outputs):
            self.utxos[TxOutRef(tx.tx_id, i)] = out

        entry = LedgerEntry(tx, self._current_slot, self._next_sequence, self.name)
        self._next_sequence += 1
        self.transaction_log.append(entry)
        self.seen_tx_ids.add(tx.tx_id)

        if self.verbose:
            self._print_tx_result(entry, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _check_ledger_rules(self, tx: TxInfo) -> Verdict:
        """
        Checks the ledger itself enforces, before any script runs.

        1. Every input is unspent and resolves to the ledger's own copy
        2. The current slot lies within the validity interval
        3. Value is conserved
        """
        for tx_in in tx.inputs:
            current = self.utxos.get(tx_in.out_ref)
            if current is None:
                return Verdict(False, f"input {tx_in.out_ref!r} is unknown or already spent")
            if current != tx_in.resolved:
                return Verdict(False, f"input {tx_in.out_ref!r} does not match the ledger")
        if not tx.validity.contains(self._current_slot):
            return Verdict(
                False, f"slot {self._current_slot} is outside validity {_interval(tx)}"
            )
        produced = merge_values(values_of(tx.outputs), {LOVELACE: tx.fee})
        consumed = merge_values(values_of(i.resolved for i in tx.inputs), tx.mint)
        if produced != consumed:
            return Verdict(False, "value is not conserved")
        return Verdict(True)

    def _print_tx_result(self, entry: LedgerEntry, result: str, icon: str) -> None:
        """Print the boxed entry with a result line appended."""
        lines = repr(entry).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger.

        Outputs and log entries are immutable, so copying the containers is
        enough for the clone and the original to evolve separately.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.protocol = self.protocol
        cloned.verbose = self.verbose
        cloned.utxos = dict(self.utxos)
        cloned.seen_tx_ids = set(self.seen_tx_ids)
        cloned.transaction_log = list(self.transaction_log)
        cloned.rejections = list(self.rejections)
        cloned._current_slot = self._current_slot
        cloned._next_sequence = self._next_sequence
        cloned._genesis_count = self._genesis_count
        return cloned
