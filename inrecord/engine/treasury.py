"""
inrecord.engine.treasury — Ledger Math
=======================================

The treasury is an append-only ledger; every balance is derived.
``deposit`` and ``revenue`` are inflows, everything else is an outflow.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from inrecord.database.models import TransactionType

INFLOW_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.REVENUE})
OUTFLOW_TYPES = frozenset(set(TransactionType) - INFLOW_TYPES)


def is_inflow(transaction_type: str) -> bool:
    return transaction_type in INFLOW_TYPES


def signed_amount(tx) -> float:
    amount = float(tx.amount or 0)
    return amount if is_inflow(tx.transaction_type) else -amount


def _get(tx, name: str):
    if isinstance(tx, Mapping):
        return tx.get(name)
    return getattr(tx, name, None)


def in_currency(txs: Iterable, currency: str) -> list:
    """Rows denominated in *currency*; rows without one count as ETH."""
    return [tx for tx in txs if (_get(tx, "currency") or "ETH") == currency]


def _day(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_transaction(tx) -> list[str]:
    """Return human-readable problems with *tx* (dict or object).  Empty means valid."""
    errors: list[str] = []
    tx_type = _get(tx, "transaction_type")
    amount = _get(tx, "amount")

    if not tx_type:
        errors.append("Transaction type is required")
    elif tx_type not in set(TransactionType):
        errors.append(f"Unknown transaction type: {tx_type}")

    if not amount or float(amount) <= 0:
        errors.append("Amount must be greater than 0")

    if not _get(tx, "created_by"):
        errors.append("Created by is required")

    if tx_type in INFLOW_TYPES and not _get(tx, "contributor_wallet"):
        errors.append("Contributor wallet is required for inflow transactions")

    if tx_type in OUTFLOW_TYPES and not _get(tx, "recipient_wallet"):
        errors.append("Recipient wallet is required for outflow transactions")

    if tx_type == TransactionType.PROPOSAL_FUNDING and not _get(tx, "proposal_id"):
        errors.append("Proposal ID is required for proposal funding transactions")

    return errors


# ---------------------------------------------------------------------------
# Balances & summaries
# ---------------------------------------------------------------------------
def compute_balance(txs: Iterable) -> dict[str, float]:
    """Net balance per currency."""
    balances: dict[str, float] = defaultdict(float)
    for tx in txs:
        balances[tx.currency or "ETH"] += signed_amount(tx)
    return dict(balances)


@dataclass
class TreasurySummary:
    currency: str = "ETH"
    total_inflow: float = 0.0
    total_outflow: float = 0.0
    current_balance: float = 0.0
    unique_contributors: int = 0
    unique_recipients: int = 0
    total_transactions: int = 0
    last_transaction_date: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "currency": self.currency,
            "total_inflow": self.total_inflow,
            "total_outflow": self.total_outflow,
            "current_balance": self.current_balance,
            "unique_contributors": self.unique_contributors,
            "unique_recipients": self.unique_recipients,
            "total_transactions": self.total_transactions,
            "last_transaction_date": (
                self.last_transaction_date.isoformat() if self.last_transaction_date else None
            ),
        }


def summarize(txs: Iterable, currency: str = "ETH") -> TreasurySummary:
    """Totals for one currency.  Amounts in different currencies are never added."""
    summary = TreasurySummary(currency=currency)
    contributors: set[str] = set()
    recipients: set[str] = set()

    for tx in in_currency(txs, currency):
        amount = float(tx.amount or 0)
        if is_inflow(tx.transaction_type):
            summary.total_inflow += amount
        else:
            summary.total_outflow += amount
        if tx.contributor_wallet:
            contributors.add(tx.contributor_wallet)
        if tx.recipient_wallet:
            recipients.add(tx.recipient_wallet)
        summary.total_transactions += 1
        if tx.created_at and (
            summary.last_transaction_date is None or tx.created_at > summary.last_transaction_date
        ):
            summary.last_transaction_date = tx.created_at

    summary.current_balance = summary.total_inflow - summary.total_outflow
    summary.unique_contributors = len(contributors)
    summary.unique_recipients = len(recipients)
    return summary


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------
def running_balance(txs: Iterable, days: int, today: date, currency: str = "ETH") -> list[dict]:
    """Closing *currency* balance for each of the last *days* days, ending *today*.

    Transactions older than the window feed the opening balance.
    """
    start = today - timedelta(days=days - 1)
    opening = 0.0
    per_day: dict[date, float] = defaultdict(float)
    for tx in in_currency(txs, currency):
        day = _day(tx.created_at)
        if day < start:
            opening += signed_amount(tx)
        elif day <= today:
            per_day[day] += signed_amount(tx)

    points = []
    balance = opening
    for offset in range(days):
        day = start + timedelta(days=offset)
        balance += per_day.get(day, 0.0)
        points.append({"date": day.isoformat(), "balance": round(balance, 8)})
    return points


def transaction_volume(txs: Iterable, currency: str = "ETH") -> list[dict]:
    """*currency* inflow / outflow / net grouped by calendar day, oldest first."""
    buckets: dict[date, dict] = {}
    for tx in in_currency(txs, currency):
        day = _day(tx.created_at)
        bucket = buckets.setdefault(
            day, {"date": day.isoformat(), "inflow": 0.0, "outflow": 0.0, "net": 0.0}
        )
        amount = float(tx.amount or 0)
        if is_inflow(tx.transaction_type):
            bucket["inflow"] += amount
            bucket["net"] += amount
        else:
            bucket["outflow"] += amount
            bucket["net"] -= amount
    return [buckets[d] for d in sorted(buckets)]


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------
def format_currency(amount: float, currency: str = "ETH", decimals: int = 4) -> str:
    return f"{amount:.{decimals}f} {currency}"


def truncate_wallet(wallet: str | None, chars: int = 6) -> str | None:
    if not wallet or len(wallet) <= chars * 2:
        return wallet
    return f"{wallet[:chars]}...{wallet[-chars:]}"
