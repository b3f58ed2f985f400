"""
inrecord.services.treasury_service — Ledger Persistence
========================================================

Writes go through :func:`record_transaction` (validated by
:func:`inrecord.engine.treasury.validate_transaction`) or
:func:`fund_proposal`.  Reads load ledger rows and hand them to the pure
helpers in :mod:`inrecord.engine.treasury`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inrecord.database.models import (
    AdminActionType,
    DaoMember,
    Proposal,
    ProposalStatus,
    TransactionType,
    TreasuryTransaction,
)
from inrecord.engine import treasury as ledger
from inrecord.engine.voting import can_transition
from inrecord.errors import FundingExceededError, InvalidTransitionError
from inrecord.services.admin_service import _log_admin_action, _row_to_dict

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Proposals in these states may still receive funding.
_FUNDABLE = (ProposalStatus.APPROVED, ProposalStatus.FUNDED)


@dataclass
class FundingOutcome:
    transaction: TreasuryTransaction
    proposal: Proposal
    goal_reached: bool


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def record_transaction(
    engine: Engine,
    *,
    transaction_type: str,
    amount: float,
    created_by: str,
    currency: str = "ETH",
    proposal_id: str | None = None,
    contributor_wallet: str | None = None,
    recipient_wallet: str | None = None,
    transaction_hash: str | None = None,
    description: str | None = None,
) -> TreasuryTransaction:
    """Validate and append one ledger row (audited, *created_by* is the actor)."""
    tx = TreasuryTransaction(
        transaction_type=transaction_type,
        amount=amount,
        currency=currency,
        proposal_id=proposal_id,
        contributor_wallet=contributor_wallet,
        recipient_wallet=recipient_wallet,
        transaction_hash=transaction_hash,
        description=description,
        created_by=created_by,
    )
    errors = ledger.validate_transaction(tx)
    if errors:
        raise ValueError("; ".join(errors))

    with Session(engine, expire_on_commit=False) as session:
        if proposal_id and session.get(Proposal, proposal_id) is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        session.add(tx)
        session.flush()
        _log_admin_action(
            session,
            actor_id=created_by,
            action_type=AdminActionType.CREATE,
            target_table="dao_treasury",
            target_id=tx.id,
            before=None,
            after=_row_to_dict(tx),
        )
        session.commit()
        session.refresh(tx)
        session.expunge(tx)

    logger.info("Treasury %s of %s %s recorded by %s", transaction_type, amount, currency, created_by)
    return tx


def fund_proposal(
    engine: Engine,
    proposal_id: str,
    *,
    amount: float,
    created_by: str,
    recipient_wallet: str | None = None,
    currency: str | None = None,
    transaction_hash: str | None = None,
    description: str | None = None,
) -> FundingOutcome:
    """Pay out *amount* toward a proposal's goal in one transaction.

    Records a ``proposal_funding`` outflow, raises ``current_funding``,
    credits the creator's ``total_funding_received`` and moves the
    proposal to ``funded`` once the goal is met.  Overshooting the goal
    raises :class:`FundingExceededError`.
    """
    if amount is None or amount <= 0:
        raise ValueError("Amount must be greater than 0")

    with Session(engine, expire_on_commit=False) as session:
        proposal = session.get(Proposal, proposal_id, with_for_update=True)
        if proposal is None:
            raise LookupError(f"Proposal {proposal_id} not found")
        if proposal.status not in _FUNDABLE:
            raise InvalidTransitionError(
                f"Only approved proposals can be funded (status: {proposal.status})"
            )

        current = float(proposal.current_funding or 0)
        goal = proposal.funding_goal
        if goal is not None and current + amount > goal:
            raise FundingExceededError(
                f"Funding of {amount} exceeds the remaining goal of {goal - current}"
            )

        before = _row_to_dict(proposal)
        tx = TreasuryTransaction(
            transaction_type=TransactionType.PROPOSAL_FUNDING,
            amount=amount,
            currency=currency or proposal.funding_currency,
            proposal_id=proposal.id,
            recipient_wallet=recipient_wallet or proposal.created_by,
            transaction_hash=transaction_hash,
            description=description or f"Funding for proposal: {proposal.title}",
            created_by=created_by,
        )
        session.add(tx)

        proposal.current_funding = current + amount
        goal_reached = goal is not None and proposal.current_funding >= goal
        if goal_reached and proposal.status != ProposalStatus.FUNDED:
            if not can_transition(proposal.status, ProposalStatus.FUNDED):
                raise InvalidTransitionError(f"Cannot fund proposal in status {proposal.status}")
            proposal.status = ProposalStatus.FUNDED

        creator = session.get(DaoMember, proposal.created_by)
        if creator is not None:
            creator.total_funding_received = float(creator.total_funding_received or 0) + amount

        session.flush()
        _log_admin_action(
            session,
            actor_id=created_by,
            action_type=AdminActionType.FUND,
            target_table="dao_proposals",
            target_id=proposal.id,
            before=before,
            after=_row_to_dict(proposal),
            reason=f"Funded {amount}",
        )
        session.commit()
        session.refresh(tx)
        session.refresh(proposal)
        session.expunge(tx)
        session.expunge(proposal)

    logger.info(
        "Proposal %s funded %s (%s/%s)", proposal_id[:8], amount, proposal.current_funding, goal
    )
    return FundingOutcome(transaction=tx, proposal=proposal, goal_reached=goal_reached)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _all_transactions(session: Session) -> list[TreasuryTransaction]:
    return list(session.scalars(select(TreasuryTransaction)).all())


def get_treasury_history(
    engine: Engine,
    *,
    transaction_type: str | None = None,
    proposal_id: str | None = None,
    limit: int | None = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Newest-first ledger page, each row carrying its proposal title."""
    filters = []
    if transaction_type:
        filters.append(TreasuryTransaction.transaction_type == transaction_type)
    if proposal_id:
        filters.append(TreasuryTransaction.proposal_id == proposal_id)

    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(TreasuryTransaction).where(*filters)
        ) or 0
        rows = session.execute(
            select(TreasuryTransaction, Proposal.title)
            .outerjoin(Proposal, Proposal.id == TreasuryTransaction.proposal_id)
            .where(*filters)
            .order_by(TreasuryTransaction.created_at.desc(), TreasuryTransaction.id)
            .offset(offset)
            .limit(limit)
        ).all()
        return [transaction_to_dict(tx, title) for tx, title in rows], total


def transaction_to_dict(tx: TreasuryTransaction, proposal_title: str | None = None) -> dict:
    return {
        "id": tx.id,
        "transaction_type": tx.transaction_type,
        "amount": tx.amount,
        "currency": tx.currency,
        "proposal_id": tx.proposal_id,
        "proposal_title": proposal_title,
        "contributor_wallet": tx.contributor_wallet,
        "recipient_wallet": tx.recipient_wallet,
        "transaction_hash": tx.transaction_hash,
        "description": tx.description,
        "created_by": tx.created_by,
        "created_at": tx.created_at.isoformat() if tx.created_at else None,
    }


def get_proposal_funding_history(engine: Engine, proposal_id: str) -> list[TreasuryTransaction]:
    with Session(engine) as session:
        return list(session.scalars(
            select(TreasuryTransaction)
            .where(
                TreasuryTransaction.proposal_id == proposal_id,
                TreasuryTransaction.transaction_type == TransactionType.PROPOSAL_FUNDING,
            )
            .order_by(TreasuryTransaction.created_at.desc())
        ).all())


def get_treasury_balance(engine: Engine) -> dict[str, float]:
    """Net balance per currency."""
    with Session(engine) as session:
        return ledger.compute_balance(_all_transactions(session))


def get_treasury_summary(engine: Engine, currency: str = "ETH") -> ledger.TreasurySummary:
    with Session(engine) as session:
        return ledger.summarize(_all_transactions(session), currency)


def get_funding_distribution(engine: Engine) -> list[dict]:
    """Funding paid out per proposal type, largest share first."""
    with Session(engine) as session:
        rows = session.execute(
            select(
                Proposal.proposal_type,
                func.count(func.distinct(Proposal.id)),
                func.coalesce(func.sum(TreasuryTransaction.amount), 0),
            )
            .join(Proposal, Proposal.id == TreasuryTransaction.proposal_id)
            .where(TreasuryTransaction.transaction_type == TransactionType.PROPOSAL_FUNDING)
            .group_by(Proposal.proposal_type)
        ).all()

    grand_total = sum(float(total) for _, _, total in rows)
    result = [
        {
            "proposal_type": ptype,
            "proposal_count": count,
            "total_funding": float(total),
            "avg_funding": round(float(total) / count, 2) if count else 0.0,
            "percentage": round(float(total) / grand_total * 100, 2) if grand_total else 0.0,
        }
        for ptype, count, total in rows
    ]
    result.sort(key=lambda r: r["total_funding"], reverse=True)
    return result


def get_top_contributors(engine: Engine, limit: int = 10) -> list[dict]:
    """Wallets ranked by total inflow contributed."""
    total = func.sum(TreasuryTransaction.amount).label("total")
    with Session(engine) as session:
        rows = session.execute(
            select(
                TreasuryTransaction.contributor_wallet,
                TreasuryTransaction.currency,
                total,
                func.count(),
                func.max(TreasuryTransaction.created_at),
            )
            .where(
                TreasuryTransaction.transaction_type.in_(sorted(ledger.INFLOW_TYPES)),
                TreasuryTransaction.contributor_wallet.is_not(None),
            )
            .group_by(TreasuryTransaction.contributor_wallet, TreasuryTransaction.currency)
            .order_by(total.desc())
            .limit(limit)
        ).all()
        return [
            {
                "contributor_wallet": wallet,
                "currency": currency,
                "total_contributed": float(amount),
                "contribution_count": count,
                "last_contribution": last.isoformat() if last else None,
            }
            for wallet, currency, amount, count, last in rows
        ]


def get_treasury_balance_history(
    engine: Engine, days: int = 30, today: date | None = None, currency: str = "ETH"
) -> list[dict]:
    """Daily closing *currency* balance for the last *days* days."""
    today = today or datetime.now(timezone.utc).date()
    with Session(engine) as session:
        return ledger.running_balance(_all_transactions(session), days, today, currency)


def get_transaction_volume(
    engine: Engine, days: int = 30, today: date | None = None, currency: str = "ETH"
) -> list[dict]:
    """Daily *currency* inflow/outflow/net for the last *days* days."""
    today = today or datetime.now(timezone.utc).date()
    since = datetime.combine(today - timedelta(days=days - 1), datetime.min.time(), timezone.utc)
    with Session(engine) as session:
        txs = session.scalars(
            select(TreasuryTransaction).where(
                TreasuryTransaction.created_at >= since,
                TreasuryTransaction.currency == currency,
            )
        ).all()
        return ledger.transaction_volume(txs, currency)
