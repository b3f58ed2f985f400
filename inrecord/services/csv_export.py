"""
inrecord.services.csv_export — CSV Rendering for Dashboard Downloads
=====================================================================

Each ``export_*`` function takes rows as returned by the DAO and treasury
services (dicts or ORM objects) and returns ``(filename, csv_text)``.  The
export routes stream the text back with a ``Content-Disposition`` header.

Quoting is minimal: a string is quoted only when it contains a comma, a
double quote or a newline.  Datetimes and JSON blobs are always quoted.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any

TREASURY_TRANSACTION_HEADERS = [
    "Transaction ID",
    "Type",
    "Amount",
    "Currency",
    "Proposal Title",
    "Contributor Wallet",
    "Recipient Wallet",
    "Transaction Hash",
    "Description",
    "Created At",
    "Created By",
]

PROPOSAL_HISTORY_HEADERS = [
    "Proposal ID",
    "Title",
    "Type",
    "Status",
    "Created By",
    "Funding Goal",
    "Current Funding",
    "Votes For",
    "Votes Against",
    "Created At",
    "Updated At",
]

TOP_CONTRIBUTOR_HEADERS = [
    "Rank",
    "Wallet Address",
    "Total Contributed",
    "Currency",
    "Number of Contributions",
    "Last Contribution",
]

FUNDING_DISTRIBUTION_HEADERS = [
    "Proposal Type",
    "Number of Proposals",
    "Total Funding",
    "Average Funding",
    "Treasury Contribution",
    "Percentage",
]

METRIC_HEADERS = ["Metric", "Value"]


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------
def format_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return f'"{value.isoformat()}"'
    if isinstance(value, str):
        if "," in value or '"' in value or "\n" in value:
            return '"' + value.replace('"', '""') + '"'
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return '"' + json.dumps(value, default=str).replace('"', '""') + '"'
    return str(value)


def array_to_csv(rows: Sequence[Mapping[str, Any]], headers: Sequence[str] | None = None) -> str:
    """Header line plus one line per row.  Empty input gives ``""``."""
    if not rows:
        return ""
    columns = list(headers) if headers else list(rows[0].keys())
    lines = [",".join(columns)]
    for row in rows:
        lines.append(",".join(format_csv_value(row.get(col)) for col in columns))
    return "\n".join(lines)


def generate_filename(
    prefix: str,
    include_timestamp: bool = True,
    extension: str = "csv",
    today: date | None = None,
) -> str:
    """``treasury_transactions`` → ``treasury_transactions_2025-01-13.csv``."""
    if not include_timestamp:
        return f"{prefix}.{extension}"
    today = today or datetime.now(timezone.utc).date()
    return f"{prefix}_{today.isoformat()}.{extension}"


def export_multi_section(sections: Iterable[Mapping[str, Any]]) -> str:
    """Concatenate ``{"title", "data", "headers"?}`` sections separated by a blank line."""
    return "\n\n".join(
        f"{section['title']}\n{array_to_csv(section['data'], section.get('headers'))}"
        for section in sections
    )


def validate_export_data(data: Any) -> tuple[bool, list[str]]:
    errors: list[str] = []
    if not isinstance(data, (list, tuple)):
        errors.append("Data must be an array")
    elif not data:
        errors.append("Data array is empty")
    return not errors, errors


# ---------------------------------------------------------------------------
# Data sets
# ---------------------------------------------------------------------------
def _get(row: Any, name: str, default: Any = None) -> Any:
    value = row.get(name) if isinstance(row, Mapping) else getattr(row, name, None)
    return default if value is None else value


def _iso(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value or ""


def export_treasury_transactions(transactions: Iterable, today: date | None = None) -> tuple[str, str]:
    rows = [
        {
            "Transaction ID": _get(tx, "id", ""),
            "Type": _get(tx, "transaction_type"),
            "Amount": _get(tx, "amount"),
            "Currency": _get(tx, "currency", "ETH"),
            "Proposal Title": _get(tx, "proposal_title", ""),
            "Contributor Wallet": _get(tx, "contributor_wallet", ""),
            "Recipient Wallet": _get(tx, "recipient_wallet", ""),
            "Transaction Hash": _get(tx, "transaction_hash", ""),
            "Description": _get(tx, "description", ""),
            "Created At": _iso(_get(tx, "created_at")),
            "Created By": _get(tx, "created_by"),
        }
        for tx in transactions
    ]
    return (
        generate_filename("treasury_transactions", today=today),
        array_to_csv(rows, TREASURY_TRANSACTION_HEADERS),
    )


def export_proposal_history(proposals: Iterable, today: date | None = None) -> tuple[str, str]:
    rows = [
        {
            "Proposal ID": _get(p, "id", ""),
            "Title": _get(p, "title", ""),
            "Type": _get(p, "proposal_type", ""),
            "Status": _get(p, "status", ""),
            "Created By": _get(p, "created_by", ""),
            "Funding Goal": _get(p, "funding_goal", 0),
            "Current Funding": _get(p, "current_funding", 0),
            "Votes For": _get(p, "votes_for", 0),
            "Votes Against": _get(p, "votes_against", 0),
            "Created At": _iso(_get(p, "created_at")),
            "Updated At": _iso(_get(p, "updated_at")),
        }
        for p in proposals
    ]
    return (
        generate_filename("proposal_history", today=today),
        array_to_csv(rows, PROPOSAL_HISTORY_HEADERS),
    )


def _metrics(pairs: list[tuple[str, Any]]) -> list[dict]:
    return [{"Metric": label, "Value": value or 0} for label, value in pairs]


def export_analytics_summary(analytics: Mapping[str, Any], today: date | None = None) -> tuple[str, str]:
    rows = _metrics([
        ("Total Proposals", analytics.get("total_proposals")),
        ("Funded Proposals", analytics.get("funded_count")),
        ("Active Proposals", analytics.get("active_count")),
        ("Approved Proposals", analytics.get("approved_count")),
        ("Rejected Proposals", analytics.get("rejected_count")),
        ("Total Raised (ETH)", analytics.get("total_raised")),
        ("Average Funding per Proposal (ETH)", analytics.get("avg_funding_per_proposal")),
        ("Unique Proposers", analytics.get("unique_proposers")),
    ])
    return generate_filename("dao_analytics", today=today), array_to_csv(rows, METRIC_HEADERS)


def export_treasury_summary(summary: Mapping[str, Any], today: date | None = None) -> tuple[str, str]:
    currency = summary.get("currency") or "ETH"
    rows = _metrics([
        (f"Total Inflow ({currency})", summary.get("total_inflow")),
        (f"Total Outflow ({currency})", summary.get("total_outflow")),
        (f"Current Balance ({currency})", summary.get("current_balance")),
        ("Unique Contributors", summary.get("unique_contributors")),
        ("Unique Recipients", summary.get("unique_recipients")),
        ("Total Transactions", summary.get("total_transactions")),
    ])
    return generate_filename("treasury_summary", today=today), array_to_csv(rows, METRIC_HEADERS)


def export_top_contributors(contributors: Iterable, today: date | None = None) -> tuple[str, str]:
    rows = [
        {
            "Rank": rank,
            "Wallet Address": _get(c, "contributor_wallet", ""),
            "Total Contributed": _get(c, "total_contributed", 0),
            "Currency": _get(c, "currency", "ETH"),
            "Number of Contributions": _get(c, "contribution_count", 0),
            "Last Contribution": _iso(_get(c, "last_contribution")),
        }
        for rank, c in enumerate(contributors, start=1)
    ]
    return (
        generate_filename("top_contributors", today=today),
        array_to_csv(rows, TOP_CONTRIBUTOR_HEADERS),
    )


def export_funding_distribution(distribution: Iterable, today: date | None = None) -> tuple[str, str]:
    rows = []
    for item in distribution:
        pct = _get(item, "percentage")
        rows.append({
            "Proposal Type": _get(item, "proposal_type", ""),
            "Number of Proposals": _get(item, "proposal_count", 0),
            "Total Funding": _get(item, "total_funding", 0),
            "Average Funding": _get(item, "avg_funding", 0),
            "Treasury Contribution": _get(item, "treasury_contribution", 0),
            "Percentage": f"{pct}%" if pct else "0%",
        })
    return (
        generate_filename("funding_distribution", today=today),
        array_to_csv(rows, FUNDING_DISTRIBUTION_HEADERS),
    )
