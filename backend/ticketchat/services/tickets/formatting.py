"""
Ticket presentation helpers.

Vendor tickets carry numeric ids for status, priority, department, group
and source. These helpers map them to labels using the field catalog (with
built-in fallbacks for the standard FreshService values) and render the
markdown table shown in chat.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from ticketchat.services.tickets.catalog import FieldCatalog

DESCRIPTION_LIMIT = 500

STATUS_NAMES = {
    2: "Open", 3: "Pending", 4: "Resolved", 5: "Closed", 6: "New",
    7: "Pending access", 8: "Waiting for RnD", 9: "Pending other ticket",
    10: "Waiting for maintenance", 11: "Waiting for bugfix",
    12: "Service request triage", 15: "Awaiting validation",
    16: "Conditional Hold", 17: "Waiting for 3rd Party",
}
PRIORITY_NAMES = {1: "Low", 2: "Medium", 3: "High", 4: "Urgent"}
SOURCE_NAMES = {
    1: "Email", 2: "Portal", 3: "Phone", 7: "Chat", 8: "Feedback Widget",
    9: "Yammer", 10: "AWS Cloudwatch", 11: "Pagerduty", 12: "Walkup", 13: "Slack",
}

TABLE_COLUMNS = [
    ("id", "Ticket ID"),
    ("company", "Company"),
    ("subject", "Subject"),
    ("priority", "Priority"),
    ("status", "Status"),
    ("created_at", "created_at"),
    ("updated_at", "updated_at"),
    ("type", "type"),
    ("escalated", "escalated"),
    ("module", "module"),
    ("score", "score"),
    ("ticket_type", "ticket_type"),
]


def safe_string(value: Any, fallback: str = "N/A") -> str:
    """Markdown-table-safe cell text."""
    if value is None or value == "":
        return fallback
    return str(value).replace("\\", "\\\\").replace("|", "\\|").replace("\n", " ").strip()


def format_date(value: Optional[str]) -> str:
    if not value:
        return "N/A"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if "T" in value:
        hour = parsed.hour % 12 or 12
        return f"{parsed:%b} {parsed.day}, {parsed.year} {hour}:{parsed:%M} {parsed:%p}"
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def _label(catalog: FieldCatalog, names, value: Any, fallback: Dict[int, str], prefix: str) -> Any:
    if not isinstance(value, int) or isinstance(value, bool):
        return value
    label = catalog.label_for(names, value)
    if label:
        return label
    return fallback.get(value, f"{prefix} {value}")


def format_ticket(ticket: Dict[str, Any], catalog: FieldCatalog) -> Dict[str, Any]:
    custom = ticket.get("custom_fields") or {}
    department = _label(catalog, ("department_id", "department"), ticket.get("department_id"), {}, "Department")
    description = ticket.get("description_text")
    return {
        "id": ticket.get("id"),
        "company": safe_string(department),
        "subject": safe_string(ticket.get("subject"), "No Subject"),
        "description_text": safe_string(
            description[:DESCRIPTION_LIMIT] if isinstance(description, str) else description,
            "No Description Available",
        ),
        "priority": safe_string(_label(catalog, ("priority",), ticket.get("priority"), PRIORITY_NAMES, "Priority")),
        "priority_value": ticket.get("priority") if isinstance(ticket.get("priority"), int) else 0,
        "status": safe_string(_label(catalog, ("status",), ticket.get("status"), STATUS_NAMES, "Status")),
        "department": safe_string(department),
        "group": safe_string(_label(catalog, ("group_id",), ticket.get("group_id"), {}, "Group")),
        "source": safe_string(_label(catalog, ("source",), ticket.get("source"), SOURCE_NAMES, "Source")),
        "type": safe_string(ticket.get("type")),
        "created_at": safe_string(format_date(ticket.get("created_at"))),
        "updated_at": safe_string(format_date(ticket.get("updated_at"))),
        "escalated": safe_string(custom.get("escalated")),
        "module": safe_string(custom.get("module")),
        "score": safe_string(ticket.get("score"), "0"),
        "ticket_type": safe_string(custom.get("ticket_type")),
    }


def format_tickets(tickets: List[Dict[str, Any]], catalog: FieldCatalog) -> List[Dict[str, Any]]:
    return [format_ticket(t, catalog) for t in tickets]


def tickets_to_markdown(formatted: List[Dict[str, Any]], total_matching: Optional[int] = None) -> str:
    header = f"Found {len(formatted)} tickets"
    if total_matching and total_matching > len(formatted):
        header += f" (showing {len(formatted)} of {total_matching} matching)"
    lines = [
        header + ":",
        "",
        "| " + " | ".join(title for _, title in TABLE_COLUMNS) + " |",
        "|" + "|".join("-" * (len(title) + 2) for _, title in TABLE_COLUMNS) + "|",
    ]
    for row in formatted:
        lines.append("| " + " | ".join(str(row.get(key, "N/A")) for key, _ in TABLE_COLUMNS) + " |")
    return "\n".join(lines)


def summarize_for_model(formatted: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """The subset of columns handed back to the model as tool output."""
    return [
        {
            "id": t["id"],
            "subject": t["subject"],
            "description": t["description_text"],
            "priority": t["priority"],
            "status": t["status"],
            "department": t["department"],
            "created_at": t["created_at"],
        }
        for t in formatted
    ]
