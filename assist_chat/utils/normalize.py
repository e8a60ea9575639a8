"""Normalization of loosely-shaped documents through ordered extraction rules.

Each rule names an output key and the source paths to try, in order; the first
non-empty value wins, otherwise the rule's default is used.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from bson import ObjectId

from assist_chat.models.assist_request import AssistRequestDocument
from assist_chat.utils.clock import isoformat, utcnow


class ExtractionRule(NamedTuple):
    key: str
    paths: tuple
    default: Any = None


ASSIST_SUMMARY_RULES: List[ExtractionRule] = [
    ExtractionRule(
        "clientName",
        ("clientName", "customerName", "location.contactName", "location.contact.name", "contactName", "user.name"),
        "Customer",
    ),
    ExtractionRule("placeName", ("placeName", "location.name", "vehicle.model"), "Location"),
    ExtractionRule(
        "address",
        ("address", "location.address", "location.formattedAddress", "location.displayName"),
        "",
    ),
    ExtractionRule("location", ("location",)),
    ExtractionRule("vehicle", ("vehicle",)),
    ExtractionRule("userId", ("userId", "user_id")),
    ExtractionRule("createdAt", ("createdAt", "created_at")),
]


def lookup(doc: Any, path: str) -> Any:
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


def first_present(doc: Dict[str, Any], paths: Iterable[str], default: Any = None) -> Any:
    for path in paths:
        value = lookup(doc, path)
        if not _empty(value):
            return value
    return default


def to_jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def normalize(doc: Dict[str, Any], rules: Iterable[ExtractionRule]) -> Dict[str, Any]:
    return {rule.key: to_jsonable(first_present(doc, rule.paths, rule.default)) for rule in rules}


def assist_summary(doc: AssistRequestDocument, document_id: Optional[Any] = None) -> Dict[str, Any]:
    summary = {
        "id": str(doc.get("_id") or document_id or ""),
        "status": doc.get("status") or "pending",
    }
    summary.update(normalize(doc, ASSIST_SUMMARY_RULES))
    if summary["createdAt"] is None:
        summary["createdAt"] = isoformat(utcnow())
    return summary
