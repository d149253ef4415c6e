"""
Ticket field catalog and name-to-id resolution.

The vendor describes every ticket form field with an ordered list of
choices. Filter values arrive as either numeric ids or human labels
("Open", "CDW uk"); resolution turns them into the ids the query dialect
expects.

Resolution order for one value:
1. numeric id present in the field's choices
2. exact label match, case-insensitive
3. substring label match, case-insensitive (first choice in catalog order)
4. numeric value passed through when the field has no choices at all

Anything else is unresolvable and returns None.
"""
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ticketchat.core.logging import get_logger

logger = get_logger(__name__)


class FieldChoice(BaseModel):
    id: Any
    label: str

    @property
    def key(self) -> str:
        return str(self.id)


class CatalogField(BaseModel):
    name: str
    label: str = ""
    choices: List[FieldChoice] = Field(default_factory=list)

    def choice_keys(self) -> List[str]:
        return [choice.key for choice in self.choices]


def _parse_choices(raw_choices: Any) -> List[FieldChoice]:
    choices: List[FieldChoice] = []
    if isinstance(raw_choices, dict):
        # Some fields ship choices as {"Label": id}
        for label, choice_id in raw_choices.items():
            choices.append(FieldChoice(id=choice_id, label=str(label)))
        return choices
    for raw in raw_choices or []:
        if not isinstance(raw, dict) or raw.get("id") is None:
            continue
        label = raw.get("value", raw.get("label", ""))
        choices.append(FieldChoice(id=raw["id"], label=str(label)))
    return choices


class FieldCatalog:
    """Vendor field metadata for one ticket service."""

    def __init__(self, fields: Iterable[CatalogField], raw: Optional[List[Dict[str, Any]]] = None):
        self.fields: List[CatalogField] = list(fields)
        self.raw: List[Dict[str, Any]] = raw if raw is not None else [
            {"name": f.name, "label": f.label, "choices": [{"id": c.id, "value": c.label} for c in f.choices]}
            for f in self.fields
        ]

    @classmethod
    def from_vendor(cls, raw_fields: List[Dict[str, Any]]) -> "FieldCatalog":
        fields = [
            CatalogField(
                name=str(raw.get("name", "")),
                label=str(raw.get("label", "") or ""),
                choices=_parse_choices(raw.get("choices")),
            )
            for raw in raw_fields
            if isinstance(raw, dict)
        ]
        return cls(fields, raw=raw_fields)

    def find(self, *names: str, label: Optional[str] = None) -> Optional[CatalogField]:
        """First field whose name is one of ``names``, else whose label matches."""
        for name in names:
            for field in self.fields:
                if field.name == name:
                    return field
        if label:
            for field in self.fields:
                if field.label.lower() == label.lower():
                    return field
        return None

    def label_for(self, names: Iterable[str], choice_id: Any) -> Optional[str]:
        key = str(choice_id)
        for name in names:
            field = self.find(name)
            if field is None:
                continue
            for choice in field.choices:
                if choice.key == key:
                    return choice.label
        return None


def resolve_choice(field: Optional[CatalogField], value: Any) -> Optional[FieldChoice]:
    """Resolve a filter value to a catalog choice, or None."""
    if field is None or value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if text.isdigit():
        for choice in field.choices:
            if choice.key == text:
                return choice

    lowered = text.lower()
    for choice in field.choices:
        if choice.label.lower() == lowered:
            return choice
    for choice in field.choices:
        if lowered in choice.label.lower():
            return choice
    return None


def resolve_id(field: Optional[CatalogField], value: Any, dimension: str) -> Optional[str]:
    """
    Resolve one value to a vendor id string.

    Args:
        field: Catalog field for the dimension (may be missing)
        value: Raw filter value (id or label)
        dimension: Filter dimension name, for logging

    Returns:
        The id as a string, or None when the value cannot be resolved
    """
    choice = resolve_choice(field, value)
    if choice is not None:
        return choice.key

    text = str(value).strip() if value is not None else ""
    if text.isdigit() and (field is None or not field.choices):
        return text

    logger.warning(
        "filter_value_unresolved",
        dimension=dimension,
        value=value,
        field=field.name if field else None,
        choices=len(field.choices) if field else 0,
    )
    return None
