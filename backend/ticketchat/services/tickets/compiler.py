"""
Filter compiler: abstract ticket filters to the vendor query dialect.

The dialect supports ``field:value`` terms joined with AND / OR and
parentheses, but has no NOT operator. Consequences:

- status / priority exclusions are expanded against the catalog
  ("all choices minus excluded"), then emitted as an OR clause
- custom-field exclusions cannot be expressed at all; they are returned as
  post-filters and applied to fetched tickets
- include and exclude on the same dimension: the exclude wins

Examples:
    status=["2","3"]               -> (status:2 OR status:3)
    exclude_status=["4","5"]       -> (status:2 OR status:3 OR status:6)
    department="CDW uk"            -> department_id:19000123
    custom_fields={"module": ["Billing"]} -> cf_module:'Billing'
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ticketchat.core.errors import FilterCompilerError
from ticketchat.core.logging import get_logger
from ticketchat.services.tickets.catalog import CatalogField, FieldCatalog, resolve_choice, resolve_id

logger = get_logger(__name__)


def _as_str_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return [str(value).strip()]


class FilterSpec(BaseModel):
    """Abstract ticket filters. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    department: List[str] = Field(default_factory=list)
    status: List[str] = Field(default_factory=list)
    exclude_status: List[str] = Field(default_factory=list, alias="excludeStatus")
    priority: List[str] = Field(default_factory=list)
    exclude_priority: List[str] = Field(default_factory=list, alias="excludePriority")
    created_after: Optional[str] = Field(None, alias="createdAfter")
    created_before: Optional[str] = Field(None, alias="createdBefore")
    custom_fields: Dict[str, List[str]] = Field(default_factory=dict, alias="customFields")
    exclude_custom_fields: Dict[str, List[str]] = Field(default_factory=dict, alias="excludeCustomFields")
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("department", "status", "exclude_status", "priority", "exclude_priority", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        return _as_str_list(value)

    @field_validator("custom_fields", "exclude_custom_fields", mode="before")
    @classmethod
    def _coerce_map(cls, value: Any) -> Dict[str, List[str]]:
        if not value:
            return {}
        return {str(name): _as_str_list(values) for name, values in dict(value).items() if _as_str_list(values)}

    @field_validator("created_after", "created_before", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def is_empty(self) -> bool:
        """True when no filter dimension is set (``limit`` does not count)."""
        return not (
            self.department or self.status or self.exclude_status
            or self.priority or self.exclude_priority
            or self.created_after or self.created_before
            or self.custom_fields or self.exclude_custom_fields
        )

    def has_exclusions(self) -> bool:
        return bool(self.exclude_status or self.exclude_priority or self.exclude_custom_fields)

    def to_snapshot(self) -> Dict[str, Any]:
        """Compact dict for persistence (drops empty dimensions)."""
        return self.model_dump(exclude_defaults=True)


@dataclass
class CompiledQuery:
    query: str
    post_filters: Dict[str, Set[str]] = field(default_factory=dict)
    dropped: List[Tuple[str, str]] = field(default_factory=list)


def _or_clause(terms: List[str]) -> Optional[str]:
    if not terms:
        return None
    if len(terms) == 1:
        return terms[0]
    return f"({' OR '.join(terms)})"


def _to_query_date(value: str) -> Optional[str]:
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text).isoformat()
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return None


def _cf_field_name(name: str) -> str:
    return name if name.startswith("cf_") else f"cf_{name}"


def _cf_ticket_key(name: str) -> str:
    return name[3:] if name.startswith("cf_") else name


class FilterCompiler:
    """Compiles one ``FilterSpec`` against one ``FieldCatalog``."""

    def __init__(self, catalog: FieldCatalog):
        self.catalog = catalog
        self._dropped: List[Tuple[str, str]] = []

    def _resolve_all(self, field_def: Optional[CatalogField], values: List[str], dimension: str) -> List[str]:
        ids: List[str] = []
        for value in values:
            resolved = resolve_id(field_def, value, dimension)
            if resolved is None:
                self._dropped.append((dimension, value))
            elif resolved not in ids:
                ids.append(resolved)
        return ids

    def _enumerated_clause(
        self,
        dimension: str,
        query_key: str,
        field_def: Optional[CatalogField],
        include: List[str],
        exclude: List[str],
    ) -> Optional[str]:
        if exclude:
            if include:
                logger.info(
                    "filter_include_ignored",
                    dimension=dimension,
                    include=include,
                    exclude=exclude,
                )
            if field_def is None or not field_def.choices:
                logger.warning("filter_exclude_without_catalog", dimension=dimension, exclude=exclude)
                self._dropped.extend((dimension, value) for value in exclude)
                return None
            excluded = set(self._resolve_all(field_def, exclude, dimension))
            remaining = [key for key in field_def.choice_keys() if key not in excluded]
            if not remaining:
                raise FilterCompilerError(f"Excluding {', '.join(exclude)} leaves no {dimension} values to search")
            return _or_clause([f"{query_key}:{key}" for key in remaining])

        ids = self._resolve_all(field_def, include, dimension)
        return _or_clause([f"{query_key}:{key}" for key in ids])

    def _custom_field_clauses(self, spec: FilterSpec) -> List[str]:
        clauses: List[str] = []
        excluded_names = {_cf_ticket_key(name) for name in spec.exclude_custom_fields}
        for name, values in spec.custom_fields.items():
            if _cf_ticket_key(name) in excluded_names:
                logger.info("filter_include_ignored", dimension=name, include=values)
                continue
            query_key = _cf_field_name(name)
            field_def = self.catalog.find(query_key, _cf_ticket_key(name))
            labels: List[str] = []
            for value in values:
                if field_def is not None and field_def.choices:
                    choice = resolve_choice(field_def, value)
                    if choice is None:
                        logger.warning("filter_value_unresolved", dimension=name, value=value, field=field_def.name)
                        self._dropped.append((name, value))
                        continue
                    label = choice.label
                else:
                    label = value
                label = label.replace("'", "\\'")
                term = f"{query_key}:'{label}'"
                if term not in labels:
                    labels.append(term)
            clause = _or_clause(labels)
            if clause:
                clauses.append(clause)
        return clauses

    def _custom_field_exclusions(self, spec: FilterSpec) -> Dict[str, Set[str]]:
        """Lowercased labels to drop per ticket custom field, resolved like includes."""
        post_filters: Dict[str, Set[str]] = {}
        for name, values in spec.exclude_custom_fields.items():
            ticket_key = _cf_ticket_key(name)
            field_def = self.catalog.find(_cf_field_name(name), ticket_key)
            labels: Set[str] = set()
            for value in values:
                if field_def is not None and field_def.choices:
                    choice = resolve_choice(field_def, value)
                    if choice is None:
                        logger.warning("filter_value_unresolved", dimension=name, value=value, field=field_def.name)
                        self._dropped.append((name, value))
                        continue
                    labels.add(choice.label.lower())
                else:
                    labels.add(str(value).lower())
            if labels:
                post_filters.setdefault(ticket_key, set()).update(labels)
        return post_filters

    def compile(self, spec: FilterSpec) -> CompiledQuery:
        self._dropped = []
        clauses: List[str] = []

        if spec.department:
            department_field = self.catalog.find("department_id", "department", label="Department")
            clause = _or_clause([
                f"department_id:{key}"
                for key in self._resolve_all(department_field, spec.department, "department")
            ])
            if clause:
                clauses.append(clause)

        for clause in (
            self._enumerated_clause(
                "status", "status", self.catalog.find("status", label="Status"),
                spec.status, spec.exclude_status,
            ),
            self._enumerated_clause(
                "priority", "priority", self.catalog.find("priority", label="Priority"),
                spec.priority, spec.exclude_priority,
            ),
        ):
            if clause:
                clauses.append(clause)

        clauses.extend(self._custom_field_clauses(spec))

        for bound, operator in ((spec.created_after, ">"), (spec.created_before, "<")):
            if not bound:
                continue
            day = _to_query_date(bound)
            if day is None:
                logger.warning("filter_date_invalid", value=bound)
                self._dropped.append(("created_at", bound))
                continue
            clauses.append(f"created_at:{operator}'{day}'")

        post_filters = self._custom_field_exclusions(spec)

        query = " AND ".join(clauses)
        logger.info(
            "filter_compiled",
            query=query,
            post_filters=sorted(post_filters),
            dropped=len(self._dropped),
        )
        return CompiledQuery(query=query, post_filters=post_filters, dropped=list(self._dropped))


def compile_filters(spec: FilterSpec, catalog: FieldCatalog) -> CompiledQuery:
    return FilterCompiler(catalog).compile(spec)


def apply_post_filters(
    tickets: List[Dict[str, Any]],
    post_filters: Dict[str, Set[str]],
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Drop tickets whose custom field value is in an excluded set.

    Returns:
        (kept tickets, number excluded)
    """
    if not post_filters:
        return list(tickets), 0
    kept: List[Dict[str, Any]] = []
    for ticket in tickets:
        custom = ticket.get("custom_fields") or {}
        excluded = False
        for name, values in post_filters.items():
            current = custom.get(name)
            if current is not None and str(current).lower() in values:
                excluded = True
                break
        if not excluded:
            kept.append(ticket)
    return kept, len(tickets) - len(kept)
