"""Request and result schemas.

Requests arrive from forms and spreadsheets that name the same field in
several ways (``entries`` / ``agendamentos``, ``scriptId`` / ``roteiro_id``).
The aliases are resolved here, once, so the engines only see typed values.
"""
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .parsing import parse_boolean_flag, to_positive_int, trim_string


def _first_present(data: Dict[str, Any], keys: Sequence[str]) -> Any:
    """Value of the first key whose value is not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _nested_id(data: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        nested = data.get(key)
        if isinstance(nested, dict) and nested.get("id") is not None:
            return nested["id"]
    return None


def _collect_ids(data: Dict[str, Any], keys: Sequence[str]) -> List[int]:
    """Union of positive integer ids found under any of ``keys``, in order."""
    ids: List[int] = []
    for key in keys:
        source = data.get(key)
        values = source if isinstance(source, (list, tuple)) else [source]
        for value in values:
            number = to_positive_int(value)
            if number is not None and number not in ids:
                ids.append(number)
    return ids


# ============================================================
# Plan requests
# ============================================================

ENTRY_LIST_KEYS = ("entries", "schedules", "agendamentos", "days", "dates")
REMOVED_SCRIPT_KEYS = ("removed_script_ids", "removedScripts", "removedScriptIds", "removed_ids",
                       "removed", "removals")
REMOVED_PLAN_KEYS = ("removed_plan_ids", "removedPlans", "removedPlanIds", "removedOccurrences",
                     "removed_occurrences")


class PlanEntryPayload(BaseModel):
    """One proposed day of a plan mutation.

    A bare ``"YYYY-MM-DD"`` string is accepted as ``{"date": ...}``.
    Unusable values (non-string dates, non-numeric ids) become None so the
    planner can drop the entry instead of failing the whole request.
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    date: Optional[str] = None
    script_id: Optional[int] = None
    notes: Optional[str] = None
    append: bool = False

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Dict[str, Any]:
        if isinstance(data, str):
            return {"date": data}
        if isinstance(data, PlanEntryPayload):
            return data.model_dump()
        if not isinstance(data, dict):
            return {}

        date_value = _first_present(
            data, ("date", "day", "scheduled_date", "scheduledDate", "data")
        )
        script_id = _first_present(
            data, ("scriptId", "script_id", "contentScriptId", "content_script_id",
                   "roteiro_id", "roteiroId")
        )
        if script_id is None:
            script_id = _nested_id(data, ("script", "roteiro"))
        notes = _first_present(data, ("notes", "observacao", "obs", "annotation"))
        append = parse_boolean_flag(
            _first_present(data, ("append", "add", "create", "novo"))
        ) or parse_boolean_flag(_first_present(data, ("action", "acao")))

        return {
            "id": _first_present(data, ("id", "planId", "plan_id")),
            "date": date_value if isinstance(date_value, str) else None,
            "script_id": script_id,
            "notes": notes if isinstance(notes, str) else None,
            "append": append,
        }

    @field_validator("id", "script_id", mode="before")
    @classmethod
    def _positive_id(cls, value: Any) -> Optional[int]:
        return to_positive_int(value)

    @field_validator("date", "notes")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        value = trim_string(value)
        return value or None


class PlanMutationRequest(BaseModel):
    """Body of a plan reconciliation for one (cycle, influencer).

    Attributes:
        entries: Proposed days, taken from the first list-valued alias.
        removed_script_ids: Scripts whose plans are all removed.
        removed_plan_ids: Plans removed individually.
    """
    model_config = ConfigDict(extra="ignore")

    entries: List[PlanEntryPayload] = Field(default_factory=list)
    removed_script_ids: List[int] = Field(default_factory=list)
    removed_plan_ids: List[int] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return {}
        entries: List[Any] = []
        for key in ENTRY_LIST_KEYS:
            if isinstance(data.get(key), list):
                entries = data[key]
                break

        return {
            "entries": [e if isinstance(e, (str, dict, PlanEntryPayload)) else {} for e in entries],
            "removed_script_ids": _collect_ids(data, REMOVED_SCRIPT_KEYS),
            "removed_plan_ids": _collect_ids(data, REMOVED_PLAN_KEYS),
        }

    @property
    def has_removals(self) -> bool:
        return bool(self.removed_script_ids or self.removed_plan_ids)


# ============================================================
# Sale requests
# ============================================================

ITEM_LIST_KEYS = ("skuDetails", "sku_items", "items", "skus", "itens")


class SaleItemPayload(BaseModel):
    """One SKU line of a single-sale request."""
    model_config = ConfigDict(extra="ignore")

    sku: Optional[str] = None
    quantity: Any = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return {}
        sku = trim_string(_first_present(data, ("sku", "SKU", "code", "codigo", "skuCode")))
        return {
            "sku": str(sku) if sku not in (None, "") else None,
            "quantity": _first_present(
                data, ("quantity", "qty", "quantidade", "amount", "quantityRaw")
            ),
        }


class SaleRequest(BaseModel):
    """Body of a single-sale create or update.

    ``items`` keeps a None placeholder for empty list positions so item
    numbers in error messages match what the user sent.
    """
    model_config = ConfigDict(extra="ignore")

    order_number: str = ""
    cupom: str = ""
    date: str = ""
    points: Any = None
    items: List[Optional[SaleItemPayload]] = Field(default_factory=list)
    status: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_aliases(cls, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return {}

        order_number = _first_present(data, ("orderNumber", "order_number", "pedido", "order"))
        items: List[Any] = []
        for key in ITEM_LIST_KEYS:
            if isinstance(data.get(key), list):
                items = data[key]
                break

        status = _first_present(data, ("status", "saleStatus"))
        return {
            "order_number": "" if order_number is None else str(order_number).strip(),
            "cupom": str(trim_string(data.get("cupom") or data.get("coupon") or "")),
            "date": str(trim_string(data.get("date") or "")),
            "points": _first_present(
                data, ("points", "pointsValue", "points_value", "pontuacao",
                       "pontuacaoTotal", "salePoints")
            ),
            "items": [(item if isinstance(item, dict) else {}) if item else None for item in items],
            "status": None if status is None else str(status),
        }


# ============================================================
# Import results
# ============================================================

class _CamelModel(BaseModel):
    """Result models: snake_case in Python, camelCase when dumped by alias."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SkuDetail(_CamelModel):
    """One SKU line of an imported order."""
    sku: str = ""
    quantity: Optional[Union[int, float]] = None
    points_per_unit: Optional[int] = None
    points: Optional[int] = None
    line: int = 0


class ImportRowResult(_CamelModel):
    """One analysed sale with the errors that keep it from being imported."""
    line: int
    order_number: Optional[str] = None
    cupom: str = ""
    date: Optional[str] = None
    points: int = 0
    points_value: float = 0.0
    influencer_id: Optional[int] = None
    influencer_name: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    raw_date: str = ""
    raw_points: str = ""
    sku_details: List[SkuDetail] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors and self.influencer_id is not None


class ImportSummary(_CamelModel):
    """Totals over the valid rows only."""
    count: int = 0
    total_points: int = 0
    total_points_value: float = 0.0
    point_value_brl: float = 0.0


class ImportAnalysis(_CamelModel):
    """Full analysis of a pasted or uploaded sales batch."""
    rows: List[ImportRowResult] = Field(default_factory=list)
    summary: ImportSummary = Field(default_factory=ImportSummary)
    total_count: int = 0
    valid_count: int = 0
    error_count: int = 0
    has_errors: bool = False

    @property
    def valid_rows(self) -> List[ImportRowResult]:
        return [row for row in self.rows if row.is_valid]


class ImportConfirmation(_CamelModel):
    """Outcome of a confirmed import."""
    inserted: int = 0
    ignored: int = 0
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    summary: ImportSummary = Field(default_factory=ImportSummary)
