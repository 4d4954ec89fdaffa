"""Canonical health report schema and response validation.

The generator is asked for exactly this shape. Anything else (empty content,
invalid JSON, a missing or null key, a malformed item) is one failure kind:
a malformed generator response. Older tips-only shapes are not accepted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class _Item(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reason: str


class PainPoint(_Item):
    point: str


class Tip(_Item):
    tip: str


class SupplementProposal(_Item):
    supplement: str


class ShoppingItem(_Item):
    item: str


class HealthReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status_quo: str = Field(alias="statusQuo")
    pain_points: list[PainPoint] = Field(alias="painPoints")
    diet_tips: list[Tip] = Field(alias="dietTips")
    habit_tips: list[Tip] = Field(alias="habitTips")
    supplement_proposals: list[SupplementProposal] = Field(alias="supplementProposals")
    fitness_tips: list[Tip] = Field(alias="fitnessTips")
    shopping_list: list[ShoppingItem] = Field(alias="shoppingList")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


REQUIRED_KEYS = tuple(f.alias for f in HealthReport.model_fields.values())

MALFORMED = "Malformed generator response"


@dataclass(frozen=True)
class ReportResult:
    ok: bool
    report: HealthReport | None = None
    error: str | None = None

    @classmethod
    def success(cls, report: HealthReport) -> "ReportResult":
        return cls(ok=True, report=report)

    @classmethod
    def malformed(cls, detail: str) -> "ReportResult":
        return cls(ok=False, error=f"{MALFORMED}: {detail}")


def validate_report(raw: str | None) -> ReportResult:
    if not raw or not raw.strip():
        return ReportResult.malformed("empty content")
    try:
        data = json.loads(raw)
    except ValueError:
        return ReportResult.malformed("content is not valid JSON")
    if not isinstance(data, dict):
        return ReportResult.malformed("expected a JSON object")

    missing = [k for k in REQUIRED_KEYS if data.get(k) is None]
    if missing:
        return ReportResult.malformed(f"missing keys: {', '.join(missing)}")

    try:
        return ReportResult.success(HealthReport.model_validate(data))
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        return ReportResult.malformed(f"invalid fields: {', '.join(fields)}")
