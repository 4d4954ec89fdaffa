"""Upload categories shared by the classifier and the report prompt."""

from __future__ import annotations

from enum import Enum


class TopLevelCategory(str, Enum):
    DIET = "diet"
    SELFIES = "selfies"
    HEALTH = "health"
    INTEGRATIONS = "integrations"


class DietSubcategory(str, Enum):
    RECEIPTS = "receipts"
    FOOD_IMAGES = "food_images"


class HealthSubcategory(str, Enum):
    PATIENT_RECORDS = "patient_records"
    DIAGNOSTIC_REPORTS = "diagnostic_reports"
    PRESCRIPTIONS = "prescriptions"
    SURGICAL_DOCUMENTS = "surgical_documents"
    OTHER = "other"


class IntegrationsSubcategory(str, Enum):
    STRAVA = "strava"


# None means the category takes no subcategory.
SUBCATEGORIES: dict[str, list[str] | None] = {
    TopLevelCategory.DIET.value: [s.value for s in DietSubcategory],
    TopLevelCategory.SELFIES.value: None,
    TopLevelCategory.HEALTH.value: [s.value for s in HealthSubcategory],
    TopLevelCategory.INTEGRATIONS.value: [s.value for s in IntegrationsSubcategory],
}


def is_valid(category: str | None, subcategory: str | None) -> bool:
    if not isinstance(category, str) or category not in SUBCATEGORIES:
        return False
    allowed = SUBCATEGORIES[category]
    if allowed is None:
        return subcategory is None
    return subcategory in allowed


def category_descriptions() -> str:
    lines = ["Categories and Subcategories:"]
    for category, subs in SUBCATEGORIES.items():
        if subs is None:
            lines.append(f"- {category} (no subcategory)")
            continue
        lines.append(f"- {category}")
        lines.extend(f"  - {s}" for s in subs)
    return "\n".join(lines) + "\n"
