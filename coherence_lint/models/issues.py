# coherence_lint/models/issues.py
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ReportModel(BaseModel):
    # Наружу (JSON-отчет, UI) уходит camelCase: affectedItems, errorCount
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class RuleCategory(str, Enum):
    REFERENCE = "reference"  # форма генераторов и битые ссылки: симуляция упадет
    BALANCE = "balance"      # давления, сироты, веса эпох
    QUALITY = "quality"      # справочники, теги, диапазоны


class ValidationStatus(str, Enum):
    CLEAN = "clean"
    WARNING = "warning"
    ERROR = "error"


class AffectedItem(ReportModel):
    id: str
    label: str
    detail: str = ""


class Issue(ReportModel):
    id: str
    title: str
    message: str
    severity: Severity
    affected_items: List[AffectedItem] = Field(default_factory=list)


# --- Исход одного правила: либо ничего, либо ровно одна Issue ---

class NoFinding(ReportModel):
    rule: str
    outcome: Literal["no_finding"] = "no_finding"


class Finding(ReportModel):
    rule: str
    issue: Issue
    outcome: Literal["finding"] = "finding"


RuleOutcome = Union[NoFinding, Finding]


class ValidationResults(ReportModel):
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)

    @property
    def issues(self) -> List[Issue]:
        return [*self.errors, *self.warnings]

    def get(self, issue_id: str) -> Optional[Issue]:
        return next((i for i in self.issues if i.id == issue_id), None)


class StatusSummary(ReportModel):
    status: ValidationStatus
    error_count: int
    warning_count: int
    total_issues: int


class OrphanCounts(ReportModel):
    generators: int = 0
    systems: int = 0
    pressures: int = 0
    total: int = 0
