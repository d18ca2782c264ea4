# coherence_lint/services/exporter.py
"""
Выгрузка результатов валидации в JSON и CSV.
Экспорт идет строго после прогона и результаты не меняет.
"""
import csv
import io
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import Field

from coherence_lint.config import config
from coherence_lint.models.issues import Issue, ReportModel, ValidationResults

CSV_HEADERS = ["Severity", "Category", "Title", "Message", "Item ID", "Item Label", "Detail"]
FORMATS = ("json", "csv")


class ExportRow(ReportModel):
    severity: str  # ERROR | WARNING
    category: str  # == issue.id
    title: str
    message: str
    item_id: str
    item_label: str
    detail: str = ""


class ReportSummary(ReportModel):
    error_count: int
    warning_count: int
    total_items: int


class ValidationReport(ReportModel):
    exported_at: str
    summary: ReportSummary
    issues: List[ExportRow] = Field(default_factory=list)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _rows(issues: List[Issue], severity: str) -> List[ExportRow]:
    return [
        ExportRow(
            severity=severity,
            category=issue.id,
            title=issue.title,
            message=issue.message,
            item_id=item.id,
            item_label=item.label,
            detail=item.detail or "",
        )
        for issue in issues
        for item in issue.affected_items
    ]


def flatten_results(results: ValidationResults) -> List[ExportRow]:
    """Одна строка на пару (issue, affected item); сначала ошибки, потом предупреждения."""
    return _rows(results.errors, "ERROR") + _rows(results.warnings, "WARNING")


def build_report(results: ValidationResults, exported_at: Optional[str] = None) -> ValidationReport:
    rows = flatten_results(results)
    return ValidationReport(
        exported_at=exported_at or _utc_timestamp(),
        summary=ReportSummary(
            error_count=len(results.errors),
            warning_count=len(results.warnings),
            total_items=len(rows),
        ),
        issues=rows,
    )


def export_json(results: ValidationResults, exported_at: Optional[str] = None) -> str:
    report = build_report(results, exported_at)
    return report.model_dump_json(by_alias=True, indent=config.export.json_indent)


def export_csv(results: ValidationResults) -> str:
    buffer = io.StringIO()
    # QUOTE_MINIMAL: в кавычки только поля с запятой, кавычкой или переводом строки
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in flatten_results(results):
        writer.writerow([
            row.severity,
            row.category,
            row.title,
            row.message,
            row.item_id,
            row.item_label,
            row.detail,
        ])
    return buffer.getvalue()


def report_filename(ext: str, day: Optional[date] = None) -> str:
    return config.export.filename_template.format(date=(day or date.today()).isoformat(), ext=ext)


def write_report(
    results: ValidationResults,
    fmt: str,
    output_dir: Optional[Union[str, Path]] = None,
    day: Optional[date] = None,
) -> Path:
    if fmt not in FORMATS:
        raise ValueError(f"Unknown report format '{fmt}', expected one of {FORMATS}")

    target_dir = Path(output_dir or config.export.output_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / report_filename(fmt, day)

    content = export_json(results) if fmt == "json" else export_csv(results)
    path.write_text(content, encoding="utf-8", newline="")

    logging.info(f"Report saved to {path}")
    return path
