# coherence_lint/services/validator.py
import logging
from typing import Any, List, Optional, Union

from coherence_lint.config import RuleSettings, config
from coherence_lint.ingestion.loader import snapshot_from_parts
from coherence_lint.models.issues import (
    Finding,
    Issue,
    OrphanCounts,
    Severity,
    StatusSummary,
    ValidationResults,
    ValidationStatus,
)
from coherence_lint.models.world_schemas import ConfigSnapshot, UsageMap
from coherence_lint.registries.all_rules import RULES
from coherence_lint.registries.base import RuleRegistry


def run_validations(
    snapshot: ConfigSnapshot,
    registry: RuleRegistry = RULES,
    settings: Optional[RuleSettings] = None,
) -> ValidationResults:
    """
    Прогоняет все правила реестра по снапшоту.
    Порядок Issue в errors/warnings == порядок правил в реестре.
    """
    settings = settings or config.rules
    errors: List[Issue] = []
    warnings: List[Issue] = []

    for rule in registry:
        try:
            outcome = rule.evaluate(snapshot, settings)
        except Exception as e:
            # Сломанное правило не должно останавливать остальные
            logging.error(f"Rule '{rule.name}' failed: {e}", exc_info=True)
            continue

        if not isinstance(outcome, Finding):
            logging.debug(f"Rule '{rule.name}': clean")
            continue

        issue = outcome.issue
        logging.debug(f"Rule '{rule.name}': {len(issue.affected_items)} affected items")
        if issue.severity == Severity.ERROR:
            errors.append(issue)
        else:
            warnings.append(issue)

    logging.info(f"Validation finished: {len(errors)} errors, {len(warnings)} warnings ({len(registry)} rules)")
    return ValidationResults(errors=errors, warnings=warnings)


def validate_config(
    schema: Optional[Any] = None,
    eras: Optional[List[Any]] = None,
    pressures: Optional[List[Any]] = None,
    generators: Optional[List[Any]] = None,
    systems: Optional[List[Any]] = None,
    registry: RuleRegistry = RULES,
    settings: Optional[RuleSettings] = None,
) -> ValidationResults:
    snapshot = snapshot_from_parts(schema, eras, pressures, generators, systems)
    return run_validations(snapshot, registry, settings)


def get_overall_status(results: ValidationResults) -> ValidationStatus:
    if results.errors:
        return ValidationStatus.ERROR
    if results.warnings:
        return ValidationStatus.WARNING
    return ValidationStatus.CLEAN


def summarize(results: ValidationResults) -> StatusSummary:
    return StatusSummary(
        status=get_overall_status(results),
        error_count=len(results.errors),
        warning_count=len(results.warnings),
        total_issues=len(results.errors) + len(results.warnings),
    )


def get_validation_status(
    schema: Optional[Any] = None,
    eras: Optional[List[Any]] = None,
    pressures: Optional[List[Any]] = None,
    generators: Optional[List[Any]] = None,
    systems: Optional[List[Any]] = None,
) -> StatusSummary:
    """Короткая сводка для бейджа в редакторе. Отсутствующие части считаются пустыми."""
    return summarize(validate_config(schema, eras, pressures, generators, systems))


def count_usage_orphans(usage_map: Union[UsageMap, dict, None]) -> OrphanCounts:
    """Счетчики сирот из внешней карты использования. На правила не влияет."""
    if isinstance(usage_map, dict):
        usage_map = UsageMap.model_validate(usage_map)
    if not isinstance(usage_map, UsageMap) or usage_map.validation is None:
        return OrphanCounts()

    orphans = usage_map.validation.orphans
    by_type = {
        kind: sum(1 for o in orphans if o.type == kind)
        for kind in ("generator", "system", "pressure")
    }
    return OrphanCounts(
        generators=by_type["generator"],
        systems=by_type["system"],
        pressures=by_type["pressure"],
        total=len(orphans),
    )


class ConfigValidator:
    """Фиксирует реестр правил и настройки; дальше просто validate(snapshot)."""

    def __init__(self, registry: RuleRegistry = RULES, settings: Optional[RuleSettings] = None):
        self.registry = registry
        self.settings = settings or config.rules

    def validate(self, snapshot: ConfigSnapshot) -> ValidationResults:
        return run_validations(snapshot, self.registry, self.settings)

    def status(self, snapshot: ConfigSnapshot) -> ValidationStatus:
        return get_overall_status(self.validate(snapshot))

    def summary(self, snapshot: ConfigSnapshot) -> StatusSummary:
        return summarize(self.validate(snapshot))
