# coherence_lint/registries/all_rules.py
import math
from typing import Any, Dict, List, Optional, Set, Tuple

from coherence_lint.config import RuleSettings
from coherence_lint.ingestion.collectors import (
    collect_culture_refs,
    collect_entity_kind_refs,
    collect_generator_id_refs,
    collect_pressure_id_refs,
    collect_relationship_kind_refs,
    collect_status_refs,
    collect_subtype_refs,
    collect_system_id_refs,
    collect_tag_refs,
    describe_sources,
    group_by_value,
)
from coherence_lint.models.issues import AffectedItem, RuleCategory, Severity
from coherence_lint.models.references import Reference
from coherence_lint.models.world_schemas import ConfigSnapshot, Generator
from coherence_lint.registries.base import RuleRegistry, ValidationRule


# === helpers ===

def _fmt(value: Optional[float]) -> str:
    """Числа в отчете: 2.0 -> '2', 0.5 -> '0.5', None -> 'undefined'."""
    if value is None:
        return "undefined"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_set(value: Any) -> bool:
    # Пустой объект {} тоже считается заданным полем
    return value is not None and value is not False and value != "" and value != 0


def _grouped(refs: List[Reference], prefix: str) -> List[AffectedItem]:
    """Одна запись на значение, в detail все различные источники."""
    return [
        AffectedItem(id=value, label=value, detail=prefix + describe_sources(group))
        for value, group in group_by_value(refs).items()
    ]


def _unresolved(refs: List[Reference], valid: Set[str]) -> List[Reference]:
    return [ref for ref in refs if ref.value not in valid]


# --- 1. ФОРМА ГЕНЕРАТОРОВ (FORMAT) ---
# Генератор должен быть в декларативной форме: selection/creation/relationships/stateUpdates
def _shape_problems(gen: Generator) -> List[str]:
    problems: List[str] = []
    if _is_set(gen.template):
        problems.append('uses legacy "template" wrapper')
    if gen.selection is None:
        problems.append("missing selection")
    else:
        if not gen.selection.strategy:
            problems.append("missing selection.strategy")
        if not gen.selection.kind:
            problems.append("missing selection.kind")
    if gen.creation is None:
        problems.append("creation must be an array")
    if gen.relationships is None:
        problems.append("relationships must be an array")
    if gen.state_updates is None:
        problems.append("stateUpdates must be an array")
    return problems


def _check_generator_format(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    items: List[AffectedItem] = []
    for gen in snapshot.enabled_generators():
        problems = _shape_problems(gen)
        if problems:
            items.append(AffectedItem(id=gen.id or "", label=gen.label, detail="; ".join(problems)))
    return items


INVALID_GENERATOR_FORMAT = ValidationRule(
    name="invalid_generator_format",
    issue_id="invalid-generator-format",
    category=RuleCategory.REFERENCE,
    severity=Severity.ERROR,
    title="Generators use legacy or invalid shape",
    message=(
        "Generators must use the declarative template shape (selection/creation/relationships/stateUpdates). "
        "Legacy wrappers will crash the simulation."
    ),
    check=_check_generator_format,
)


# --- 2. ССЫЛКИ (REFERENCES) ---
def _check_entity_kinds(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_entity_kind_refs(
        snapshot.generators, snapshot.pressures, snapshot.systems, settings.max_rule_depth
    )
    return _grouped(_unresolved(refs, snapshot.world_schema.entity_kind_ids()), "Referenced by: ")


def _check_relationship_kinds(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_relationship_kind_refs(snapshot.generators, snapshot.pressures, snapshot.systems)
    return _grouped(_unresolved(refs, snapshot.world_schema.relationship_kind_ids()), "Referenced by: ")


def _check_pressure_ids(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    # Условия и эффекты эпох сюда не входят: правило смотрит только на генераторы и системы
    refs = collect_pressure_id_refs(
        snapshot.generators, snapshot.systems, max_depth=settings.max_rule_depth
    )
    return _grouped(_unresolved(refs, snapshot.pressure_ids()), "Referenced by: ")


def _check_era_generators(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_generator_id_refs(snapshot.eras)
    return _grouped(_unresolved(refs, snapshot.generator_ids()), "In ")


def _check_era_systems(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_system_id_refs(snapshot.eras)
    return _grouped(_unresolved(refs, snapshot.system_ids()), "In ")


INVALID_ENTITY_KIND = ValidationRule(
    name="invalid_entity_kind",
    issue_id="invalid-entity-kind",
    category=RuleCategory.REFERENCE,
    severity=Severity.ERROR,
    title="Invalid entity kind references",
    message=(
        "These configurations reference entity kinds that do not exist in the schema. "
        "This will cause runtime crashes."
    ),
    check=_check_entity_kinds,
)

INVALID_RELATIONSHIP_KIND = ValidationRule(
    name="invalid_relationship_kind",
    issue_id="invalid-relationship-kind",
    category=RuleCategory.REFERENCE,
    severity=Severity.ERROR,
    title="Invalid relationship kind references",
    message=(
        "These configurations reference relationship kinds that do not exist in the schema. "
        "This will cause runtime crashes or silent failures."
    ),
    check=_check_relationship_kinds,
)

INVALID_PRESSURE_ID = ValidationRule(
    name="invalid_pressure_id",
    issue_id="invalid-pressure-id",
    category=RuleCategory.REFERENCE,
    severity=Severity.ERROR,
    title="Invalid pressure ID references",
    message=(
        "These configurations reference pressure IDs that do not exist. "
        "This will cause runtime crashes when modifying pressures."
    ),
    check=_check_pressure_ids,
)

INVALID_ERA_TEMPLATE_REF = ValidationRule(
    name="invalid_era_template_ref",
    issue_id="invalid-era-template-ref",
    category=RuleCategory.REFERENCE,
    severity=Severity.ERROR,
    title="Invalid generator references in eras",
    message="These eras reference generators that do not exist. The weights will have no effect.",
    check=_check_era_generators,
)

INVALID_ERA_SYSTEM_REF = ValidationRule(
    name="invalid_era_system_ref",
    issue_id="invalid-era-system-ref",
    category=RuleCategory.REFERENCE,
    severity=Severity.ERROR,
    title="Invalid system references in eras",
    message="These eras reference systems that do not exist. The modifiers will have no effect.",
    check=_check_era_systems,
)


# --- 3. БАЛАНС ДАВЛЕНИЙ (PRESSURES) ---
def _pressures_driven(snapshot: ConfigSnapshot, sign: int) -> Set[Optional[str]]:
    """id давлений, которые генераторы или системы двигают в сторону sign (+1 рост, -1 спад)."""
    driven: Set[Optional[str]] = set()
    for gen in snapshot.enabled_generators():
        for update in gen.state_updates or []:
            if update.type == "modify_pressure" and update.delta is not None and update.delta * sign > 0:
                driven.add(update.pressure_id)
    for entry in snapshot.systems:
        if entry.config is None:
            continue
        for pid, delta in entry.config.pressure_changes.items():
            if delta is not None and delta * sign > 0:
                driven.add(pid)
    return driven


def _check_pressure_sources(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    driven = _pressures_driven(snapshot, +1)
    items: List[AffectedItem] = []
    for p in snapshot.pressures:
        growth = p.growth
        if growth is not None and ((growth.base_growth or 0) > 0 or growth.positive_feedback):
            continue
        if p.id in driven:
            continue
        items.append(AffectedItem(id=p.id or "", label=p.label, detail=f"Decay: {_fmt(p.decay)}, no sources found"))
    return items


def _check_pressure_sinks(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    driven = _pressures_driven(snapshot, -1)
    items: List[AffectedItem] = []
    for p in snapshot.pressures:
        if (p.decay or 0) > 0 or (p.growth is not None and p.growth.negative_feedback):
            continue
        if p.id in driven:
            continue
        items.append(AffectedItem(id=p.id or "", label=p.label, detail=f"Decay: {_fmt(p.decay or 0)}"))
    return items


PRESSURE_WITHOUT_SOURCES = ValidationRule(
    name="pressure_without_sources",
    issue_id="pressure-without-sources",
    category=RuleCategory.BALANCE,
    severity=Severity.WARNING,
    title="Pressures without sources",
    message=(
        "These pressures have no positive drivers (no generators/systems increase them, no baseGrowth, "
        "no positiveFeedback). They will decay to 0 and stay there."
    ),
    check=_check_pressure_sources,
)

PRESSURE_WITHOUT_SINKS = ValidationRule(
    name="pressure_without_sinks",
    issue_id="pressure-without-sinks",
    category=RuleCategory.BALANCE,
    severity=Severity.WARNING,
    title="Pressures without sinks",
    message=(
        "These pressures have no negative drivers (no decay, no negativeFeedback, nothing decreases them). "
        "They will grow to 100 and saturate."
    ),
    check=_check_pressure_sinks,
)


# --- 4. ГЕНЕРАТОРЫ В ЭПОХАХ (ERAS) ---
def _check_missing_lineage(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    items: List[AffectedItem] = []
    for gen in snapshot.enabled_generators():
        if not gen.creation:
            continue
        has_contract_lineage = gen.contract is not None and gen.contract.lineage is not None
        has_inline_lineage = any(c.lineage is not None for c in gen.creation)
        if has_contract_lineage or has_inline_lineage:
            continue
        creates = ", ".join(c.entity_type for c in gen.creation)
        items.append(AffectedItem(id=gen.id or "", label=gen.label, detail=f"Creates: {creates}"))
    return items


def _check_orphan_generators(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    referenced = {ref.value for ref in collect_generator_id_refs(snapshot.eras)}
    return [
        AffectedItem(id=gen.id or "", label=gen.label, detail="Not in any era templateWeights")
        for gen in snapshot.enabled_generators()
        if gen.id not in referenced
    ]


def _check_orphan_systems(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    referenced = {ref.value for ref in collect_system_id_refs(snapshot.eras)}
    # Системы фреймворка работают всегда, им вес в эпохе не нужен
    framework = set(settings.framework_system_ids)
    items: List[AffectedItem] = []
    for entry in snapshot.systems:
        sid = entry.system_id
        if not sid or sid in framework or sid in referenced:
            continue
        items.append(AffectedItem(id=sid, label=entry.label, detail="Not in any era systemModifiers"))
    return items


def _check_zero_weight(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    items: List[AffectedItem] = []
    for gen in snapshot.enabled_generators():
        weights = [era.template_weights[gen.id] for era in snapshot.eras if gen.id in era.template_weights]
        # Не упомянут нигде -> это сирота, а не нулевой вес
        if not weights:
            continue
        if any(w is not None and w > 0 for w in weights):
            continue
        items.append(AffectedItem(id=gen.id or "", label=gen.label, detail="Weight is 0 in all eras where referenced"))
    return items


GENERATOR_MISSING_LINEAGE = ValidationRule(
    name="generator_missing_lineage",
    issue_id="generator-missing-lineage",
    category=RuleCategory.BALANCE,
    severity=Severity.WARNING,
    title="Generators missing lineage configuration",
    message=(
        "These generators create entities but do not define lineage in their contract. "
        "Lineage ensures new entities are properly connected to existing ones."
    ),
    check=_check_missing_lineage,
)

ORPHAN_GENERATORS = ValidationRule(
    name="orphan_generators",
    issue_id="orphan-generators",
    category=RuleCategory.BALANCE,
    severity=Severity.WARNING,
    title="Generators not referenced in any era",
    message=(
        "These generators are not referenced in any era's templateWeights. "
        "They will never execute during simulation."
    ),
    check=_check_orphan_generators,
)

ORPHAN_SYSTEMS = ValidationRule(
    name="orphan_systems",
    issue_id="orphan-systems",
    category=RuleCategory.BALANCE,
    severity=Severity.WARNING,
    title="Systems not referenced in any era",
    message=(
        "These systems are not referenced in any era's systemModifiers. "
        "They may not run with intended weights."
    ),
    check=_check_orphan_systems,
)

ZERO_WEIGHT_GENERATORS = ValidationRule(
    name="zero_weight_generators",
    issue_id="zero-weight-generators",
    category=RuleCategory.BALANCE,
    severity=Severity.WARNING,
    title="Generators with zero weight in all eras",
    message=(
        "These generators are referenced in era templateWeights but always have weight 0. "
        "They are effectively disabled but not obviously so."
    ),
    check=_check_zero_weight,
)


# --- 5. КАЧЕСТВО СПРАВОЧНИКОВ (QUALITY) ---
def _qualified_misses(refs: List[Reference], catalog: Dict[str, Set[str]]) -> List[Reference]:
    # Неизвестный вид сюда не попадает: его ловит правило видов
    return [ref for ref in refs if ref.value in catalog and ref.qualifier not in catalog[ref.value]]


def _check_subtypes(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_subtype_refs(snapshot.generators, snapshot.pressures)
    missing = _qualified_misses(refs, snapshot.world_schema.subtypes_by_kind())
    return [
        AffectedItem(id=key, label=key, detail="In " + describe_sources(group))
        for key, group in group_by_value(missing, key=lambda r: r.key).items()
    ]


def _check_statuses(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_status_refs(snapshot.generators)
    missing = _qualified_misses(refs, snapshot.world_schema.statuses_by_kind())
    return [
        AffectedItem(id=key, label=f'{group[0].value} status "{group[0].qualifier}"', detail="In " + describe_sources(group))
        for key, group in group_by_value(missing, key=lambda r: r.key).items()
    ]


def _check_cultures(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_culture_refs(snapshot.world_schema)
    return _grouped(_unresolved(refs, snapshot.world_schema.culture_ids()), "In ")


def _check_undefined_tags(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    refs = collect_tag_refs(snapshot.generators, snapshot.systems, snapshot.pressures)
    return _grouped(_unresolved(refs, snapshot.world_schema.tag_ids()), "Used by: ")


def _check_conflicting_tags(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    conflicts = snapshot.world_schema.conflicts_by_tag()
    found: Dict[Tuple[str, str], List[str]] = {}

    for gen in snapshot.enabled_generators():
        for c in gen.creation or []:
            assigned = [tag for tag, flag in c.tags.items() if flag is True]
            for i, tag_a in enumerate(assigned):
                for tag_b in assigned[i + 1:]:
                    if tag_b in conflicts.get(tag_a, ()) or tag_a in conflicts.get(tag_b, ()):
                        found.setdefault((tag_a, tag_b), []).append(f'generator "{gen.id}" creating {c.kind}')

    items: List[AffectedItem] = []
    for (tag_a, tag_b), places in found.items():
        items.append(AffectedItem(
            id=f"{tag_a}:{tag_b}",
            label=f"{tag_a} + {tag_b}",
            detail="In " + ", ".join(dict.fromkeys(places)),
        ))
    return items


INVALID_SUBTYPE_REF = ValidationRule(
    name="invalid_subtype_ref",
    issue_id="invalid-subtype-ref",
    category=RuleCategory.QUALITY,
    severity=Severity.WARNING,
    title="Invalid subtype references",
    message="These configurations reference subtypes that do not exist for the specified entity kind.",
    check=_check_subtypes,
)

INVALID_STATUS_REF = ValidationRule(
    name="invalid_status_ref",
    issue_id="invalid-status-ref",
    category=RuleCategory.QUALITY,
    severity=Severity.WARNING,
    title="Invalid status references",
    message="These generators set entity statuses that are not valid for the entity kind.",
    check=_check_statuses,
)

INVALID_CULTURE_REF = ValidationRule(
    name="invalid_culture_ref",
    issue_id="invalid-culture-ref",
    category=RuleCategory.QUALITY,
    severity=Severity.WARNING,
    title="Invalid culture references",
    message="These semantic plane regions reference cultures that do not exist. Name generation may fail.",
    check=_check_cultures,
)

UNDEFINED_TAG_REFS = ValidationRule(
    name="undefined_tag_refs",
    issue_id="undefined-tag-refs",
    category=RuleCategory.QUALITY,
    severity=Severity.WARNING,
    title="Tags used but not in registry",
    message=(
        "These tags are referenced in generators, systems, or pressures but are not defined in the tag registry. "
        "They will still work at runtime but lack metadata like conflictingTags."
    ),
    check=_check_undefined_tags,
)

CONFLICTING_TAGS_IN_USE = ValidationRule(
    name="conflicting_tags_in_use",
    issue_id="conflicting-tags-in-use",
    category=RuleCategory.QUALITY,
    severity=Severity.WARNING,
    title="Conflicting tags assigned together",
    message=(
        "These generators assign tags that are marked as conflicting in the tag registry. "
        "This may produce semantically inconsistent entities."
    ),
    check=_check_conflicting_tags,
)


# --- 6. ЧИСЛОВЫЕ ДИАПАЗОНЫ (RANGES) ---
def _check_numeric_ranges(snapshot: ConfigSnapshot, settings: RuleSettings) -> List[AffectedItem]:
    # (source, field) -> detail; повтор того же поля (дубликаты id) схлопывается
    found: Dict[str, AffectedItem] = {}

    def flag(source: str, field: str, value: float, expected: str) -> None:
        key = f"{source}:{field}"
        if key not in found:
            found[key] = AffectedItem(
                id=key,
                label=f"{source}: {field}",
                detail=f"Value: {_fmt(value)}, Expected: {expected}",
            )

    pressure_range = f"{_fmt(settings.pressure_min)}-{_fmt(settings.pressure_max)}"
    for p in snapshot.pressures:
        source = f'pressure "{p.id}"'
        if p.initial_value is not None and not settings.pressure_min <= p.initial_value <= settings.pressure_max:
            flag(source, "initialValue", p.initial_value, pressure_range)
        if p.decay is not None and p.decay < 0:
            flag(source, "decay", p.decay, ">= 0")

    for era in snapshot.eras:
        source = f'era "{era.id}"'
        for gen_id, weight in era.template_weights.items():
            if weight is not None and weight < 0:
                flag(source, f"templateWeights.{gen_id}", weight, ">= 0")
        for sys_id, modifier in era.system_modifiers.items():
            if modifier is not None and modifier < 0:
                flag(source, f"systemModifiers.{sys_id}", modifier, ">= 0")

    return list(found.values())


NUMERIC_RANGE_ISSUES = ValidationRule(
    name="numeric_range_issues",
    issue_id="numeric-range-issues",
    category=RuleCategory.QUALITY,
    severity=Severity.WARNING,
    title="Values outside expected ranges",
    message=(
        "These configuration values are outside their expected ranges, "
        "which may cause unexpected behavior."
    ),
    check=_check_numeric_ranges,
)


# === РЕЕСТР ===
# Порядок списка == порядок показа Issue в отчете
def get_standard_rules() -> List[ValidationRule]:
    return [
        INVALID_GENERATOR_FORMAT,
        INVALID_ENTITY_KIND,
        INVALID_RELATIONSHIP_KIND,
        INVALID_PRESSURE_ID,
        INVALID_ERA_TEMPLATE_REF,
        INVALID_ERA_SYSTEM_REF,
        PRESSURE_WITHOUT_SOURCES,
        PRESSURE_WITHOUT_SINKS,
        GENERATOR_MISSING_LINEAGE,
        ORPHAN_GENERATORS,
        ORPHAN_SYSTEMS,
        ZERO_WEIGHT_GENERATORS,
        INVALID_SUBTYPE_REF,
        INVALID_STATUS_REF,
        INVALID_CULTURE_REF,
        UNDEFINED_TAG_REFS,
        CONFLICTING_TAGS_IN_USE,
        NUMERIC_RANGE_ISSUES,
    ]


RULES = RuleRegistry(data_factory=get_standard_rules)
