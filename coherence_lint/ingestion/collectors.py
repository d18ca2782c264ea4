# coherence_lint/ingestion/collectors.py
"""
Сборщики ссылок из снапшота конфигурации.

Каждая функция проходит по своей части конфига и возвращает список Reference
в порядке обхода. Это последовательность, а не множество: одна и та же ссылка
из двух мест дает две записи, чтобы правило могло перечислить все источники.
Выключенные генераторы (enabled == False) ссылок не дают.
"""
import logging
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

from coherence_lint.config import config
from coherence_lint.models.references import Reference, ReferenceTarget, SourceType
from coherence_lint.models.world_schemas import (
    ApplicabilityRule,
    CrossCultureRatioFactor,
    EntityCountFactor,
    EntityCountSpec,
    Era,
    Factor,
    Generator,
    Pressure,
    RatioFactor,
    RelationshipCountFactor,
    RelationshipCountSpec,
    StatusRatioFactor,
    SubtypeDirective,
    SystemEntry,
    TagCountFactor,
    UnknownFactor,
    WorldSchema,
)


def _ref(
    target: ReferenceTarget,
    value: str,
    source: str,
    source_id: Optional[str],
    source_type: SourceType,
    qualifier: Optional[str] = None,
) -> Reference:
    return Reference(
        target=target,
        value=value,
        source=source,
        source_id=source_id,
        source_type=source_type,
        qualifier=qualifier,
    )


# ==============================================================================
# ОБХОД ДЕРЕВЬЕВ
# ==============================================================================

def walk_applicability(
    rules: Sequence[ApplicabilityRule], max_depth: Optional[int] = None
) -> Iterator[ApplicabilityRule]:
    """
    Обходит дерево applicability в глубину, в порядке конфига (pre-order).

    Рекурсии нет: явный стек. Узлы глубже max_depth не посещаются (с warning в лог).
    Узел, который уже есть на текущем пути от корня, дает цикл и не обходится;
    один и тот же узел в разных ветках выдается каждый раз.
    """
    limit = config.rules.max_rule_depth if max_depth is None else max_depth
    stack: List[Tuple[ApplicabilityRule, int, FrozenSet[int]]] = [
        (rule, 1, frozenset()) for rule in reversed(rules)
    ]

    while stack:
        rule, depth, path = stack.pop()
        if id(rule) in path:
            logging.warning("Applicability rule contains itself, skipping cyclic branch")
            continue
        yield rule

        if not rule.rules:
            continue
        if depth >= limit:
            logging.warning(f"Applicability tree deeper than {limit} levels, nested rules ignored")
            continue
        child_path = path | {id(rule)}
        stack.extend((child, depth + 1, child_path) for child in reversed(rule.rules))


def _enabled(generators: Iterable[Generator]) -> Iterator[Generator]:
    return (gen for gen in generators if gen.is_enabled)


# --- Разбор факторов обратной связи ---

def _factor_entity_mentions(factor: Factor) -> Iterator[Tuple[str, Optional[str]]]:
    """(kind, subtype) всех упоминаний видов сущностей, включая numerator/denominator."""
    if isinstance(factor, (EntityCountFactor, StatusRatioFactor, UnknownFactor)):
        if factor.kind:
            yield factor.kind, factor.subtype
    elif isinstance(factor, RatioFactor):
        for spec in (factor.numerator, factor.denominator):
            if isinstance(spec, EntityCountSpec) and spec.kind:
                yield spec.kind, spec.subtype


def _factor_relationship_kinds(factor: Factor) -> Iterator[str]:
    if isinstance(factor, (RelationshipCountFactor, CrossCultureRatioFactor, UnknownFactor)):
        yield from factor.relationship_kinds
    elif isinstance(factor, RatioFactor):
        for spec in (factor.numerator, factor.denominator):
            if isinstance(spec, RelationshipCountSpec):
                yield from spec.relationship_kinds


def _factor_tags(factor: Factor) -> Iterator[str]:
    if isinstance(factor, (TagCountFactor, UnknownFactor)):
        if factor.tag:
            yield factor.tag
        yield from factor.tags


# ==============================================================================
# 1. ENTITY KINDS
# ==============================================================================

def collect_entity_kind_refs(
    generators: Iterable[Generator],
    pressures: Iterable[Pressure],
    systems: Iterable[SystemEntry],
    max_depth: Optional[int] = None,
) -> List[Reference]:
    refs: List[Reference] = []
    target = ReferenceTarget.ENTITY_KIND

    for gen in _enabled(generators):
        for c in gen.creation or []:
            if c.kind:
                qualifier = c.subtype if isinstance(c.subtype, str) else None
                refs.append(_ref(target, c.kind, f'generator "{gen.id}" creation', gen.id, SourceType.GENERATOR, qualifier))

        if gen.applicability is not None:
            source = f'generator "{gen.id}" applicability'
            for rule in walk_applicability(gen.applicability.rules, max_depth):
                if rule.kind:
                    refs.append(_ref(target, rule.kind, source, gen.id, SourceType.GENERATOR, rule.subtype))

        if gen.selection is not None and gen.selection.kind:
            refs.append(_ref(target, gen.selection.kind, f'generator "{gen.id}" selection', gen.id, SourceType.GENERATOR))

    for p in pressures:
        for field, factor in p.feedback():
            for kind, subtype in _factor_entity_mentions(factor):
                refs.append(_ref(target, kind, f'pressure "{p.id}" {field}', p.id, SourceType.PRESSURE, subtype))

    for entry in systems:
        if entry.config is not None and entry.config.entity_kind:
            sid = entry.system_id
            refs.append(_ref(target, entry.config.entity_kind, f'system "{sid}"', sid, SourceType.SYSTEM))

    return refs


# ==============================================================================
# 2. RELATIONSHIP KINDS
# ==============================================================================

def collect_relationship_kind_refs(
    generators: Iterable[Generator],
    pressures: Iterable[Pressure],
    systems: Iterable[SystemEntry],
) -> List[Reference]:
    refs: List[Reference] = []
    target = ReferenceTarget.RELATIONSHIP_KIND

    for gen in _enabled(generators):
        for r in gen.relationships or []:
            if r.kind:
                refs.append(_ref(target, r.kind, f'generator "{gen.id}"', gen.id, SourceType.GENERATOR))
        lineage_kind = gen.contract.lineage_relationship_kind if gen.contract is not None else None
        if lineage_kind:
            refs.append(_ref(target, lineage_kind, f'generator "{gen.id}" lineage', gen.id, SourceType.GENERATOR))

    for p in pressures:
        for _field, factor in p.feedback():
            for kind in _factor_relationship_kinds(factor):
                refs.append(_ref(target, kind, f'pressure "{p.id}"', p.id, SourceType.PRESSURE))

    for entry in systems:
        cfg = entry.config
        if cfg is None:
            continue
        sid = entry.system_id
        kinds: List[Optional[str]] = []
        if cfg.contagion is not None:
            kinds.append(cfg.contagion.relationship_kind)
        kinds.extend(v.relationship_kind for v in cfg.vectors)
        if cfg.infection_action is not None:
            kinds.append(cfg.infection_action.relationship_kind)
        if cfg.metric is not None:
            kinds.append(cfg.metric.shared_relationship_kind)
        kinds.extend(r.action.kind for r in cfg.rules if r.action is not None)

        for kind in kinds:
            if kind:
                refs.append(_ref(target, kind, f'system "{sid}"', sid, SourceType.SYSTEM))

    return refs


# ==============================================================================
# 3. PRESSURE IDS
# ==============================================================================

def collect_pressure_id_refs(
    generators: Iterable[Generator],
    systems: Iterable[SystemEntry],
    eras: Iterable[Era] = (),
    max_depth: Optional[int] = None,
) -> List[Reference]:
    refs: List[Reference] = []
    target = ReferenceTarget.PRESSURE_ID

    for gen in _enabled(generators):
        for u in gen.state_updates or []:
            if u.type == "modify_pressure" and u.pressure_id:
                refs.append(_ref(target, u.pressure_id, f'generator "{gen.id}" stateUpdates', gen.id, SourceType.GENERATOR))

        if gen.applicability is not None:
            source = f'generator "{gen.id}" applicability'
            for rule in walk_applicability(gen.applicability.rules, max_depth):
                if rule.type == "pressure_threshold" and rule.pressure_id:
                    refs.append(_ref(target, rule.pressure_id, source, gen.id, SourceType.GENERATOR))
                if rule.type == "pressure_any_above":
                    for pid in rule.pressure_ids:
                        refs.append(_ref(target, pid, source, gen.id, SourceType.GENERATOR))

        for c in gen.creation or []:
            if isinstance(c.subtype, SubtypeDirective):
                for pid in c.subtype.from_pressure:
                    refs.append(_ref(target, pid, f'generator "{gen.id}" creation fromPressure', gen.id, SourceType.GENERATOR))

    for entry in systems:
        cfg = entry.config
        if cfg is None:
            continue
        sid = entry.system_id

        # Ссылки здесь - ключи карты, значения (дельты) не важны
        for pid in cfg.pressure_changes:
            refs.append(_ref(target, pid, f'system "{sid}" pressureChanges', sid, SourceType.SYSTEM))

        if entry.system_type == "thresholdTrigger":
            for cond in cfg.conditions:
                if cond.type in ("pressure_above", "pressure_below") and cond.pressure_id:
                    refs.append(_ref(target, cond.pressure_id, f'system "{sid}" condition', sid, SourceType.SYSTEM))
            for action in cfg.actions:
                if action.type == "modify_pressure" and action.pressure_id:
                    refs.append(_ref(target, action.pressure_id, f'system "{sid}" action', sid, SourceType.SYSTEM))

        if entry.system_type == "tagDiffusion" and cfg.divergence_pressure is not None:
            name = cfg.divergence_pressure.pressure_name
            if name:
                refs.append(_ref(target, name, f'system "{sid}" divergencePressure', sid, SourceType.SYSTEM))

    for era in eras:
        for label, conditions in (("exitCondition", era.exit_conditions), ("entryCondition", era.entry_conditions)):
            for cond in conditions:
                if cond.type == "pressure" and cond.pressure_id:
                    refs.append(_ref(target, cond.pressure_id, f'era "{era.id}" {label}', era.id, SourceType.ERA))
        for label, effects in (("exitEffects", era.exit_effects), ("entryEffects", era.entry_effects)):
            if effects is None:
                continue
            for pid in effects.pressure_changes:
                refs.append(_ref(target, pid, f'era "{era.id}" {label}', era.id, SourceType.ERA))

    return refs


# ==============================================================================
# 4. ERA -> GENERATOR / SYSTEM
# ==============================================================================

def _collect_era_keys(
    eras: Iterable[Era], target: ReferenceTarget, pick: Callable[[Era], Dict[str, Optional[float]]]
) -> List[Reference]:
    refs: List[Reference] = []
    for era in eras:
        for key in pick(era):
            refs.append(_ref(target, key, f'era "{era.label}"', era.id, SourceType.ERA))
    return refs


def collect_generator_id_refs(eras: Iterable[Era]) -> List[Reference]:
    return _collect_era_keys(eras, ReferenceTarget.GENERATOR_ID, lambda era: era.template_weights)


def collect_system_id_refs(eras: Iterable[Era]) -> List[Reference]:
    return _collect_era_keys(eras, ReferenceTarget.SYSTEM_ID, lambda era: era.system_modifiers)


# ==============================================================================
# 5. SUBTYPES / STATUSES / CULTURES
# value = kind, qualifier = subtype|status
# ==============================================================================

def collect_subtype_refs(generators: Iterable[Generator], pressures: Iterable[Pressure]) -> List[Reference]:
    refs: List[Reference] = []
    target = ReferenceTarget.SUBTYPE

    for gen in _enabled(generators):
        source = f'generator "{gen.id}"'
        for c in gen.creation or []:
            if not c.kind or not c.subtype:
                continue
            if isinstance(c.subtype, SubtypeDirective):
                # inherit и fromPressure разрешаются в рантайме, проверяем только random
                for subtype in c.subtype.random or []:
                    refs.append(_ref(target, c.kind, source, gen.id, SourceType.GENERATOR, subtype))
            else:
                refs.append(_ref(target, c.kind, source, gen.id, SourceType.GENERATOR, c.subtype))

    for p in pressures:
        for _field, factor in p.feedback():
            for kind, subtype in _factor_entity_mentions(factor):
                if subtype:
                    refs.append(_ref(target, kind, f'pressure "{p.id}"', p.id, SourceType.PRESSURE, subtype))

    return refs


def collect_status_refs(generators: Iterable[Generator]) -> List[Reference]:
    refs: List[Reference] = []
    for gen in _enabled(generators):
        for c in gen.creation or []:
            if c.kind and c.status:
                refs.append(_ref(ReferenceTarget.STATUS, c.kind, f'generator "{gen.id}"', gen.id, SourceType.GENERATOR, c.status))
    return refs


def collect_culture_refs(schema: WorldSchema) -> List[Reference]:
    refs: List[Reference] = []
    for ek in schema.entity_kinds:
        if ek.semantic_plane is None:
            continue
        for region in ek.semantic_plane.regions:
            if region.culture:
                refs.append(_ref(ReferenceTarget.CULTURE, region.culture, f'{ek.kind} region "{region.id}"', ek.kind, SourceType.SCHEMA))
    return refs


# ==============================================================================
# 6. TAGS
# ==============================================================================

def collect_tag_refs(
    generators: Iterable[Generator],
    systems: Iterable[SystemEntry],
    pressures: Iterable[Pressure],
) -> List[Reference]:
    refs: List[Reference] = []
    target = ReferenceTarget.TAG

    for gen in _enabled(generators):
        for c in gen.creation or []:
            for tag in c.tags:
                refs.append(_ref(target, tag, f'generator "{gen.id}" creation', gen.id, SourceType.GENERATOR))

    for entry in systems:
        cfg = entry.config
        if cfg is None:
            continue
        sid = entry.system_id

        if entry.system_type == "thresholdTrigger":
            for cond in cfg.conditions:
                if cond.tag:
                    refs.append(_ref(target, cond.tag, f'system "{sid}" condition', sid, SourceType.SYSTEM))
                if cond.type == "has_any_tag":
                    for tag in cond.tags:
                        refs.append(_ref(target, tag, f'system "{sid}" has_any_tag', sid, SourceType.SYSTEM))
            for action in cfg.actions:
                if action.tag:
                    refs.append(_ref(target, action.tag, f'system "{sid}" action', sid, SourceType.SYSTEM))

        if entry.system_type == "tagDiffusion":
            for label, tag_set in (("convergence", cfg.convergence), ("divergence", cfg.divergence)):
                if tag_set is None:
                    continue
                for tag in tag_set.tags:
                    refs.append(_ref(target, tag, f'system "{sid}" {label}', sid, SourceType.SYSTEM))

    for p in pressures:
        for field, factor in p.feedback():
            for tag in _factor_tags(factor):
                refs.append(_ref(target, tag, f'pressure "{p.id}" {field}', p.id, SourceType.PRESSURE))

    return refs


# ==============================================================================
# ГРУППИРОВКА
# ==============================================================================

def group_by_value(
    refs: Iterable[Reference], key: Optional[Callable[[Reference], str]] = None
) -> Dict[str, List[Reference]]:
    """Группы по значению (или по key(ref)) в порядке первого появления."""
    groups: Dict[str, List[Reference]] = {}
    for ref in refs:
        groups.setdefault(key(ref) if key else ref.value, []).append(ref)
    return groups


def describe_sources(refs: Iterable[Reference]) -> str:
    # dict.fromkeys: уникальные источники с сохранением порядка
    return ", ".join(dict.fromkeys(ref.source for ref in refs))
