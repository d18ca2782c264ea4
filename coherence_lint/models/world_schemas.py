# coherence_lint/models/world_schemas.py
import json
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Set, Tuple, Union

from pydantic import Discriminator, Field, StrictStr, Tag, model_validator

from coherence_lint.models.base import (
    AnyMap,
    Items,
    Loose,
    LooseBool,
    MaybeItems,
    NumberMap,
    WorldModel,
)

# ==============================================================================
# 1. SCHEMA CATALOGS (Справочники)
# ==============================================================================

class CatalogEntry(WorldModel):
    """Подтип или статус вида сущности. Голая строка == {id: строка}."""
    id: Loose[str] = None
    name: Loose[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_bare_id(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"id": data}
        return data


class SemanticRegion(WorldModel):
    id: Loose[str] = None
    culture: Loose[str] = None


class SemanticPlane(WorldModel):
    regions: Items[SemanticRegion] = Field(default_factory=list)


class EntityKindSchema(WorldModel):
    kind: Loose[str] = None
    subtypes: Items[CatalogEntry] = Field(default_factory=list)
    statuses: Items[CatalogEntry] = Field(default_factory=list)
    semantic_plane: Loose[SemanticPlane] = None


class RelationshipKindSchema(WorldModel):
    kind: Loose[str] = None


class Culture(WorldModel):
    id: Loose[str] = None
    name: Loose[str] = None


class TagDefinition(WorldModel):
    tag: Loose[str] = None
    category: Loose[str] = None
    conflicting_tags: Items[str] = Field(default_factory=list)


class WorldSchema(WorldModel):
    entity_kinds: Items[EntityKindSchema] = Field(default_factory=list)
    relationship_kinds: Items[RelationshipKindSchema] = Field(default_factory=list)
    cultures: Items[Culture] = Field(default_factory=list)
    tag_registry: Items[TagDefinition] = Field(default_factory=list)

    def entity_kind_ids(self) -> Set[str]:
        return {ek.kind for ek in self.entity_kinds if ek.kind}

    def relationship_kind_ids(self) -> Set[str]:
        return {rk.kind for rk in self.relationship_kinds if rk.kind}

    def culture_ids(self) -> Set[str]:
        return {c.id for c in self.cultures if c.id}

    def tag_ids(self) -> Set[str]:
        return {t.tag for t in self.tag_registry if t.tag}

    # Дубликаты видов не сливаются: первое объявление выигрывает
    def subtypes_by_kind(self) -> Dict[str, Set[str]]:
        result: Dict[str, Set[str]] = {}
        for ek in self.entity_kinds:
            if ek.kind and ek.kind not in result:
                result[ek.kind] = {s.id for s in ek.subtypes if s.id}
        return result

    def statuses_by_kind(self) -> Dict[str, Set[str]]:
        result: Dict[str, Set[str]] = {}
        for ek in self.entity_kinds:
            if ek.kind and ek.kind not in result:
                result[ek.kind] = {s.id for s in ek.statuses if s.id}
        return result

    def conflicts_by_tag(self) -> Dict[str, Set[str]]:
        result: Dict[str, Set[str]] = {}
        for t in self.tag_registry:
            if t.tag and t.conflicting_tags and t.tag not in result:
                result[t.tag] = set(t.conflicting_tags)
        return result


# ==============================================================================
# 2. COUNT SPECS & FACTORS (Обратная связь давлений)
# Закрытые tagged unions по полю `type`.
# ==============================================================================

def _type_tag(value: Any) -> Optional[str]:
    tag = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return tag if isinstance(tag, str) else None


class EntityCountSpec(WorldModel):
    type: Literal["entity_count"] = "entity_count"
    kind: Loose[str] = None
    subtype: Loose[str] = None
    status: Loose[str] = None


class RelationshipCountSpec(WorldModel):
    type: Literal["relationship_count"] = "relationship_count"
    relationship_kinds: Items[str] = Field(default_factory=list)


class TotalEntitiesSpec(WorldModel):
    type: Literal["total_entities"] = "total_entities"


COUNT_SPEC_TYPES = ("entity_count", "relationship_count", "total_entities")


def _count_spec_tag(value: Any) -> Optional[str]:
    tag = _type_tag(value)
    if tag in COUNT_SPEC_TYPES:
        return tag
    # Спеки без type встречаются в старых конфигах: выводим вариант по полям
    if tag is None and isinstance(value, dict):
        if "relationshipKinds" in value or "relationship_kinds" in value:
            return "relationship_count"
        if "kind" in value:
            return "entity_count"
    return None


CountSpec = Annotated[
    Union[
        Annotated[EntityCountSpec, Tag("entity_count")],
        Annotated[RelationshipCountSpec, Tag("relationship_count")],
        Annotated[TotalEntitiesSpec, Tag("total_entities")],
    ],
    Discriminator(_count_spec_tag),
]


class EntityCountFactor(WorldModel):
    type: Literal["entity_count"] = "entity_count"
    kind: Loose[str] = None
    subtype: Loose[str] = None
    status: Loose[str] = None
    coefficient: Loose[float] = None
    cap: Loose[float] = None


class RelationshipCountFactor(WorldModel):
    type: Literal["relationship_count"] = "relationship_count"
    relationship_kinds: Items[str] = Field(default_factory=list)
    coefficient: Loose[float] = None
    cap: Loose[float] = None


class TagCountFactor(WorldModel):
    type: Literal["tag_count"] = "tag_count"
    tags: Items[str] = Field(default_factory=list)
    tag: Loose[str] = None  # короткая форма для одного тега
    coefficient: Loose[float] = None


class RatioFactor(WorldModel):
    type: Literal["ratio"] = "ratio"
    numerator: Loose[CountSpec] = None
    denominator: Loose[CountSpec] = None
    coefficient: Loose[float] = None
    fallback_value: Loose[float] = None
    cap: Loose[float] = None


class StatusRatioFactor(WorldModel):
    type: Literal["status_ratio"] = "status_ratio"
    kind: Loose[str] = None
    subtype: Loose[str] = None
    alive_status: Loose[str] = None
    coefficient: Loose[float] = None


class CrossCultureRatioFactor(WorldModel):
    type: Literal["cross_culture_ratio"] = "cross_culture_ratio"
    relationship_kinds: Items[str] = Field(default_factory=list)
    coefficient: Loose[float] = None


class UnknownFactor(WorldModel):
    """
    Фактор с незнакомым type. Поля-ссылки все равно читаем,
    чтобы опечатка в type не прятала битые ссылки на виды.
    """
    type: Loose[str] = None
    kind: Loose[str] = None
    subtype: Loose[str] = None
    relationship_kinds: Items[str] = Field(default_factory=list)
    tags: Items[str] = Field(default_factory=list)
    tag: Loose[str] = None


FACTOR_TYPES = (
    "entity_count",
    "relationship_count",
    "tag_count",
    "ratio",
    "status_ratio",
    "cross_culture_ratio",
)


def _factor_tag(value: Any) -> str:
    tag = _type_tag(value)
    return tag if tag in FACTOR_TYPES else "unknown"


Factor = Annotated[
    Union[
        Annotated[EntityCountFactor, Tag("entity_count")],
        Annotated[RelationshipCountFactor, Tag("relationship_count")],
        Annotated[TagCountFactor, Tag("tag_count")],
        Annotated[RatioFactor, Tag("ratio")],
        Annotated[StatusRatioFactor, Tag("status_ratio")],
        Annotated[CrossCultureRatioFactor, Tag("cross_culture_ratio")],
        Annotated[UnknownFactor, Tag("unknown")],
    ],
    Discriminator(_factor_tag),
]


# ==============================================================================
# 3. PRESSURES (Давления)
# ==============================================================================

class PressureGrowth(WorldModel):
    base_growth: Loose[float] = None
    max_growth: Loose[float] = None
    positive_feedback: Items[Factor] = Field(default_factory=list)
    negative_feedback: Items[Factor] = Field(default_factory=list)


class Pressure(WorldModel):
    id: Loose[str] = None
    name: Loose[str] = None
    initial_value: Loose[float] = None
    decay: Loose[float] = None
    growth: Loose[PressureGrowth] = None

    @property
    def label(self) -> str:
        return self.name or self.id or ""

    def feedback(self) -> Iterator[Tuple[str, Factor]]:
        """Пары (поле, фактор): сначала positiveFeedback, затем negativeFeedback."""
        if self.growth is None:
            return
        for factor in self.growth.positive_feedback:
            yield "positiveFeedback", factor
        for factor in self.growth.negative_feedback:
            yield "negativeFeedback", factor


# ==============================================================================
# 4. GENERATORS (Генераторы)
# ==============================================================================

class Selection(WorldModel):
    strategy: Loose[str] = None
    kind: Loose[str] = None

    @model_validator(mode="before")
    @classmethod
    def _present_but_shapeless(cls, data: Any) -> Any:
        # selection: "by_kind" или [] задан, но без strategy/kind; пустые значения == нет selection
        if isinstance(data, (list, tuple)) or (not isinstance(data, dict) and data):
            return {}
        return data


class SubtypeDirective(WorldModel):
    """DSL-подтип: {random: [...]}, {inherit: ...} или {fromPressure: {pressureId: subtype}}."""
    random: MaybeItems[str] = None
    inherit: Any = None
    from_pressure: AnyMap = Field(default_factory=dict)


class CreationRule(WorldModel):
    kind: Loose[str] = None
    subtype: Loose[Union[StrictStr, SubtypeDirective]] = None
    status: Loose[str] = None
    lineage: Any = None
    tags: AnyMap = Field(default_factory=dict)

    @property
    def subtype_label(self) -> Optional[str]:
        if isinstance(self.subtype, SubtypeDirective):
            return json.dumps(self.subtype.model_dump(by_alias=True, exclude_defaults=True), sort_keys=True)
        return self.subtype

    @property
    def entity_type(self) -> str:
        kind = self.kind or ""
        return f"{kind}:{self.subtype_label}" if self.subtype else kind


class RelationshipRule(WorldModel):
    kind: Loose[str] = None


class StateUpdate(WorldModel):
    type: Loose[str] = None
    pressure_id: Loose[str] = None
    delta: Loose[float] = None


class Contract(WorldModel):
    lineage: Any = None

    @property
    def lineage_relationship_kind(self) -> Optional[str]:
        if isinstance(self.lineage, dict):
            kind = self.lineage.get("relationshipKind")
            return kind if isinstance(kind, str) else None
        return None


class ApplicabilityRule(WorldModel):
    """Узел дерева применимости; and/or-группы вкладывают дочерние узлы в rules."""
    type: Loose[str] = None
    kind: Loose[str] = None
    subtype: Loose[str] = None
    pressure_id: Loose[str] = None
    pressure_ids: Items[str] = Field(default_factory=list)
    rules: "Items[ApplicabilityRule]" = Field(default_factory=list)


class Applicability(WorldModel):
    rules: Items[ApplicabilityRule] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_bare_list(cls, data: Any) -> Any:
        # Редактор хранит applicability просто списком правил
        if isinstance(data, (list, tuple)):
            return {"rules": list(data)}
        return data


class Generator(WorldModel):
    id: Loose[str] = None
    name: Loose[str] = None
    enabled: LooseBool = True
    template: Any = None  # устаревшая обертка, должна отсутствовать
    selection: Loose[Selection] = None
    # None здесь означает "не список": форма генератора битая
    creation: MaybeItems[CreationRule] = None
    relationships: MaybeItems[RelationshipRule] = None
    state_updates: MaybeItems[StateUpdate] = None
    contract: Loose[Contract] = None
    applicability: Loose[Applicability] = None

    @property
    def is_enabled(self) -> bool:
        return self.enabled is not False

    @property
    def label(self) -> str:
        return self.name or self.id or ""


# ==============================================================================
# 5. SYSTEMS (Системы симуляции)
# ==============================================================================

class RelationshipRef(WorldModel):
    relationship_kind: Loose[str] = None


class MetricRef(WorldModel):
    shared_relationship_kind: Loose[str] = None


class SystemAction(WorldModel):
    type: Loose[str] = None
    kind: Loose[str] = None
    pressure_id: Loose[str] = None
    tag: Loose[str] = None
    delta: Loose[float] = None


class SystemRule(WorldModel):
    action: Loose[SystemAction] = None


class SystemCondition(WorldModel):
    type: Loose[str] = None
    pressure_id: Loose[str] = None
    tag: Loose[str] = None
    tags: Items[str] = Field(default_factory=list)


class TagSet(WorldModel):
    tags: Items[str] = Field(default_factory=list)


class DivergencePressure(WorldModel):
    pressure_name: Loose[str] = None


class SystemConfig(WorldModel):
    id: Loose[str] = None
    name: Loose[str] = None
    entity_kind: Loose[str] = None
    contagion: Loose[RelationshipRef] = None
    vectors: Items[RelationshipRef] = Field(default_factory=list)
    infection_action: Loose[RelationshipRef] = None
    metric: Loose[MetricRef] = None
    rules: Items[SystemRule] = Field(default_factory=list)
    pressure_changes: NumberMap = Field(default_factory=dict)
    # thresholdTrigger
    conditions: Items[SystemCondition] = Field(default_factory=list)
    actions: Items[SystemAction] = Field(default_factory=list)
    # tagDiffusion
    convergence: Loose[TagSet] = None
    divergence: Loose[TagSet] = None
    divergence_pressure: Loose[DivergencePressure] = None


class SystemEntry(WorldModel):
    system_type: Loose[str] = None
    id: Loose[str] = None
    config: Loose[SystemConfig] = None

    @property
    def system_id(self) -> Optional[str]:
        # Собственный id системы живет в config; id обертки только запасной вариант
        if self.config is not None and self.config.id:
            return self.config.id
        return self.id

    @property
    def label(self) -> str:
        name = self.config.name if self.config is not None else None
        return name or self.system_id or ""


# ==============================================================================
# 6. ERAS (Эпохи)
# ==============================================================================

class EraCondition(WorldModel):
    type: Loose[str] = None
    pressure_id: Loose[str] = None


class EraEffects(WorldModel):
    pressure_changes: NumberMap = Field(default_factory=dict)


class Era(WorldModel):
    id: Loose[str] = None
    name: Loose[str] = None
    template_weights: NumberMap = Field(default_factory=dict)
    system_modifiers: NumberMap = Field(default_factory=dict)
    entry_conditions: Items[EraCondition] = Field(default_factory=list)
    exit_conditions: Items[EraCondition] = Field(default_factory=list)
    entry_effects: Loose[EraEffects] = None
    exit_effects: Loose[EraEffects] = None

    @property
    def label(self) -> str:
        return self.name or self.id or ""


# ==============================================================================
# 7. USAGE MAP & SNAPSHOT
# ==============================================================================

class UsageOrphan(WorldModel):
    type: Loose[str] = None
    id: Loose[str] = None


class UsageValidation(WorldModel):
    orphans: Items[UsageOrphan] = Field(default_factory=list)


class UsageMap(WorldModel):
    """Карта использования считается снаружи (редактором); линтер только показывает счетчики."""
    validation: Loose[UsageValidation] = None


class ConfigSnapshot(WorldModel):
    """Неизменяемый снимок всей конфигурации мира на время одного прогона."""
    world_schema: WorldSchema = Field(default_factory=WorldSchema, alias="schema")
    eras: Items[Era] = Field(default_factory=list)
    pressures: Items[Pressure] = Field(default_factory=list)
    generators: Items[Generator] = Field(default_factory=list)
    systems: Items[SystemEntry] = Field(default_factory=list)
    usage_map: Loose[UsageMap] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_malformed_schema(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("schema", "world_schema"):
                if key in data and not isinstance(data[key], (dict, WorldSchema)):
                    data = {k: v for k, v in data.items() if k != key}
        return data

    def enabled_generators(self) -> List[Generator]:
        return [g for g in self.generators if g.is_enabled]

    # Для проверки ссылок учитываются все генераторы, включая выключенные
    def generator_ids(self) -> Set[str]:
        return {g.id for g in self.generators if g.id}

    def pressure_ids(self) -> Set[str]:
        return {p.id for p in self.pressures if p.id}

    def system_ids(self) -> Set[str]:
        return {s.system_id for s in self.systems if s.system_id}
