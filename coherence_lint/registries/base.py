# coherence_lint/registries/base.py
import logging
from typing import Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict

from coherence_lint.config import RuleSettings, config
from coherence_lint.models.issues import (
    AffectedItem,
    Finding,
    Issue,
    NoFinding,
    RuleCategory,
    RuleOutcome,
    Severity,
)
from coherence_lint.models.world_schemas import ConfigSnapshot

# check(snapshot, settings) -> затронутые элементы; пустой список == правило молчит
RuleCheck = Callable[[ConfigSnapshot, RuleSettings], List[AffectedItem]]


class ValidationRule(BaseModel):
    """
    Одно правило линтера: метаданные Issue + чистая функция проверки.
    Состояния нет, поэтому одно и то же правило можно гонять на любом снапшоте.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    issue_id: str
    category: RuleCategory
    severity: Severity
    title: str
    message: str
    check: RuleCheck

    def evaluate(self, snapshot: ConfigSnapshot, settings: Optional[RuleSettings] = None) -> RuleOutcome:
        items = self.check(snapshot, settings or config.rules)
        if not items:
            return NoFinding(rule=self.name)

        return Finding(
            rule=self.name,
            issue=Issue(
                id=self.issue_id,
                title=self.title,
                message=self.message,
                severity=self.severity,
                affected_items=items,
            ),
        )


class RuleRegistry:
    def __init__(self, data_factory: Callable[[], List[ValidationRule]]):
        """
        Args:
            data_factory: Функция, возвращающая правила в порядке показа (get_standard_rules).
        """
        self._items: List[ValidationRule] = list(data_factory())
        self._map: Dict[str, ValidationRule] = {rule.name: rule for rule in self._items}

        if len(self._map) != len(self._items):
            raise ValueError(f"Registry {self.__class__.__name__} has duplicate rule names")

        logging.debug(f"Registry {self.__class__.__name__} initialized with {len(self._items)} rules.")

    def get(self, name: str) -> Optional[ValidationRule]:
        return self._map.get(name)

    def all(self) -> List[ValidationRule]:
        return list(self._items)

    def by_category(self, category: RuleCategory) -> List[ValidationRule]:
        return [rule for rule in self._items if rule.category == category]

    def without(self, *names: str) -> "RuleRegistry":
        """Копия реестра без указанных правил (порядок остальных сохраняется)."""
        unknown = set(names) - set(self._map)
        if unknown:
            raise KeyError(f"Unknown rules: {', '.join(sorted(unknown))}")
        return RuleRegistry(data_factory=lambda: [r for r in self._items if r.name not in names])

    def __iter__(self) -> Iterator[ValidationRule]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
