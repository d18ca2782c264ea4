# coherence_lint/config.py
from typing import List
from pydantic import BaseModel, Field


class RuleSettings(BaseModel):
    """Пороги и исключения, которые читают правила валидации."""
    # Системы фреймворка крутятся всегда, даже если ни одна эра их не упоминает
    framework_system_ids: List[str] = Field(
        default_factory=lambda: ["era_spawner", "era_transition", "universal_catalyst"]
    )

    # Допустимый диапазон initialValue у давлений
    pressure_min: float = 0.0
    pressure_max: float = 100.0

    # Ограничение глубины для рекурсивных деревьев applicability.rules
    max_rule_depth: int = 32


class ExportSettings(BaseModel):
    output_dir: str = "reports"
    filename_template: str = "validation-report-{date}.{ext}"
    json_indent: int = 2


class AppConfig(BaseModel):
    rules: RuleSettings = Field(default_factory=RuleSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    log_level: str = "INFO"


# Глобальный экземпляр конфига (CLI может переопределить отдельные поля)
config = AppConfig()
