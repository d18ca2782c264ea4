# coherence_lint/models/references.py
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ReferenceTarget(str, Enum):
    """На какой справочник/коллекцию указывает ссылка."""
    ENTITY_KIND = "entity_kind"
    RELATIONSHIP_KIND = "relationship_kind"
    PRESSURE_ID = "pressure_id"
    GENERATOR_ID = "generator_id"
    SYSTEM_ID = "system_id"
    SUBTYPE = "subtype"
    STATUS = "status"
    CULTURE = "culture"
    TAG = "tag"


class SourceType(str, Enum):
    GENERATOR = "generator"
    PRESSURE = "pressure"
    SYSTEM = "system"
    ERA = "era"
    SCHEMA = "schema"


class Reference(BaseModel):
    """
    Одно упоминание идентификатора в конфиге.
    source - человекочитаемое место ('generator "g1" creation'), оно же уходит в отчет.
    qualifier - уточнение для составных ссылок (подтип/статус при value=kind).
    """
    model_config = ConfigDict(frozen=True)

    target: ReferenceTarget
    value: str
    source: str
    source_id: Optional[str] = None
    source_type: SourceType
    qualifier: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.value}:{self.qualifier}" if self.qualifier is not None else self.value
