# coherence_lint/models/base.py
import logging
from typing import Annotated, Any, Dict, List, Optional, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    ValidationError,
    ValidatorFunctionWrapHandler,
    WrapValidator,
)
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class WorldModel(BaseModel):
    """
    Базовая модель снапшота конфигурации.
    В JSON ключи camelCase (initialValue, templateWeights), в коде snake_case.
    Лишние поля сохраняются: редакторы хранят в конфиге много того, что линтеру не нужно.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )


# ==============================================================================
# LENIENT VALIDATORS
# Битые данные не должны ронять прогон: битое поле == отсутствующее поле.
# ==============================================================================

def _or_none(value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
    try:
        return handler(value)
    except ValidationError as e:
        logging.debug(f"Malformed value treated as missing: {value!r} ({e.error_count()} errors)")
        return None


def _keep_valid_items(value: Any, handler: ValidatorFunctionWrapHandler) -> List[Any]:
    kept: List[Any] = []
    for item in value:
        # Валидируем по одному, чтобы один битый элемент не утащил весь список
        try:
            kept.extend(handler([item]))
        except ValidationError:
            logging.debug(f"Skipping malformed list item: {item!r}")
    return kept


def _items_or_empty(value: Any, handler: ValidatorFunctionWrapHandler) -> List[Any]:
    if not isinstance(value, (list, tuple)):
        return []
    return _keep_valid_items(value, handler)


def _items_or_none(value: Any, handler: ValidatorFunctionWrapHandler) -> Optional[List[Any]]:
    # None сохраняет факт "это не список" для проверки формы генератора
    if not isinstance(value, (list, tuple)):
        return None
    return _keep_valid_items(value, handler)


def _map_or_empty(value: Any, handler: ValidatorFunctionWrapHandler) -> Dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    try:
        return handler(value)
    except ValidationError:
        logging.debug(f"Malformed map treated as empty: {value!r}")
        return {}


# Скаляр или вложенный объект; битое значение -> None
Loose = Annotated[Optional[T], WrapValidator(_or_none)]

# Список; не-список -> [], битые элементы отбрасываются
Items = Annotated[List[T], WrapValidator(_items_or_empty)]

# Список, у которого важно отличать "не список" (None) от пустого
MaybeItems = Annotated[Optional[List[T]], WrapValidator(_items_or_none)]

# Карта id -> число. Ключи и есть ссылки, поэтому битое значение не выкидывает ключ
NumberMap = Annotated[Dict[str, Loose[float]], WrapValidator(_map_or_empty)]

# Любая карта (теги генератора, fromPressure и т.п.)
AnyMap = Annotated[Dict[str, Any], WrapValidator(_map_or_empty)]

# JS-семантика `enabled === false`: строка "false" генератор не выключает
LooseBool = Annotated[Optional[StrictBool], WrapValidator(_or_none)]
