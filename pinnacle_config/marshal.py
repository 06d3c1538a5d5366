"""
Conversion of configuration script values.

Every value crossing from a script into the API is classified into one
ScriptValueKind and converted according to the annotation of the parameter
it is bound to. Values that do not fit are rejected with ScriptMarshalError
naming the field before any request is sent; nothing is coerced ("yes" is
not a bool, True is not an int, "1.5" is not a number).
"""

import collections.abc
import inspect
import logging
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

from pydantic import BaseModel, ValidationError

from .errors import ScriptMarshalError
from .models import ModSpec, _as_mod_set

logger = logging.getLogger(__name__)


class ScriptValueKind(str, Enum):
    """Kinds of values a script can pass."""
    NONE = "none"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STR = "str"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    CALLABLE = "callable"
    HANDLE = "handle"
    MODEL = "model"
    ENUM = "enum"


@dataclass(frozen=True)
class ScriptValue:
    """A classified script value; proxies are already unwrapped."""

    kind: ScriptValueKind
    value: Any


class ScriptProxy:
    """Base of objects handed to scripts in place of API objects."""

    __slots__ = ("_target",)

    def __init__(self, target: Any):
        object.__setattr__(self, "_target", target)


def unwrap(value: Any) -> Any:
    """Replace proxies by their targets, recursing into lists and dicts."""
    if isinstance(value, ScriptProxy):
        return object.__getattribute__(value, "_target")
    if isinstance(value, (list, tuple)):
        return type(value)(unwrap(item) for item in value)
    if isinstance(value, dict):
        return {key: unwrap(item) for key, item in value.items()}
    return value


def classify(field: str, value: Any, handle_types: tuple = ()) -> ScriptValue:
    """
    Classify a script value.

    Args:
        field: Parameter the value is bound to (for error messages)
        value: Script value
        handle_types: Types that count as API handles

    Returns:
        ScriptValue with proxies unwrapped

    Raises:
        ScriptMarshalError: If the value has no supported kind
    """
    if value is None:
        return ScriptValue(ScriptValueKind.NONE, None)
    if isinstance(value, ScriptProxy):
        return ScriptValue(ScriptValueKind.HANDLE, unwrap(value))
    if isinstance(value, bool):
        return ScriptValue(ScriptValueKind.BOOL, value)
    # Enum before int/str: str and int enums are instances of both
    if isinstance(value, Enum):
        return ScriptValue(ScriptValueKind.ENUM, value)
    if isinstance(value, int):
        return ScriptValue(ScriptValueKind.INT, value)
    if isinstance(value, float):
        return ScriptValue(ScriptValueKind.FLOAT, value)
    if isinstance(value, str):
        return ScriptValue(ScriptValueKind.STR, value)
    if handle_types and isinstance(value, handle_types):
        return ScriptValue(ScriptValueKind.HANDLE, value)
    if isinstance(value, BaseModel):
        return ScriptValue(ScriptValueKind.MODEL, value)
    if isinstance(value, collections.abc.Mapping):
        return ScriptValue(ScriptValueKind.MAPPING, unwrap(dict(value)))
    if isinstance(value, (list, tuple, set, frozenset)):
        return ScriptValue(ScriptValueKind.SEQUENCE, unwrap(list(value)))
    if callable(value):
        return ScriptValue(ScriptValueKind.CALLABLE, value)
    raise ScriptMarshalError(field, f"unsupported value of type {type(value).__name__}", value)


class Marshaller:
    """Converts script arguments for API coroutine methods.

    Args:
        wrap_callback: Turns a script callable into an API callback
        handle_types: Types that count as API handles
    """

    def __init__(self, wrap_callback: Callable[[str, Callable], Callable], handle_types: tuple = ()):
        self.wrap_callback = wrap_callback
        self.handle_types = handle_types

    def bind_arguments(self, func: Callable, args: tuple, kwargs: Dict[str, Any]) -> inspect.BoundArguments:
        """
        Bind and convert script arguments for an API method.

        Raises:
            ScriptMarshalError: If an argument is missing, unexpected or has the wrong kind
        """
        name = getattr(func, "__qualname__", getattr(func, "__name__", "call"))
        signature = inspect.signature(func)
        try:
            bound = signature.bind(*args, **kwargs)
        except TypeError as e:
            raise ScriptMarshalError(name, str(e)) from e

        hints = _type_hints(func)
        for param_name, value in list(bound.arguments.items()):
            parameter = signature.parameters[param_name]
            hint = hints.get(param_name, Any)
            field = f"{name}.{param_name}"
            if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
                bound.arguments[param_name] = tuple(
                    self.convert(f"{field}[{i}]", item, hint) for i, item in enumerate(value)
                )
            elif parameter.kind is inspect.Parameter.VAR_KEYWORD:
                bound.arguments[param_name] = {
                    key: self.convert(f"{name}.{key}", item, hint) for key, item in value.items()
                }
            else:
                bound.arguments[param_name] = self.convert(field, value, hint)
        return bound

    def convert(self, field: str, value: Any, hint: Any) -> Any:
        """Convert one value to the annotated type, or raise ScriptMarshalError."""
        if hint == ModSpec:
            return self._to_mods(field, value)

        item = classify(field, value, self.handle_types)
        origin = typing.get_origin(hint)

        if hint is Any or hint is inspect.Parameter.empty:
            if item.kind is ScriptValueKind.CALLABLE:
                return self.wrap_callback(field, item.value)
            return item.value

        if origin is typing.Union:
            options = typing.get_args(hint)
            if item.kind is ScriptValueKind.NONE:
                if type(None) in options:
                    return None
                raise ScriptMarshalError(field, "a value is required", value)
            errors = []
            for option in options:
                if option is type(None):
                    continue
                try:
                    return self.convert(field, value, option)
                except ScriptMarshalError as e:
                    errors.append(e.reason)
            raise ScriptMarshalError(field, "; ".join(errors), value)

        if origin in (list, collections.abc.Iterable, collections.abc.Sequence):
            (item_hint,) = typing.get_args(hint) or (Any,)
            if item.kind is not ScriptValueKind.SEQUENCE:
                raise ScriptMarshalError(field, f"expected a list, got {item.kind.value}", value)
            return [self.convert(f"{field}[{i}]", element, item_hint) for i, element in enumerate(item.value)]

        if origin in (dict, collections.abc.Mapping):
            key_hint, value_hint = typing.get_args(hint) or (Any, Any)
            if item.kind is not ScriptValueKind.MAPPING:
                raise ScriptMarshalError(field, f"expected a mapping, got {item.kind.value}", value)
            return {
                self.convert(f"{field} key", key, key_hint): self.convert(f"{field}[{key!r}]", element, value_hint)
                for key, element in item.value.items()
            }

        if origin is collections.abc.Callable or hint is Callable:
            if item.kind is not ScriptValueKind.CALLABLE:
                raise ScriptMarshalError(field, f"expected a callable, got {item.kind.value}", value)
            return self.wrap_callback(field, item.value)

        if not isinstance(hint, type):
            return item.value

        if hint is bool:
            return self._expect(field, item, value, ScriptValueKind.BOOL)
        if hint is int:
            return self._expect(field, item, value, ScriptValueKind.INT)
        if hint is float:
            if item.kind is ScriptValueKind.INT:
                return float(item.value)
            return self._expect(field, item, value, ScriptValueKind.FLOAT)
        if hint is str:
            return self._expect(field, item, value, ScriptValueKind.STR)
        if issubclass(hint, Enum):
            return self._to_enum(field, item, value, hint)
        if issubclass(hint, BaseModel):
            return self._to_model(field, item, value, hint)
        if self.handle_types and issubclass(hint, self.handle_types):
            if item.kind is ScriptValueKind.HANDLE and isinstance(item.value, hint):
                return item.value
            raise ScriptMarshalError(field, f"expected a {hint.__name__}, got {item.kind.value}", value)

        return item.value

    def _expect(self, field: str, item: ScriptValue, value: Any, kind: ScriptValueKind) -> Any:
        if item.kind is not kind:
            raise ScriptMarshalError(field, f"expected {kind.value}, got {item.kind.value}", value)
        return item.value

    def _to_enum(self, field: str, item: ScriptValue, value: Any, enum_cls: type) -> Enum:
        if item.kind is ScriptValueKind.ENUM and isinstance(item.value, enum_cls):
            return item.value
        if item.kind is ScriptValueKind.STR:
            for member in enum_cls:
                if member.value == item.value:
                    return member
        allowed = ", ".join(repr(member.value) for member in enum_cls)
        raise ScriptMarshalError(field, f"expected one of {allowed}", value)

    def _to_model(self, field: str, item: ScriptValue, value: Any, model_cls: type) -> BaseModel:
        if item.kind is ScriptValueKind.MODEL and isinstance(item.value, model_cls):
            return item.value
        if item.kind is ScriptValueKind.MAPPING:
            try:
                return model_cls.model_validate(item.value)
            except ValidationError as e:
                reasons = "; ".join(
                    f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in e.errors()
                )
                raise ScriptMarshalError(field, reasons, value) from e
        raise ScriptMarshalError(field, f"expected {model_cls.__name__} or a mapping, got {item.kind.value}", value)

    def _to_mods(self, field: str, value: Any) -> Any:
        item = classify(field, value, self.handle_types)
        if item.kind not in (ScriptValueKind.NONE, ScriptValueKind.ENUM,
                             ScriptValueKind.STR, ScriptValueKind.SEQUENCE):
            raise ScriptMarshalError(field, f"expected modifiers, got {item.kind.value}", value)
        try:
            return _as_mod_set(item.value)
        except ValueError as e:
            raise ScriptMarshalError(field, str(e), value) from e


def _type_hints(func: Callable) -> Dict[str, Any]:
    target = getattr(func, "__func__", func)
    try:
        return typing.get_type_hints(target)
    except (NameError, TypeError) as e:
        logger.debug(f"No type hints for {target!r}: {e}")
        return {}


def to_script(value: Any, proxy: Callable[[Any], Any], proxy_types: tuple) -> Any:
    """Convert an API result or event argument into script-native values."""
    if value is None or isinstance(value, (bool, int, float, str, Enum)):
        return value
    if proxy_types and isinstance(value, proxy_types):
        return proxy(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_script(item, proxy, proxy_types) for item in value]
    if isinstance(value, dict):
        return {key: to_script(item, proxy, proxy_types) for key, item in value.items()}
    return value
