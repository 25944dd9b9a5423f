"""
Schema introspection over pydantic models.

Both the request pipeline and the OpenAPI synthesizer ask this module the
same questions:
- Is field X required?
- What is field X's primitive JSON type?
- Does raw input validate, and if not, which fields failed?

Requiredness has exactly one rule: a field is required iff validating an
object with every field absent reports the field as `missing`. The runtime
validator reports missing fields from that rule, and the document lists the
same names, so the two can never disagree.
"""

import functools
import logging
import types
from collections.abc import Mapping as AbcMapping, Sequence as AbcSequence
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Type, Union, get_args, get_origin

from pydantic import AliasChoices, AliasPath, BaseModel, ValidationError
from pydantic.fields import FieldInfo
from werkzeug.datastructures import FileStorage

from ..errors import ContractDefinitionError
from .multipart import UploadedFile
from .registry import FileFieldSpec


logger = logging.getLogger('hubkit.introspect')

REF_TEMPLATE = '#/components/schemas/{model}'

PrimitiveType = Literal["string", "number", "boolean", "object", "array"]


@dataclass
class ValidationOutcome:
    """Result of validating raw input: either a parsed value or failures."""
    value: Any = None
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _alias_locs(alias: Any) -> List[Tuple[Any, ...]]:
    """Input locations a validation alias reads from."""
    if isinstance(alias, str):
        return [(alias,)]
    if isinstance(alias, AliasPath):
        return [tuple(alias.path)] if alias.path else []
    if isinstance(alias, AliasChoices):
        return [loc for choice in alias.choices for loc in _alias_locs(choice)]
    return []


def _documented_alias(alias: Any) -> Optional[str]:
    """The property name pydantic's validation-mode JSON schema uses for an alias."""
    if isinstance(alias, str):
        return alias
    if isinstance(alias, AliasChoices):
        for choice in alias.choices:
            if isinstance(choice, str):
                return choice
            if isinstance(choice, AliasPath) and len(choice.path) == 1 and isinstance(choice.path[0], str):
                return choice.path[0]
    # a bare AliasPath is documented under the attribute name
    return None


def _validation_alias(info: FieldInfo) -> Any:
    return info.validation_alias if info.validation_alias is not None else info.alias


def wire_name(name: str, info: FieldInfo) -> str:
    """A field's name on the wire: the name the JSON schema documents it under."""
    return _documented_alias(_validation_alias(info)) or name


def wire_names(schema: Type[BaseModel]) -> List[str]:
    """Field names as they appear on the wire, in declaration order."""
    return [wire_name(name, info) for name, info in schema.model_fields.items()]


def _field_locs(schema: Type[BaseModel]) -> Dict[str, List[Tuple[Any, ...]]]:
    """Wire name -> input locations that populate the field."""
    by_name = schema.model_config.get('populate_by_name') or schema.model_config.get('validate_by_name')
    locs = {}
    for name, info in schema.model_fields.items():
        field_locs = _alias_locs(_validation_alias(info)) or [(name,)]
        if by_name and (name,) not in field_locs:
            field_locs.append((name,))
        locs[wire_name(name, info)] = field_locs
    return locs


def _accepted_keys(schema: Type[BaseModel]) -> Dict[str, Tuple[str, ...]]:
    """Wire name -> top-level input keys that populate the field."""
    accepted = {}
    for name, locs in _field_locs(schema).items():
        keys: List[str] = []
        for loc in locs:
            if str(loc[0]) not in keys:
                keys.append(str(loc[0]))
        accepted[name] = tuple(keys)
    return accepted


def _field_at(schema: Type[BaseModel], loc: Tuple[Any, ...]) -> Optional[str]:
    """Wire name of the field a failure location points at exactly."""
    loc = tuple(loc)
    for name, locs in _field_locs(schema).items():
        if loc in locs:
            return name
    return None


@functools.lru_cache(maxsize=None)
def _missing_on_empty(schema: Type[BaseModel]) -> Tuple[str, ...]:
    try:
        schema.model_validate({})
    except ValidationError as e:
        missing = {
            _field_at(schema, err['loc'])
            for err in e.errors(include_url=False)
            if err['type'] == 'missing'
        }
        return tuple(name for name in wire_names(schema) if name in missing)
    except Exception as e:
        # a validator that cannot cope with empty input; use the declared fields
        required = tuple(
            wire_name(name, info) for name, info in schema.model_fields.items() if info.is_required()
        )
        logger.warning(
            f"{schema.__name__} rejected an empty object with {type(e).__name__}; "
            f"requiredness taken from field declarations: {list(required)}",
            extra={"event": "requiredness_fallback", "schema": schema.__name__},
        )
        return required
    return ()


def _loc_to_field(loc: Tuple[Any, ...]) -> Optional[str]:
    if not loc:
        return None
    return '.'.join(str(part) for part in loc)


def _unwrap(tp: Any) -> Any:
    """Strip Annotated and Optional wrappers."""
    while True:
        origin = get_origin(tp)
        if origin is Annotated:
            tp = get_args(tp)[0]
            continue
        if origin is Union or origin is types.UnionType:
            args = [a for a in get_args(tp) if a is not type(None)]
            if not args:
                return type(None)
            tp = args[0]
            continue
        return tp


def json_type(tp: Any) -> PrimitiveType:
    """Map a Python annotation onto one of the five primitive JSON types."""
    tp = _unwrap(tp)
    origin = get_origin(tp)

    if origin is Literal:
        values = get_args(tp)
        return json_type(type(values[0])) if values else "string"
    if origin is not None:
        if isinstance(origin, type) and issubclass(origin, (AbcMapping, dict)):
            return "object"
        if isinstance(origin, type) and issubclass(origin, (list, tuple, set, frozenset, AbcSequence)) \
                and not issubclass(origin, str):
            return "array"
        return "string"

    if not isinstance(tp, type):
        return "string"
    if issubclass(tp, bool):
        return "boolean"
    if issubclass(tp, Enum):
        members = list(tp)
        return json_type(type(members[0].value)) if members else "string"
    if issubclass(tp, (int, float, Decimal)):
        return "number"
    if issubclass(tp, (str, bytes, date, datetime, time)):
        return "string"
    if issubclass(tp, (BaseModel, dict)):
        return "object"
    if issubclass(tp, (list, tuple, set, frozenset)):
        return "array"
    return "string"


def _nested_models(tp: Any, found: Dict[str, Type[BaseModel]]) -> None:
    if isinstance(tp, type) and issubclass(tp, BaseModel):
        seen = found.get(tp.__name__)
        if seen is tp:
            return
        if seen is not None:
            raise ContractDefinitionError(
                f"Schema name '{tp.__name__}' is used by two different models: "
                f"{seen.__module__}.{seen.__qualname__} and {tp.__module__}.{tp.__qualname__}"
            )
        found[tp.__name__] = tp
        for info in tp.model_fields.values():
            _nested_models(info.annotation, found)
        return
    for arg in get_args(tp):
        _nested_models(arg, found)


class SchemaIntrospector:
    """Answers requiredness, type and validation questions about pydantic models."""

    def required_fields(self, schema: Type[BaseModel]) -> List[str]:
        return list(_missing_on_empty(schema))

    def is_required(self, schema: Type[BaseModel], field_name: str) -> bool:
        return field_name in _missing_on_empty(schema)

    def primitive_type(self, schema: Type[BaseModel], field_name: str) -> PrimitiveType:
        accepted = _accepted_keys(schema)
        for name, info in schema.model_fields.items():
            wire = wire_name(name, info)
            if field_name in (name, wire) or field_name in accepted[wire]:
                return json_type(info.annotation)
        raise KeyError(f"{schema.__name__} has no field '{field_name}'")

    def validate(self, schema: Type[BaseModel], raw: Any) -> ValidationOutcome:
        """
        Validate raw input against a schema.

        Missing-field failures come from required_fields(); every other
        failure is reported by pydantic. Failures are
        {"field": "a.b", "message": "...", "type": "..."} dicts; "field" is
        absent for whole-object failures.
        """
        failures: List[Dict[str, Any]] = []
        if isinstance(raw, Mapping):
            accepted = _accepted_keys(schema)
            failures = [
                {"field": name, "message": "Field required", "type": "missing"}
                for name in self.required_fields(schema)
                if not any(key in raw for key in accepted[name])
            ]
        reported = {f["field"] for f in failures}

        try:
            value = schema.model_validate(raw)
        except ValidationError as e:
            for err in e.errors(include_url=False):
                field_name = _loc_to_field(err['loc'])
                if err['type'] == 'missing' and _field_at(schema, err['loc']) in reported:
                    continue
                failure = {"message": err['msg'], "type": err['type']}
                if field_name is not None:
                    failure = {"field": field_name, **failure}
                failures.append(failure)
            return ValidationOutcome(failures=failures)
        except Exception:
            # validators that index absent input; the missing fields are the failure
            if failures:
                return ValidationOutcome(failures=failures)
            raise

        if failures:
            return ValidationOutcome(failures=failures)
        return ValidationOutcome(value=value)

    def object_schema(self, schema: Type[BaseModel]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        JSON schema for a model plus its nested definitions.

        `required` is rewritten at every nesting level with required_fields().

        Returns:
            (schema dict, {definition name: schema dict})
        """
        doc = schema.model_json_schema(by_alias=True, ref_template=REF_TEMPLATE)
        definitions = doc.pop('$defs', {})

        models: Dict[str, Type[BaseModel]] = {}
        _nested_models(schema, models)

        self._apply_required(doc, schema)
        for name, definition in definitions.items():
            nested = models.get(name)
            if nested is not None:
                self._apply_required(definition, nested)
        return doc, definitions

    def _apply_required(self, doc: Dict[str, Any], schema: Type[BaseModel]) -> None:
        required = self.required_fields(schema)
        if required:
            doc['required'] = required
        else:
            doc.pop('required', None)

    @staticmethod
    def is_upload(value: Any) -> bool:
        """
        Whether a value is an uploaded file rather than a form value.

        A file input submitted empty (no filename, no content) is not an upload.
        """
        if isinstance(value, UploadedFile):
            return bool(value.filename or value.size_bytes)
        if isinstance(value, FileStorage):
            return bool(value.filename)
        return False

    @staticmethod
    def file_property(spec: FileFieldSpec) -> Dict[str, Any]:
        """Opaque binary placeholder for an upload field."""
        return {
            "type": "string",
            "format": "binary",
            "description": spec.description or "File to upload",
        }
