"""
Custom fields schema for tenant-defined record attributes.

A tenant's schema is an ordered list of field definitions drawn from a
closed set of kinds. Definitions are validated when the schema is written;
record values (e.g. an animal's custom attributes) are validated against
the stored schema by the owning domain.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from farm_tenancy.exceptions import ValidationError

MAX_FIELDS = 50
MAX_NAME_LENGTH = 100
MAX_OPTIONS = 100


class FieldKind(enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    DROPDOWN = "dropdown"


@dataclass
class CustomFieldDefinition:
    """One field of a tenant's custom schema."""
    id: str
    name: str
    kind: FieldKind
    required: bool = False
    options: List[str] = field(default_factory=list)
    default_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'name': self.name,
            'type': self.kind.value,
            'required': self.required,
        }
        if self.kind is FieldKind.DROPDOWN:
            data['options'] = list(self.options)
        if self.default_value is not None:
            data['defaultValue'] = self.default_value
        return data


def _fail(index: int, message: str):
    raise ValidationError(f"Field {index + 1}: {message}", payload={'field': 'fields', 'index': index})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_iso_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _check_value(kind: FieldKind, options: List[str], value: Any) -> Optional[str]:
    """Return an error message if value does not fit the field kind."""
    if kind is FieldKind.TEXT and not isinstance(value, str):
        return "expected text"
    if kind is FieldKind.NUMBER and not _is_number(value):
        return "expected a number"
    if kind is FieldKind.DATE and not _is_iso_date(value):
        return "expected a date (YYYY-MM-DD)"
    if kind is FieldKind.DROPDOWN and value not in options:
        return f"expected one of: {', '.join(options)}"
    return None


def parse_definition(raw: Any, index: int) -> CustomFieldDefinition:
    """Validate one raw field definition and return it typed."""
    if not isinstance(raw, dict):
        _fail(index, "definition must be an object")

    name = raw.get('name')
    if not isinstance(name, str) or not name.strip():
        _fail(index, "name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        _fail(index, f"name must be at most {MAX_NAME_LENGTH} characters")

    try:
        kind = FieldKind(raw.get('type'))
    except ValueError:
        _fail(index, f"type must be one of: {', '.join(k.value for k in FieldKind)}")

    required = raw.get('required', False)
    if not isinstance(required, bool):
        _fail(index, "required must be true or false")

    options = raw.get('options') or []
    if kind is FieldKind.DROPDOWN:
        if not isinstance(options, list) or not options:
            _fail(index, "dropdown fields need at least one option")
        if len(options) > MAX_OPTIONS:
            _fail(index, f"at most {MAX_OPTIONS} options are allowed")
        if not all(isinstance(o, str) and o.strip() for o in options):
            _fail(index, "options must be non-empty text")
        if len(set(options)) != len(options):
            _fail(index, "options must be unique")
    elif options:
        _fail(index, "options are only allowed on dropdown fields")

    default_value = raw.get('defaultValue')
    if default_value is not None:
        problem = _check_value(kind, options, default_value)
        if problem:
            _fail(index, f"defaultValue {problem}")

    field_id = raw.get('id')
    if field_id is None or field_id == '':
        field_id = f"field_{uuid.uuid4().hex[:12]}"
    elif not isinstance(field_id, str):
        _fail(index, "id must be text")

    return CustomFieldDefinition(
        id=field_id,
        name=name,
        kind=kind,
        required=required,
        options=list(options),
        default_value=default_value,
    )


def validate_schema(raw_fields: Any) -> List[CustomFieldDefinition]:
    """
    Validate a full custom-fields schema.

    Missing ids are generated; ids and names must be unique within the schema.

    Raises:
        ValidationError: On the first invalid definition
    """
    if not isinstance(raw_fields, list):
        raise ValidationError("fields must be a list", payload={'field': 'fields'})
    if len(raw_fields) > MAX_FIELDS:
        raise ValidationError(f"At most {MAX_FIELDS} custom fields are allowed", payload={'field': 'fields'})

    definitions = [parse_definition(raw, index) for index, raw in enumerate(raw_fields)]

    seen_ids = set()
    seen_names = set()
    for index, definition in enumerate(definitions):
        if definition.id in seen_ids:
            _fail(index, f"duplicate id '{definition.id}'")
        if definition.name.lower() in seen_names:
            _fail(index, f"duplicate name '{definition.name}'")
        seen_ids.add(definition.id)
        seen_names.add(definition.name.lower())

    return definitions


def serialize_schema(definitions: List[CustomFieldDefinition]) -> List[Dict[str, Any]]:
    return [definition.to_dict() for definition in definitions]


def validate_values(schema: List[Dict[str, Any]], values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Check a record's custom values against a stored schema.

    Values are keyed by field id. Missing optional fields take their default;
    missing required fields and unknown ids are errors.

    Returns:
        dict: Values with defaults applied
    """
    values = dict(values or {})
    definitions = validate_schema(schema)
    known = {d.id for d in definitions}

    unknown = sorted(set(values) - known)
    if unknown:
        raise ValidationError(f"Unknown custom fields: {', '.join(unknown)}", payload={'field': 'customFields'})

    result = {}
    for definition in definitions:
        if values.get(definition.id) is None:
            if definition.default_value is not None:
                result[definition.id] = definition.default_value
            elif definition.required:
                raise ValidationError(f"'{definition.name}' is required", payload={'field': definition.id})
            continue
        problem = _check_value(definition.kind, definition.options, values[definition.id])
        if problem:
            raise ValidationError(f"'{definition.name}': {problem}", payload={'field': definition.id})
        result[definition.id] = values[definition.id]
    return result
