#
# Apply request values to records, cast them to the attribute datatypes and validate them
#
import datetime
import json
import math
import re
from typing import Any, Dict, List, Mapping

from .entity import ARRAY, BINARY, BOOLEAN, DATE, MIXED, NUMBER, OBJECTID, POINT, SCALAR_TYPES, STRING, Attribute
from .errors import ValidationError
from .util import is_object_id, isoformat, utcnow

# request value that unsets an attribute
NULL = "NULL"


def try_parse_json(value: Any, key: str) -> Any:
    if isinstance(value, str) and len(value) > 1 and value[0] + value[-1] in ("{}", "[]"):
        try:
            return json.loads(value)
        except ValueError:
            raise ValidationError(f"Failed to parse JSON value for '{key}'.")
    return value


def read_upload(value: Any, key: str) -> Dict[str, Any]:
    """
    :param value: werkzeug FileStorage or a {filename, mimetype, binaryData} mapping
    :return: binary attribute value
    """
    if hasattr(value, "read") and hasattr(value, "filename"):
        data = value.read()
        mimetype = value.mimetype or "application/octet-stream"
        return {"filename": value.filename, "mimetype": mimetype, "size": len(data), "binaryData": data}
    if isinstance(value, Mapping) and value.get("filename") and "binaryData" in value:
        data = value["binaryData"]
        if isinstance(data, str):
            data = data.encode("utf-8")
        mimetype = value.get("mimetype") or "application/octet-stream"
        return {"filename": value["filename"], "mimetype": mimetype, "size": len(data), "binaryData": data}
    raise ValidationError(f"Attribute '{key}' requires a file upload")


def apply_values(entity, values: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert the request values of the stored user attributes, other keys are skipped
    :return: attribute code => value
    """
    changes = {}
    for key, value in values.items():
        attribute = entity.attributes.get(key)
        if attribute is None or key in entity.system_paths:
            continue
        if value is None or value == "":
            continue
        if isinstance(value, str) and value == NULL:
            changes[key] = None
        elif attribute.datatype == POINT:
            point = try_parse_json(value, key)
            if not isinstance(point, Mapping) or not point.get("coordinates"):
                raise ValidationError(f"Invalid point value for '{key}'.")
            changes[key] = {"type": "Point", "coordinates": list(point["coordinates"])}
        elif attribute.datatype == BINARY:
            changes[key] = read_upload(value, key)
        elif attribute.datatype in (ARRAY, MIXED):
            changes[key] = try_parse_json(value, key)
        else:
            changes[key] = value
    return changes


def resolve_constants(entity, record: Dict[str, Any], user) -> Dict[str, Any]:
    """
    Replace the string constants now, current_username, current_userid, true, false and null
    """
    for key, value in record.items():
        attribute = entity.attributes.get(key)
        if attribute is None or not isinstance(value, str):
            continue
        lowered = value.lower()
        if attribute.datatype == BOOLEAN and lowered in ("true", "false"):
            record[key] = lowered == "true"
        elif lowered == "now" and attribute.datatype == DATE:
            record[key] = utcnow()
        elif lowered == "now" and attribute.datatype == STRING:
            record[key] = isoformat(utcnow())
        elif lowered == "current_username" and attribute.datatype == STRING:
            record[key] = user.username or user.email
        elif lowered == "current_userid" and attribute.datatype in (STRING, OBJECTID):
            record[key] = user.id
        elif lowered == "null":
            record[key] = None
    return record


def parse_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        result = value
    elif isinstance(value, datetime.date):
        result = datetime.datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # milliseconds since the epoch
        return datetime.datetime.fromtimestamp(value / 1000, datetime.timezone.utc).replace(tzinfo=None)
    elif isinstance(value, str):
        result = datetime.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid date: {value}")
    if result.tzinfo is not None:
        result = result.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return result


def cast_scalar(datatype: str, value: Any, attribute: Attribute) -> Any:
    if datatype == STRING:
        if isinstance(value, (dict, list)):
            raise ValueError("not a string")
        result = str(value)
        if attribute.trim:
            result = result.strip()
        if attribute.lowercase:
            result = result.lower()
        if attribute.uppercase:
            result = result.upper()
        return result
    if datatype == NUMBER:
        if isinstance(value, str) and not value.strip():
            raise ValueError("empty number")
        result = float(value)
        if not math.isfinite(result):
            raise ValueError("number must be finite")
        return result
    if datatype == BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        raise ValueError("not a boolean")
    if datatype == DATE:
        return parse_datetime(value)
    if datatype == OBJECTID:
        if not is_object_id(value):
            raise ValueError("not an ObjectId")
        return value.lower()
    return value


def cast_value(attribute: Attribute, value: Any) -> Any:
    if attribute.datatype == ARRAY:
        values = value if isinstance(value, list) else [value]
        if attribute.items in SCALAR_TYPES:
            return [cast_scalar(attribute.items, item, attribute) for item in values]
        return values
    return cast_scalar(attribute.datatype, value, attribute)


def check_constraints(attribute: Attribute, value: Any) -> List[str]:
    code = attribute.code
    errors = []
    if attribute.datatype == STRING:
        if attribute.enum and value not in attribute.enum:
            errors.append(f"`{value}` is not a valid enum value for path `{code}`.")
        if attribute.match and not re.search(attribute.match, value):
            errors.append(f"Path `{code}` is invalid ({value}).")
        if attribute.min and len(value) < attribute.min:
            errors.append(f"Path `{code}` (`{value}`) is shorter than the minimum allowed length ({attribute.min}).")
        if attribute.max and len(value) > attribute.max:
            errors.append(f"Path `{code}` (`{value}`) is longer than the maximum allowed length ({attribute.max}).")
    elif attribute.datatype in (NUMBER, DATE):
        if attribute.min is not None and value < attribute.min:
            errors.append(f"Path `{code}` ({value}) is less than minimum allowed value ({attribute.min}).")
        if attribute.max is not None and value > attribute.max:
            errors.append(f"Path `{code}` ({value}) is more than maximum allowed value ({attribute.max}).")
    return errors


def validate_record(entity, record: Dict[str, Any], codes=None) -> Dict[str, Any]:
    """
    Cast the attribute values of `record` in place and check the attribute constraints
    :param codes: the attributes to validate, default all stored attributes
    :raises ValidationError: all failures, joined by "; "
    """
    errors = []
    for code in codes if codes is not None else entity.attributes:
        attribute = entity.attributes[code]
        value = record.get(code)
        if value is None:
            if attribute.required:
                errors.append(f"Path `{code}` is required.")
            continue
        if attribute.datatype in (BINARY, POINT, MIXED):
            continue
        try:
            value = cast_value(attribute, value)
        except (TypeError, ValueError):
            errors.append(f'Cast to {attribute.datatype} failed for value "{value}" at path "{code}"')
            continue
        errors.extend(check_constraints(attribute, value))
        record[code] = value
    if errors:
        raise ValidationError("; ".join(errors))
    return record


def build_record(entity, values: Mapping[str, Any], ctx) -> Dict[str, Any]:
    """
    Create a new record from request values: defaults, values, constants and validation
    """
    record = apply_values(entity, values)
    for code, attribute in entity.attributes.items():
        if code not in record and attribute.default is not None:
            record[code] = attribute.default.evaluate(ctx)
    resolve_constants(entity, record, ctx.user)
    return validate_record(entity, record)
