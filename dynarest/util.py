import datetime
import os
import re
import time
from typing import Any, List

OBJECT_ID_RE = re.compile(r"[0-9a-fA-F]{24}")


def as_list(value: Any) -> List[Any]:
    """
    Normalize a "one-or-many" value (query string parameters, request bodies)
    :param value: None, a scalar or a sequence
    :return: list
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def new_object_id() -> str:
    """
    :return: 24 hex character identifier: a 4 byte timestamp followed by 8 random bytes
    """
    return f"{int(time.time()) & 0xFFFFFFFF:08x}{os.urandom(8).hex()}"


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and OBJECT_ID_RE.fullmatch(value) is not None


def utcnow() -> datetime.datetime:
    """
    naive UTC timestamp with millisecond precision, the resolution we serialize
    """
    now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def isoformat(value: datetime.datetime) -> str:
    """
    2014-01-31T12:30:58.123Z
    """
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def to_title_case(text: str) -> str:
    """
    "address_line1" => "Address Line1"
    """
    text = text.replace("_", " ").strip()
    return re.sub(r"\w\S*", lambda match: match.group(0)[0].upper() + match.group(0)[1:].lower(), text)
