"""Built-in functions callable from templates as ``{{func:name(args)}}``."""

from __future__ import annotations

import base64
import json
import random
import string
import uuid as uuid_lib
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote, unquote

from flowengine.jsonpath import MISSING, evaluate_path

TemplateFunction = Callable[..., Any]


def _now(day_offset: Any = 0) -> datetime:
    return datetime.now(tz=timezone.utc) + timedelta(days=float(day_offset or 0))


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def timestamp() -> int:
    """Milliseconds since the epoch."""
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def iso_date() -> str:
    return _iso(_now())


def date_iso(day_offset: Any = 0) -> str:
    return _iso(_now(day_offset))


def date_rfc3339(day_offset: Any = 0) -> str:
    return _now(day_offset).strftime("%Y-%m-%dT%H:%M:%SZ")


def date_format(day_offset: Any = 0, fmt: str = "YYYY-MM-DD") -> str:
    """Format today plus an offset in days using YYYY/MM/DD/HH/mm/ss tokens."""
    moment = _now(day_offset)
    replacements = [
        ("YYYY", f"{moment.year:04d}"),
        ("MM", f"{moment.month:02d}"),
        ("DD", f"{moment.day:02d}"),
        ("HH", f"{moment.hour:02d}"),
        ("mm", f"{moment.minute:02d}"),
        ("ss", f"{moment.second:02d}"),
    ]
    result = fmt
    for token, value in replacements:
        result = result.replace(token, value)
    return result


def uuid() -> str:
    return str(uuid_lib.uuid4())


def random_int(minimum: Any = 0, maximum: Any = 100) -> int:
    return random.randint(int(minimum), int(maximum))


def random_string(length: Any = 10) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(random.choice(alphabet) for _ in range(int(length)))


def base64_encode(value: Any) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def base64_decode(value: Any) -> str:
    return base64.b64decode(str(value)).decode("utf-8")


def url_encode(value: Any) -> str:
    return quote(str(value), safe="!~*'()")


def url_decode(value: Any) -> str:
    return unquote(str(value))


def json_path(data: Any, path: str = "$") -> Any:
    if isinstance(data, str):
        data = json.loads(data)
    result = evaluate_path(data, path)
    return None if result is MISSING else result


FUNCTION_REGISTRY: dict[str, TemplateFunction] = {
    "timestamp": timestamp,
    "isoDate": iso_date,
    "dateISO": date_iso,
    "dateRFC3339": date_rfc3339,
    "dateFormat": date_format,
    "uuid": uuid,
    "randomInt": random_int,
    "randomString": random_string,
    "base64Encode": base64_encode,
    "base64Decode": base64_decode,
    "urlEncode": url_encode,
    "urlDecode": url_decode,
    "jsonPath": json_path,
}


def get_function(name: str) -> TemplateFunction:
    """Get a template function by name."""
    func = FUNCTION_REGISTRY.get(name)
    if func is None:
        raise ValueError(
            f"Unknown function: {name}. Available: {', '.join(FUNCTION_REGISTRY)}"
        )
    return func


def split_args(text: str) -> list[str]:
    """Split a call's argument list on commas outside quotes and brackets."""
    args: list[str] = []
    depth = 0
    quote_char: str | None = None
    current = ""
    for char in text:
        if quote_char:
            if char == quote_char:
                quote_char = None
        elif char in "'\"":
            quote_char = char
        elif char in "[{(":
            depth += 1
        elif char in "]})":
            depth -= 1
        elif char == "," and depth == 0:
            args.append(current.strip())
            current = ""
            continue
        current += char
    if current.strip():
        args.append(current.strip())
    return args


def parse_arg(arg: str) -> Any:
    """JSON-decode an argument, falling back to the unquoted text."""
    try:
        return json.loads(arg)
    except (json.JSONDecodeError, ValueError):
        if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in "'\"":
            return arg[1:-1]
        return arg
