"""
JSON encoding for structured log entries.

Log extras carry whatever callers pass in: datetimes, enums, pydantic
models, exceptions. Anything ``to_jsonable_python`` cannot convert is
written as its ``repr``.
"""

import json
from typing import Any

from pydantic_core import to_jsonable_python


def _jsonable(obj: Any) -> Any:
    return to_jsonable_python(obj, fallback=repr)


def dumps(obj: Any, **kwargs) -> str:
    return json.dumps(obj, default=_jsonable, **kwargs)
