"""
Attribute codec: job attribute mappings <-> bytes stored in the jobs table.

Mappings are serialised as compact JSON and wrapped in base64 so the column
holds plain ASCII regardless of the payload.
"""
import base64
import binascii
import json
from typing import Any, Dict, Mapping, Union

from .errors import CorruptPayload, UnsupportedPayload


def _check_keys(value: Any, path: str = "attributes"):
    # json.dumps stringifies non-str keys, which would not decode back to the same mapping
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise UnsupportedPayload(f"{path} has a non-string key {key!r}")
            _check_keys(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_keys(item, f"{path}[{i}]")


def encode(attributes: Mapping[str, Any]) -> bytes:
    if not isinstance(attributes, Mapping):
        raise UnsupportedPayload(f"attributes must be a mapping, got {type(attributes).__name__}")
    _check_keys(attributes)
    try:
        raw = json.dumps(dict(attributes), sort_keys=True, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise UnsupportedPayload(f"cannot encode attributes: {e}") from e
    return base64.b64encode(raw.encode("utf-8"))


def decode(payload: Union[bytes, str]) -> Dict[str, Any]:
    try:
        raw = base64.b64decode(payload, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError) as e:
        raise CorruptPayload(f"cannot decode attributes: {e}") from e
    if not isinstance(data, dict):
        raise CorruptPayload(f"decoded attributes are a {type(data).__name__}, expected an object")
    return data
