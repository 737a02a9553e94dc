"""不透明分页 token 的编解码"""

import base64
import binascii
import json
from typing import Any

from ..errors import ValidationError


def encode_token(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_token(token: str) -> dict[str, Any]:
    """解码 encode_token 生成的 token，格式不对时抛 ValidationError"""
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise ValidationError("分页 token 无效", code="InvalidToken") from e
    if not isinstance(payload, dict):
        raise ValidationError("分页 token 无效", code="InvalidToken")
    return payload
