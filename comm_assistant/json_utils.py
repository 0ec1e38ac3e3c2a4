"""
从大模型回复中提取JSON
"""
import json
import re
from typing import Any, Dict, Optional

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json_object(response: str) -> Optional[Dict[str, Any]]:
    """
    从回复中提取JSON对象

    依次尝试：直接解析、```json 代码块、第一个 { 到最后一个 }
    都失败时返回 None
    """
    if not response:
        return None

    candidates = [response.strip()]
    candidates.extend(m.strip() for m in _FENCE_PATTERN.findall(response))

    start = response.find('{')
    end = response.rfind('}') + 1
    if start != -1 and end > start:
        candidates.append(response[start:end])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    return None
