"""
时段解析 - 按当前时刻匹配角色配置中的 timeStates
"""

from datetime import datetime
from typing import Any, Dict, Optional

from .models import ResolvedTimeState

DEFAULT_TIME_STATE_KEY = "default"


def _to_minute(value: str) -> int:
    hour, minute = value.strip().split(":")
    return int(hour) * 60 + int(minute)


def in_range(minute: int, time_range: str) -> bool:
    """
    判断分钟数是否落在 "HH:MM-HH:MM" 区间内（左闭右开）

    起止相同表示全天；起点大于终点表示跨午夜。
    """
    start_text, end_text = time_range.split("-", 1)
    start = _to_minute(start_text)
    end = _to_minute(end_text)

    if start == end:
        return True
    if start < end:
        return start <= minute < end
    return minute >= start or minute < end


def resolve_time_state(time_states: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> ResolvedTimeState:
    """
    解析当前时段

    Args:
        time_states: 时段名 -> {"range": "HH:MM-HH:MM", ...}
        now: 当前时间（默认本地时间）

    Returns:
        ResolvedTimeState: 命中的时段；无命中时取第一个，为空时返回 default
    """
    if not isinstance(time_states, dict) or not time_states:
        return ResolvedTimeState(key=DEFAULT_TIME_STATE_KEY)

    now = now or datetime.now()
    minute = now.hour * 60 + now.minute

    for key, state in time_states.items():
        if not isinstance(state, dict) or not isinstance(state.get("range"), str):
            continue
        try:
            matched = in_range(minute, state["range"])
        except ValueError:
            continue
        if matched:
            return ResolvedTimeState(key=key, state=state)

    key, state = next(iter(time_states.items()))
    return ResolvedTimeState(key=key, state=state if isinstance(state, dict) else {})
