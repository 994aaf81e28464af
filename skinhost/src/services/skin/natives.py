"""Default native-function table shared by every script execution.

Each function takes the calling script's bridge as its first argument. The
set mirrors the host "System" object skins script against: script group
lookup, volume, private settings, and a few conversions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import MappingProxyType
from typing import Any, Optional

from .bridge import RuntimeBridge
from .store import set_private_string, set_volume

logger = logging.getLogger(__name__)


def get_script_group_id(bridge: RuntimeBridge) -> Optional[str]:
    return bridge.scope.element_id


def get_script_group_tag(bridge: RuntimeBridge) -> str:
    return bridge.scope.name


def get_group_attribute(bridge: RuntimeBridge, name: str, default: Optional[str] = None) -> Optional[str]:
    return bridge.scope.attributes.get(str(name).lower(), default)


def get_volume(bridge: RuntimeBridge) -> int:
    return bridge.get_state().volume


def set_volume_native(bridge: RuntimeBridge, volume: Any) -> None:
    bridge.dispatch(set_volume(int(volume)))


def get_private_string(bridge: RuntimeBridge, section: str, item: str, default: str = "") -> str:
    return bridge.get_state().get_private_string(str(section), str(item), str(default))


def set_private_string_native(bridge: RuntimeBridge, section: str, item: str, value: Any) -> None:
    bridge.dispatch(set_private_string(str(section), str(item), str(value)))


def get_private_int(bridge: RuntimeBridge, section: str, item: str, default: Any = 0) -> int:
    raw = bridge.get_state().get_private_string(str(section), str(item), "")
    try:
        return int(raw)
    except ValueError:
        return int(default)


def set_private_int(bridge: RuntimeBridge, section: str, item: str, value: Any) -> None:
    bridge.dispatch(set_private_string(str(section), str(item), str(int(value))))


def message_box(bridge: RuntimeBridge, message: Any, title: Any = "", *_: Any) -> None:
    text = f"{title}: {message}" if title else str(message)
    logger.info(
        f"[{bridge.source_file or 'script'}] {text}",
        extra={"instance_id": bridge.instance_id},
    )


def get_time_of_day(bridge: RuntimeBridge) -> int:
    """Milliseconds since local midnight."""
    now = datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int((now - midnight).total_seconds() * 1000)


def integer_to_string(bridge: RuntimeBridge, value: Any) -> str:
    return str(int(value))


def string_to_integer(bridge: RuntimeBridge, value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


DEFAULT_NATIVE_FUNCTIONS = MappingProxyType({
    "getScriptGroupId": get_script_group_id,
    "getScriptGroupTag": get_script_group_tag,
    "getGroupAttribute": get_group_attribute,
    "getVolume": get_volume,
    "setVolume": set_volume_native,
    "getPrivateString": get_private_string,
    "setPrivateString": set_private_string_native,
    "getPrivateInt": get_private_int,
    "setPrivateInt": set_private_int,
    "messageBox": message_box,
    "getTimeOfDay": get_time_of_day,
    "integerToString": integer_to_string,
    "stringToInteger": string_to_integer,
})


__all__ = ["DEFAULT_NATIVE_FUNCTIONS"]
