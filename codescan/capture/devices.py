"""
capture/devices.py
------------------
Device auto-selection policy and human-readable camera names.
"""

from __future__ import annotations

from typing import Optional, Sequence

from codescan.core.models import DeviceInfo

_REAR_HINTS = ("back", "rear", "environment")


def is_rear_facing(device: DeviceInfo) -> bool:
    label = device.label.lower()
    return any(hint in label for hint in _REAR_HINTS)


def choose_device(devices: Sequence[DeviceInfo]) -> Optional[DeviceInfo]:
    """Pick the device to scan with.

    A rear/environment-facing camera wins. Otherwise the last enumerated
    device is used: on desktops the built-in webcam is usually listed first
    and an attached document/USB camera last.
    """
    if not devices:
        return None
    for device in devices:
        if is_rear_facing(device):
            return device
    return devices[-1]


def display_name(device: DeviceInfo, index: int) -> str:
    """``Camera <n> (<kind>)`` where kind is guessed from the label."""
    label = device.label.lower()
    number = index + 1
    if "back" in label or "rear" in label or "environment" in label:
        return f"Camera {number} (Rear)"
    if "front" in label or "user" in label:
        return f"Camera {number} (Front)"
    if "ultra" in label or "wide" in label:
        return f"Camera {number} (Ultra Wide)"
    if "telephoto" in label or "zoom" in label:
        return f"Camera {number} (Telephoto)"
    if "macro" in label:
        return f"Camera {number} (Macro)"
    return f"Camera {number}"
