"""Microphone selection that finds devices by name, not index.

Device indices change when hubs are docked, Bluetooth headsets connect or
the machine wakes from sleep, so stored choices are matched by name.

Selection order:
1. Built-in microphone, when preferred and one is present
2. The explicitly selected device (only when not preferring built-in)
3. System default
"""

from dataclasses import dataclass
from typing import List, Optional

from .types import ConfigSnapshot


# Labels that identify a laptop / desktop internal microphone
BUILTIN_MARKERS = (
    "built-in",
    "builtin",
    "internal",
    "macbook",
    "imac",
    "mac mini",
    "mac studio",
)

# Labels that look internal but are external hardware
EXTERNAL_MARKERS = ("bluetooth", "airpods", "usb", "headset", "iphone", "continuity")


@dataclass
class MicDevice:
    """Represents a microphone device."""
    index: int
    name: str
    max_input_channels: int
    default_samplerate: float
    is_default: bool = False


def list_input_devices() -> List[MicDevice]:
    """List all available input (microphone) devices."""
    import sounddevice as sd

    try:
        devices = sd.query_devices()
    except Exception as e:
        print(f"[Audio] Failed to enumerate devices: {e}")
        return []

    if isinstance(devices, dict):
        devices = [devices]

    try:
        default_input_idx = sd.default.device[0]
        if isinstance(default_input_idx, str):
            default_input_idx = int(default_input_idx)
    except Exception:
        default_input_idx = None

    result = []
    for idx, dev in enumerate(devices):
        max_channels = dev.get("max_input_channels", 0)
        if max_channels > 0:
            result.append(MicDevice(
                index=idx,
                name=dev.get("name", f"Device {idx}"),
                max_input_channels=max_channels,
                default_samplerate=dev.get("default_samplerate", 44100),
                is_default=(idx == default_input_idx),
            ))

    return result


def _normalize_name(name: str) -> str:
    return name.lower().strip()


def _extract_clean_name(stored_name: str) -> str:
    """Extract clean device name from stored format like '[4] HyperX SoloCast'."""
    name = stored_name.strip()
    if name.startswith("[") and "] " in name:
        name = name.split("] ", 1)[1]
    return name


def is_builtin_microphone(label: str) -> bool:
    """Whether a device label names the machine's internal microphone."""
    normalized = _normalize_name(label or "")
    if not normalized:
        return False
    if any(marker in normalized for marker in EXTERNAL_MARKERS):
        return False
    return any(marker in normalized for marker in BUILTIN_MARKERS)


def find_device_by_name(
    preferred_name: str,
    devices: Optional[List[MicDevice]] = None,
) -> Optional[MicDevice]:
    """
    Find a device by name, using fuzzy matching.

    Matching priority:
    1. Exact match (case-insensitive)
    2. Preferred name is contained in device name
    3. Device name is contained in preferred name

    Returns None if no match found.
    """
    if not preferred_name:
        return None

    if devices is None:
        devices = list_input_devices()

    if not devices:
        return None

    normalized_preferred = _normalize_name(_extract_clean_name(preferred_name))

    for dev in devices:
        if _normalize_name(dev.name) == normalized_preferred:
            return dev

    for dev in devices:
        if normalized_preferred in _normalize_name(dev.name):
            return dev

    for dev in devices:
        if _normalize_name(dev.name) in normalized_preferred:
            return dev

    return None


def select_input_device(
    config: ConfigSnapshot,
    devices: Optional[List[MicDevice]] = None,
) -> Optional[MicDevice]:
    """
    Decide which microphone to open.

    Args:
        config: Configuration snapshot
        devices: Available inputs (queried when None)

    Returns:
        The device to open, or None for the system default
    """
    if config.prefer_builtin_mic:
        try:
            candidates = devices if devices is not None else list_input_devices()
        except Exception as e:
            print(f"[Audio] Built-in mic detection failed: {e}")
            candidates = []

        for dev in candidates:
            if is_builtin_microphone(dev.name):
                print(f"[Audio] Using built-in microphone: {dev.name}")
                return dev

    selected = (config.selected_mic_device or "").strip()
    if not config.prefer_builtin_mic and selected:
        if devices is None:
            devices = list_input_devices()

        if selected.isdigit():
            for dev in devices:
                if dev.index == int(selected):
                    print(f"[Audio] Using selected microphone: {dev.name}")
                    return dev

        device = find_device_by_name(selected, devices)
        if device:
            print(f"[Audio] Using selected microphone: {device.name}")
            return device
        print(f"[Audio] Selected microphone '{_extract_clean_name(selected)}' not found")

    print("[Audio] Using default microphone")
    return None
