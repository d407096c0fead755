"""Configuration loading helpers."""

from __future__ import annotations

import re
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

SAFE_REMOTE_PATH_PATTERN = re.compile(r"^[\w./-]+$")
CAMERA_ACTION_PATTERN = re.compile(r"^[\w.]+$")
CAMERA_ACTION_PREFIX = "android.media.action."
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (1.5, 2.0, 4.0, 10.0, 30.0)


@dataclass(slots=True, frozen=True)
class BridgeSettings:
    folder: str | None
    command_timeout: float


@dataclass(slots=True, frozen=True)
class DeviceSettings:
    pin_code: str
    image_folder: str
    camera_action: str
    use_nfc_screen_api: bool
    delete_after_download: bool
    file_selection_pattern: str


@dataclass(slots=True, frozen=True)
class TimingSettings:
    countdown_seconds: int
    countdown_adjustment: float
    camera_open_timeout: float
    inactivity_lock_timeout: float
    lock_gate_timeout: float
    focus_interval: float
    download_interval: float
    download_retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS


@dataclass(slots=True, frozen=True)
class PublishSettings:
    working_folder: Path
    publish_folder: Path
    filename_pattern: str
    files_per_folder: int


@dataclass(slots=True, frozen=True)
class Settings:
    bridge: BridgeSettings
    device: DeviceSettings
    timing: TimingSettings
    publish: PublishSettings
    timeout: float


def load_settings(path: Path) -> Settings:
    """Load configuration from a YAML document."""

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    settings_raw = raw.get("settings") or {}
    bridge_raw = settings_raw.get("bridge") or {}
    device_raw = settings_raw.get("device") or {}
    timing_raw = settings_raw.get("timing") or {}
    publish_raw = settings_raw.get("publish") or {}
    base_dir = path.resolve().parent

    bridge = BridgeSettings(
        folder=_optional_str(bridge_raw, "folder"),
        command_timeout=_positive(
            _require_float({"command_timeout_seconds": 15, **bridge_raw}, "command_timeout_seconds"),
            "command_timeout_seconds",
        ),
    )

    device = DeviceSettings(
        pin_code=_require_pin(device_raw, "pin_code"),
        image_folder=_require_safe_remote_path(device_raw, "image_folder"),
        camera_action=_require_camera_action(
            {"camera_action": "STILL_IMAGE_CAMERA", **device_raw}, "camera_action"
        ),
        use_nfc_screen_api=_require_bool({"use_nfc_screen_api": False, **device_raw}, "use_nfc_screen_api"),
        delete_after_download=_require_bool(
            {"delete_after_download": True, **device_raw}, "delete_after_download"
        ),
        file_selection_pattern=_require_regex(
            {"file_selection_pattern": r"\.jpg$", **device_raw}, "file_selection_pattern"
        ),
    )

    timing_defaults: dict[str, Any] = {
        "countdown_seconds": 3,
        "countdown_adjustment_ms": 200,
        "camera_open_timeout_seconds": 60,
        "inactivity_lock_timeout_seconds": 120,
        "lock_gate_timeout_seconds": 60,
        "focus_interval_seconds": 10,
        "download_interval_seconds": 15,
    }
    timing_source = {**timing_defaults, **timing_raw}
    countdown_seconds = _require_int(timing_source, "countdown_seconds")
    if countdown_seconds < 0:
        raise ValueError("Field 'countdown_seconds' must be >= 0")
    timing = TimingSettings(
        countdown_seconds=countdown_seconds,
        countdown_adjustment=_require_float(timing_source, "countdown_adjustment_ms") / 1000.0,
        camera_open_timeout=_require_float(timing_source, "camera_open_timeout_seconds"),
        inactivity_lock_timeout=_positive(
            _require_float(timing_source, "inactivity_lock_timeout_seconds"),
            "inactivity_lock_timeout_seconds",
        ),
        lock_gate_timeout=_positive(
            _require_float(timing_source, "lock_gate_timeout_seconds"), "lock_gate_timeout_seconds"
        ),
        focus_interval=_positive(
            _require_float(timing_source, "focus_interval_seconds"), "focus_interval_seconds"
        ),
        download_interval=_positive(
            _require_float(timing_source, "download_interval_seconds"), "download_interval_seconds"
        ),
        download_retry_delays=_require_delays(timing_raw, "download_retry_delays"),
    )

    files_per_folder = _require_int({"files_per_folder": 100, **publish_raw}, "files_per_folder")
    if files_per_folder <= 0:
        raise ValueError("Field 'files_per_folder' must be > 0")
    publish = PublishSettings(
        working_folder=_require_folder(publish_raw, "working_folder", base_dir),
        publish_folder=_require_folder(publish_raw, "publish_folder", base_dir),
        filename_pattern=_require_filename_pattern(
            {"filename_pattern": "photo_{:05d}", **publish_raw}, "filename_pattern"
        ),
        files_per_folder=files_per_folder,
    )

    timeout = float(settings_raw.get("request_timeout_seconds", 30))
    if timeout <= 0:
        raise ValueError("settings.request_timeout_seconds must be > 0")

    return Settings(bridge=bridge, device=device, timing=timing, publish=publish, timeout=timeout)


def _positive(value: float, key: str) -> float:
    if value <= 0:
        raise ValueError(f"Field '{key}' must be > 0")
    return value


def _optional_str(source: dict[str, Any], key: str) -> str | None:
    value = source.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Field '{key}' must be a string")
    return value.strip() or None


def _require_str(source: dict[str, Any], key: str) -> str:
    value = source.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Field '{key}' must be a non-empty string")
    return value.strip()


def _require_int(source: dict[str, Any], key: str) -> int:
    value = source.get(key)
    if value is None:
        raise ValueError(f"Field '{key}' must be provided")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Field '{key}' must be an integer") from exc


def _require_float(source: dict[str, Any], key: str) -> float:
    value = source.get(key)
    if value is None:
        raise ValueError(f"Field '{key}' must be provided")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Field '{key}' must be numeric") from exc


def _require_bool(source: dict[str, Any], key: str) -> bool:
    value = source.get(key)
    if not isinstance(value, bool):
        raise ValueError(f"Field '{key}' must be true or false")
    return value


def _require_pin(source: dict[str, Any], key: str) -> str:
    value = source.get(key)
    if value is None:
        return ""
    pin = str(value).strip()
    if pin and not pin.isdigit():
        raise ValueError(f"Field '{key}' must only contain digits")
    return pin


def _require_camera_action(source: dict[str, Any], key: str) -> str:
    value = _require_str(source, key)
    if not CAMERA_ACTION_PATTERN.fullmatch(value):
        raise ValueError(f"Field '{key}' must only contain letters, numbers, dots, or underscores")
    if "." not in value:
        value = f"{CAMERA_ACTION_PREFIX}{value}"
    return value


def _require_regex(source: dict[str, Any], key: str) -> str:
    value = _require_str(source, key)
    try:
        re.compile(value, re.IGNORECASE)
    except re.error as exc:
        raise ValueError(f"Field '{key}' is not a valid regular expression: {exc}") from exc
    return value


def _require_delays(source: dict[str, Any], key: str) -> tuple[float, ...]:
    value = source.get(key)
    if value is None:
        return DEFAULT_RETRY_DELAYS
    if not isinstance(value, list) or not value:
        raise ValueError(f"Field '{key}' must be a non-empty list of seconds")
    delays: list[float] = []
    for item in value:
        try:
            delay = float(item)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Field '{key}' must only contain numbers") from exc
        if delay < 0:
            raise ValueError(f"Field '{key}' must not contain negative delays")
        delays.append(delay)
    return tuple(delays)


def _require_folder(source: dict[str, Any], key: str, base_dir: Path) -> Path:
    folder = Path(_require_str(source, key)).expanduser()
    if not folder.is_absolute():
        folder = base_dir / folder
    return folder


def _require_filename_pattern(source: dict[str, Any], key: str) -> str:
    value = _require_str(source, key)
    try:
        fields = [name for _, name, _, _ in string.Formatter().parse(value) if name is not None]
        rendered = value.format(7)
    except (ValueError, IndexError, KeyError) as exc:
        raise ValueError(f"Field '{key}' must contain a single numeric field such as '{{:05d}}'") from exc
    if len(fields) != 1 or "/" in rendered or "\\" in rendered:
        raise ValueError(f"Field '{key}' must contain a single numeric field such as '{{:05d}}'")
    return value


def _require_safe_remote_path(source: dict[str, Any], key: str) -> str:
    value = _require_str(source, key)
    if not SAFE_REMOTE_PATH_PATTERN.fullmatch(value):
        raise ValueError(
            (
                f"Field '{key}' must only contain letters, numbers, dots, slashes, "
                "underscores, or hyphens"
            )
        )
    if ".." in value.split("/"):
        raise ValueError(f"Field '{key}' must not contain parent directory segments")
    if value.startswith("-"):
        raise ValueError(f"Field '{key}' cannot start with '-'")
    return value
