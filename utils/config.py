# Copyright (C) 2026 grodz
#
# This file is part of Matinee.
#
# Matinee is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Configuration management for Matinee."""

import asyncio
import copy
import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# Channel Settings:
#   guild_id               - Server that owns the watched voice channel
#   channel_id             - Voice (or stage) channel to watch and stream into
#   media_path             - Root folder scanned recursively for videos
#
# Monitor Settings:
#   poll_interval          - Seconds between occupancy checks while idle (1-3600)
#   join_timeout           - Seconds to wait for a voice connection (1-120)
#
# Stream Settings (stream.*):
#   width, height          - Output resolution handed to the transport
#   fps                    - Output frame rate
#   bitrate_kbps           - Target bitrate
#   max_bitrate_kbps       - Bitrate ceiling
#   hardware_acceleration  - Use hardware decoding when FFmpeg supports it
#   video_codec            - H264, H265, VP8, VP9 or AV1 (aliases accepted)
#   h26x_preset            - Encoder preset for H264/H265
#   read_at_native_fps     - Throttle input reading to the file's frame rate
#   rtcp_sender_report     - Send RTCP sender reports
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "guild_id": None,
    "channel_id": None,
    "media_path": "./videos",
    "poll_interval": 30,
    "join_timeout": 30,
    "stream": {
        "width": 1280,
        "height": 720,
        "fps": 30,
        "bitrate_kbps": 1000,
        "max_bitrate_kbps": 2500,
        "hardware_acceleration": False,
        "video_codec": "H264",
        "h26x_preset": "ultrafast",
        "read_at_native_fps": False,
        "rtcp_sender_report": True,
    },
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

# Canonical codec name -> accepted spellings (compared case-insensitively)
VIDEO_CODECS = {
    "H264": ("h264", "avc", "h.264"),
    "H265": ("h265", "hevc", "h.265"),
    "VP8": ("vp8",),
    "VP9": ("vp9",),
    "AV1": ("av1",),
}

H26X_PRESETS = (
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow", "placebo",
)


def normalize_video_codec(codec: str) -> str:
    """Normalize a codec name to its canonical spelling.

    Raises:
        ValueError: If the codec is not one the stream transport knows
    """
    wanted = str(codec).strip().lower()
    for canonical, aliases in VIDEO_CODECS.items():
        if wanted == canonical.lower() or wanted in aliases:
            return canonical
    raise ValueError(f"unknown video codec: {codec!r}")


@dataclass(frozen=True)
class StreamOptions:
    """Stream quality options, passed through untouched to the transport."""
    width: int = 1280
    height: int = 720
    fps: int = 30
    bitrate_kbps: int = 1000
    max_bitrate_kbps: int = 2500
    hardware_acceleration: bool = False
    video_codec: str = "H264"
    h26x_preset: str = "ultrafast"
    read_at_native_fps: bool = False
    rtcp_sender_report: bool = True

    @classmethod
    def from_settings(cls, stream: dict) -> "StreamOptions":
        """Build options from a validated stream settings section."""
        return cls(**{k: v for k, v in stream.items() if k in cls.__dataclass_fields__})


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. For nested dicts, merges recursively.
    Unknown keys (not in defaults) are logged as warnings and ignored.
    The defaults dict is never modified.
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file with defaults and error handling.

    If file doesn't exist or is invalid, returns defaults without error.
    Invalid YAML syntax is logged and defaults are used.
    """
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically with optional header comment.

    Uses temp-file-then-rename so a crash mid-write never leaves a truncated
    file. Creates parent directories if they don't exist.
    """
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manages bot configuration from settings.yaml and the environment.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS (built-in defaults)
    2. settings.yaml (user customization)
    3. Environment variables (Docker/deployment override)

    Settings are validated after loading - invalid values are clamped or
    reset to defaults with a warning logged.

    Attributes:
        config_path: Directory containing settings.yaml
        settings: Loaded settings dict (after validation)
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = copy.deepcopy(DEFAULT_SETTINGS)

    async def load(self) -> None:
        """Load settings from YAML, apply env overrides, validate.

        Generates settings.yaml with default values when it is missing.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)

        if not settings_path.exists():
            header = "# Matinee Settings\n# Edit these values to customize behavior\n\n"
            try:
                await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
                logger.debug(f"generated {settings_path.name}")
            except OSError as e:
                logger.warning(f"could not write {settings_path}: {e}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        1. Null-restore: YAML "key:" with no value becomes None. Restores
           defaults for null top-level keys and null nested keys.
        2. Ids: guild_id/channel_id must be positive integers or None.
        3. Bounded integers: clamps poll_interval, join_timeout and the
           numeric stream values (logs a warning if clamped).
        4. Codec and preset: normalized, or reset to defaults.
        """
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = copy.deepcopy(DEFAULT_SETTINGS[key])
        for section in ("stream", "logging"):
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS[section]
            if not isinstance(sect, dict):
                logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = copy.deepcopy(defaults)
                continue
            for key in list(sect):
                if sect[key] is None and key in defaults:
                    sect[key] = defaults[key]

        for key in ("guild_id", "channel_id"):
            value = self.settings.get(key)
            if value is None:
                continue
            try:
                v = int(value)
                if v <= 0:
                    raise ValueError(v)
                self.settings[key] = v
            except (ValueError, TypeError):
                logger.warning(f"{key}={value!r} invalid, ignoring")
                self.settings[key] = None

        self.settings["poll_interval"] = self._clamp(
            self.settings, "poll_interval", 1, 3600, DEFAULT_SETTINGS["poll_interval"]
        )
        self.settings["join_timeout"] = self._clamp(
            self.settings, "join_timeout", 1, 120, DEFAULT_SETTINGS["join_timeout"]
        )

        stream = self.settings["stream"]
        stream_defaults = DEFAULT_SETTINGS["stream"]
        for key, (min_val, max_val) in {
            "width": (16, 7680),
            "height": (16, 4320),
            "fps": (1, 240),
            "bitrate_kbps": (8, 100000),
            "max_bitrate_kbps": (8, 100000),
        }.items():
            stream[key] = self._clamp(stream, key, min_val, max_val, stream_defaults[key], label=f"stream.{key}")

        if stream["max_bitrate_kbps"] < stream["bitrate_kbps"]:
            logger.warning("stream.max_bitrate_kbps below bitrate_kbps, raised to match")
            stream["max_bitrate_kbps"] = stream["bitrate_kbps"]

        for key in ("hardware_acceleration", "read_at_native_fps", "rtcp_sender_report"):
            if not isinstance(stream.get(key), bool):
                logger.warning(f"stream.{key}={stream.get(key)!r} invalid, using default")
                stream[key] = stream_defaults[key]

        try:
            stream["video_codec"] = normalize_video_codec(stream["video_codec"])
        except ValueError:
            logger.warning(f"stream.video_codec={stream['video_codec']!r} unknown, using {stream_defaults['video_codec']}")
            stream["video_codec"] = stream_defaults["video_codec"]

        preset = str(stream.get("h26x_preset", "")).strip().lower()
        if preset not in H26X_PRESETS:
            logger.warning(f"stream.h26x_preset={stream.get('h26x_preset')!r} unknown, using default")
            preset = stream_defaults["h26x_preset"]
        stream["h26x_preset"] = preset

    @staticmethod
    def _clamp(section: dict, key: str, min_val: int, max_val: int, default: int, label: str | None = None) -> int:
        """Clamp an integer setting into range, falling back to default on bad input."""
        label = label or key
        value = section.get(key)
        try:
            v = int(value)
        except (ValueError, TypeError):
            logger.warning(f"{label}={value!r} invalid, using default")
            return default
        clamped = max(min_val, min(max_val, v))
        if clamped != v:
            logger.warning(f"{label}={v} out of range, clamped to {clamped} (valid: {min_val}-{max_val})")
        return clamped

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        Environment variables always win over YAML settings, so Docker users
        can configure the bot without editing files.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter), where
        setting_key uses dot notation for nested keys (e.g. "stream.fps").
        Invalid values are logged as warnings and ignored.
        """
        env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
            "GUILD_ID": ("guild_id", int),
            "CHANNEL_ID": ("channel_id", int),
            "MEDIA_PATH": ("media_path", str),
            "POLL_INTERVAL": ("poll_interval", int),
            "JOIN_TIMEOUT": ("join_timeout", int),
            "LOG_LEVEL": ("logging.level", str),
            "STREAM_WIDTH": ("stream.width", int),
            "STREAM_HEIGHT": ("stream.height", int),
            "STREAM_FPS": ("stream.fps", int),
            "STREAM_BITRATE_KBPS": ("stream.bitrate_kbps", int),
            "STREAM_MAX_BITRATE_KBPS": ("stream.max_bitrate_kbps", int),
            "HARDWARE_ACCELERATION": ("stream.hardware_acceleration", _to_bool),
            "VIDEO_CODEC": ("stream.video_codec", str),
            "H26X_PRESET": ("stream.h26x_preset", str),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    if "." in setting_key:
                        section, leaf = setting_key.split(".", 1)
                        target = self.settings.setdefault(section, {})
                        if not isinstance(target, dict):
                            logger.warning(f"invalid config structure for {setting_key}")
                            continue
                        target[leaf] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        """Get a top-level setting value, or default if not set."""
        return self.settings.get(key, default)

    @property
    def guild_id(self) -> int | None:
        return self.settings.get("guild_id")

    @property
    def channel_id(self) -> int | None:
        return self.settings.get("channel_id")

    @property
    def media_path(self) -> Path:
        return Path(self.settings.get("media_path") or DEFAULT_SETTINGS["media_path"])

    @property
    def poll_interval(self) -> float:
        return float(self.settings.get("poll_interval", DEFAULT_SETTINGS["poll_interval"]))

    @property
    def join_timeout(self) -> float:
        return float(self.settings.get("join_timeout", DEFAULT_SETTINGS["join_timeout"]))

    @property
    def log_level(self) -> str:
        return self.settings.get("logging", {}).get("level", "verbose")

    def stream_options(self) -> StreamOptions:
        """Stream options built from the validated stream section."""
        return StreamOptions.from_settings(self.settings.get("stream", {}))


def validate_configuration(config_manager: ConfigManager) -> None:
    """Validate configuration before the bot starts, exit on failure.

    Checks performed:
    - DISCORD_TOKEN is set and has valid format (3 dot-separated sections)
    - guild_id and channel_id are set
    - Media directory exists (creates if missing)

    On failure: logs all errors and calls sys.exit(1).
    """
    errors = []

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or the environment")
    else:
        parts = token.strip().split(".")
        if len(parts) != 3 or any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN format appears invalid.\n"
                "Token should have three dot-separated sections.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    if not config_manager.guild_id:
        errors.append("GUILD_ID not set - add it to .env or settings.yaml")
    if not config_manager.channel_id:
        errors.append("CHANNEL_ID not set - add it to .env or settings.yaml")

    media_path = config_manager.media_path
    if not media_path.exists():
        try:
            media_path.mkdir(parents=True, exist_ok=True)
            logger.warning(f"created missing media directory: {media_path}")
        except OSError as e:
            errors.append(f"cannot create media directory {media_path}: {e}")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)
