# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Configuration options for ``MetadataManager`` class."""

import re
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any, Dict, Union

from regtuf.exceptions import ConfigurationError

_DURATION = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: Union[timedelta, int, float, str]) -> timedelta:
    """Return ``value`` as a timedelta.

    Accepts a timedelta, a number of seconds, or a string such as "45s",
    "30m", "24h" or "90d".

    Raises:
        ConfigurationError: ``value`` is not a duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    if isinstance(value, str):
        match = _DURATION.match(value)
        if match:
            amount, unit = match.groups()
            return timedelta(**{_UNITS[unit]: int(amount)})

    raise ConfigurationError(f"Invalid duration {value!r}")


@dataclass
class RepositoryConfig:
    """Used to store ``MetadataManager`` configuration.

    Args:
        repo_path: Directory of the metadata files and target content.
        keys_path: Directory of the private key files.
        root_threshold: Number of root keys, all of which must sign root.
        targets_threshold: Number of targets keys, all of which must sign
            targets.
        root_expiry: Validity window of a new root version.
        targets_expiry: Validity window of a new targets version.
        snapshot_expiry: Validity window of a new snapshot version.
        timestamp_expiry: Validity window of a new timestamp version.
        consistent_snapshot: Value of ``consistent_snapshot`` in root.
        timestamp_refresh_margin: ``auto_refresh()`` renews timestamp once it
            expires within this margin.
        snapshot_refresh_margin: ``auto_refresh()`` renews snapshot once it
            expires within this margin.
    """

    repo_path: str = "/app/data/tuf/repository"
    keys_path: str = "/app/data/tuf/keys"
    root_threshold: int = 1
    targets_threshold: int = 1
    root_expiry: timedelta = field(default=timedelta(days=365))
    targets_expiry: timedelta = field(default=timedelta(days=90))
    snapshot_expiry: timedelta = field(default=timedelta(days=7))
    timestamp_expiry: timedelta = field(default=timedelta(days=1))
    consistent_snapshot: bool = True
    timestamp_refresh_margin: timedelta = field(default=timedelta(hours=1))
    snapshot_refresh_margin: timedelta = field(default=timedelta(hours=24))

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "RepositoryConfig":
        """Create a config from a dict, e.g. a parsed configuration file.

        Raises:
            ConfigurationError: Unknown option or invalid value.
        """
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for name, value in config_dict.items():
            if name not in known:
                raise ConfigurationError(f"Unknown option {name}")
            if known[name].type is timedelta:
                value = parse_duration(value)
            kwargs[name] = value

        config = cls(**kwargs)
        config.validate()
        return config

    def expiry_for(self, role: str) -> timedelta:
        """Validity window of ``role``. Delegated roles use targets'."""
        return {
            "root": self.root_expiry,
            "snapshot": self.snapshot_expiry,
            "timestamp": self.timestamp_expiry,
        }.get(role, self.targets_expiry)

    def threshold_for(self, role: str) -> int:
        return {
            "root": self.root_threshold,
            "targets": self.targets_threshold,
        }.get(role, 1)

    def validate(self) -> None:
        """Raise ``ConfigurationError`` for unusable values."""
        if not self.repo_path or not self.keys_path:
            raise ConfigurationError("repo_path and keys_path must be set")
        for name in ("root_threshold", "targets_threshold"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer")
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        for name in (
            "root_expiry",
            "targets_expiry",
            "snapshot_expiry",
            "timestamp_expiry",
        ):
            if getattr(self, name) <= timedelta(0):
                raise ConfigurationError(f"{name} must be positive")
        for name in ("timestamp_refresh_margin", "snapshot_refresh_margin"):
            if getattr(self, name) < timedelta(0):
                raise ConfigurationError(f"{name} must not be negative")
        # a margin as long as the expiry window renews on every call
        for tier in ("timestamp", "snapshot"):
            margin = getattr(self, f"{tier}_refresh_margin")
            if margin >= getattr(self, f"{tier}_expiry"):
                raise ConfigurationError(
                    f"{tier}_refresh_margin must be shorter than {tier}_expiry"
                )
