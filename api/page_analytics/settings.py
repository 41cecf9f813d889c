"""Centralized environment-driven settings.

Keep this module lightweight: stdlib only, no app imports, to avoid circular deps.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _list_env(name: str, separator: str = ",") -> list[str]:
    raw = os.getenv(name) or ""
    return [item.strip() for item in raw.split(separator) if item.strip()]


class AssetPolicy(str, Enum):
    """Which request paths count as static assets."""
    ANY_EXTENSION = "any_extension"  # any path ending in .<alnum>
    IMAGES_ONLY = "images_only"  # legacy: well-known image extensions only


# Role every authenticated user carries; anonymous visitors carry ANONYMOUS_ROLE.
AUTHENTICATED_ROLE = "authenticated"
ANONYMOUS_ROLE = "anonymous"

# Report period choices (days). 0 means "max": the retention window.
ALLOWED_PERIODS = (0, 7, 30, 90)
DEFAULT_PERIOD = 7

# Report page sizes ("top N").
ALLOWED_TOP = (30, 50, 100, 300)
DEFAULT_TOP = 30

# Stored paths are clamped to this many characters.
MAX_PATH_LENGTH = 255

DEFAULT_SAMPLING_RATE = 3
DEFAULT_RETENTION_DAYS = 365


@dataclass(frozen=True)
class AnalyticsSettings:
    """Read-only analytics configuration.

    The legacy ``exclude_authenticated_users`` flag does not survive loading:
    it is folded into ``excluded_roles`` as the ``authenticated`` role.
    """

    sampling_rate: int = DEFAULT_SAMPLING_RATE
    retention_days: int = DEFAULT_RETENTION_DAYS
    exclude_admin_paths: bool = True
    excluded_roles: frozenset[str] = field(default_factory=frozenset)
    excluded_paths: str = ""
    asset_policy: AssetPolicy = AssetPolicy.ANY_EXTENSION
    timezone: str = "UTC"
    batch_size: int = 100
    lease_seconds: int = 60
    cron_time_limit: int = 15

    @property
    def effective_sampling_rate(self) -> int:
        return max(1, self.sampling_rate)

    @property
    def effective_retention_days(self) -> int:
        return self.retention_days if self.retention_days >= 1 else DEFAULT_RETENTION_DAYS

    @property
    def excluded_path_patterns(self) -> list[str]:
        """Non-empty, trimmed exclusion patterns (one per line)."""
        return [line.strip() for line in self.excluded_paths.splitlines() if line.strip()]


def build_settings(
    *,
    exclude_authenticated_users: bool = False,
    excluded_roles: list[str] | set[str] | frozenset[str] | None = None,
    **kwargs,
) -> AnalyticsSettings:
    """Build settings, translating the legacy authenticated-user flag into a role."""
    roles = {role for role in (excluded_roles or ()) if isinstance(role, str) and role}
    if exclude_authenticated_users:
        roles.add(AUTHENTICATED_ROLE)
    return AnalyticsSettings(excluded_roles=frozenset(roles), **kwargs)


def load_settings() -> AnalyticsSettings:
    """Load analytics settings from the environment."""
    raw_policy = os.getenv("PAGE_ANALYTICS_ASSET_POLICY", AssetPolicy.ANY_EXTENSION.value)
    try:
        asset_policy = AssetPolicy(raw_policy.strip().lower())
    except ValueError:
        asset_policy = AssetPolicy.ANY_EXTENSION

    # Env files usually carry "\n" literally for multi-line values.
    excluded_paths = (os.getenv("PAGE_ANALYTICS_EXCLUDED_PATHS") or "").replace("\\n", "\n")

    return build_settings(
        exclude_authenticated_users=_bool_env("PAGE_ANALYTICS_EXCLUDE_AUTHENTICATED_USERS", False),
        excluded_roles=_list_env("PAGE_ANALYTICS_EXCLUDED_ROLES"),
        sampling_rate=_int_env("PAGE_ANALYTICS_SAMPLING_RATE", DEFAULT_SAMPLING_RATE),
        retention_days=_int_env("PAGE_ANALYTICS_RETENTION_DAYS", DEFAULT_RETENTION_DAYS),
        exclude_admin_paths=_bool_env("PAGE_ANALYTICS_EXCLUDE_ADMIN_PATHS", True),
        excluded_paths=excluded_paths,
        asset_policy=asset_policy,
        timezone=os.getenv("PAGE_ANALYTICS_TIMEZONE", "UTC"),
        batch_size=max(1, _int_env("PAGE_ANALYTICS_BATCH_SIZE", 100)),
        lease_seconds=max(1, _int_env("PAGE_ANALYTICS_LEASE_SECONDS", 60)),
        cron_time_limit=max(1, _int_env("PAGE_ANALYTICS_CRON_TIME_LIMIT", 15)),
    )
