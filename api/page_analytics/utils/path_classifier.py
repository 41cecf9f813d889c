"""
Path classification for page-view collection.

Decides whether a request path is eligible to be recorded: admin pages,
excluded roles, configured path patterns and static assets are rejected.
Pattern syntax follows block-visibility "Pages" rules: one path per line,
``*`` as a wildcard matching any run of characters (including ``/``), and
``<front>`` for the front page.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable
from urllib.parse import urlsplit

from ..settings import (
    ANONYMOUS_ROLE,
    AUTHENTICATED_ROLE,
    MAX_PATH_LENGTH,
    AnalyticsSettings,
    AssetPolicy,
)

logger = logging.getLogger(__name__)

# /admin, /admin/..., and language-prefixed /en/admin, /und/admin/...
ADMIN_PATH_PATTERN = re.compile(r"^(?:/admin(?:/|$)|/[a-z]{2,3}/admin(?:/|$))")

# Any path that ends with a file extension
ANY_EXTENSION_PATTERN = re.compile(r"\.[a-zA-Z0-9]+$")

IMAGE_EXTENSIONS = ("avif", "bmp", "gif", "ico", "jpeg", "jpg", "png", "svg", "webp")
IMAGE_EXTENSION_PATTERN = re.compile(
    r"\.(?:" + "|".join(IMAGE_EXTENSIONS) + r")$", re.IGNORECASE
)

FRONT_PAGE_TOKEN = "<front>"


@dataclass(frozen=True)
class UserContext:
    """Who made the request, as far as exclusion rules care."""
    is_anonymous: bool = True
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def anonymous(cls) -> UserContext:
        return cls()

    @classmethod
    def authenticated(cls, roles: set[str] | frozenset[str] | list[str] | None = None) -> UserContext:
        return cls(is_anonymous=False, roles=frozenset(roles or ()))

    @property
    def effective_roles(self) -> frozenset[str]:
        """Explicit roles plus the implicit anonymous/authenticated role."""
        implicit = ANONYMOUS_ROLE if self.is_anonymous else AUTHENTICATED_ROLE
        return self.roles | {implicit}


def normalize_path(path: str | None) -> str:
    """
    Normalize a request path: leading slash, no trailing slash, root stays "/".

    Query string and fragment are dropped; a full URL is reduced to its path.

    Args:
        path: Raw path or URL (may be empty or None)

    Returns:
        Normalized path string
    """
    return "/" + urlsplit(path or "").path.strip("/")


def clamp_path(path: str) -> str:
    """Truncate a path to the storable length."""
    return path[:MAX_PATH_LENGTH]


@lru_cache(maxsize=64)
def compile_patterns(patterns_text: str) -> re.Pattern[str] | None:
    """
    Compile newline-separated path patterns into a single anchored regex.

    Lines are trimmed and blank lines dropped. Returns None when no pattern
    remains. Matching is case-sensitive.
    """
    parts = []
    for line in patterns_text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line == FRONT_PAGE_TOKEN:
            parts.append(re.escape("/"))
            continue
        parts.append(".*".join(re.escape(chunk) for chunk in line.split("*")))
    if not parts:
        return None
    return re.compile(r"^(?:" + "|".join(parts) + r")$")


def match_path(path: str, patterns_text: str) -> bool:
    """Check whether a path matches any of the newline-separated patterns."""
    regex = compile_patterns(patterns_text)
    return bool(regex and regex.match(path))


def is_asset_path(path: str, policy: AssetPolicy = AssetPolicy.ANY_EXTENSION) -> bool:
    """Check if the path looks like a static asset under the given policy."""
    if policy == AssetPolicy.IMAGES_ONLY:
        return bool(IMAGE_EXTENSION_PATTERN.search(path))
    return bool(ANY_EXTENSION_PATTERN.search(path))


class PathClassifier:
    """
    Evaluates exclusion rules for page-view collection.

    Pure: no I/O, no side effects beyond logging. An optional host-supplied
    ``admin_route_predicate`` may flag additional admin paths; if it raises,
    the path is treated as a regular page.
    """

    def __init__(
        self,
        settings: AnalyticsSettings,
        admin_route_predicate: Callable[[str], bool] | None = None,
    ):
        self.settings = settings
        self.admin_route_predicate = admin_route_predicate
        # Normalized once so the compiled-pattern cache keys stay stable
        self._patterns_text = "\n".join(settings.excluded_path_patterns)

    def is_admin_path(self, path: str) -> bool:
        if ADMIN_PATH_PATTERN.match(path):
            return True
        if self.admin_route_predicate is None:
            return False
        try:
            return bool(self.admin_route_predicate(path))
        except Exception as e:
            # Lenient default: an unresolvable route counts as a regular page
            logger.warning(f"Admin route lookup failed for {path!r}: {e}")
            return False

    def is_user_excluded(self, user: UserContext | None) -> bool:
        if not self.settings.excluded_roles:
            return False
        user = user or UserContext.anonymous()
        return not self.settings.excluded_roles.isdisjoint(user.effective_roles)

    def is_path_excluded(self, path: str) -> bool:
        """
        Check a normalized path against the path-based rules only.

        Used both on the request path and when pruning stored paths that
        match the current rules.
        """
        if self.settings.exclude_admin_paths and self.is_admin_path(path):
            return True
        if self._patterns_text and match_path(path, self._patterns_text):
            return True
        return is_asset_path(path, self.settings.asset_policy)

    def classify(self, raw_path: str | None, user: UserContext | None = None) -> str | None:
        """
        Classify a request path.

        Callers must only pass paths of successful (HTTP 200) responses.

        Returns:
            The normalized, length-clamped path if eligible, None otherwise
        """
        path = normalize_path(raw_path)
        if self.is_path_excluded(path):
            return None
        if self.is_user_excluded(user):
            return None
        # Clamp after matching so patterns see the full path
        return clamp_path(path)
