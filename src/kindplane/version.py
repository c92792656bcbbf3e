"""Release update checking.

Looks up the latest kindplane release on GitHub and compares it with the
running version. Every failure path degrades to "no update available"; the
check must never break a command.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx

from .shared import KINDPLANE_DIR, get_logger

logger = get_logger(__name__)

GITHUB_RELEASES_URL = "https://api.github.com/repos/kanzifucius/kindplane/releases/latest"
CHECK_TIMEOUT = 2.0
CACHE_FILE = KINDPLANE_DIR / "version-cache.json"
CACHE_DURATION = timedelta(hours=24)

_SEMVER_RE = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$")


@dataclass
class CheckResult:
    """Result of a version check."""

    current_version: str
    latest_version: str
    update_available: bool = False
    release_url: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "update_available": self.update_available,
            "release_url": self.release_url,
        }


def normalise_version(version: str) -> str:
    """Strip whitespace and a leading ``v``; empty and ``none`` become ``dev``."""
    version = (version or "").strip()
    if version in ("", "dev", "none"):
        return "dev"
    return version[1:] if version.startswith("v") else version


def _parse(version: str) -> tuple[tuple[int, int, int], tuple[str, ...] | None] | None:
    match = _SEMVER_RE.match(version)
    if not match:
        return None
    major, minor, patch, pre = match.groups()
    core = (int(major), int(minor or 0), int(patch or 0))
    return core, tuple(pre.split(".")) if pre else None


def _prerelease_key(pre: tuple[str, ...]) -> tuple[tuple[int, int | str], ...]:
    # Numeric identifiers sort before alphanumeric ones
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in pre)


def is_newer_version(current: str, latest: str) -> bool:
    """Check whether ``latest`` is a newer release than ``current``.

    Development builds and unparsable versions never report an update.
    """
    current = normalise_version(current)
    latest = normalise_version(latest)
    if current == "dev" or latest == "dev" or current.endswith(".dev0"):
        return False

    parsed_current = _parse(current)
    parsed_latest = _parse(latest)
    if parsed_current is None or parsed_latest is None:
        logger.debug("version_unparsable", current=current, latest=latest)
        return False

    current_core, current_pre = parsed_current
    latest_core, latest_pre = parsed_latest
    if latest_core != current_core:
        return latest_core > current_core
    # Same core: a release beats any prerelease of it
    if current_pre is None:
        return False
    if latest_pre is None:
        return True
    return _prerelease_key(latest_pre) > _prerelease_key(current_pre)


def load_cache(path: Path = CACHE_FILE) -> CheckResult | None:
    """Load a cached check result if it is younger than a day."""
    try:
        data = json.loads(path.read_text())
        last_check = datetime.fromisoformat(data["last_check"])
    except (OSError, ValueError, KeyError, TypeError):
        return None
    if datetime.now(timezone.utc) - last_check > CACHE_DURATION:
        return None
    return CheckResult(
        current_version="",
        latest_version=data.get("latest_version", ""),
        release_url=data.get("release_url", ""),
    )


def save_cache(result: CheckResult, path: Path = CACHE_FILE) -> None:
    data = {
        "last_check": datetime.now(timezone.utc).isoformat(),
        "latest_version": result.latest_version,
        "release_url": result.release_url,
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
    except OSError as e:
        logger.debug("version_cache_write_failed", path=str(path), error=str(e))


async def fetch_latest_release(url: str = GITHUB_RELEASES_URL, timeout: float = CHECK_TIMEOUT) -> tuple[str, str]:
    """Fetch the latest release tag and page URL.

    Raises:
        httpx.HTTPError: The request failed or returned a non-200 status.
        ValueError: The response body is not a release.
    """
    headers = {
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": "kindplane-version-check",
    }
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(url, headers=headers)
        response.raise_for_status()
        data = response.json()
    tag = data.get("tag_name") if isinstance(data, dict) else None
    if not tag:
        raise ValueError("release response has no tag_name")
    return tag, data.get("html_url", "")


async def check_for_update(
    current: str,
    url: str = GITHUB_RELEASES_URL,
    timeout: float = CHECK_TIMEOUT,
    use_cache: bool = True,
    cache_path: Path = CACHE_FILE,
) -> CheckResult | None:
    """Check GitHub for a newer release.

    Args:
        current: Running version
        url: Releases API endpoint
        timeout: Request timeout in seconds
        use_cache: Serve a fresh cached answer instead of calling the API
        cache_path: Location of the cache file

    Returns:
        CheckResult, or None when the latest release could not be determined
    """
    cached = load_cache(cache_path) if use_cache else None
    if cached is not None:
        latest, release_url = cached.latest_version, cached.release_url
    else:
        try:
            latest, release_url = await fetch_latest_release(url, timeout)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("version_check_failed", error=str(e))
            return None

    result = CheckResult(
        current_version=current,
        latest_version=latest,
        update_available=is_newer_version(current, latest),
        release_url=release_url,
    )
    if cached is None and use_cache:
        save_cache(result, cache_path)
    return result
