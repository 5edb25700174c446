"""
Resolves the latest scheme, dictionary and model assets from the GitHub or
CNB release listings.
"""

import asyncio
import fnmatch
import logging
import math
import re
from typing import Any

import aiohttp

from wanxiang_cli.exceptions import NetworkError, NoRemoteAssetError, UpdaterError
from wanxiang_cli.models.components import ComponentKind, RemoteAsset
from wanxiang_cli.models.config import UpdaterConfig

log = logging.getLogger(__name__)

OWNER = "amzxyz"
GITHUB_REPO = "rime_wanxiang"
CNB_REPO = "rime-wanxiang"
DICT_TAG = "dict-nightly"
MODEL_REPO = "RIME-LMDG"
MODEL_TAG = "LTS"
MODEL_FILE = "wanxiang-lts-zh-hans.gram"
CNB_SCHEME_TITLE = "万象拼音输入方案"
CNB_DICT_TITLE = "词库"

GITHUB_API = "https://api.github.com"
CNB_BASE = "https://cnb.cool"

_DIGEST_SHA256 = re.compile(r"sha256\s*:\s*([0-9a-fA-F]{32,})", re.IGNORECASE)


def sha256_from_digest(digest: str | None) -> str | None:
    """Extracts the hex hash from a GitHub asset digest such as 'sha256:abc...'."""
    if not digest:
        return None
    match = _DIGEST_SHA256.search(str(digest))
    return match.group(1) if match else None


def glob_matches(name: str, pattern: str) -> bool:
    return re.match(fnmatch.translate(pattern), name, re.IGNORECASE) is not None


def pick_size(asset: dict[str, Any]) -> int | None:
    for key in ("size", "fileSize", "contentLength", "bytes"):
        value = asset.get(key)
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number > 0:
            return number
    return None


def _release_list(payload: Any) -> list[dict]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get("releases"), list):
            return payload["releases"]
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("releases"), list):
            return data["releases"]
    return []


class ReleaseClient:
    """
    Looks up release assets. Listings are cached through the caller-owned
    :class:`ReleaseCache`, if one is given.
    """

    def __init__(self, session: aiohttp.ClientSession, config: UpdaterConfig, cache=None):
        self._session = session
        self._config = config
        self._cache = cache

    async def _get_json(
        self, url: str, headers: dict[str, str], refresh: bool = False
    ) -> tuple[Any, dict[str, str]]:
        """Fetches a JSON document, returning it with the response headers."""
        if self._cache is not None:
            if refresh:
                self._cache.invalidate(url)
            else:
                cached = self._cache.get(url)
                if cached is not None:
                    log.debug(f"Release listing served from cache: {url}")
                    return cached["json"], cached["headers"]

        try:
            async with self._session.get(url, headers=headers) as response:
                if response.status >= 400:
                    raise NetworkError(
                        f"Release request failed: {response.status} {response.reason} ({url})"
                    )
                payload = await response.json(content_type=None)
                kept_headers = {
                    k: v for k, v in response.headers.items() if k.lower().startswith("x-cnb-")
                }
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise NetworkError(f"Release request failed: {e} ({url})") from e

        if self._cache is not None:
            self._cache.set(url, {"json": payload, "headers": kept_headers})
        return payload, kept_headers

    def _github_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._config.github_token:
            headers["Authorization"] = f"Bearer {self._config.github_token}"
        return headers

    @staticmethod
    def _cnb_headers() -> dict[str, str]:
        return {
            "Accept": "application/vnd.cnb.web+json",
            "Accept-Language": "zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.7",
        }

    async def fetch_github(
        self,
        repo: str,
        tag: str | None = None,
        exact: str | None = None,
        pattern: str | None = None,
        refresh: bool = False,
    ) -> RemoteAsset | None:
        """Returns the first asset matching ``exact`` or ``pattern``, newest release first."""
        if tag:
            url = f"{GITHUB_API}/repos/{OWNER}/{repo}/releases/tags/{tag}"
        else:
            url = f"{GITHUB_API}/repos/{OWNER}/{repo}/releases"
        payload, _ = await self._get_json(url, self._github_headers(), refresh)
        releases = payload if isinstance(payload, list) else [payload]

        for release in releases:
            if not isinstance(release, dict):
                continue
            for asset in release.get("assets") or []:
                name = asset.get("name")
                if not name:
                    continue
                if exact and name != exact:
                    continue
                if pattern and not glob_matches(name, pattern):
                    continue
                return RemoteAsset(
                    name=name,
                    url=asset.get("browser_download_url", ""),
                    tag=release.get("tag_name"),
                    body=release.get("body"),
                    updated_at=asset.get("updated_at"),
                    remote_id=sha256_from_digest(asset.get("digest")),
                    size=pick_size(asset),
                )
        return None

    async def fetch_cnb(
        self,
        exact: str | None = None,
        pattern: str | None = None,
        need_last_page: bool = False,
        title_keywords: tuple[str, ...] = (),
        refresh: bool = False,
    ) -> RemoteAsset | None:
        """
        Searches the CNB release listing. Releases whose title contains one of
        ``title_keywords`` are searched first; ``need_last_page`` also pulls the
        oldest release, where long-term assets live.
        """
        base_url = f"{CNB_BASE}/{OWNER}/{CNB_REPO}/-/releases"
        payload, headers = await self._get_json(base_url, self._cnb_headers(), refresh)
        releases = list(_release_list(payload))

        if need_last_page:
            lowered = {k.lower(): v for k, v in headers.items()}
            try:
                total = max(0, int(lowered.get("x-cnb-total", "")))
                page_size = max(1, int(lowered.get("x-cnb-page-size", "")))
            except ValueError:
                total, page_size = 0, 1
            last_page = max(1, math.ceil(total / page_size))
            if last_page > 1:
                last_payload, _ = await self._get_json(
                    f"{base_url}?page={last_page}", self._cnb_headers(), refresh
                )
                last_list = _release_list(last_payload)
                if last_list:
                    releases.append(last_list[-1])

        keywords = [k.lower() for k in title_keywords if k]
        if keywords:
            preferred = [
                r
                for r in releases
                if any(k in str(r.get("title") or r.get("name") or "").lower() for k in keywords)
            ]
            if preferred:
                releases = preferred

        for release in releases:
            if not isinstance(release, dict):
                continue
            for asset in release.get("assets") or []:
                name = asset.get("name")
                if not name:
                    continue
                if exact and name != exact:
                    continue
                if pattern and not glob_matches(name, pattern):
                    continue
                url = asset.get("browser_download_url") or (
                    f"{CNB_BASE}{asset['path']}" if asset.get("path") else None
                )
                if not url:
                    continue
                tag_ref = str(
                    release.get("tag_ref") or release.get("tag_name") or release.get("tagName") or ""
                )
                return RemoteAsset(
                    name=name,
                    url=url,
                    tag=tag_ref.split("/")[-1] or None,
                    body=release.get("body"),
                    updated_at=asset.get("updated_at") or asset.get("updatedAt"),
                    remote_id=str(asset["id"]) if asset.get("id") is not None else None,
                    size=pick_size(asset),
                )
        return None

    def scheme_pattern(self) -> str:
        if self._config.scheme_edition == "base":
            return "*base.zip"
        return f"*{self._config.pro_scheme_key}*fuzhu.zip"

    def dict_pattern(self) -> str:
        if self._config.scheme_edition == "base":
            return "*base*dicts*.zip"
        return f"*{self._config.pro_scheme_key}*dicts.zip"

    async def find_asset(self, kind: ComponentKind, refresh: bool = False) -> RemoteAsset | None:
        github = self._config.release_source == "github"
        if kind is ComponentKind.SCHEME:
            if github:
                return await self.fetch_github(
                    GITHUB_REPO, pattern=self.scheme_pattern(), refresh=refresh
                )
            return await self.fetch_cnb(
                pattern=self.scheme_pattern(),
                title_keywords=(CNB_SCHEME_TITLE,),
                refresh=refresh,
            )
        if kind is ComponentKind.DICT:
            if github:
                return await self.fetch_github(
                    GITHUB_REPO, tag=DICT_TAG, pattern=self.dict_pattern(), refresh=refresh
                )
            return await self.fetch_cnb(
                pattern=self.dict_pattern(),
                title_keywords=(CNB_DICT_TITLE,),
                refresh=refresh,
            )
        if github:
            return await self.fetch_github(
                MODEL_REPO, tag=MODEL_TAG, exact=MODEL_FILE, refresh=refresh
            )
        return await self.fetch_cnb(exact=MODEL_FILE, need_last_page=True, refresh=refresh)

    async def latest_asset(self, kind: ComponentKind, refresh: bool = False) -> RemoteAsset:
        """
        Resolves the asset for ``kind``.

        Raises:
            NoRemoteAssetError: The release source lists no matching asset.
            NetworkError: The release source could not be reached.
        """
        asset = await self.find_asset(kind, refresh=refresh)
        if asset is None or not asset.url:
            raise NoRemoteAssetError(
                f"No {kind.value} asset found on {self._config.release_source}"
            )
        log.debug(f"Resolved {kind.value} asset '{asset.name}' ({asset.tag or '-'})")
        return asset

    async def check_all(self, refresh: bool = False) -> dict[ComponentKind, RemoteAsset | None]:
        """Resolves every kind; a kind that fails to resolve maps to None."""
        results: dict[ComponentKind, RemoteAsset | None] = {}
        for kind in ComponentKind:
            try:
                results[kind] = await self.latest_asset(kind, refresh=refresh)
            except UpdaterError as e:
                log.warning(f"Could not resolve the latest {kind.value}: {e}")
                results[kind] = None
        return results
