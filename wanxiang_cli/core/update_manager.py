"""
The per-component update flow: resolve the install root, decide whether a
download is needed, download, verify, install, reconcile and record.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from wanxiang_cli.api.releases import MODEL_FILE
from wanxiang_cli.exceptions import FileIntegrityError, UpdaterError
from wanxiang_cli.models.components import (
    ComponentKind,
    ComponentVersionRecord,
    InstallTarget,
    RemoteAsset,
    UpdateResult,
)
from wanxiang_cli.models.config import UpdaterConfig
from wanxiang_cli.models.progress import DownloadEvent, DownloadProgress
from wanxiang_cli.utils.formatting import format_size
from wanxiang_cli.utils.path import temp_download_path

log = logging.getLogger(__name__)

StageCallback = Callable[[str], None]
ProgressCallback = Callable[[DownloadProgress], None]

ARCHIVE_SIZE_TOLERANCE = 0.05
DICT_SUBDIR = "dicts"
DICT_MERGE_PATTERN = "dict"
UPDATE_ORDER = (ComponentKind.SCHEME, ComponentKind.DICT, ComponentKind.MODEL)


@dataclass
class UpdateCheck:
    """The remote asset for one kind compared against what is installed."""

    kind: ComponentKind
    asset: RemoteAsset | None
    installed: ComponentVersionRecord | None
    needs_update: bool
    error: str | None = None


class UpdateManager:
    """Runs component updates against a single install root."""

    def __init__(
        self,
        config: UpdaterConfig,
        resolver,
        release_client,
        orchestrator,
        installer,
        tracker,
        metadata,
        fs,
        content_length_probe: Callable[[str], Awaitable[int | None]] | None = None,
        temp_dir: Path | None = None,
    ):
        self.config = config
        self.resolver = resolver
        self.release_client = release_client
        self.orchestrator = orchestrator
        self.installer = installer
        self.tracker = tracker
        self.metadata = metadata
        self.fs = fs
        self.content_length_probe = content_length_probe
        self.temp_dir = temp_dir

    async def resolve_root(self) -> Path:
        return await self.resolver.resolve(self.config.install_root, self.config.bookmark_name)

    def _target(self, root: Path, kind: ComponentKind) -> InstallTarget:
        if kind is ComponentKind.DICT:
            return InstallTarget(
                root=root,
                kind=kind,
                exclusions=self.config.exclusions,
                overwrite_policy=self.config.overwrite_policy,
                subdir=DICT_SUBDIR,
                merge_pattern=DICT_MERGE_PATTERN,
            )
        return InstallTarget(
            root=root,
            kind=kind,
            exclusions=self.config.exclusions,
            overwrite_policy=self.config.overwrite_policy,
        )

    async def check_all(self, refresh: bool = False) -> dict[ComponentKind, UpdateCheck]:
        """Compares the latest remote asset of every kind with the installed record."""
        root = await self.resolve_root()
        bookmark = self.config.bookmark_name
        results: dict[ComponentKind, UpdateCheck] = {}
        for kind in UPDATE_ORDER:
            installed = await self.metadata.get_record(root, kind, bookmark)
            try:
                asset = await self.release_client.latest_asset(kind, refresh=refresh)
            except UpdaterError as e:
                log.warning(f"Could not resolve the latest {kind.value}: {e}")
                results[kind] = UpdateCheck(kind, None, installed, False, error=str(e))
                continue
            needs_update = await self.metadata.should_download(
                root, kind, asset.remote_mark(kind), bookmark
            )
            results[kind] = UpdateCheck(kind, asset, installed, needs_update)
        return results

    async def update_component(
        self,
        kind: ComponentKind,
        on_stage: StageCallback | None = None,
        on_progress: ProgressCallback | None = None,
        force: bool = False,
        cancel_event: asyncio.Event | None = None,
        asset: RemoteAsset | None = None,
    ) -> UpdateResult:
        """
        Brings one component up to date.

        The version record is written only after the install and the
        reconciliation of the previous manifest both succeeded, so a failed
        update is always retried from a clean state.

        Raises:
            AccessDeniedError: The install root is unresolved or not writable.
            NoRemoteAssetError: No matching asset is published.
            NetworkError, TransferTimeoutError, DownloadCancelledError: The download failed.
            FileIntegrityError: The downloaded size does not match the release.
            InvalidArchiveError: The archive could not be installed.
        """

        def stage(text: str) -> None:
            log.debug(f"[{kind.value}] {text}")
            if on_stage:
                on_stage(text)

        stage("Checking install folder...")
        root = await self.resolve_root()
        bookmark = self.config.bookmark_name

        if asset is None:
            stage("Looking up the latest release...")
            asset = await self.release_client.latest_asset(kind)
        mark = asset.remote_mark(kind)

        if not force and not await self.metadata.should_download(root, kind, mark, bookmark):
            stage("Already up to date")
            log.info(f"{kind.value.capitalize()} is up to date ({asset.display_tag})")
            return UpdateResult(kind, False, mark, asset.display_tag, root)

        expected_size = asset.size
        if expected_size is None and self.content_length_probe is not None:
            expected_size = await self.content_length_probe(asset.url)

        def on_event(event: DownloadEvent) -> None:
            if event.type == "refetching":
                stage(f"Download left no file, fetching {asset.name} again...")
            else:
                stage(f"Download stalled, retrying ({event.attempt}/{event.max_attempts})...")

        temp_path = temp_download_path(asset.name, self.temp_dir)
        try:
            stage(f"Downloading {asset.name}...")
            await self.orchestrator.download(
                asset.url,
                temp_path,
                on_progress=on_progress,
                on_event=on_event,
                cancel_event=cancel_event,
                expected_size=expected_size,
            )

            stage("Verifying download...")
            await self._verify_size(kind, temp_path, asset.size)

            if kind is ComponentKind.MODEL:
                stage("Writing model file...")
                written = await self._install_model(temp_path, root)
                kept: list[str] = []
                target_root = root
            else:
                stage("Extracting archive...")
                target = self._target(root, kind)
                report = await self.installer.install(temp_path, target)
                written, kept = report.written, report.kept
                target_root = target.root
        finally:
            await self.fs.remove_quietly(temp_path)

        stage("Cleaning up old files...")
        removed = await self.tracker.reconcile(
            target_root, kind, written, self.config.exclusions, retained=kept
        )

        await self.metadata.record_applied(
            root,
            kind,
            mark,
            asset.display_tag,
            asset_name=asset.name,
            release_source=self.config.release_source,
            bookmark_name=bookmark,
        )
        stage("Done")
        log.info(
            f"[green]Updated {kind.value} to {asset.display_tag}[/green] "
            f"({len(written)} written, {removed} removed)"
        )
        return UpdateResult(kind, True, mark, asset.display_tag, root, len(written), removed)

    async def _verify_size(self, kind: ComponentKind, path: Path, declared: int | None) -> None:
        if not await self.fs.exists(path):
            raise FileIntegrityError(f"Downloaded file is missing: {path.name}")
        actual = await self.fs.file_size(path)

        if kind is ComponentKind.MODEL:
            if declared is not None and actual != declared:
                raise FileIntegrityError(
                    f"Model size mismatch: expected {format_size(declared)}, "
                    f"got {format_size(actual)}"
                )
            if actual <= 0:
                raise FileIntegrityError("Downloaded model file is empty")
            return

        if declared:
            if abs(actual - declared) > declared * ARCHIVE_SIZE_TOLERANCE:
                raise FileIntegrityError(
                    f"Archive size mismatch: expected about {format_size(declared)}, "
                    f"got {format_size(actual)}"
                )
        elif actual <= 0:
            raise FileIntegrityError("Downloaded archive is empty")

    async def _install_model(self, temp_path: Path, root: Path) -> list[str]:
        destination = root / MODEL_FILE
        exclusions = self.config.exclusions
        rule = exclusions.match(destination, root)
        if rule is not None:
            log.info(f"Model file left untouched (excluded by '{rule}')")
            return []
        if await self.fs.is_dir(destination):
            raise FileIntegrityError(f"A folder is in the way of the model file: {destination}")
        await self.fs.replace(temp_path, destination)
        return [destination.as_posix()]

    async def auto_update_all(
        self,
        on_stage: StageCallback | None = None,
        on_progress: ProgressCallback | None = None,
        force: bool = False,
        cancel_event: asyncio.Event | None = None,
        prechecked: dict[ComponentKind, UpdateCheck] | None = None,
    ) -> list[UpdateResult]:
        """
        Updates every kind that needs it, scheme first and model last. Stage
        text is prefixed with the kind. A failure stops the run.

        Returns:
            One result per kind that was actually updated.
        """
        if on_stage:
            on_stage("Checking for updates...")
        checks = prechecked if prechecked is not None else await self.check_all()

        updated: list[UpdateResult] = []
        for kind in UPDATE_ORDER:
            check = checks.get(kind)
            if check is None or check.asset is None:
                continue
            if not (force or check.needs_update):
                continue

            def kind_stage(text: str, _kind: ComponentKind = kind) -> None:
                if on_stage:
                    on_stage(f"{_kind.value.capitalize()}: {text}")

            result = await self.update_component(
                kind,
                on_stage=kind_stage,
                on_progress=on_progress,
                force=force,
                cancel_event=cancel_event,
                asset=check.asset,
            )
            if result.applied:
                updated.append(result)

        if on_stage:
            on_stage("All components are up to date" if not updated else "Update finished")
        return updated
