"""Build orchestrator for quire.

A :class:`Site` is the session-scoped aggregate: it owns the format
registry, renderer, event bus, data cascade, dependency tracker, processor
pipeline and page table. One build cycle runs::

    discover → cascade → render (+layouts) → process → persist

Discovery and persistence are sequential; rendering and per-page processors
fan out over an ``asyncio.Semaphore`` bounded pool, and every stage joins
before the next one starts.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import posixpath
import shutil
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from quire.cascade import DataCascade, url_to_dest
from quire.config import config_hash, default_config, load_config
from quire.deps import DependencyTracker, ScopeKind
from quire.events import Event, EventBus, EventType
from quire.exceptions import (
    BuildError,
    LayoutCycleError,
    LayoutNotFoundError,
    ManifestError,
    PageError,
    RestartRequired,
)
from quire.formats import Format, FormatRegistry
from quire.layouts import LayoutResolver
from quire.loaders import text_loader
from quire.manifest import Manifest, PageEntry, compute_hash, load_manifest, save_manifest
from quire.processors import ProcessorPipeline
from quire.project import CONFIG_FILE, MANIFEST_FILE, STATE_DIR
from quire.registry import default_registry
from quire.renderer import HelperKind, HelperOptions, Renderer, collect_dependencies
from quire.sourcemaps import source_mapping_comment
from quire.types import BuildSummary, Page, PageFailure, PageStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from quire.config import QuireConfig
    from quire.loaders import Loader
    from quire.registry import PluginRegistry
    from quire.renderer import Engine

__all__ = ["Site"]

logger = logging.getLogger(__name__)

_STAGE_BY_KIND = {"processor": "process"}


class Site:
    """One build/watch session over a project directory.

    Usage::

        site = Site.from_project(Path("."))
        summary = asyncio.run(site.build())

    Args:
        root: Project root; ``[site] src`` and ``dest`` are relative to it.
        config: Project configuration (defaults when omitted).
        registry: Plugin registry used by :meth:`use` for plugin names.
    """

    def __init__(
        self,
        root: Path,
        config: QuireConfig | None = None,
        *,
        registry: PluginRegistry | None = None,
    ) -> None:
        self.root = root.resolve()
        self.config = config or default_config()
        self.registry = registry or default_registry

        site_cfg = self.config.site
        self.src_dir = (self.root / site_cfg.src).resolve()
        self.dest_dir = (self.root / site_cfg.dest).resolve()
        self.state_dir = self.root / STATE_DIR
        self.config_path = self.root / CONFIG_FILE
        self.includes = "/" + site_cfg.includes.strip("/")

        self.formats = FormatRegistry()
        self.formats.exclude(self.includes)
        self.renderer = Renderer(self.formats)
        self.events = EventBus()
        self.cascade = DataCascade(self.src_dir, pretty_urls=site_cfg.pretty_urls)
        for key, value in self.config.data.items():
            self.cascade.set_data(key, value)
        self.layouts = LayoutResolver(self.src_dir, self.includes, self.formats, self.renderer)
        self.processors = ProcessorPipeline(self.config.build.workers)
        self.tracker = DependencyTracker(
            self.includes,
            restart_on=self.config.watch.restart_on,
            is_component=self.is_component,
        )

        self.pages: dict[str, Page] = {}
        self.manifest = Manifest()
        self._outputs: dict[str, str] = {}
        self._ignored: list[str] = []
        self._cycle: list[Page] | None = None
        self._failures: dict[str, PageFailure] = {}

    @classmethod
    def from_project(cls, root: Path, *, registry: PluginRegistry | None = None) -> Site:
        """Load ``quire.toml`` from ``root`` and install the configured plugins."""
        config = load_config(root / CONFIG_FILE)
        site = cls(root, config, registry=registry)
        for name in config.plugins.use:
            site.use(name, config.plugins.options.get(name))
        return site

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / MANIFEST_FILE

    # -- configuration API -------------------------------------------------

    def use(
        self,
        plugin: str | Callable[[Site], Any],
        options: Mapping[str, Any] | None = None,
    ) -> Site:
        """Install a plugin by registered name or as a callable."""
        if isinstance(plugin, str):
            self.registry.install(plugin, self, options)
        else:
            plugin(self)
        return self

    def load_pages(
        self,
        extensions: Sequence[str],
        loader: Loader = text_loader,
        engine: Engine | None = None,
        *,
        page_sub_extension: str | None = None,
        includes: str | None = None,
    ) -> Site:
        """Register a page format, optionally with its default engine."""
        if engine is not None:
            self.renderer.add_engine(engine)
        self.formats.register(
            Format(
                tuple(extensions),
                loader=loader,
                engine=engine,
                page_sub_extension=page_sub_extension,
                includes=includes,
            )
        )
        return self

    def load_assets(self, extensions: Sequence[str], loader: Loader = text_loader) -> Site:
        """Register an asset format: loaded and processed, never templated."""
        self.formats.register(Format(tuple(extensions), loader=loader, is_asset=True))
        return self

    def ignore(self, *patterns: str) -> Site:
        """Exclude site paths (or glob patterns) from discovery."""
        for pattern in patterns:
            self._ignored.append("/" + pattern.strip("/"))
        return self

    def is_ignored(self, src: str) -> bool:
        for pattern in self._ignored:
            if src == pattern or src.startswith(pattern + "/") or fnmatch.fnmatch(src, pattern):
                return True
        return False

    def process(
        self,
        extensions: str | Sequence[str],
        fn: Callable[[list[Page]], Any],
        *,
        merge: bool = False,
    ) -> Site:
        self.processors.add(extensions, fn, merge=merge)
        return self

    def filter(self, name: str, fn: Callable[..., Any], *, body: bool = False) -> Site:
        self.renderer.add_helper(name, fn, HelperOptions(HelperKind.FILTER, body))
        return self

    def helper(
        self,
        name: str,
        fn: Callable[..., Any],
        *,
        kind: HelperKind | str = HelperKind.TAG,
        body: bool = False,
    ) -> Site:
        self.renderer.add_helper(name, fn, HelperOptions(HelperKind(kind), body))
        return self

    def data(self, key: str, value: Any) -> Site:
        self.cascade.set_data(key, value)
        return self

    def computed(self, name: str, fn: Callable[[dict[str, Any]], Any]) -> Site:
        self.cascade.add_computed(name, fn)
        return self

    def add_event_listener(self, event_type: EventType | str, fn: Callable[[Event], Any]) -> Site:
        self.events.add_listener(event_type, fn)
        return self

    def get_or_create_page(self, src: str) -> Page:
        """Return the page at ``src``, creating a generated page if needed.

        Generated pages join the running cycle and are persisted with it.
        """
        src = "/" + src.lstrip("/")
        page = self.pages.get(src)
        if page is not None:
            return page
        page = Page(src=src, dest=url_to_dest(src), status=PageStatus.RENDERED)
        page.data = {"url": src}
        self.pages[src] = page
        if self._cycle is not None:
            self._cycle.append(page)
        logger.debug("Created page %s", src)
        return page

    # -- discovery ---------------------------------------------------------

    def _walk(self) -> tuple[list[str], list[str]]:
        """Return (candidate sources, internal files) as site paths."""
        if not self.src_dir.is_dir():
            raise BuildError(f"Source directory not found: {self.src_dir}")

        sources: list[str] = []
        internal: list[str] = []
        for path in sorted(self.src_dir.rglob("*")):
            if not path.is_file():
                continue
            if path.is_relative_to(self.dest_dir) or path.is_relative_to(self.state_dir):
                continue
            rel = path.relative_to(self.src_dir)
            if any(part.startswith(".") for part in rel.parts):
                continue
            src = "/" + rel.as_posix()
            if self.is_ignored(src):
                continue
            if self.formats.is_excluded(src) or any(p.startswith("_") for p in rel.parts):
                internal.append(src)
            else:
                sources.append(src)
        return sources, internal

    def is_component(self, src: str) -> bool:
        """Whether ``src`` is a template that renders no page of its own."""
        fmt = self.formats.resolve(src)
        return fmt is not None and not fmt.is_asset and self.formats.page_suffix(src, fmt) is None

    def _is_source(self, src: str) -> bool:
        parts = src.strip("/").split("/")
        return not (
            any(p.startswith((".", "_")) for p in parts)
            or self.formats.is_excluded(src)
            or self.is_ignored(src)
        )

    def _load(self, src: str) -> Page | None:
        """Load one source; ``None`` for components, which produce no output."""
        path = self.src_dir / src.lstrip("/")
        fmt = self.formats.resolve(src)
        if fmt is None:
            return Page(src=src, source_path=path, is_copy=True)

        suffix = self.formats.page_suffix(src, fmt)
        if suffix is None:
            logger.debug("Skipping component %s", src)
            return None

        page = Page(src=src, source_path=path, suffix=suffix, is_asset=fmt.is_asset)
        try:
            loaded = fmt.loader(path)
        except PageError as e:
            e.src = src
            self._fail(page, "load", e)
            return page
        page.raw = loaded.content
        page.front_matter = dict(loaded.data)
        return page

    # -- stages ------------------------------------------------------------

    def _fail(self, page: Page, stage: str, error: PageError) -> None:
        page.fail(error)
        self._failures[page.src] = PageFailure(page.src, stage, error.kind, str(error))
        logger.warning("%s failed (%s): %s", page.src, stage, error)

    async def _render(self, page: Page) -> None:
        if page.failed:
            return
        if page.is_copy:
            page.dest = url_to_dest(page.src)
            page.status = PageStatus.RENDERED
            self.tracker.record(page.src)
            return

        deps: list[str] = []
        stage = "cascade"
        with collect_dependencies() as included:
            try:
                data, data_files = self.cascade.context_for(page)
                deps.extend(data_files)
                page.data = data
                if data["url"] is False:
                    page.status = PageStatus.SKIPPED
                    return

                content = page.raw
                if not page.is_asset:
                    stage = "render"
                    content = await self.renderer.render(content, data, page.src)
                    if page.layout:
                        stage = "layout"
                        content, layouts = await self.layouts.apply(page.src, content, data)
                        deps.extend(layouts)

                page.content = content
                page.dest = url_to_dest(data["url"])
                page.status = PageStatus.RENDERED
            except PageError as e:
                e.src = e.src or page.src
                if isinstance(e, (LayoutNotFoundError, LayoutCycleError)) and e.filename:
                    deps.append(e.filename)
                self._fail(page, stage, e)
            finally:
                self.tracker.record(page.src, [*deps, *included])

    async def _render_all(self, pages: Sequence[Page]) -> None:
        semaphore = asyncio.Semaphore(self.config.build.workers)

        async def one(page: Page) -> None:
            async with semaphore:
                await self._render(page)

        await asyncio.gather(*(one(page) for page in pages))

    def _remove_output(self, src: str) -> bool:
        dest = self._outputs.pop(src, "")
        if not dest:
            return False
        removed = False
        for target in (self.dest_dir / dest, self.dest_dir / f"{dest}.map"):
            if target.is_file():
                target.unlink()
                removed = True
        if removed:
            logger.info("Removed %s", dest)
        return removed

    def _write(self, page: Page) -> None:
        target = self.dest_dir / page.dest
        target.parent.mkdir(parents=True, exist_ok=True)

        if page.is_copy:
            shutil.copy2(page.source_path, target)
            return

        content = page.content
        if page.source_map is not None and self.config.build.source_maps:
            map_name = posixpath.basename(page.dest) + ".map"
            page.source_map.file = posixpath.basename(page.dest)
            comment = source_mapping_comment(page.output_ext, map_name)
            if comment is not None and isinstance(content, str):
                content = content.rstrip("\n") + comment
            (target.parent / map_name).write_text(page.source_map.to_json(), encoding="utf-8")

        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(str(content), encoding="utf-8")

    def _persist(self, pages: Sequence[Page]) -> None:
        """Write rendered pages; remove outputs of pages that produce none."""
        self.dest_dir.mkdir(parents=True, exist_ok=True)
        claimed: dict[str, str] = {}
        for page in pages:
            if page.status is not PageStatus.RENDERED or not page.dest:
                if page.status is PageStatus.SKIPPED:
                    self._remove_output(page.src)
                continue

            if page.dest in claimed:
                logger.warning(
                    "%s and %s both write %s; keeping %s",
                    claimed[page.dest], page.src, page.dest, page.src,
                )
            claimed[page.dest] = page.src

            previous = self._outputs.get(page.src)
            if previous and previous != page.dest:
                self._remove_output(page.src)
            try:
                self._write(page)
            except OSError as e:
                raise BuildError(f"Failed to write {page.dest}: {e}") from e
            self._outputs[page.src] = page.dest
            logger.debug("Wrote %s -> %s", page.src, page.dest)

    # -- manifest ----------------------------------------------------------

    def _load_manifest(self) -> Manifest | None:
        if not self.manifest_path.exists():
            return None
        try:
            return load_manifest(self.manifest_path)
        except ManifestError as e:
            logger.warning("Ignoring unreadable manifest: %s", e)
            return None

    def _update_manifest(self, pages: Sequence[Page], removed: Iterable[str], internal: Iterable[str]) -> None:
        for src in removed:
            self.manifest.remove_page(src)
        for page in pages:
            if page.source_path is None:
                continue
            if page.failed:
                self.manifest.remove_page(page.src)
                continue
            self.manifest.add_page(
                PageEntry(
                    src=page.src,
                    hash=compute_hash(page.source_path),
                    dest=page.dest if page.status is PageStatus.RENDERED else "",
                    dependencies=tuple(sorted(self.tracker.dependencies_of(page.src))),
                )
            )
        self.manifest.file_hashes = {
            src: compute_hash(self.src_dir / src.lstrip("/")) for src in internal
        }
        self.manifest.config_hash = config_hash(self.config)
        self.manifest.mark_built()
        save_manifest(self.manifest, self.manifest_path)

    def _incremental_changes(self, previous: Manifest, sources: list[str], internal: list[str]) -> set[str] | None:
        """Changed site paths since ``previous``; ``None`` forces a full build."""
        if previous.config_hash != config_hash(self.config):
            logger.info("Configuration changed since last build; rebuilding everything")
            return None

        changed: set[str] = set()
        current = set(sources)
        for src in sources:
            if previous.is_changed(src, compute_hash(self.src_dir / src.lstrip("/"))):
                changed.add(src)
        changed.update(entry.src for entry in previous.pages if entry.src not in current)

        for src in internal:
            if previous.file_hashes.get(src) != compute_hash(self.src_dir / src.lstrip("/")):
                changed.add(src)
        changed.update(src for src in previous.file_hashes if src not in set(internal))
        return changed

    # -- cycles ------------------------------------------------------------

    async def _cycle_run(
        self,
        pages: list[Page],
        *,
        scope: str,
        removed: int,
        skipped: int,
        internal: list[str],
        removed_srcs: Iterable[str] = (),
        started: float,
    ) -> BuildSummary:
        self._cycle = pages
        try:
            logger.info("Rendering %d page(s)", len(pages))
            await self._render_all(pages)
            await self.events.dispatch(Event(EventType.AFTER_RENDER, pages=pages))

            logger.info("Processing %d page(s)", len(pages))
            await self.processors.run(pages)
            for page in pages:
                if page.failed and page.src not in self._failures and page.error is not None:
                    stage = _STAGE_BY_KIND.get(page.error.kind, "process")
                    self._failures[page.src] = PageFailure(
                        page.src, stage, page.error.kind, str(page.error)
                    )

            event = Event(EventType.BEFORE_SAVE, pages=list(pages))
            await self.events.dispatch(event)
            kept = {id(page) for page in event.pages}
            for page in pages:
                if id(page) not in kept and not page.failed:
                    page.status = PageStatus.SKIPPED
            self._persist(pages)
        finally:
            self._cycle = None

        self._update_manifest(pages, removed_srcs, internal)
        await self.events.dispatch(Event(EventType.AFTER_BUILD, pages=pages))

        rendered = sum(1 for p in pages if p.status is PageStatus.RENDERED and not p.is_copy)
        copied = sum(1 for p in pages if p.status is PageStatus.RENDERED and p.is_copy)
        skipped += sum(1 for p in pages if p.status is PageStatus.SKIPPED)
        failures = tuple(self._failures[src] for src in sorted(self._failures))
        summary = BuildSummary(
            scope=scope,
            rendered=rendered,
            copied=copied,
            removed=removed,
            skipped=skipped,
            duration=time.perf_counter() - started,
            failures=failures,
        )
        logger.info(
            "Build (%s): %d rendered, %d copied, %d removed, %d failed in %.2fs",
            scope, rendered, copied, removed, len(failures), summary.duration,
        )
        return summary

    async def build(self, *, incremental: bool | None = None) -> BuildSummary:
        """Run a build cycle.

        With ``incremental`` (default: ``[build] incremental``) only pages
        affected by changes since the last manifest are rendered.

        Raises:
            BuildError: If the source tree cannot be read or output written.
        """
        started = time.perf_counter()
        incremental = self.config.build.incremental if incremental is None else incremental
        self._failures = {}

        await self.events.dispatch(Event(EventType.BEFORE_BUILD))
        logger.info("Discovering sources in %s", self.src_dir)
        sources, internal = self._walk()

        previous = self._load_manifest()
        if previous is not None:
            self.manifest = previous
            for entry in previous.pages:
                if entry.dest:
                    self._outputs.setdefault(entry.src, entry.dest)

        selected: set[str] | None = None
        scope_name = "full"
        if incremental and previous is not None:
            changed = self._incremental_changes(previous, sources, internal)
            if changed is not None:
                self.tracker.reset()
                for entry in previous.pages:
                    self.tracker.record(entry.src, entry.dependencies)
                scope = self.tracker.scope(changed)
                if scope.kind is ScopeKind.PARTIAL:
                    selected = set(scope.pages)
                    scope_name = "partial"
                else:
                    logger.info("Incremental build fell back to full: %s", scope.reason)

        if selected is None:
            self.tracker.reset()
            self.pages = {}
            self.renderer.delete_cache()
            self.layouts.delete_cache()
            self.cascade.invalidate()

        current = set(sources)
        removed_srcs = [src for src in list(self._outputs) if src not in current]
        removed = sum(1 for src in removed_srcs if self._remove_output(src))
        for src in removed_srcs:
            self.tracker.forget(src)
            self.pages.pop(src, None)

        pages: list[Page] = []
        skipped = 0
        for src in sources:
            if selected is not None and src not in selected:
                skipped += 1
                continue
            page = self._load(src)
            if page is not None:
                self.pages[src] = page
                pages.append(page)

        return await self._cycle_run(
            pages,
            scope=scope_name,
            removed=removed,
            skipped=skipped,
            internal=internal,
            removed_srcs=removed_srcs,
            started=started,
        )

    def site_path(self, path: str | Path) -> str | None:
        """Site path of a filesystem path, or ``None`` outside the source tree."""
        if isinstance(path, str):
            return "/" + path.lstrip("/")
        path = path if path.is_absolute() else self.root / path
        try:
            rel = path.resolve().relative_to(self.src_dir)
        except ValueError:
            return None
        return "/" + rel.as_posix()

    def _requires_restart(self, path: Path) -> bool:
        path = path if path.is_absolute() else self.root / path
        if path.resolve() == self.config_path.resolve():
            return True
        try:
            rel = path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return False
        return any(fnmatch.fnmatch(rel, pattern) for pattern in self.config.watch.restart_on)

    async def update(self, changed: Iterable[str | Path]) -> BuildSummary:
        """Rebuild what a batch of changes affects.

        ``str`` entries are site paths; :class:`~pathlib.Path` entries are
        filesystem paths (as delivered by the watcher).

        Raises:
            RestartRequired: When the configuration (or a ``restart_on``
                file) changed, or a ``before_update`` listener cancelled.
        """
        started = time.perf_counter()
        changed = list(changed)
        files: set[str] = set()
        restart: list[str] = []
        for path in changed:
            if isinstance(path, Path) and self._requires_restart(path):
                restart.append(str(path))
                continue
            src = self.site_path(path)
            if src is not None:
                files.add(src)

        if not await self.events.dispatch(Event(EventType.BEFORE_UPDATE, files=frozenset(files))):
            raise RestartRequired("Restart requested by before_update listener", frozenset(files))
        if restart:
            raise RestartRequired(f"{', '.join(restart)} changed", frozenset(restart))

        scope = self.tracker.scope(files)
        if scope.kind is ScopeKind.RESTART:
            raise RestartRequired(scope.reason, frozenset(files))

        for src in files:
            self.renderer.delete_cache(src)
            self.layouts.delete_cache(src)
            self.cascade.invalidate(src)

        if scope.kind is ScopeKind.FULL:
            self.renderer.delete_cache()
            self.layouts.delete_cache()
            self.cascade.invalidate()
            summary = await self.build(incremental=False)
        else:
            summary = await self._update_partial(scope.pages, started)

        await self.events.dispatch(Event(EventType.AFTER_UPDATE, files=frozenset(files)))
        return summary

    async def _update_partial(self, targets: frozenset[str], started: float) -> BuildSummary:
        self._failures = {}
        _, internal = self._walk()

        pages: list[Page] = []
        removed_srcs: list[str] = []
        removed = 0
        for src in sorted(targets):
            self.renderer.delete_cache(src)
            path = self.src_dir / src.lstrip("/")
            if not path.is_file() or not self._is_source(src):
                if src in self.pages or src in self._outputs:
                    removed += int(self._remove_output(src))
                    removed_srcs.append(src)
                    self.pages.pop(src, None)
                    self.tracker.forget(src)
                continue
            page = self._load(src)
            if page is None:
                continue
            self.pages[src] = page
            pages.append(page)

        return await self._cycle_run(
            pages,
            scope="partial",
            removed=removed,
            skipped=0,
            internal=internal,
            removed_srcs=removed_srcs,
            started=started,
        )
