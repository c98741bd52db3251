"""Post-render processor pipeline.

Processors run after rendering, in registration order, over the pages whose
output extension they claim (``"*"`` claims everything). A processor either
sees one page at a time, fanned out over the worker pool, or, when
registered with ``merge=True``, all matching pages in a single sequential
call (bundlers need the whole set).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from quire.exceptions import PageError, ProcessorError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from quire.types import Page

__all__ = ["Processor", "ProcessorPipeline"]

logger = logging.getLogger(__name__)


def _normalize_exts(extensions: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(extensions, str):
        extensions = [extensions]
    result = []
    for ext in extensions:
        ext = ext.lower()
        result.append(ext if ext == "*" or ext.startswith(".") else f".{ext}")
    return tuple(result)


@dataclass(frozen=True)
class Processor:
    """A registered transform over rendered pages."""

    extensions: tuple[str, ...]
    fn: Callable[[list[Page]], Any]
    merge: bool = False

    @property
    def name(self) -> str:
        return getattr(self.fn, "__name__", repr(self.fn))

    def matches(self, page: Page) -> bool:
        return "*" in self.extensions or page.output_ext in self.extensions


class ProcessorPipeline:
    """Ordered processors applied to the pages of one build cycle.

    Args:
        workers: Upper bound on concurrent per-page invocations.
    """

    def __init__(self, workers: int = 8) -> None:
        self.workers = max(1, workers)
        self._processors: list[Processor] = []

    def __len__(self) -> int:
        return len(self._processors)

    @property
    def processors(self) -> tuple[Processor, ...]:
        return tuple(self._processors)

    def add(
        self,
        extensions: str | Sequence[str],
        fn: Callable[[list[Page]], Any],
        *,
        merge: bool = False,
    ) -> Processor:
        processor = Processor(_normalize_exts(extensions), fn, merge)
        self._processors.append(processor)
        logger.debug(
            "Registered processor %s for %s%s",
            processor.name,
            ", ".join(processor.extensions),
            " (merge)" if merge else "",
        )
        return processor

    async def run(self, pages: Sequence[Page]) -> None:
        """Apply every processor to the non-failed pages it matches.

        Failures mark the pages of the failing invocation as failed; they
        are skipped by later processors but never abort the stage.
        """
        for processor in self._processors:
            targets = [p for p in pages if not p.failed and processor.matches(p)]
            if not targets:
                continue
            logger.debug("Running %s over %d page(s)", processor.name, len(targets))
            if processor.merge:
                await self._invoke(processor, targets)
            else:
                semaphore = asyncio.Semaphore(self.workers)

                async def one(page: Page, proc: Processor = processor) -> None:
                    async with semaphore:
                        await self._invoke(proc, [page])

                await asyncio.gather(*(one(page) for page in targets))

            for page in targets:
                page.flush_document()

    async def _invoke(self, processor: Processor, pages: list[Page]) -> None:
        try:
            result = processor.fn(pages)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            if isinstance(e, PageError):
                message = str(e)
            else:
                message = f"Processor {processor.name} failed: {e}"
            for page in pages:
                page.fail(ProcessorError(message, src=page.src))
            logger.warning("%s (%d page(s))", message, len(pages))
