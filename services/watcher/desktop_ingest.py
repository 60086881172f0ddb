"""Feed stable desktop screenshots into the processing pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional, Set

from models.processed_item import ItemSource, ScreenshotMetadata
from services.pipeline.processing_pipeline import ProcessingPipeline
from services.watcher.desktop_watcher import DesktopWatcher, StableFile
from utils.errors import DecodeError, ValidationError

LOGGER = logging.getLogger(__name__)


class DesktopIngest:
	"""Consume `watcher.stable_files()` and submit each file as DESKTOP_AUTO.

	The watcher keeps a path in flight until its submission finishes, so a
	path has at most one pipeline run at a time.
	"""

	def __init__(self, watcher: DesktopWatcher, pipeline: ProcessingPipeline) -> None:
		self.watcher = watcher
		self.pipeline = pipeline
		self._consumer: Optional[asyncio.Task] = None
		self._submissions: Set[asyncio.Task] = set()

	@property
	def running(self) -> bool:
		return self.watcher.running

	async def start(self) -> None:
		await self.watcher.start()
		self._consumer = asyncio.create_task(self._consume())

	async def stop(self) -> None:
		"""Stop watching and wait for submissions already started."""
		await self.watcher.stop()
		if self._consumer is not None:
			await asyncio.gather(self._consumer, return_exceptions=True)
			self._consumer = None
		if self._submissions:
			await asyncio.gather(*list(self._submissions), return_exceptions=True)

	async def _consume(self) -> None:
		async for stable in self.watcher.stable_files():
			task = asyncio.create_task(self._submit(stable))
			self._submissions.add(task)
			task.add_done_callback(self._submissions.discard)

	async def _submit(self, stable: StableFile) -> None:
		filename = os.path.basename(stable.path)
		metadata = ScreenshotMetadata(
			source="desktop_auto",
			app="Screenshot",
			filename=filename,
			auto_detected=True,
		)
		try:
			item = await self.pipeline.submit(stable.data, ItemSource.DESKTOP_AUTO, metadata)
			LOGGER.info("Desktop screenshot %s finished as %s", filename, item.status.value)
		except (ValidationError, DecodeError) as exc:
			LOGGER.warning("Desktop screenshot %s rejected: %s", filename, exc)
		finally:
			self.watcher.release(stable.path)
