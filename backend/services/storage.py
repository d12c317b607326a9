"""
DatasetStore Class - Holds the currently loaded dataset

This module owns the ingest pipeline (decode, parse, aggregate) and the
in-memory state the API reads from. Nothing is written to disk; a new upload
replaces the previous dataset.
"""

import asyncio
import logging
from typing import List, Optional

from config import BATCH_SIZE
from models.data_models import AggregationResult, IngestStatus
from services.aggregator import Aggregator
from services.filters import QueryCache
from services.parser import LogParser

logger = logging.getLogger(__name__)


class ReadError(ValueError):
    """The uploaded content could not be read at all"""


class DatasetStore:
    """
    Manages the current dataset.
    Responsibilities:
    - Decode uploaded bytes
    - Run parse and aggregation, tracking phase and progress
    - Keep the result and its query cache
    """

    def __init__(self, batch_size: int = BATCH_SIZE):
        self.parser = LogParser(batch_size)
        self.aggregator = Aggregator(batch_size)
        self.status = IngestStatus()
        self.result: Optional[AggregationResult] = None
        self.cache: Optional[QueryCache] = None
        self.mode: Optional[str] = None
        self._generation = 0

    @property
    def loaded(self) -> bool:
        return self.result is not None

    @staticmethod
    def decode(content: Optional[bytes]) -> str:
        """Bytes to text, raising ReadError when there is nothing usable.
        Bad bytes become U+FFFD so only the lines holding them are lost."""
        if not content:
            raise ReadError("Empty file")
        text = content.decode("utf-8-sig", errors="replace")
        if not text.strip():
            raise ReadError("Empty file")
        return text

    async def ingest(self, content: Optional[bytes]) -> AggregationResult:
        """Replace the current dataset with one built from content"""
        self._generation += 1
        generation = self._generation
        self.result = None
        self.cache = None
        self.mode = None
        status = self.status = IngestStatus(phase="parsing")

        def on_progress(value: int) -> None:
            status.progress = value

        try:
            text = self.decode(content)
        except ReadError as exc:
            status.phase = "failed"
            status.error = str(exc)
            logger.warning("Upload rejected: %s", exc)
            raise

        try:
            outcome = self.parser.detect(text)
            mode = "json_array" if outcome.is_array else "jsonl"

            records: List = []
            for batch in self.parser.batches_for(outcome, text, on_progress):
                records.extend(batch)
                await asyncio.sleep(0)
            logger.info("Parsed %d records (%s)", len(records), mode)

            status.phase = "aggregating"
            status.progress = 0
            result = await self.aggregator.build(records, on_progress)
        except Exception as exc:
            logger.exception("Ingest failed while %s", status.phase)
            status.phase = "failed"
            status.error = f"Error processing data: {exc}"
            raise

        if generation != self._generation:
            # a newer upload started while this one was running
            logger.info("Discarding superseded dataset of %d records", result.total_records)
            return result

        self.result = result
        self.cache = QueryCache(result)
        self.mode = mode
        status.phase = "done"
        status.progress = 100
        return result
