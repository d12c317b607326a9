"""
LogParser Class - Handles decoding of raw SSO log text

This module turns an uploaded text blob into a lazy, batched sequence of
event records. Two encodings are accepted:
- a single JSON array (one record per element)
- newline-delimited JSON (one record per non-blank line)
"""

import json
import logging
from typing import Any, Callable, Iterator, List, Optional

from config import BATCH_SIZE
from models.data_models import ParseOutcome
from utils.helpers import percent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class LogParser:
    """
    Parses raw log text into event records.
    Responsibilities:
    - Decide between JSON array and JSONL
    - Decode JSONL lines, dropping the ones that do not parse
    - Hand records out in fixed-size batches with progress
    """

    def __init__(self, batch_size: int = BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size

    @staticmethod
    def parse_json(line: str) -> Optional[Any]:
        """Parse JSON line, return None if invalid"""
        try:
            return json.loads(line)
        except (ValueError, RecursionError):
            return None

    @staticmethod
    def detect(text: str) -> ParseOutcome:
        """Try the whole text as one JSON array"""
        value = LogParser.parse_json(text)
        if isinstance(value, list):
            return ParseOutcome(kind="array", items=value)
        return ParseOutcome(kind="failure")

    @staticmethod
    def split_lines(text: str) -> List[str]:
        """Non-blank lines of a JSONL blob"""
        return [line for line in text.split("\n") if line.strip()]

    def iter_batches(
        self,
        text: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Iterator[List[Any]]:
        """
        Yield lists of at most batch_size records.
        on_progress gets a percentage after every batch and always ends on 100.
        """
        yield from self.batches_for(self.detect(text), text, on_progress)

    def batches_for(
        self,
        outcome: ParseOutcome,
        text: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Iterator[List[Any]]:
        """Batches for an already detected outcome"""
        if outcome.is_array:
            logger.debug("Input is a JSON array of %d elements", len(outcome.items))
            yield from self._batched(outcome.items, None, on_progress)
            return

        lines = self.split_lines(text)
        logger.debug("Input treated as JSONL with %d non-blank lines", len(lines))
        yield from self._batched(lines, self.parse_json, on_progress)

    def parse(self, text: str, on_progress: Optional[ProgressCallback] = None) -> Iterator[Any]:
        """Lazy record sequence. Not restartable; call again to rescan."""
        for batch in self.iter_batches(text, on_progress):
            yield from batch

    def _batched(
        self,
        items: List[Any],
        decode: Optional[Callable[[str], Optional[Any]]],
        on_progress: Optional[ProgressCallback],
    ) -> Iterator[List[Any]]:
        total = len(items)
        dropped = 0

        for start in range(0, total, self.batch_size):
            chunk = items[start:start + self.batch_size]
            if decode is not None:
                decoded = [decode(line) for line in chunk]
                batch = [r for r in decoded if r is not None]
                dropped += len(chunk) - len(batch)
            else:
                batch = chunk

            if on_progress:
                on_progress(percent(start + len(chunk), total))
            yield batch

        if dropped:
            logger.info("Skipped %d unparsable line(s)", dropped)
        if on_progress and total == 0:
            on_progress(100)
