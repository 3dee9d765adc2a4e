"""
Per-run counters for knowledge ingestion: scrapes, ingest-cache hits and
misses, embedding batches, LLM calls, chunks, vectors and stage timings.
One IngestionMetrics travels through a single file / URL / instruction
ingestion and is logged once at the end.
"""

from __future__ import annotations
import time
import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Dict, Any

log = logging.getLogger("agentbuilder.metrics")


@dataclass
class IngestionMetrics:
    source_type: str = ""
    scrape_calls: int = 0
    embedding_calls: int = 0
    llm_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    chunks: int = 0
    vectors_written: int = 0
    stage_timings: Dict[str, float] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time, repr=False)

    @contextmanager
    def stage(self, name: str):
        """Time a block in milliseconds; recorded even if the block raises."""
        t0 = time.time()
        try:
            yield
        finally:
            self.stage_timings[name] = (time.time() - t0) * 1000

    def inc_scrape(self, n: int = 1) -> None:
        self.scrape_calls += n

    def inc_embedding(self, n: int = 1) -> None:
        self.embedding_calls += n

    def inc_llm(self, n: int = 1) -> None:
        self.llm_calls += n

    def inc_cache_hit(self) -> None:
        self.cache_hits += 1

    def inc_cache_miss(self) -> None:
        self.cache_misses += 1

    def total_elapsed_ms(self) -> float:
        return (time.time() - self.started_at) * 1000

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("started_at")
        d["stage_timings_ms"] = d.pop("stage_timings")
        d["total_elapsed_ms"] = self.total_elapsed_ms()
        return d

    def log_summary(self) -> None:
        log.info(
            "ingestion_metrics type=%s scrape=%d embed=%d llm=%d "
            "cache_hits=%d cache_misses=%d chunks=%d vectors=%d total_ms=%.0f stages=%s",
            self.source_type, self.scrape_calls, self.embedding_calls, self.llm_calls,
            self.cache_hits, self.cache_misses, self.chunks, self.vectors_written,
            self.total_elapsed_ms(),
            {k: f"{v:.0f}ms" for k, v in self.stage_timings.items()},
        )
