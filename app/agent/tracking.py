"""
Per-run call tracker: one record per model/search/fetch/rerank call.

Thread-safe because SEARCH fans out query variants on a thread pool.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CallRecord:
    purpose: str
    provider: str
    model: str | None
    duration_ms: int
    success: bool
    tokens: int = 0
    error: str | None = None


@dataclass
class CallTracker:
    records: list[CallRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(
        self,
        purpose: str,
        provider: str,
        duration_ms: float,
        success: bool,
        model: str | None = None,
        tokens: int = 0,
        error: str | None = None,
    ) -> None:
        rec = CallRecord(
            purpose=purpose,
            provider=provider,
            model=model,
            duration_ms=int(duration_ms),
            success=success,
            tokens=int(tokens or 0),
            error=error,
        )
        with self._lock:
            self.records.append(rec)

    def summary(self) -> dict[str, Any]:
        with self._lock:
            records = list(self.records)
        by_purpose: dict[str, int] = {}
        for r in records:
            by_purpose[r.purpose] = by_purpose.get(r.purpose, 0) + 1
        return {
            "total_calls": len(records),
            "failed_calls": sum(1 for r in records if not r.success),
            "total_ms": sum(r.duration_ms for r in records),
            "total_tokens": sum(r.tokens for r in records),
            "by_purpose": by_purpose,
            "calls": [asdict(r) for r in records],
        }

    def log_summary(self) -> None:
        s = self.summary()
        logger.info(
            "[tracking:summary] calls=%d failed=%d total_ms=%d tokens=%d by_purpose=%s",
            s["total_calls"], s["failed_calls"], s["total_ms"], s["total_tokens"], s["by_purpose"],
        )
