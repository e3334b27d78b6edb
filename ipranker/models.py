"""
Data model for endpoint statistics and rankings.

Timestamps are epoch milliseconds throughout, matching what reporters send.
Throughput values are megabits per second.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ipranker.errors import InvalidSample


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def _finite_number(value: Any) -> Optional[float]:
    """value as a float if it is a finite JSON number, else None"""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _first_present(payload: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if payload.get(name) is not None:
            return payload[name]
    return None


@dataclass
class Sample:
    """A validated timing sample from the collector"""
    endpoint: str
    bytes_transferred: int
    duration_ms: float
    observed_at: int

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], received_at: int) -> 'Sample':
        """
        Build a Sample from a report body.

        Accepts both the camelCase field names and the short names
        (ip, bytes, ts) older collectors send. Missing observedAt defaults to
        the receipt time.

        Raises:
            InvalidSample: if any field is missing, of the wrong type or out of range
        """
        if not isinstance(payload, dict):
            raise InvalidSample("Sample payload must be a JSON object")

        endpoint = _first_present(payload, 'endpoint', 'ip')
        if not isinstance(endpoint, str) or not endpoint.strip():
            raise InvalidSample("endpoint must be a non-empty string")

        bytes_transferred = _first_present(payload, 'bytesTransferred', 'bytes')
        if _finite_number(bytes_transferred) is None or bytes_transferred != int(bytes_transferred):
            raise InvalidSample("bytesTransferred must be an integer")
        if bytes_transferred < 0:
            raise InvalidSample(f"bytesTransferred must be >= 0, got {bytes_transferred}")

        duration_ms = payload.get('durationMs')
        if _finite_number(duration_ms) is None:
            raise InvalidSample("durationMs must be a finite number")
        if duration_ms <= 0:
            raise InvalidSample(f"durationMs must be > 0, got {duration_ms}")

        observed_at = _first_present(payload, 'observedAt', 'ts')
        if observed_at is None:
            observed_at = received_at
        elif _finite_number(observed_at) is None or observed_at < 0:
            raise InvalidSample("observedAt must be a non-negative epoch-ms timestamp")

        return cls(
            endpoint=endpoint.strip(),
            bytes_transferred=int(bytes_transferred),
            duration_ms=float(duration_ms),
            observed_at=int(observed_at),
        )


@dataclass
class EndpointStat:
    """Smoothed throughput state for one endpoint within a partition"""
    endpoint: str
    ewma: Optional[float] = None
    sample_count: int = 0
    last_observed_at: int = 0

    @property
    def has_data(self) -> bool:
        return self.sample_count > 0 and self.ewma is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'endpoint': self.endpoint,
            'ewma': self.ewma,
            'sampleCount': self.sample_count,
            'lastObservedAt': self.last_observed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EndpointStat':
        return cls(
            endpoint=data['endpoint'],
            ewma=data.get('ewma'),
            sample_count=int(data.get('sampleCount', 0)),
            last_observed_at=int(data.get('lastObservedAt', 0)),
        )


@dataclass
class RankedResult:
    """One row of a computed ranking"""
    endpoint: str
    score: float
    ewma: float
    last_observed_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'endpoint': self.endpoint,
            'score': self.score,
            'ewma': self.ewma,
            'lastObservedAt': self.last_observed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RankedResult':
        return cls(
            endpoint=data['endpoint'],
            score=float(data['score']),
            ewma=float(data['ewma']),
            last_observed_at=int(data['lastObservedAt']),
        )


@dataclass
class IngestResult:
    """Outcome of folding one sample into a partition"""
    partition: str
    stat: EndpointStat

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accepted': True,
            'partition': self.partition,
            'endpoint': self.stat.endpoint,
            'ewma': self.stat.ewma,
            'sampleCount': self.stat.sample_count,
        }


@dataclass
class RankingResponse:
    """
    Ranking served to a read client.

    error is set when no data could be produced at all, so an empty top list
    caused by a failure is never confused with an empty partition.
    """
    partition: str
    top: List[RankedResult] = field(default_factory=list)
    cached: bool = False
    stale: bool = False
    error: Optional[str] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'partition': self.partition,
            'top': [result.to_dict() for result in self.top],
            'cached': self.cached,
            'stale': self.stale,
        }
        if self.error:
            data['error'] = self.error
            data['detail'] = self.detail
        return data


@dataclass
class RefreshReport:
    """Result of a scheduled refresh across the hot partitions"""
    refreshed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def partial_failure(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'refreshed': list(self.refreshed),
            'failed': dict(self.failed),
            'partialFailure': self.partial_failure,
        }
