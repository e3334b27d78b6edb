"""
Sample Collector
================

Measures download throughput through every candidate address and reports
the samples to the ranking service.

Each candidate is fetched as https://<ip>/dl with the service host name as
TLS SNI and Host header, so the request reaches the same service through a
different edge address. Timeouts, connection errors and empty bodies are
failed measurements: logged, never reported.

Usage:
    python -m ipranker.collector --host api.example.com --concurrency 20
"""

import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


@dataclass
class Measurement:
    """Result of one timed download"""
    endpoint: str
    ok: bool
    duration_ms: float = 0.0
    bytes_received: int = 0
    error: Optional[str] = None

    @property
    def throughput_mbps(self) -> float:
        if not self.ok or self.duration_ms <= 0:
            return 0.0
        return (self.bytes_received * 8) / (self.duration_ms / 1000) / 1_000_000


def endpoint_url(ip: str, size: int) -> str:
    """Download URL for a candidate; IPv6 literals are bracketed"""
    host = f"[{ip}]" if ":" in ip and not ip.startswith("[") else ip
    return f"https://{host}/dl?bytes={size}"


def build_report(measurement: Measurement, observed_at: Optional[int] = None) -> Dict:
    """Report payload for a successful measurement"""
    if observed_at is None:
        observed_at = int(time.time() * 1000)
    return {
        "endpoint": measurement.endpoint,
        "bytesTransferred": measurement.bytes_received,
        "durationMs": max(1, round(measurement.duration_ms)),
        "observedAt": observed_at,
    }


class SampleCollector:
    """Runs one measurement pass over the candidate pool"""

    def __init__(self, host: str, size: int = 5_000_000, concurrency: int = 20,
                 timeout: float = DEFAULT_TIMEOUT, base_url: Optional[str] = None):
        self.host = host
        self.size = size
        self.concurrency = concurrency
        self.timeout = timeout
        self.base_url = (base_url or f"https://{host}").rstrip("/")

        self.stats = {
            'measured': 0,
            'failed': 0,
            'reported': 0,
            'report_errors': 0,
        }

    async def fetch_candidates(self, session: aiohttp.ClientSession) -> List[str]:
        async with session.get(f"{self.base_url}/api/candidates",
                               timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
            response.raise_for_status()
            data = await response.json()
        candidates = data.get("candidates", [])
        logger.info(f"📋 Received {len(candidates)} candidates")
        return candidates

    async def download_via_ip(self, session: aiohttp.ClientSession, ip: str) -> Measurement:
        """Time a full /dl transfer through ip"""
        start = time.perf_counter()
        received = 0
        try:
            async with session.get(
                endpoint_url(ip, self.size),
                headers={"Host": self.host},
                server_hostname=self.host,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    return Measurement(ip, ok=False, error=f"HTTP {response.status}")
                async for chunk in response.content.iter_any():
                    received += len(chunk)
        except asyncio.TimeoutError:
            return Measurement(ip, ok=False, error="timeout")
        except aiohttp.ClientError as e:
            return Measurement(ip, ok=False, error=str(e) or type(e).__name__)

        duration_ms = (time.perf_counter() - start) * 1000
        if received == 0:
            return Measurement(ip, ok=False, duration_ms=duration_ms, error="empty response")
        return Measurement(ip, ok=True, duration_ms=duration_ms, bytes_received=received)

    async def post_report(self, session: aiohttp.ClientSession, payload: Dict) -> bool:
        try:
            async with session.post(f"{self.base_url}/api/report", json=payload,
                                    timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                if response.status == 200:
                    return True
                text = await response.text()
                logger.warning(f"Report for {payload['endpoint']} rejected: HTTP {response.status} {text}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Report for {payload['endpoint']} failed: {e}")
            return False

    async def measure_and_report(self, session: aiohttp.ClientSession, ip: str,
                                 semaphore: asyncio.Semaphore) -> Measurement:
        async with semaphore:
            measurement = await self.download_via_ip(session, ip)

            if not measurement.ok:
                self.stats['failed'] += 1
                logger.info(f"{ip} failed ({measurement.error})")
                return measurement

            self.stats['measured'] += 1
            logger.info(f"{ip} {measurement.throughput_mbps:.2f} Mbps")

            if await self.post_report(session, build_report(measurement)):
                self.stats['reported'] += 1
            else:
                self.stats['report_errors'] += 1
            return measurement

    async def run(self, candidates: Optional[List[str]] = None) -> List[Measurement]:
        """Measure every candidate with bounded concurrency"""
        semaphore = asyncio.Semaphore(self.concurrency)
        async with aiohttp.ClientSession() as session:
            if candidates is None:
                candidates = await self.fetch_candidates(session)
            return await asyncio.gather(
                *(self.measure_and_report(session, ip, semaphore) for ip in candidates)
            )


async def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="ipranker sample collector")
    parser.add_argument("--host", type=str, default=os.getenv("WORKER_HOST"), help="Service host name (SNI/Host)")
    parser.add_argument("--base-url", type=str, help="Override base URL for candidates and reports")
    parser.add_argument("--bytes", type=int, default=int(os.getenv("BYTES", 5_000_000)), help="Bytes per download")
    parser.add_argument("--concurrency", type=int, default=int(os.getenv("CONCURRENCY", 20)),
                        help="Parallel downloads")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Per-download timeout in seconds")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - COLLECTOR - %(levelname)s - %(message)s'
    )

    if not args.host:
        parser.error("--host or WORKER_HOST is required")

    collector = SampleCollector(args.host, args.bytes, args.concurrency, args.timeout, args.base_url)
    try:
        await collector.run()
    except aiohttp.ClientError as e:
        logger.error(f"❌ Collector failed: {e}")
        return 1

    logger.info(f"✅ Done: {collector.stats}")
    return 0


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
