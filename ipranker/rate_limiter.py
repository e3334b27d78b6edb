"""
Reporter Rate Limiter
=====================

IP-based limits for the measurement stream and the report endpoint.
Reporters are untrusted, so each IP gets a bounded number of concurrent
/dl streams and a per-minute report budget.
"""

import os
import time
import logging
from typing import Dict
from dataclasses import dataclass, field
from fastapi import Request, HTTPException

logger = logging.getLogger(__name__)


@dataclass
class ConnectionTracker:
    """Track active downloads and recent reports per IP"""
    ip: str
    active_downloads: int = 0
    report_requests: list = field(default_factory=list)  # timestamps of recent reports
    last_cleanup: float = field(default_factory=time.time)

    def cleanup_expired(self, current_time: float):
        """Remove report timestamps older than a minute"""
        self.report_requests = [t for t in self.report_requests if current_time - t < 60]
        self.last_cleanup = current_time

    def get_report_count_last_minute(self, current_time: float) -> int:
        self.cleanup_expired(current_time)
        return len(self.report_requests)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxy headers"""
    connecting_ip = request.headers.get("cf-connecting-ip")
    if connecting_ip:
        return connecting_ip.strip()

    forwarded_ip = request.headers.get("x-forwarded-for")
    if forwarded_ip:
        # Take the first IP in case of multiple proxies
        return forwarded_ip.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Per-IP limiter for download streams and sample reports"""

    def __init__(self, max_download_connections: int = 4, max_reports_per_minute: int = 600):
        self.connections: Dict[str, ConnectionTracker] = {}
        self.cleanup_interval = 300  # Clean up every 5 minutes
        self.last_global_cleanup = time.time()

        self.MAX_DOWNLOAD_CONNECTIONS = max_download_connections
        self.MAX_REPORTS_PER_MINUTE = max_reports_per_minute

    @classmethod
    def from_env(cls) -> 'RateLimiter':
        return cls(
            max_download_connections=int(os.getenv('RATE_LIMIT_DOWNLOADS', 4)),
            max_reports_per_minute=int(os.getenv('RATE_LIMIT_REPORTS_PER_MINUTE', 600)),
        )

    def get_or_create_tracker(self, ip: str) -> ConnectionTracker:
        current_time = time.time()

        if ip not in self.connections:
            self.connections[ip] = ConnectionTracker(ip=ip)

        tracker = self.connections[ip]
        if current_time - tracker.last_cleanup > 60:
            tracker.cleanup_expired(current_time)

        return tracker

    def global_cleanup(self):
        """Remove trackers for IPs with no active downloads and no recent reports"""
        current_time = time.time()

        if current_time - self.last_global_cleanup < self.cleanup_interval:
            return

        inactive_ips = []
        for ip, tracker in self.connections.items():
            tracker.cleanup_expired(current_time)
            if tracker.active_downloads == 0 and not tracker.report_requests:
                inactive_ips.append(ip)

        for ip in inactive_ips:
            del self.connections[ip]

        if inactive_ips:
            logger.info(f"Rate limiter cleanup: removed {len(inactive_ips)} inactive IP trackers")

        self.last_global_cleanup = current_time

    def check_download_limit(self, ip: str) -> bool:
        """Reserve a download slot for ip or raise 429"""
        tracker = self.get_or_create_tracker(ip)

        if tracker.active_downloads >= self.MAX_DOWNLOAD_CONNECTIONS:
            logger.warning(f"Download connection limit exceeded for IP {ip}: "
                           f"{tracker.active_downloads}/{self.MAX_DOWNLOAD_CONNECTIONS}")
            raise HTTPException(
                status_code=429,
                detail=f"Too many download connections from your IP "
                       f"({tracker.active_downloads}/{self.MAX_DOWNLOAD_CONNECTIONS})."
            )

        tracker.active_downloads += 1
        logger.debug(f"Download connection started for IP {ip}: "
                     f"{tracker.active_downloads}/{self.MAX_DOWNLOAD_CONNECTIONS}")
        return True

    def release_download_connection(self, ip: str):
        if ip in self.connections:
            self.connections[ip].active_downloads = max(0, self.connections[ip].active_downloads - 1)
            logger.debug(f"Download connection released for IP {ip}: "
                         f"{self.connections[ip].active_downloads}/{self.MAX_DOWNLOAD_CONNECTIONS}")

        self.global_cleanup()

    def check_report_limit(self, ip: str) -> bool:
        """Count a report from ip or raise 429"""
        tracker = self.get_or_create_tracker(ip)
        current_time = time.time()

        report_count = tracker.get_report_count_last_minute(current_time)
        if report_count >= self.MAX_REPORTS_PER_MINUTE:
            logger.warning(f"Report rate limit exceeded for IP {ip}: "
                           f"{report_count}/{self.MAX_REPORTS_PER_MINUTE} per minute")
            raise HTTPException(
                status_code=429,
                detail=f"Too many reports from your IP ({report_count}/{self.MAX_REPORTS_PER_MINUTE} per minute). "
                       f"Please reduce request frequency."
            )

        tracker.report_requests.append(current_time)
        return True

    def get_stats(self) -> dict:
        self.global_cleanup()

        return {
            "tracked_ips": len(self.connections),
            "active_downloads": sum(t.active_downloads for t in self.connections.values()),
            "limits": {
                "max_downloads_per_ip": self.MAX_DOWNLOAD_CONNECTIONS,
                "max_reports_per_minute": self.MAX_REPORTS_PER_MINUTE,
            }
        }
