#!/usr/bin/env python3
"""
ipranker Startup Script
=======================

Runs the ranking service under uvicorn, with optional HTTPS.
"""

import asyncio
import logging
import os
import sys
from typing import Optional

import uvicorn

from ipranker.ranking_config import ranking_config

logging.basicConfig(
    level=getattr(logging, ranking_config.log_level.upper(), logging.INFO),
    format='%(asctime)s - IPRANKER - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ServerStarter:
    """Startup manager for the ranking service"""

    def __init__(self, ssl_keyfile=None, ssl_certfile=None):
        self.ssl_keyfile = ssl_keyfile
        self.ssl_certfile = ssl_certfile
        self.ssl_enabled = bool(ssl_keyfile and ssl_certfile)
        self.server: Optional[uvicorn.Server] = None

    def build_server(self, host: str, port: int) -> uvicorn.Server:
        config_kwargs = {
            "app": "ipranker.main:app",
            "host": host,
            "port": port,
            "log_level": ranking_config.log_level.lower(),
            "access_log": True,
        }

        if self.ssl_enabled:
            config_kwargs["ssl_keyfile"] = self.ssl_keyfile
            config_kwargs["ssl_certfile"] = self.ssl_certfile
            logger.info("🔒 Server using SSL certificates")

        self.server = uvicorn.Server(uvicorn.Config(**config_kwargs))
        return self.server

    async def run(self, host: str, port: int) -> bool:
        server = self.build_server(host, port)

        protocol = "https" if self.ssl_enabled else "http"
        logger.info(f"🚀 Starting ipranker on {protocol}://{host}:{port}")
        logger.info(f"📋 Store: {ranking_config.store_backend} ({ranking_config.db_path}), "
                    f"hot partitions: {ranking_config.hot_partitions}")

        try:
            await server.serve()
        except Exception as e:
            logger.error(f"❌ Server error: {e}")
            return False
        return True


async def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="ipranker endpoint ranking service")
    parser.add_argument("--host", type=str, default=os.getenv("IPRANKER_HOST", "0.0.0.0"), help="Bind address")
    parser.add_argument("--port", type=int, default=int(os.getenv("IPRANKER_PORT", 8000)), help="Server port")
    parser.add_argument("--ssl-keyfile", type=str, help="SSL key file path for HTTPS")
    parser.add_argument("--ssl-certfile", type=str, help="SSL certificate file path for HTTPS")

    args = parser.parse_args()

    starter = ServerStarter(args.ssl_keyfile, args.ssl_certfile)
    success = await starter.run(args.host, args.port)
    return 0 if success else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
