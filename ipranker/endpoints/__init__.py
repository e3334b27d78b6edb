"""
HTTP Endpoint Modules
=====================

FastAPI routers for the ranking service. Each module exposes a `router`
that main.py includes.

Modules:
- download: bounded random byte stream used by collectors to time downloads
- report: sample ingestion from collectors
- rank: ranked endpoint lists per network origin
- candidates: the candidate pool handed to collectors
- refresh: manual/cron trigger for the hot partition refresh
"""
