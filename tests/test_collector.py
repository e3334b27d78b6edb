import aiohttp
import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from ipranker.collector import Measurement, SampleCollector, build_report, endpoint_url


class TestHelpers:
    def test_ipv4_url(self):
        assert endpoint_url("192.0.2.1", 1000) == "https://192.0.2.1/dl?bytes=1000"

    def test_ipv6_url_is_bracketed(self):
        assert endpoint_url("2001:db8::1", 1000) == "https://[2001:db8::1]/dl?bytes=1000"

    def test_throughput(self):
        measurement = Measurement("192.0.2.1", ok=True, duration_ms=1000, bytes_received=5_000_000)

        assert measurement.throughput_mbps == pytest.approx(40.0)

    def test_failed_measurement_has_no_throughput(self):
        assert Measurement("192.0.2.1", ok=False, error="timeout").throughput_mbps == 0.0

    def test_build_report(self):
        measurement = Measurement("192.0.2.1", ok=True, duration_ms=1234.6, bytes_received=5_000_000)

        assert build_report(measurement, observed_at=42) == {
            "endpoint": "192.0.2.1",
            "bytesTransferred": 5_000_000,
            "durationMs": 1235,
            "observedAt": 42,
        }

    def test_build_report_never_sends_zero_duration(self):
        measurement = Measurement("192.0.2.1", ok=True, duration_ms=0.2, bytes_received=10)

        assert build_report(measurement, observed_at=0)["durationMs"] == 1


@pytest_asyncio.fixture
async def ranking_server():
    reports = []

    async def candidates(request):
        return web.json_response({"candidates": ["192.0.2.1", "192.0.2.2"]})

    async def report(request):
        body = await request.json()
        if body["endpoint"] == "192.0.2.66":
            return web.json_response({"accepted": False, "error": "invalid_sample"}, status=400)
        reports.append(body)
        return web.json_response({"accepted": True})

    app = web.Application()
    app.router.add_get("/api/candidates", candidates)
    app.router.add_post("/api/report", report)

    server = test_utils.TestServer(app)
    await server.start_server()
    server.reports = reports
    yield server
    await server.close()


@pytest.mark.asyncio
class TestSampleCollector:
    async def test_fetch_candidates(self, ranking_server):
        collector = SampleCollector("api.example.com", base_url=str(ranking_server.make_url("")))
        async with aiohttp.ClientSession() as session:
            assert await collector.fetch_candidates(session) == ["192.0.2.1", "192.0.2.2"]

    async def test_post_report(self, ranking_server):
        collector = SampleCollector("api.example.com", base_url=str(ranking_server.make_url("")))
        payload = build_report(Measurement("192.0.2.1", ok=True, duration_ms=500, bytes_received=1000), 7)

        async with aiohttp.ClientSession() as session:
            assert await collector.post_report(session, payload)
            assert not await collector.post_report(session, {**payload, "endpoint": "192.0.2.66"})

        assert ranking_server.reports == [payload]

    async def test_unreachable_endpoint_is_a_failed_measurement(self, ranking_server):
        collector = SampleCollector("api.example.com", base_url=str(ranking_server.make_url("")), timeout=2)

        measurements = await collector.run(candidates=["127.0.0.1"])

        assert len(measurements) == 1
        assert not measurements[0].ok
        assert collector.stats['failed'] == 1
        assert ranking_server.reports == []
