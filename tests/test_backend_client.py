import asyncio

from aiohttp import test_utils, web

from scanner_gateway import AttendanceClient, close_client, get_client


def _fake_backend(state):
    async def health(request):
        return web.json_response({"status": "online", "enrolled_templates": 2})

    async def roster(request):
        return web.json_response({"persons": [{"person_id": "P1", "person_name": "Alice", "templates": 1}], "count": 1})

    async def scan(request):
        state["in_flight"] += 1
        state["max_in_flight"] = max(state["max_in_flight"], state["in_flight"])
        try:
            form = await request.post()
            state["uploads"].append({
                "action": request.query["action"],
                "device_id": request.query["device_id"],
                "image": form["image"].file.read(),
            })
            await asyncio.sleep(0.05)
            if request.query["action"] == "lunch":
                return web.json_response({"detail": "Invalid action"}, status=400)
            return web.json_response({"type": "outcome", "outcome": "MATCH", "success": True, "message": "ok"})
        finally:
            state["in_flight"] -= 1

    app = web.Application()
    app.router.add_get("/", health)
    app.router.add_get("/roster", roster)
    app.router.add_post("/scan", scan)
    return app


def _run(scenario):
    state = {"in_flight": 0, "max_in_flight": 0, "uploads": []}

    async def runner():
        async with test_utils.TestServer(_fake_backend(state)) as server:
            client = AttendanceClient(str(server.make_url("/")), device_id="gate-1")
            try:
                return await scenario(client)
            finally:
                await client.close()

    return asyncio.run(runner()), state


def test_health_and_roster():
    async def scenario(client):
        return await client.health_check(), await client.list_roster()

    (health, roster), _ = _run(scenario)

    assert health["status"] == "online"
    assert roster["count"] == 1
    assert roster["persons"][0]["person_id"] == "P1"


def test_submit_capture_uploads_image():
    async def scenario(client):
        return await client.submit_capture(b"png-bytes", action="check-out")

    result, state = _run(scenario)

    assert result["outcome"] == "MATCH"
    assert state["uploads"] == [{"action": "check-out", "device_id": "gate-1", "image": b"png-bytes"}]


def test_one_scan_in_flight_per_terminal():
    async def scenario(client):
        return await asyncio.gather(*(client.submit_capture(b"img", device_id=f"d{i}") for i in range(3)))

    results, state = _run(scenario)

    assert all(r["success"] for r in results)
    assert state["max_in_flight"] == 1
    assert len(state["uploads"]) == 3


def test_backend_rejection_becomes_error_outcome():
    async def scenario(client):
        return await client.submit_capture(b"img", action="lunch")

    result, _ = _run(scenario)

    assert result["outcome"] == "ERROR"
    assert result["success"] is False
    assert result["message"] == "Backend error: 400"


def test_unreachable_backend():
    async def scenario():
        client = AttendanceClient("http://127.0.0.1:1")
        try:
            return await client.health_check(), await client.submit_capture(b"img")
        finally:
            await client.close()

    health, result = asyncio.run(scenario())

    assert health["status"] == "offline"
    assert result["outcome"] == "ERROR"
    assert result["message"] == "Connection failed"


def test_global_client_is_shared():
    async def scenario():
        client = get_client("http://example.invalid")
        assert get_client() is client
        await close_client()
        return get_client() is client

    assert asyncio.run(scenario()) is False
    asyncio.run(close_client())
