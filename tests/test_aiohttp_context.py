"""
End-to-end tests running the aiohttp transport context against an in-process
JSRO server.
"""

import asyncio
import itertools

import pytest
from aiohttp import test_utils, web

from jsro import (
    AioHttpContext, ConnectionOptions, ProtocolError, ServerError, TransportError, establish,
)


class ConnectionState:
    def __init__(self):
        self.messages = []
        self.changed = asyncio.Event()
        self.message_ids = itertools.count()


class JsroTestServer:
    """A tiny JSRO server exposing a single 'Counter' factory."""

    def __init__(self):
        self.connections = {}
        self.instances = {}
        self.deleted = []
        self._connection_ids = itertools.count(1)
        self._instance_ids = itertools.count(1)

        self.app = web.Application()
        self.app.router.add_get("/jsro/", self.handle_establish)
        self.app.router.add_post("/jsro/{cid}", self.handle_batch)
        self.app.router.add_get("/jsro/{cid}", self.handle_poll)
        self.app.router.add_get("/jsro/{cid}/{last}", self.handle_poll)
        self.app.router.add_delete("/jsro/{cid}", self.handle_delete)
        self.app.router.add_get("/broken", self.handle_broken)
        self.app.router.add_get("/garbage", self.handle_garbage)
        self.app.router.add_get("/not-utf8", self.handle_not_utf8)

    def push(self, state, message):
        state.messages.append({"id": next(state.message_ids), **message})
        state.changed.set()

    async def handle_establish(self, request):
        cid = f"conn-{next(self._connection_ids)}"
        self.connections[cid] = ConnectionState()
        return web.json_response({"connectionId": cid})

    async def handle_batch(self, request):
        state = self.connections[request.match_info["cid"]]
        for call in await request.json():
            reply = {"correlationId": call["correlationId"]}
            if call["action"] == "create":
                instance_id = f"counter-{next(self._instance_ids)}"
                self.instances[instance_id] = (call.get("spec") or {}).get("start", 0)
                reply["result"] = {"instanceId": instance_id, "methods": ["increment", "fail"]}
                self.push(state, reply)
            elif call["action"] == "invoke":
                instance_id = call["instanceId"]
                if call["method"] == "increment":
                    self.instances[instance_id] += call["args"][0]
                    reply["result"] = self.instances[instance_id]
                    self.push(state, reply)
                    self.push(state, {
                        "event": "changed",
                        "instanceId": instance_id,
                        "args": [self.instances[instance_id]],
                    })
                else:
                    reply["error"] = {"message": "failure requested"}
                    self.push(state, reply)
            elif call["action"] == "destroy":
                self.instances.pop(call["instanceId"], None)
                self.push(state, reply)
        return web.json_response([])

    async def handle_poll(self, request):
        state = self.connections[request.match_info["cid"]]
        last = int(request.match_info.get("last", -1))

        fresh = [m for m in state.messages if m["id"] > last]
        if not fresh:
            state.changed.clear()
            try:
                await asyncio.wait_for(state.changed.wait(), 0.2)
            except asyncio.TimeoutError:
                pass
            fresh = [m for m in state.messages if m["id"] > last]
        return web.json_response(fresh)

    async def handle_delete(self, request):
        self.deleted.append(request.match_info["cid"])
        return web.Response(status=204)

    async def handle_broken(self, request):
        return web.Response(status=500, text="kaput")

    async def handle_garbage(self, request):
        return web.Response(text="this is not json")

    async def handle_not_utf8(self, request):
        return web.Response(body=b'{"name": "\xff\xfe"}', content_type="application/json")


async def wait_until(predicate, timeout=5.0):
    async def _wait():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_wait(), timeout)


@pytest.mark.asyncio
class TestAioHttpContext:
    """Test the aiohttp transport context."""

    async def test_round_trip(self):
        server = JsroTestServer()
        async with test_utils.TestServer(server.app) as http:
            url = str(http.make_url("/jsro/"))
            connection = await establish(url, options=ConnectionOptions(poll_timeout=5000))
            assert connection.connection_id == "conn-1"

            counter = await asyncio.wait_for(connection.create("Counter", {"start": 1}), 5)
            changes = []
            counter.on("changed", changes.append)

            assert await asyncio.wait_for(counter.increment(5), 5) == 6
            with pytest.raises(ServerError, match="failure requested"):
                await asyncio.wait_for(counter.fail(), 5)
            await wait_until(lambda: changes == [6])

            counter.destroy()
            await wait_until(lambda: not server.instances)

            connection.disconnect()
            await wait_until(lambda: server.deleted == ["conn-1"])
            await wait_until(lambda: connection._context._session is None)

    async def test_http_error_is_transport_error(self):
        server = JsroTestServer()
        async with test_utils.TestServer(server.app) as http:
            context = AioHttpContext()
            try:
                with pytest.raises(TransportError) as info:
                    await context.request("GET", str(http.make_url("/broken")))
                assert info.value.status == 500
            finally:
                await context.close()

    async def test_invalid_json_is_protocol_error(self):
        server = JsroTestServer()
        async with test_utils.TestServer(server.app) as http:
            context = AioHttpContext(timeout=5)
            try:
                with pytest.raises(ProtocolError):
                    await context.request("GET", str(http.make_url("/garbage")))
            finally:
                await context.close()

    async def test_undecodable_body_is_protocol_error(self):
        server = JsroTestServer()
        async with test_utils.TestServer(server.app) as http:
            context = AioHttpContext(timeout=5)
            try:
                with pytest.raises(ProtocolError):
                    await context.request("GET", str(http.make_url("/not-utf8")))
            finally:
                await context.close()

    async def test_context_manager_deletes_before_exit(self):
        server = JsroTestServer()
        async with test_utils.TestServer(server.app) as http:
            url = str(http.make_url("/jsro/"))
            async with await establish(url, options=ConnectionOptions(poll_timeout=5000)) as connection:
                counter = await asyncio.wait_for(connection.create("Counter", {"start": 2}), 5)
                assert await asyncio.wait_for(counter.increment(1), 5) == 3

            assert not connection.connected
            assert server.deleted == ["conn-1"]
            assert connection._context._session is None

    async def test_establish_http_failure(self):
        server = JsroTestServer()
        async with test_utils.TestServer(server.app) as http:
            with pytest.raises(TransportError):
                await establish(str(http.make_url("/broken")))

    async def test_timers(self):
        context = AioHttpContext()
        fired = []

        context.set_timeout(lambda: fired.append("kept"), 10)
        token = context.set_timeout(lambda: fired.append("cleared"), 10)
        context.clear_timeout(token)
        await asyncio.sleep(0.05)

        assert fired == ["kept"]

    async def test_defer(self):
        context = AioHttpContext()
        future = context.defer()
        assert not future.done()
        future.set_result(1)
        assert await future == 1
