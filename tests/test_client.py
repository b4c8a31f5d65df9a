import asyncio, threading
import pytest
from minijupyter.errors import Disconnected
from minijupyter.messages import MessageFactory
from minijupyter.request import RequestState
from .client_utils import *


def test_execute_round_trip_on_echo_kernel():
    async def _run():
        async with Client.echo(history_size=10) as client:
            req = await client.request("execute_request", dict(code="1+1"), timeout=TIMEOUT)
            assert req.state == RequestState.IDLE
            last = client.last_messages(3)
            assert msg_types(last) == ["status", "execute_reply", "status"]
            assert states(last) == ["busy", None, "idle"]
            assert all(m.parent_id == req.id for m in last)
            assert [m.channel for m in last] == ["iopub", "shell", "iopub"]
            assert req.reply is last[1]
            assert req.reply.content["code"] == "1+1"
            assert req.reply.content["status"] == "ok"
            assert req.reply.content["execution_count"] == 1
            assert client.requests == {}

    run(_run())


def test_exec_idle_helper_counts_executions():
    async def _run():
        async with Client.echo() as client:
            first = await client.exec_idle("a = 1")
            second = await client.exec_idle("a")
            assert first.reply.content["execution_count"] == 1
            assert second.reply.content["execution_count"] == 2

    run(_run())


def test_history_ring_keeps_last_n():
    async def _run():
        async with Client.echo(history_size=5) as client:
            f = MessageFactory()
            parent = f.request("execute_request")
            sent = [f.build(parent, "stream", dict(name="stdout", text=str(i))).on("iopub") for i in range(12)]
            for i, msg in enumerate(sent):
                client.handle_message("iopub", msg)
                assert len(client.history) == min(i + 1, 5)
            assert client.history == sent[-5:]
            assert client.last_messages(2) == sent[-2:]
            assert client.last_messages(0) == []

    run(_run())


def test_history_ring_with_requests_stays_bounded():
    async def _run():
        async with Client.echo(history_size=4) as client:
            for i in range(5): await client.exec_idle(f"x{i}")
            hist = client.history
            assert len(hist) == 4
            assert states(hist[-3:]) == ["busy", None, "idle"]

    run(_run())


def test_concurrent_requests_each_see_busy_reply_idle():
    async def _run():
        async with Client.echo(delay=jitter(0, 0.01), history_size=200) as client:
            reqs = [client.execute(f"print({i})") for i in range(8)]
            assert len(client.requests) == 8
            done = await asyncio.gather(*(r.wait_idle(TIMEOUT) for r in reqs))
            assert all(r.idle for r in done)
            hist = client.history
            for req in reqs:
                assert request_sequence(hist, req) == ["busy", "execute_reply", "idle"]
                assert request_sequence(list(req.messages), req) == ["busy", "execute_reply", "idle"]
            counts = sorted(r.reply.content["execution_count"] for r in reqs)
            assert counts == list(range(1, 9))
            assert client.requests == {}

    run(_run())


def test_waiting_after_idle_returns_immediately():
    async def _run():
        async with Client.echo() as client:
            req = await client.exec_idle("1")
            assert await req.wait_idle(timeout=0.01) is req
            assert await req.wait_idle() is req

    run(_run())


def test_timeout_leaves_request_in_flight():
    async def _run():
        async with Client.echo(delay=0.2) as client:
            req = client.execute("slow")
            with pytest.raises(TimeoutError): await req.wait_idle(timeout=0.05)
            assert req.state == RequestState.PENDING
            assert req.id in client.requests
            assert await req.wait_idle(timeout=TIMEOUT) is req
            assert req.id not in client.requests

    run(_run())


def test_close_abandons_pending_requests():
    async def _run():
        client = Client.echo(delay=0.5)
        req = client.execute("never")
        waiter = asyncio.create_task(req.wait_idle(timeout=TIMEOUT))
        await asyncio.sleep(0)
        abandoned = client.close()
        assert abandoned == [req]
        with pytest.raises(Disconnected): await waiter
        assert not req.idle and req.abandoned
        n = len(client.history)
        client.handle_message("iopub", MessageFactory().status(req, "idle"))
        assert len(client.history) == n
        with pytest.raises(Disconnected): client.execute("again")
        assert client.close() == []
        await client.aclose()
        assert client.transport.closed

    run(_run())


def test_messages_for_unknown_parent_only_reach_history():
    async def _run():
        async with Client.echo() as client:
            f = MessageFactory()
            stray = f.status(f.request("execute_request"), "idle").on("iopub")
            client.handle_message("iopub", stray)
            assert client.history[-1] is stray
            assert client.requests == {}

    run(_run())


def test_cmd_proxy_and_typed_helpers():
    async def _run():
        async with Client.echo() as client:
            info = await client.cmd.kernel_info().wait_idle(TIMEOUT)
            assert info.msg_type == "kernel_info_request"
            assert info.reply.msg_type == "kernel_info_reply"
            hist = await client.cmd.history(n=3).wait_idle(TIMEOUT)
            assert hist.message.content["n"] == 3
            assert hist.message.content["hist_access_type"] == "tail"
            comp = client.complete("pri")
            assert comp.message.content["cursor_pos"] == 3
            insp = client.inspect("len", detail_level=1)
            assert dict(insp.message.content) == dict(detail_level=1, code="len", cursor_pos=3)
            await asyncio.gather(comp.wait_idle(TIMEOUT), insp.wait_idle(TIMEOUT))
            with pytest.raises(AttributeError): client.cmd._private

    run(_run())


def test_control_and_stdin_routing():
    async def _run():
        async with Client.echo() as client:
            shut = client.shutdown(restart=True)
            intr = client.interrupt()
            inp = client.input_reply("42")
            assert shut.channel == "control" and intr.channel == "control"
            assert inp.channel == "stdin"
            assert inp.id not in client.requests
            await asyncio.gather(shut.wait_idle(TIMEOUT), intr.wait_idle(TIMEOUT))
            assert shut.reply.channel == "control"
            assert shut.reply.content["restart"] is True
            channels = [ch for ch, _ in client.transport.received]
            assert channels == ["control", "control", "stdin"]

    run(_run())


def test_send_failure_unregisters_request():
    class FailingTransport:
        def start(self, dispatcher): pass
        def send(self, channel, msg): raise OSError("socket gone")
        async def close(self): pass

    async def _run():
        client = Client(FailingTransport())
        with pytest.raises(OSError): client.execute("x")
        assert client.requests == {}
        await client.aclose()

    run(_run())


def test_kwargs_merge_into_content():
    async def _run():
        async with Client.echo() as client:
            req = client.execute("x", silent=True, store_history=False)
            assert req.message.content["silent"] is True
            assert req.message.content["store_history"] is False
            await req.wait_idle(TIMEOUT)

    run(_run())


def _swapped(req, f):
    "Kernel traffic for `req` with the iopub idle overtaking the shell reply."
    return [("iopub", f.status(req, "busy")), ("iopub", f.status(req, "idle")), (req.channel, f.reply(req))]


def test_idle_before_reply_is_held_until_reply():
    async def _run():
        async with Client.echo(delay=60) as client:
            f = MessageFactory()
            req = client.execute("1+1")
            busy, idle, reply = [m for _, m in _swapped(req, f)]
            client.handle_message("iopub", busy.on("iopub"))
            client.handle_message("iopub", idle.on("iopub"))
            assert req.state == RequestState.PENDING
            assert req.id in client.requests
            assert request_sequence(client.history, req) == ["busy"]
            client.handle_message("shell", reply.on("shell"))
            assert await req.wait_idle(timeout=1) is req
            assert req.reply is not None and req.reply.id == reply.id
            assert request_sequence(list(req.messages), req) == ["busy", "execute_reply", "idle"]
            assert request_sequence(client.history, req) == ["busy", "execute_reply", "idle"]
            assert client.requests == {} and client.held_idle == {}

    run(_run())


def test_ordering_holds_for_interleaved_requests_through_dispatcher():
    async def _run():
        async with Client.echo(delay=60, history_size=100) as client:
            f = MessageFactory()
            reqs = [client.execute(f"x{i}") for i in range(3)] + [client.kernel_info(), client.shutdown()]
            traffic = [_swapped(req, f) for req in reqs]
            # round-robin across requests, each with its idle ahead of its reply
            for step in range(3):
                for msgs in reversed(traffic): client.dispatcher.deliver(*msgs[step])
            await asyncio.gather(*(r.wait_idle(TIMEOUT) for r in reqs))
            for req in reqs:
                assert req.reply is not None and req.reply.msg_type == req.reply_type
                assert request_sequence(client.history, req) == ["busy", req.reply_type, "idle"]
                assert request_sequence(list(req.messages), req) == ["busy", req.reply_type, "idle"]

    run(_run())


def test_posted_messages_keep_order_when_idle_overtakes_reply():
    async def _run():
        async with Client.echo(delay=60) as client:
            f = MessageFactory()
            req = client.execute("1+1")
            msgs = _swapped(req, f)
            t = threading.Thread(target=lambda: [client.dispatcher.post(ch, m) for ch, m in msgs])
            t.start()
            t.join()
            await req.wait_idle(TIMEOUT)
            assert req.reply.msg_type == "execute_reply"
            assert request_sequence(client.history, req) == ["busy", "execute_reply", "idle"]

    run(_run())


def test_close_drops_held_idle_and_abandons():
    async def _run():
        client = Client.echo(delay=60)
        f = MessageFactory()
        req = client.execute("x")
        client.handle_message("iopub", f.status(req, "idle").on("iopub"))
        waiter = asyncio.create_task(req.wait_idle(TIMEOUT))
        await asyncio.sleep(0)
        assert client.close() == [req]
        assert client.held_idle == {}
        with pytest.raises(Disconnected): await waiter
        await client.aclose()

    run(_run())


def test_stdin_send_completes_on_send_and_survives_close():
    async def _run():
        client = Client.echo()
        inp = client.input_reply("42")
        assert inp.idle and inp.id not in client.requests
        waiter = asyncio.create_task(inp.wait_idle(timeout=1))
        assert await waiter is inp
        assert client.close() == []
        assert inp.idle
        await client.aclose()

    run(_run())


def test_callbacks_run_without_client_lock():
    async def _run():
        async with Client.echo() as client:
            acquired = []

            def lock_free():
                ok = client.lock.acquire(timeout=1)
                if ok: client.lock.release()
                acquired.append(ok)

            def on_reply(msg):
                t = threading.Thread(target=lock_free)
                t.start()
                t.join()

            req = client.execute("1")
            req.add_callback("execute_reply", on_reply)
            await req.wait_idle(TIMEOUT)
            assert acquired == [True]

    run(_run())
