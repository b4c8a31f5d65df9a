import asyncio
import pytest
from minijupyter import launch
from minijupyter.errors import DiscoveryError
from .client_utils import *

pytest.importorskip("ipykernel")


def _python_store():
    store = KernelspecStore()
    try: spec = store.find_by_prefix("python")
    except DiscoveryError as exc: pytest.skip(f"kernelspec discovery unavailable: {exc}")
    if spec is None: pytest.skip("no python kernelspec installed")
    return store, spec


def test_execute_on_real_kernel():
    store, spec = _python_store()

    async def _run():
        async with await launch(spec.name, store=store, timeout=60, history_size=100) as client:
            assert await client.transport.is_alive()
            req = await client.exec_idle("print('hi'); 1+1", timeout=30)
            types = msg_types(list(req.messages))
            assert "stream" in types and "execute_result" in types
            assert states(req.messages)[0] == "busy"
            res = next(m for m in req.messages if m.msg_type == "execute_result")
            assert res.content["data"]["text/plain"] == "2"
            assert req.reply.content["status"] == "ok"
            assert req.reply in req.messages and req.last_message.is_status("idle")
            info = await client.request("kernel_info_request", timeout=30)
            assert info.reply.content["language_info"]["name"] == "python"

    run(_run())


def test_concurrent_requests_on_real_kernel():
    store, spec = _python_store()

    async def _run():
        async with await launch(spec.name, store=store, timeout=60, history_size=100) as client:
            reqs = [client.execute(f"{i}*2") for i in range(3)] + [client.kernel_info()]
            await asyncio.gather(*(r.wait_idle(30) for r in reqs))
            assert all(r.idle for r in reqs)
            replies = [r.reply for r in reqs]
            assert [r.msg_type for r in replies] == ["execute_reply"] * 3 + ["kernel_info_reply"]
            assert client.requests == {}

    run(_run())
