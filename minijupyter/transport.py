"Transports behind the channel dispatcher: an in-memory echo kernel and a `jupyter_client` kernel connection."
import asyncio, logging
from queue import Empty
from typing import Callable
import zmq
from fastcore.basics import store_attr
from jupyter_client import AsyncKernelClient, AsyncKernelManager
from .errors import Disconnected
from .messages import Message, MessageFactory
from . import config

__all__ = ["EchoKernel", "KernelTransport"]

log = logging.getLogger("minijupyter.transport")


class EchoKernel:
    "Stand-in kernel: answers every request with busy, an echoed reply and idle, each step scheduled later on the loop."

    def __init__(self, delay: float|Callable[[], float]|None=None, factory: MessageFactory|None=None):
        self.delay = config.echo_delay() if delay is None else delay
        self.factory = factory or MessageFactory()
        self.dispatcher = None
        self.tasks = set()
        self.received = []
        self.execution_count = 0
        self.closed = False

    def start(self, dispatcher): self.dispatcher = dispatcher

    def send(self, channel:str, msg: Message):
        "Accept `msg` and schedule its busy/reply/idle sequence; needs a running loop."
        if self.closed: raise Disconnected("echo kernel is closed")
        self.received.append((channel, msg))
        if channel == "hb" or "request" not in msg.msg_type: return
        task = asyncio.get_running_loop().create_task(self._respond(channel, msg))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def reply_content(self, msg: Message)->dict:
        content = dict(msg.content)
        if msg.msg_type == "execute_request":
            self.execution_count += 1
            content["execution_count"] = self.execution_count
        return content

    def _delay(self)->float: return self.delay() if callable(self.delay) else self.delay

    async def _respond(self, channel:str, msg: Message):
        f = self.factory
        steps = [("iopub", f.status(msg, "busy")), (channel, f.reply(msg, self.reply_content(msg))), ("iopub", f.status(msg, "idle"))]
        for out_channel, out in steps:
            await asyncio.sleep(self._delay())
            self.dispatcher.deliver(out_channel, out)

    async def close(self):
        self.closed = True
        tasks = list(self.tasks)
        for task in tasks: task.cancel()
        if tasks: await asyncio.gather(*tasks, return_exceptions=True)


class KernelTransport:
    "Messages over a `jupyter_client` AsyncKernelClient, optionally owning the kernel's manager."

    recv_channels = ("shell", "iopub", "stdin", "control")

    def __init__(self, kc: AsyncKernelClient, km: AsyncKernelManager|None=None, poll:float=0.1):
        store_attr()
        self.dispatcher = None
        self.tasks = []
        self.stopped = False

    def start(self, dispatcher):
        "Start one receive task per message channel on the running loop."
        self.dispatcher = dispatcher
        loop = asyncio.get_running_loop()
        self.tasks = [loop.create_task(self._recv_loop(name), name=f"minijupyter-{name}-recv") for name in self.recv_channels]

    def send(self, channel:str, msg: Message):
        if channel == "hb": raise ValueError("heartbeat channel does not carry requests")
        if channel == "iopub": raise ValueError("iopub channel is receive-only")
        if self.stopped: raise Disconnected("kernel transport is closed")
        getattr(self.kc, f"{channel}_channel").send(msg.to_dict(self.kc.session))

    async def _recv_loop(self, name:str):
        chan = getattr(self.kc, f"{name}_channel")
        while not self.stopped:
            try: msg = await chan.get_msg(timeout=self.poll)
            except Empty: continue
            except (zmq.ZMQError, asyncio.CancelledError, RuntimeError) as exc:
                log.debug("%s receive loop exiting: %s", name, type(exc).__name__)
                return
            try: self.dispatcher.deliver(name, Message.from_dict(msg, name))
            except Exception as exc: log.error("%s delivery failed", name, exc_info=exc)

    async def is_alive(self)->bool: return await self.kc.is_alive()

    async def close(self):
        "Stop receiving, close the channels and shut down an owned kernel."
        self.stopped = True
        for task in self.tasks: task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.kc.stop_channels()
        if self.km is not None: await self.km.shutdown_kernel(now=True)
