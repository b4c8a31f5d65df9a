"Routing of outbound requests and inbound messages across the fixed channel set."
import asyncio, logging, threading
from collections import deque
from typing import Callable
from .errors import Disconnected, UnknownChannelError
from .messages import Message
from . import debug as _dbg_mod

__all__ = ["CHANNELS", "check_channel", "ThreadBoundAsyncQueue", "ChannelDispatcher"]

log = logging.getLogger("minijupyter.channels")
CHANNELS = ("shell", "iopub", "stdin", "control", "hb")
inbox_stop = object()


def check_channel(channel:str)->str:
    "Return `channel`, or raise `UnknownChannelError` when it is not one of `CHANNELS`."
    if channel not in CHANNELS: raise UnknownChannelError(f"unknown channel {channel!r}; expected one of {', '.join(CHANNELS)}")
    return channel


class ThreadBoundAsyncQueue:
    "Thread-safe put + asyncio get once bound to an event loop."

    def __init__(self):
        self.loop, self.q, self.pending, self.lock = None, None, deque(), threading.Lock()
        self.closed = False

    @property
    def bound(self)->bool: return self.q is not None

    def bind(self, loop: asyncio.AbstractEventLoop):
        "Attach to `loop` (call from the loop's thread) and flush items put before binding."
        with self.lock:
            self.loop = loop
            self.q = asyncio.Queue()
            for item in self.pending: self.q.put_nowait(item)
            self.pending.clear()

    def put(self, item)->bool:
        "Queue `item` from any thread; returns False when it was dropped."
        if self.closed: return False
        return self._put(item)

    def _put(self, item)->bool:
        with self.lock:
            if self.loop is None:
                self.pending.append(item)
                return True
            loop = self.loop
        try: loop.call_soon_threadsafe(self.q.put_nowait, item)
        except RuntimeError:
            log.debug("Inbox put after loop closed; dropping")
            return False
        return True

    async def get(self):
        if self.q is None: raise RuntimeError("queue not bound")
        return await self.q.get()

    def drain_nowait(self)->list:
        if self.q is None:
            with self.lock: return list(self.pending)
        out = []
        while True:
            try: out.append(self.q.get_nowait())
            except asyncio.QueueEmpty: return out

    def close(self):
        "Refuse further puts and wake the consumer."
        self.closed = True
        self._put(inbox_stop)


class ChannelDispatcher:
    "Hands outbound requests to a transport and inbound messages to the handler registered per channel."

    def __init__(self, transport=None):
        self.transport = transport
        self.handlers = {}
        self.lock = threading.RLock()
        self.inbox = ThreadBoundAsyncQueue()
        self.pump_task = None
        self.closed = False
        self.sent = self.delivered = self.dropped = 0

    def register(self, channel:str, handler: Callable[[str, Message], None]):
        "Route inbound messages on `channel` to `handler(channel, message)`."
        self.handlers[check_channel(channel)] = handler

    def register_all(self, handler: Callable[[str, Message], None]):
        for channel in CHANNELS: self.register(channel, handler)

    def start(self)->bool:
        "Bind the inbox to the running loop and start the pump; False when no loop is running yet."
        if self.pump_task is not None or self.closed: return self.pump_task is not None
        try: loop = asyncio.get_running_loop()
        except RuntimeError: return False
        self.inbox.bind(loop)
        self.pump_task = loop.create_task(self._pump(), name="minijupyter-inbox")
        return True

    def send(self, channel:str, request):
        "Hand the message of `request` (a Request or Message) to the transport on `channel`."
        check_channel(channel)
        if self.closed: raise Disconnected("dispatcher is closed")
        if self.transport is None: raise RuntimeError("no transport attached")
        msg = getattr(request, "message", request)
        _dbg_mod.tlog(log, "send", channel, msg)
        self.transport.send(channel, msg)
        self.sent += 1

    def deliver(self, channel:str, message: Message):
        "Invoke the handler for `channel` with `message`; deliveries are serialized."
        check_channel(channel)
        if message.channel != channel: message = message.on(channel)
        with self.lock:
            if self.closed:
                self.dropped += 1
                log.debug("Dropping %s on %s after close", message.msg_type, channel)
                return
            handler = self.handlers.get(channel)
            if handler is None:
                self.dropped += 1
                log.debug("No handler for %s; dropping %s", channel, message.msg_type)
                return
            _dbg_mod.tlog(log, "deliver", channel, message)
            handler(channel, message)
            self.delivered += 1

    def post(self, channel:str, message: Message)->bool:
        "Thread-safe `deliver`: queue for the pump on the dispatcher's loop."
        check_channel(channel)
        if self.closed:
            self.dropped += 1
            return False
        return self.inbox.put((channel, message))

    async def _pump(self):
        while True:
            item = await self.inbox.get()
            if item is inbox_stop: return
            channel, message = item
            try: self.deliver(channel, message)
            except Exception as exc: log.error("%s delivery failed for %s", channel, message.msg_type, exc_info=exc)

    def close(self):
        "Stop delivering; later deliveries and posts are dropped."
        with self.lock: self.closed = True
        self.inbox.close()

    async def aclose(self):
        self.close()
        task, self.pump_task = self.pump_task, None
        if task is None or task.done(): return
        try: await asyncio.wait_for(task, timeout=1)
        except asyncio.TimeoutError: task.cancel()
