"Correlation state for one outstanding request: pending until its idle status arrives."
import asyncio, logging, threading
from collections import deque
from enum import Enum
from typing import Callable
from .errors import Disconnected, InvalidMessageTypeError
from .messages import Message, derive_reply_type
from . import config, debug as _dbg_mod

__all__ = ["RequestState", "Request"]

log = logging.getLogger("minijupyter.request")


class RequestState(str, Enum):
    PENDING = "pending"
    IDLE = "idle"


def _settle(fut: asyncio.Future, exc: BaseException|None=None):
    "Resolve `fut` on its own loop, from whichever thread we are on."
    def settle():
        if fut.done(): return
        if exc is None: fut.set_result(None)
        else: fut.set_exception(exc)
    loop = fut.get_loop()
    if loop.is_closed(): return
    try: running = asyncio.get_running_loop()
    except RuntimeError: running = None
    if running is loop: settle()
    else: loop.call_soon_threadsafe(settle)


class Request:
    "A sent request message and the messages addressed to it."

    def __init__(self, message: Message, channel:str, history_size:int|None=None):
        self.message, self.channel = message, channel
        self.messages = deque(maxlen=history_size or config.request_history_size())
        self.reply = None
        self.error = None
        self.callbacks = {}
        self.waiters = []
        self.lock = threading.Lock()
        self.idle_event = threading.Event()
        try: self.reply_type = derive_reply_type(message.msg_type)
        except InvalidMessageTypeError: self.reply_type = None

    @property
    def id(self)->str: return self.message.id

    @property
    def msg_type(self)->str: return self.message.msg_type

    @property
    def idle(self)->bool: return self.idle_event.is_set() and self.error is None

    @property
    def state(self)->RequestState: return RequestState.IDLE if self.idle else RequestState.PENDING

    @property
    def abandoned(self)->bool: return self.error is not None

    @property
    def last_message(self)->Message|None: return self.messages[-1] if self.messages else None

    def __repr__(self): return f"<Request {self.msg_type} id={self.id[:8]} channel={self.channel} {self.state.value}>"

    def add_callback(self, msg_type:str, fn: Callable[[Message], None])->"Request":
        "Call `fn(message)` for each message of `msg_type` (or `*` for all) routed to this request."
        self.callbacks.setdefault(msg_type, []).append(fn)
        return self

    def record(self, msg: Message)->list|None:
        "Append `msg` to the log and capture the reply; returns the callbacks due, or None once idle or abandoned."
        with self.lock:
            if self.idle_event.is_set(): return None
            self.messages.append(msg)
            if self.reply is None and msg.msg_type == self.reply_type: self.reply = msg
            return self.callbacks.get(msg.msg_type, []) + self.callbacks.get("*", [])

    def run_callbacks(self, msg: Message, cbs: list):
        for cb in cbs:
            try: cb(msg)
            except Exception as exc: log.warning("Callback for %s on request %s raised", msg.msg_type, self.id[:8], exc_info=exc)

    def observe(self, msg: Message)->bool:
        "Record `msg` and run its callbacks; False once the request is idle or abandoned."
        cbs = self.record(msg)
        if cbs is None: return False
        self.run_callbacks(msg, cbs)
        return True

    def on_idle_message_observed(self)->bool:
        "Mark the request idle and release its waiters; later calls are no-ops returning False."
        with self.lock:
            if self.idle_event.is_set(): return False
            self.idle_event.set()
            waiters, self.waiters = self.waiters, []
        for fut in waiters: _settle(fut)
        _dbg_mod.tstate(log, self, "idle", f"{len(waiters)} waiters")
        return True

    def abandon(self, exc: BaseException|None=None)->bool:
        "Release all waiters with `exc` (default `Disconnected`); the request never becomes idle."
        with self.lock:
            if self.idle_event.is_set(): return False
            self.error = exc or Disconnected(f"client closed before {self.msg_type} {self.id[:8]} became idle")
            self.idle_event.set()
            waiters, self.waiters = self.waiters, []
        for fut in waiters: _settle(fut, self.error)
        _dbg_mod.tstate(log, self, "abandoned", type(self.error).__name__)
        return True

    async def wait_idle(self, timeout:float|None=None)->"Request":
        "Suspend until idle; `TimeoutError` after `timeout` seconds leaves the request pending."
        loop = asyncio.get_running_loop()
        with self.lock:
            if self.error is not None: raise self.error
            if self.idle_event.is_set(): return self
            fut = loop.create_future()
            self.waiters.append(fut)
        try: await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError: raise TimeoutError(f"{self.msg_type} {self.id[:8]} not idle after {timeout}s") from None
        finally:
            with self.lock:
                if fut in self.waiters: self.waiters.remove(fut)
        return self

    def wait(self, timeout:float|None=None)->"Request":
        "Blocking `wait_idle` for threads other than the client's loop."
        if not self.idle_event.wait(timeout): raise TimeoutError(f"{self.msg_type} {self.id[:8]} not idle after {timeout}s")
        if self.error is not None: raise self.error
        return self
