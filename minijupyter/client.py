"Client façade: sends typed requests, owns their trackers and a ring of recently handled messages."
import logging, threading
from collections import deque
from jupyter_client import AsyncKernelClient, AsyncKernelManager
from jupyter_client.session import new_id
from .channels import ChannelDispatcher
from .errors import Disconnected
from .kernelspec import Kernelspec, KernelspecStore, default_store
from .messages import Message, MessageFactory, channel_for
from .request import Request
from .transport import EchoKernel, KernelTransport
from . import config, debug as _dbg_mod

__all__ = ["Client", "RequestCommand", "launch", "attach"]

log = logging.getLogger("minijupyter.client")


class RequestCommand:
    def __init__(self, client: "Client"):
        "Request proxy for `client`: `cmd.kernel_info()` sends `kernel_info_request`."
        self.client = client

    def __getattr__(self, name:str):
        if name.startswith('_'): raise AttributeError(name)
        def _call(content: dict|None=None, **kwargs)->Request: return self.client.send(f"{name}_request", content, **kwargs)
        _call.__name__ = name
        return _call


class Client:
    "One session attached to a kernel through `transport`."

    def __init__(self, transport, store: KernelspecStore|None=None, history_size:int|None=None,
        factory: MessageFactory|None=None, kernel_id:str|None=None, kernelspec: Kernelspec|None=None):
        _dbg_mod.setup()
        self.transport, self.kernelspec = transport, kernelspec
        self.store = store if store is not None else default_store()
        self.factory = factory or MessageFactory()
        self.session_id = new_id()
        self.kernel_id = kernel_id or (kernelspec.name if kernelspec else type(transport).__name__)
        self.ring = deque(maxlen=history_size or config.history_size())
        self.requests = {}
        self.held_idle = {}
        self.lock = threading.RLock()
        self.closed = False
        self.transport_closed = False
        self.cmd_proxy = None
        self.dispatcher = ChannelDispatcher(transport)
        self.dispatcher.register_all(self.handle_message)
        transport.start(self.dispatcher)
        self.dispatcher.start()

    def __repr__(self): return f"<Client {self.kernel_id} in_flight={len(self.requests)}{' closed' if self.closed else ''}>"

    @classmethod
    def echo(cls, delay=None, **kwargs)->"Client":
        "Client attached to an in-memory `EchoKernel`."
        return cls(EchoKernel(delay), **kwargs)

    @property
    def history(self)->list[Message]:
        "Recently handled messages, oldest first."
        with self.lock: return list(self.ring)

    def last_messages(self, n:int)->list[Message]: return self.history[-n:] if n > 0 else []

    @property
    def cmd(self)->RequestCommand:
        if (proxy := self.cmd_proxy) is None: self.cmd_proxy = proxy = RequestCommand(self)
        return proxy

    def send(self, msg_type:str, content: dict|None=None, metadata: dict|None=None, **kwargs)->Request:
        "Build and dispatch a `msg_type` message; returns its Request without waiting for any reply."
        if self.closed: raise Disconnected("client is closed")
        if kwargs: content = dict(content or {}) | kwargs
        channel = channel_for(msg_type)
        msg = self.factory.request(msg_type, content, metadata).on(channel)
        req = Request(msg, channel)
        # stdin messages answer the kernel; nothing comes back parented to them
        track = channel != "stdin"
        if track:
            with self.lock: self.requests[req.id] = req
        self.dispatcher.start()
        try: self.dispatcher.send(channel, req)
        except Exception:
            with self.lock: self.requests.pop(req.id, None)
            raise
        log.debug("Sent %s id=%s on %s", msg_type, req.id[:8], channel)
        if not track: req.on_idle_message_observed()
        return req

    async def request(self, msg_type:str, content: dict|None=None, timeout:float|None=None, **kwargs)->Request:
        "Send and wait until the request is idle."
        req = self.send(msg_type, content, **kwargs)
        return await req.wait_idle(config.default_timeout() if timeout is None else timeout)

    def handle_message(self, channel:str, msg: Message):
        """Fold an inbound message into client state: history ring, then the owning request.

        Shell replies and iopub statuses arrive on separate sockets, so an idle status can overtake its reply. Such an
        idle is held back and folded in right after the reply, keeping busy, reply, idle in order for each request."""
        with self.lock:
            if self.closed: return
            req = self.requests.get(msg.parent_id) if msg.parent_id else None
            if req is None:
                self.ring.append(msg)
                if msg.parent_id: log.debug("No in-flight request for %s parent=%s", msg.msg_type, msg.parent_id[:8])
                return
            if msg.is_status("idle") and req.reply_type and req.reply is None:
                self.held_idle[req.id] = msg
                _dbg_mod.tstate(log, req, "idle held", f"awaiting {req.reply_type}")
                return
            batch, done = [msg], False
            if msg.msg_type == req.reply_type and req.id in self.held_idle: batch.append(self.held_idle.pop(req.id))
            due = []
            for m in batch:
                self.ring.append(m)
                cbs = req.record(m)
                if cbs: due.append((m, cbs))
                if m.is_status("idle"):
                    self.requests.pop(req.id, None)
                    done = True
        for m, cbs in due: req.run_callbacks(m, cbs)
        if done: req.on_idle_message_observed()

    def execute(self, code:str, **kwargs)->Request: return self.send("execute_request", dict(code=code), **kwargs)
    def kernel_info(self)->Request: return self.send("kernel_info_request")
    def is_complete(self, code:str)->Request: return self.send("is_complete_request", dict(code=code))
    def comm_info(self, target_name:str|None=None)->Request:
        return self.send("comm_info_request", {} if target_name is None else dict(target_name=target_name))

    def complete(self, code:str, cursor_pos:int|None=None)->Request:
        return self.send("complete_request", dict(code=code, cursor_pos=len(code) if cursor_pos is None else cursor_pos))

    def inspect(self, code:str, cursor_pos:int|None=None, detail_level:int=0)->Request:
        pos = len(code) if cursor_pos is None else cursor_pos
        return self.send("inspect_request", dict(code=code, cursor_pos=pos, detail_level=detail_level))

    def shutdown(self, restart: bool=False)->Request: return self.send("shutdown_request", dict(restart=restart))
    def interrupt(self)->Request: return self.send("interrupt_request")
    def input_reply(self, value:str)->Request: return self.send("input_reply", dict(value=value))

    def close(self)->list[Request]:
        "Stop handling messages and abandon every in-flight request; returns the abandoned requests."
        with self.lock:
            if self.closed: return []
            self.closed = True
            pending, self.requests = list(self.requests.values()), {}
            self.held_idle.clear()
        self.dispatcher.close()
        for req in pending: req.abandon()
        if pending: log.debug("Abandoned %d in-flight requests on close", len(pending))
        return pending

    async def aclose(self):
        "`close`, then stop the dispatcher pump and the transport."
        self.close()
        await self.dispatcher.aclose()
        if self.transport_closed: return
        self.transport_closed = True
        await self.transport.close()

    async def __aenter__(self): return self
    async def __aexit__(self, *exc): await self.aclose()


async def launch(name:str, store: KernelspecStore|None=None, timeout:float|None=None, **kwargs)->Client:
    "Start the kernel named `name` (or the first whose name starts with it) and attach a client."
    store = store if store is not None else default_store()
    spec = store.resolve(name)
    km = AsyncKernelManager(kernel_name=spec.name)
    await km.start_kernel()
    kc = km.client()
    kc.start_channels()
    try: await kc.wait_for_ready(timeout=timeout or config.default_timeout())
    except RuntimeError:
        kc.stop_channels()
        await km.shutdown_kernel(now=True)
        raise
    log.debug("Launched kernel %s (%s)", spec.name, km.kernel_id)
    return Client(KernelTransport(kc, km), store=store, kernel_id=km.kernel_id, kernelspec=spec, **kwargs)


async def attach(connection_file:str, store: KernelspecStore|None=None, timeout:float|None=None, **kwargs)->Client:
    "Attach a client to an already running kernel described by `connection_file`."
    kc = AsyncKernelClient()
    kc.load_connection_file(connection_file)
    kc.start_channels()
    try: await kc.wait_for_ready(timeout=timeout or config.default_timeout())
    except RuntimeError:
        kc.stop_channels()
        raise
    return Client(KernelTransport(kc), store=store, kernel_id=str(connection_file), **kwargs)
