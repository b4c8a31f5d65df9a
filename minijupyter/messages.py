"Protocol message values and the factory that builds them."
import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping
from jupyter_client.session import Session, new_id
from .errors import InvalidMessageTypeError

__all__ = ["Message", "MessageFactory", "derive_reply_type", "channel_for", "request_defaults"]

_empty = MappingProxyType({})

request_defaults = dict(
    execute_request=dict(silent=False, store_history=True, user_expressions={}, allow_stdin=True, stop_on_error=True),
    inspect_request=dict(detail_level=0), history_request=dict(output=False, raw=True, hist_access_type="tail", n=10),
    shutdown_request=dict(restart=False), execute_reply=dict(execution_count=None))
control_types = {"shutdown_request", "interrupt_request", "debug_request"}
stdin_types = {"input_reply"}


def derive_reply_type(msg_type:str)->str:
    "Replace the first occurrence of `request` in `msg_type` with `reply`."
    if "request" not in (msg_type or ""): raise InvalidMessageTypeError(f"not a request type: {msg_type!r}")
    return msg_type.replace("request", "reply", 1)


def channel_for(msg_type:str)->str:
    "Channel a message of `msg_type` is sent on."
    if msg_type in control_types: return "control"
    if msg_type in stdin_types: return "stdin"
    return "shell"


def _frozen(v):
    if isinstance(v, Mapping): return MappingProxyType({k: _frozen(x) for k, x in v.items()}) if v else _empty
    if isinstance(v, (list, tuple)): return tuple(_frozen(x) for x in v)
    return v


def _freeze(d: Mapping|None)->Mapping:
    "Read-only view of `d`, nested mappings and lists included."
    return _empty if not d else _frozen(d)


def _thaw(v):
    "Plain dicts and lists again, for `jupyter_client`."
    if isinstance(v, Mapping): return {k: _thaw(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)): return [_thaw(x) for x in v]
    return v


@dataclass(frozen=True)
class Message:
    id:str
    msg_type:str
    parent_id:str = ""
    content:Mapping = field(default_factory=lambda: _empty)
    metadata:Mapping = field(default_factory=lambda: _empty)
    channel:str = ""

    @property
    def execution_state(self)->str|None: return self.content.get("execution_state") if self.msg_type == "status" else None

    def is_status(self, state:str|None=None)->bool:
        "True for a `status` message, optionally only one in `state`."
        if self.msg_type != "status": return False
        return state is None or self.execution_state == state

    def is_reply(self)->bool: return self.msg_type.endswith("_reply")

    def on(self, channel:str)->"Message":
        "Copy of this message tagged with `channel`."
        return Message(self.id, self.msg_type, self.parent_id, self.content, self.metadata, channel)

    @classmethod
    def from_dict(cls, msg: dict, channel:str="")->"Message":
        "Build from the nested dict shape `jupyter_client` channels yield."
        header = msg.get("header") or {}
        msg_type = msg.get("msg_type") or header.get("msg_type", "")
        msg_id = msg.get("msg_id") or header.get("msg_id", "")
        parent_id = (msg.get("parent_header") or {}).get("msg_id") or ""
        return cls(msg_id, msg_type, parent_id, _freeze(msg.get("content")), _freeze(msg.get("metadata")), channel)

    def to_dict(self, session: Session)->dict:
        "Nested message dict for `session`, keeping this message's id and parent linkage."
        hdr = session.msg_header(self.msg_type)
        hdr["msg_id"] = self.id
        msg = session.msg(self.msg_type, _thaw(self.content), header=hdr, metadata=_thaw(self.metadata))
        if self.parent_id: msg["parent_header"] = dict(msg_id=self.parent_id)
        return msg


class MessageFactory:
    "Allocates message ids and fills in protocol bookkeeping fields."

    def __init__(self, id_factory: Callable[[], str]=new_id):
        self.id_factory = id_factory

    def build(self, parent, msg_type:str, content: Mapping|None=None, metadata: Mapping|None=None)->Message:
        "Message of `msg_type` answering `parent` (a Request, Message or id), or an initiating one when `parent` is None."
        parent_id = parent if isinstance(parent, str) else getattr(parent, "id", "")
        merged = copy.deepcopy(request_defaults.get(msg_type, {})) | dict(content or {})
        return Message(self.id_factory(), msg_type, parent_id, _freeze(merged), _freeze(metadata))

    def request(self, msg_type:str, content: Mapping|None=None, metadata: Mapping|None=None)->Message:
        return self.build(None, msg_type, content, metadata)

    def reply(self, parent: Message, content: Mapping|None=None, status:str="ok")->Message:
        "Reply of the derived type for request `parent`."
        return self.build(parent, derive_reply_type(parent.msg_type), dict(status=status) | dict(content or {}))

    def status(self, parent: Message, state:str)->Message: return self.build(parent, "status", dict(execution_state=state))
