from importlib.metadata import PackageNotFoundError, version
from .errors import DiscoveryError, Disconnected, InvalidMessageTypeError, MiniJupyterError, NotFoundError, UnknownChannelError
from .kernelspec import Kernelspec, KernelspecStore, default_store
from .messages import Message, MessageFactory, channel_for, derive_reply_type
from .channels import CHANNELS, ChannelDispatcher
from .request import Request, RequestState
from .transport import EchoKernel, KernelTransport
from .client import Client, attach, launch

try:
    __version__ = version("minijupyter")
except PackageNotFoundError:  # pragma: no cover - local editable without metadata
    __version__ = "0.0.0+local"

__all__ = ["Client", "launch", "attach", "Request", "RequestState", "Message", "MessageFactory", "derive_reply_type", "channel_for",
    "CHANNELS", "ChannelDispatcher", "EchoKernel", "KernelTransport", "Kernelspec", "KernelspecStore", "default_store",
    "MiniJupyterError", "DiscoveryError", "NotFoundError", "UnknownChannelError", "InvalidMessageTypeError", "Disconnected",
    "__version__"]
