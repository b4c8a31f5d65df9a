"Error taxonomy for the client core."
from jupyter_client.kernelspec import NoSuchKernel

__all__ = ["MiniJupyterError", "DiscoveryError", "NotFoundError", "UnknownChannelError", "InvalidMessageTypeError", "Disconnected"]


class MiniJupyterError(Exception): "Base class for errors raised by minijupyter."


class DiscoveryError(MiniJupyterError, RuntimeError):
    "Kernelspec enumeration failed or produced output that could not be parsed."


class NotFoundError(MiniJupyterError, NoSuchKernel):
    "No kernelspec matches the requested name; a `KeyError` like `jupyter_client`'s own."


class UnknownChannelError(MiniJupyterError, ValueError):
    "A channel name outside the fixed channel set."


class InvalidMessageTypeError(MiniJupyterError, ValueError):
    "A reply type was derived from a message type that is not a request."


class Disconnected(MiniJupyterError, ConnectionError):
    "The client was torn down while the request was still outstanding."
