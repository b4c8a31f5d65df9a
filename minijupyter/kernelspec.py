"""Kernelspec discovery and caching.

Enumeration runs an external listing command (by default `jupyter kernelspec list` through
`jupyter_client.kernelspecapp`), which honours `JUPYTER_PATH`. The result is held as one immutable
snapshot per store: first use populates it, `discover(force=True)` replaces it wholesale, and a
failed refresh leaves the previous snapshot in place.
"""
import logging, os, re, shlex, subprocess, sys, threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping
from jupyter_client.kernelspec import KernelSpec
from traitlets import TraitError
from .errors import DiscoveryError, NotFoundError
from . import config

__all__ = ["CONNECTION_FILE", "Kernelspec", "KernelspecStore", "parse_listing", "load_kernelspec", "default_store"]

log = logging.getLogger("minijupyter.kernelspec")
CONNECTION_FILE = "{connection_file}"


@dataclass(frozen=True)
class Kernelspec:
    name:str
    display_name:str
    language:str
    argv:tuple
    env:Mapping = field(default_factory=dict)
    interrupt_mode:str = "signal"
    metadata:Mapping = field(default_factory=dict)
    resource_dir:str = ""

    def launch_argv(self, connection_file:str)->list[str]:
        "Launch command with the connection-file placeholder replaced by `connection_file`."
        return [tok.replace(CONNECTION_FILE, str(connection_file)) for tok in self.argv]


def parse_listing(text:str)->list[tuple[str, str]]:
    "Parse `<name> <path>` lines following the header line of a kernelspec listing."
    out = []
    for lineno, line in enumerate(text.splitlines()[1:], start=2):
        if not line.strip(): continue
        parts = line.split(None, 1)
        if len(parts) != 2: raise DiscoveryError(f"malformed kernelspec listing line {lineno}: {line!r}")
        out.append((parts[0], parts[1].strip()))
    return out


def load_kernelspec(name:str, path:str)->Kernelspec:
    "Read `kernel.json` under `path`; `DiscoveryError` when missing, invalid or incomplete."
    try: spec = KernelSpec.from_resource_dir(path)
    except (OSError, ValueError, TypeError, TraitError) as exc:
        raise DiscoveryError(f"cannot load kernelspec {name!r} from {path}: {exc}") from exc
    missing = [k for k in ("argv", "display_name", "language") if not getattr(spec, k)]
    if missing: raise DiscoveryError(f"kernelspec {name!r} at {path} lacks {', '.join(missing)}")
    if not any(CONNECTION_FILE in tok for tok in spec.argv):
        log.warning("Kernelspec %s argv has no %s placeholder", name, CONNECTION_FILE)
    return Kernelspec(name=name, display_name=spec.display_name, language=spec.language, argv=tuple(spec.argv),
        env=MappingProxyType(dict(spec.env)), interrupt_mode=spec.interrupt_mode, metadata=MappingProxyType(dict(spec.metadata)),
        resource_dir=path)


class KernelspecStore:
    "Kernelspec cache keyed by name, in enumeration order."

    def __init__(self, command: list[str]|None=None, timeout:float=60):
        self.command = list(command) if command else None
        self.timeout = timeout
        self.specs = None
        self.lock = threading.Lock()
        self.refreshes = 0

    def enumeration_command(self)->list[str]:
        return self.command or config.kernelspec_cmd() or [sys.executable, "-m", "jupyter_client.kernelspecapp", "list"]

    def _enumerate(self)->str:
        cmd = self.enumeration_command()
        log.debug("Enumerating kernelspecs: %s", shlex.join(cmd))
        try: res = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, env=os.environ.copy())
        except (OSError, subprocess.SubprocessError) as exc: raise DiscoveryError(f"kernelspec enumeration failed: {exc}") from exc
        if res.returncode != 0:
            raise DiscoveryError(f"{shlex.join(cmd)} exited with status {res.returncode}: {res.stderr.strip()[-500:]}")
        return res.stdout

    def _load(self)->Mapping[str, Kernelspec]:
        specs = {}
        for name, path in parse_listing(self._enumerate()):
            if name in specs:
                log.warning("Duplicate kernelspec %s at %s ignored", name, path)
                continue
            specs[name] = load_kernelspec(name, path)
        return MappingProxyType(specs)

    def discover(self, force: bool=False)->Mapping[str, Kernelspec]:
        "Snapshot of all kernelspecs, enumerating on first use or when `force` is set."
        snapshot = self.specs
        if snapshot is not None and not force: return snapshot
        with self.lock:
            if self.specs is not None and not force: return self.specs
            snapshot = self._load()
            self.specs = snapshot
            self.refreshes += 1
        log.debug("Discovered %d kernelspecs: %s", len(snapshot), ", ".join(snapshot))
        return snapshot

    def get(self, name:str)->Kernelspec:
        "Exact, case-sensitive lookup; `NotFoundError` when absent."
        try: return self.discover()[name]
        except KeyError: raise NotFoundError(name) from None

    def find_by_prefix(self, prefix:str|None)->Kernelspec|None:
        "First kernelspec in enumeration order whose name starts with `prefix`; None for no match or empty prefix."
        if not prefix: return None
        return next((spec for name, spec in self.discover().items() if name.startswith(prefix)), None)

    def find(self, pattern:str)->list[Kernelspec]:
        "All kernelspecs whose name matches the regular expression `pattern`."
        rx = re.compile(pattern)
        return [spec for name, spec in self.discover().items() if rx.search(name)]

    def resolve(self, name:str)->Kernelspec:
        "Exact match, else first prefix match, else `NotFoundError`."
        specs = self.discover()
        if name in specs: return specs[name]
        spec = self.find_by_prefix(name)
        if spec is None: raise NotFoundError(name)
        return spec

    def clear(self):
        with self.lock: self.specs = None

    def names(self)->list[str]: return list(self.discover())
    def __contains__(self, name)->bool: return name in self.discover()
    def __iter__(self)->Iterator[str]: return iter(self.discover())
    def __len__(self)->int: return len(self.discover())


_default_store = None
_default_lock = threading.Lock()


def default_store()->KernelspecStore:
    "The process-wide store; pass an explicit store where tests need isolation."
    global _default_store
    with _default_lock:
        if _default_store is None: _default_store = KernelspecStore()
        return _default_store
