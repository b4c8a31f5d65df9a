"Environment-driven settings; each helper falls back to its default on missing or invalid values."
import os, shlex

__all__ = ["env_float", "env_int", "env_str", "history_size", "request_history_size", "default_timeout", "kernelspec_cmd",
    "echo_delay"]


def env_float(name:str, default:float)->float:
    "Return float env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return float(raw)
    except ValueError: return default


def env_int(name:str, default:int)->int:
    "Return positive int env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: value = int(raw)
    except ValueError: return default
    return value if value > 0 else default


def env_str(name:str, default:str|None=None)->str|None:
    raw = (os.environ.get(name) or "").strip()
    return raw or default


def history_size()->int: return env_int("MINIJUPYTER_HISTORY_SIZE", 10)
def request_history_size()->int: return env_int("MINIJUPYTER_REQUEST_HISTORY", 32)
def default_timeout()->float: return env_float("MINIJUPYTER_TIMEOUT", 10.0)
def echo_delay()->float: return max(0.0, env_float("MINIJUPYTER_ECHO_DELAY", 0.0))


def kernelspec_cmd()->list[str]|None:
    "Enumeration command override from `MINIJUPYTER_KERNELSPEC_CMD`, split like a shell would."
    raw = env_str("MINIJUPYTER_KERNELSPEC_CMD")
    return shlex.split(raw) if raw else None
