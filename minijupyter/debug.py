"Debug switches for the client: stderr logging with faulthandler, plus message-flow and request-state traces."
import faulthandler, logging, os, signal, sys

def envbool(name: str)->bool:
    v = (os.environ.get(name) or "").strip().lower()
    return v not in ("", "0", "false", "no")

enabled = envbool("MINIJUPYTER_DEBUG")
trace_msgs = envbool("MINIJUPYTER_DEBUG_MSGS")
_setup_done = False

def setup():
    "Run once per process when `MINIJUPYTER_DEBUG` is set: DEBUG logging to stderr, faulthandler, SIGUSR1 stack dump."
    global _setup_done
    if not enabled or _setup_done: return
    _setup_done = True
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.DEBUG, stream=sys.__stderr__, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    else: logging.getLogger("minijupyter").setLevel(logging.DEBUG)
    faulthandler.enable(file=sys.__stderr__)
    if hasattr(signal, "SIGUSR1"): faulthandler.register(signal.SIGUSR1, file=sys.__stderr__)

def tlog(log, prefix: str, channel: str, msg):
    "Trace one message crossing the dispatcher: channel, type, id, parent."
    if not trace_msgs: return
    log.warning("%s channel=%s type=%s id=%s parent=%s", prefix, channel, msg.msg_type, msg.id[:8], msg.parent_id[:8])

def tstate(log, req, state: str, note: str=""):
    "Trace a request state change (idle, abandoned, idle held back for a late reply)."
    if not trace_msgs: return
    log.warning("request %s id=%s -> %s%s", req.msg_type, req.id[:8], state, f" ({note})" if note else "")
