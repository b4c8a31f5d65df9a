import argparse
import asyncio
import sys

from .client import Client, launch
from .errors import MiniJupyterError
from .kernelspec import KernelspecStore, default_store
from .request import Request
from . import config


def _list_kernelspecs(argv: list[str], store: KernelspecStore|None=None)->int:
    parser = argparse.ArgumentParser(prog="minijupyter kernelspecs")
    parser.add_argument("--force", action="store_true", help="Re-run kernelspec discovery")
    parser.add_argument("--prefix", help="Show the first kernelspec whose name starts with PREFIX")
    args = parser.parse_args(argv)
    store = store or default_store()
    shown = list(store.discover(force=args.force).values())
    if args.prefix is not None: shown = [spec for spec in [store.find_by_prefix(args.prefix)] if spec is not None]
    if not shown:
        print("No kernels available")
        return 1
    width = max(len(spec.name) for spec in shown)
    for spec in shown: print(f"{spec.name.ljust(width)}    {spec.language:<10}  {spec.display_name}")
    return 0


def _print_outputs(req: Request):
    for msg in req.messages:
        content = msg.content
        if msg.msg_type == "stream": print(content.get("text", ""), end="")
        elif msg.msg_type in ("execute_result", "display_data"): print(content.get("data", {}).get("text/plain", ""))
        elif msg.msg_type == "error": print("\n".join(content.get("traceback", [])) or f"{content.get('ename')}: {content.get('evalue')}")


async def _exec(code:str, kernel:str, echo: bool, timeout:float, store: KernelspecStore|None=None)->int:
    client = Client.echo(store=store) if echo else await launch(kernel, store=store, timeout=timeout)
    async with client:
        req = await client.request("execute_request", dict(code=code), timeout=timeout)
        _print_outputs(req)
        status = req.reply.content.get("status") if req.reply is not None else None
        print(f"[{client.kernel_id}] {req.reply_type} status={status}", file=sys.stderr)
        for msg in client.history: print(f"  {msg.channel:<8} {msg.msg_type:<16} {msg.execution_state or ''}", file=sys.stderr)
    return 0 if status == "ok" else 1


def _run_exec(argv: list[str], store: KernelspecStore|None=None)->int:
    parser = argparse.ArgumentParser(prog="minijupyter exec")
    parser.add_argument("code", help="Code to execute")
    parser.add_argument("-k", "--kernel", default="python", help="Kernel name or name prefix")
    parser.add_argument("--echo", action="store_true", help="Use the in-memory echo kernel")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the kernel to go idle")
    args = parser.parse_args(argv)
    timeout = config.default_timeout() if args.timeout is None else args.timeout
    return asyncio.run(_exec(args.code, args.kernel, args.echo, timeout, store=store))


def main(argv: list[str]|None=None)->int:
    argv = sys.argv[1:] if argv is None else argv
    commands = dict(kernelspecs=_list_kernelspecs, exec=_run_exec)
    if not argv or argv[0] not in commands:
        raise SystemExit(f"usage: minijupyter {{{','.join(commands)}}} ...")
    try: return commands[argv[0]](argv[1:])
    except (MiniJupyterError, TimeoutError) as exc: raise SystemExit(f"minijupyter: {exc}") from exc


if __name__ == "__main__":
    raise SystemExit(main())
