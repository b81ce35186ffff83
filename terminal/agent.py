import argparse
import asyncio
import json
import os
import signal

from .config import TerminalConfig
from .errors import TerminalError
from .runtime import Terminal
from .session import SessionResolver


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


async def _cmd_pair(terminal: Terminal, args) -> int:
    ok = await terminal.submit_pairing_code(args.code, args.device_name)
    if not ok:
        _print({"ok": False, "error": terminal.notices[-1] if terminal.notices else "pairing failed"})
        return 1
    cred = terminal.credential
    _print({"ok": True, "store_id": cred.store_id, "store_name": cred.store_name, "role": cred.role})
    return 0


async def _cmd_status(terminal: Terminal, args) -> int:
    resolution = await SessionResolver(terminal.api, terminal.token_store).resolve()
    cred = resolution.credential
    _print(
        {
            "status": resolution.status,
            "store_id": cred.store_id if cred else None,
            "store_name": cred.store_name if cred else None,
            "role": cred.role if cred else None,
            "device_id": cred.device_id if cred else None,
        }
    )
    return 0 if cred else 1


async def _cmd_unbind(terminal: Terminal, args) -> int:
    await terminal.unbind()
    _print({"ok": True})
    return 0


async def _cmd_run(terminal: Terminal, args) -> int:
    terminal.reconciliation.subscribe(lambda snapshot, changed: _print({"settings_changed": changed}))
    screen = await terminal.start()
    if screen == "employee_login" and args.pin:
        await terminal.login_employee(args.pin)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    last_screen = None
    while not stop.is_set():
        if terminal.screen != last_screen:
            last_screen = terminal.screen
            _print({"screen": last_screen, "online": terminal.online})
        if terminal.screen == "pairing" and not args.stay_unpaired:
            return 2
        try:
            await asyncio.wait_for(stop.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            pass
    return 0


COMMANDS = {"pair": _cmd_pair, "status": _cmd_status, "unbind": _cmd_unbind, "run": _cmd_run}


async def _amain(cfg: TerminalConfig, args) -> int:
    terminal = Terminal(cfg)
    try:
        return await COMMANDS[args.command](terminal, args)
    except TerminalError as ex:
        _print({"ok": False, "error": str(ex)})
        return 1
    finally:
        await terminal.close()


def main(argv=None) -> int:
    cfg = TerminalConfig()
    parser = argparse.ArgumentParser(prog="terminal")
    parser.add_argument("--api", default=cfg.api_base_url, help="Backend base URL (default: POS_API_BASE_URL)")
    parser.add_argument(
        "--state",
        default=str(cfg.state_path),
        help="Device state JSON path (default: POS_STATE_PATH or terminal/device.json). One file per terminal.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_pair = sub.add_parser("pair", help="Bind this terminal to a store with a 6-digit pairing code")
    p_pair.add_argument("code")
    p_pair.add_argument("--device-name", default=None)

    sub.add_parser("status", help="Show the stored binding and whether the backend still accepts it")
    sub.add_parser("unbind", help="Release this terminal's binding")

    p_run = sub.add_parser("run", help="Run the session (heartbeat + realtime) until interrupted")
    p_run.add_argument("--pin", default=os.environ.get("POS_EMPLOYEE_PIN"), help="Employee PIN to log in with")
    p_run.add_argument("--stay-unpaired", action="store_true", help="Keep running after the binding is lost")

    args = parser.parse_args(argv)
    cfg.api_base_url = args.api.strip().rstrip("/")
    cfg.state_path = os.path.abspath(args.state)
    return asyncio.run(_amain(cfg, args))
