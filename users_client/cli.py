from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from users_core.view import ViewState

from .dashboard import Dashboard
from .logging_config import setup_logging
from .settings import load_settings

log = logging.getLogger("users_client.cli")


def _print_table(dash: Dashboard) -> None:
    proj = dash.view()
    print(f"{'id':>6}  {'name':<30}  email")
    for r in proj.rows:
        print(f"{r.id:>6}  {r.name:<30}  {r.email}")
    stats = dash.stats()
    flag = " (offline cache)" if stats.degraded else ""
    print(f"-- page {proj.page}/{proj.page_count}, {proj.total_count} match(es), {stats.total} total{flag}")


def _print_notices(dash: Dashboard) -> None:
    for n in dash.drain_notices():
        stream = sys.stderr if n.kind == "error" else sys.stdout
        print(f"[{n.kind}] {n.message}", file=stream)


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    if args.api_base:
        settings.api_base = args.api_base.rstrip("/")
    if args.command != "watch":
        settings.live_updates = False
    log.debug("Running %s against %s", args.command, settings.api_base)
    dash = Dashboard(settings=settings)
    try:
        await dash.load()
        if dash.engine.error is not None:
            _print_notices(dash)
            return 2

        if args.command == "list":
            dash.state = ViewState(
                query=args.query,
                sort_key=args.sort,
                sort_direction="desc" if args.desc else "asc",
                page=args.page,
                page_size=args.page_size or settings.page_size,
            )
            _print_table(dash)
        elif args.command == "export":
            dash.state = ViewState(
                query=args.query,
                sort_key=args.sort,
                sort_direction="desc" if args.desc else "asc",
            )
            text = dash.export_csv()
            Path(args.path).write_text(text, encoding="utf-8", newline="")
            print(f"Wrote {dash.view().total_count} record(s) to {args.path}")
        elif args.command == "import":
            text = Path(args.path).read_text(encoding="utf-8")
            report = await dash.import_csv(text)
            print(f"created={len(report.created)} skipped={len(report.skipped)} failed={len(report.failed)}")
        elif args.command == "delete":
            if len(args.ids) == 1:
                await dash.delete(args.ids[0])
            else:
                for rid in args.ids:
                    dash.toggle_select(rid)
                await dash.delete_selected()
        elif args.command == "watch":
            dash.start_live()
            _print_table(dash)
            last = dash.live.updates_applied
            loop = asyncio.get_running_loop()
            deadline = loop.time() + args.seconds if args.seconds > 0 else None
            while deadline is None or loop.time() < deadline:
                await asyncio.sleep(args.interval)
                if dash.live.updates_applied != last:
                    last = dash.live.updates_applied
                    _print_table(dash)
                _print_notices(dash)
        _print_notices(dash)
        return 0
    finally:
        await dash.close()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="users-admin", description="Users admin dashboard (terminal edition)")
    ap.add_argument("--config", default=os.getenv("USERS_ADMIN_CONFIG"), help="YAML settings file")
    ap.add_argument("--api-base", default=None, help="Override USERS_API_BASE")
    ap.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"))
    sub = ap.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="Print one page of users")
    p_list.add_argument("-q", "--query", default="")
    p_list.add_argument("--sort", choices=["id", "name", "email"], default="name")
    p_list.add_argument("--desc", action="store_true")
    p_list.add_argument("--page", type=int, default=1)
    p_list.add_argument("--page-size", type=int, default=None)

    p_export = sub.add_parser("export", help="Write the matching users to a CSV file")
    p_export.add_argument("path")
    p_export.add_argument("-q", "--query", default="")
    p_export.add_argument("--sort", choices=["id", "name", "email"], default="id")
    p_export.add_argument("--desc", action="store_true")

    p_import = sub.add_parser("import", help="Create users from a CSV file")
    p_import.add_argument("path")

    p_delete = sub.add_parser("delete", help="Delete users by id")
    p_delete.add_argument("ids", type=int, nargs="+")

    p_watch = sub.add_parser("watch", help="Print the table whenever a live update arrives")
    p_watch.add_argument("--seconds", type=float, default=0.0, help="Stop after this long (0 runs until interrupted)")
    p_watch.add_argument("--interval", type=float, default=1.0)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, component="cli", to_file=False)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
