"""Entry point for the farm settings CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any


def parse_assignment(text: str) -> tuple[str, Any]:
    """``KEY=VALUE`` with VALUE decoded as JSON when possible."""
    key, sep, raw = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {text!r}")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return key.strip(), value


async def _run(args: argparse.Namespace) -> int:
    from autofarm.app import profile_paths
    from autofarm.core.config import load_config, resolve_database_path
    from autofarm.core.database import Database
    from autofarm.core.exceptions import SettingValidationError
    from autofarm.managers.settings_manager import SettingsManager

    config_file, data_dir, _ = profile_paths(args.profile)
    config = load_config(config_file)
    db = Database(resolve_database_path(config, data_dir))
    await db.init()
    try:
        manager = SettingsManager(db)
        await manager.load()
        if args.command == "set":
            try:
                change = await manager.update(dict(args.assignments))
            except SettingValidationError as e:
                print(f"error: {e}", file=sys.stderr)
                return 2
            for key, value in change.changed.items():
                print(f"{key} = {value!r}")
            if change.effects:
                print(f"effects: {', '.join(sorted(e.value for e in change.effects))}")
            return 0

        for key, value in manager.settings.model_dump(mode="json").items():
            print(f"{key} = {value!r}")
        return 0
    finally:
        await db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="AutoFarm settings")
    parser.add_argument(
        "--profile",
        default="default",
        help="Profile name -- isolates config, data, and logs",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("settings", help="Print the effective farm settings")
    set_parser = commands.add_parser("set", help="Validate and store settings")
    set_parser.add_argument("assignments", nargs="+", type=parse_assignment, metavar="KEY=VALUE")
    args = parser.parse_args()

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
