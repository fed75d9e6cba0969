"""Command-line tool for generating, running and listing SQL migrations."""

from __future__ import annotations

import argparse
import json
import os
import sqlite3
import sys
from datetime import datetime
from typing import Any, Sequence

from sqlitepool.db import Config, MigrationError, open_db

_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def _format_value(value: Any) -> str:
    text = str(value)
    needs_quotes = (
        text == ""
        or any(ch.isspace() or ch in '="' or not ch.isprintable() for ch in text)
    )
    return json.dumps(text) if needs_quotes else text


def _log(level: str, msg: str, **attrs: Any) -> None:
    now = datetime.now().astimezone().isoformat(timespec="milliseconds")
    parts = [f"time={now}", f"level={level}", f"msg={_format_value(msg)}"]
    parts.extend(f"{key}={_format_value(value)}" for key, value in attrs.items())
    print(" ".join(parts), file=sys.stdout, flush=True)


def generate_file(directory: str | os.PathLike, file_name: str, sep: str) -> str:
    """Create an empty migration file named ``<timestamp><sep><file_name>.sql``.

    The directory is created when missing; the path of the new file is returned.
    """
    os.makedirs(directory, mode=0o755, exist_ok=True)
    name = datetime.now().strftime(_TIMESTAMP_FORMAT) + sep + file_name + ".sql"
    path = os.path.join(os.fspath(directory), name)
    with open(path, "w", encoding="utf-8"):
        pass
    return path


def _build_parser(default_dir: str, default_db: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mig8", description="Manage SQLite migration files."
    )
    parser.add_argument(
        "-dir", "--dir", dest="dir", default=default_dir,
        help="Path to the migration directory.",
    )
    parser.add_argument(
        "-db", "--db", dest="db", default=default_db,
        help="Path to the database file.",
    )
    parser.add_argument(
        "-file", "--file", dest="file", default="",
        help="Name of the migration file. This generates the sql file for you.",
    )
    parser.add_argument(
        "-sep", "--sep", dest="sep", default="_",
        help="Separator to use when generating a filename.",
    )
    parser.add_argument(
        "-run", "--run", dest="run", action="store_true",
        help="Run the migration.",
    )
    parser.add_argument(
        "-list", "--list", dest="list", action="store_true",
        help="List all ran migrations.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the migration tool and return the process exit code."""
    mig_dir = os.environ.get("MIG_DIR")
    if mig_dir is None:
        _log("WARN", "MIG_DIR not found in environment")
    db_path = os.environ.get("DB_PATH")
    if db_path is None:
        _log("WARN", "DB_PATH not found in environment")

    args = _build_parser(mig_dir or "", db_path or "").parse_args(argv)

    if not args.db:
        _log("ERROR", "DB_PATH not provided")
        return 1
    if not args.dir:
        _log("ERROR", "MIG_DIR not provided")
        return 1

    try:
        client = open_db(Config(db_path=args.db))
    except (sqlite3.Error, OSError, ValueError) as err:
        _log("ERROR", "Failed to open database", error=err)
        return 1

    with client:
        if args.file and not args.run and not args.list:
            try:
                path = generate_file(args.dir, args.file, args.sep)
            except OSError as err:
                _log("ERROR", "Failed to generate migration file", error=err)
                return 1
            _log("INFO", "Migration file generated", file=path)
            return 0

        if args.run:
            try:
                client.run_migrations(args.dir, args.sep)
            except (sqlite3.Error, OSError, MigrationError, UnicodeDecodeError) as err:
                _log("ERROR", "Failed to run migrations", error=err)
                return 1
            _log("INFO", "Migrations ran successfully")
            return 0

        if args.list:
            try:
                migrations = client.list_migrations()
            except sqlite3.Error as err:
                _log("ERROR", "Failed to list migrations", error=err)
                return 1
            _log("INFO", "Migrations listed successfully:\n" + "\n".join(migrations))
            return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())