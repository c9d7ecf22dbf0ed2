"""Argument parsing helpers for the ``aldl-link`` CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Mapping, Optional

from ..configuration import polling_settings
from .workflows import (
    handle_decode,
    handle_explain,
    handle_library_activate,
    handle_library_add,
    handle_library_list,
    handle_library_remove,
    handle_poll,
    handle_ports,
)


def _positive_int(value: str) -> int:
    numeric = int(value)
    if numeric <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return numeric


def _non_negative_float(value: str) -> float:
    numeric = float(value)
    if numeric < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative number, got {value!r}")
    return numeric


def _add_library_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--library",
        dest="library_path",
        type=Path,
        default=None,
        help="JSON library store overriding [tool.aldl_link.library].path.",
    )


def build_parser(config: Optional[Mapping[str, Any]] = None) -> argparse.ArgumentParser:
    config = dict(config or {})
    logging_cfg = dict(config.get("logging", {}))
    polling = polling_settings(config)

    parser = argparse.ArgumentParser(
        prog="aldl-link",
        description="ALDL Link – poll, decode and log GM ALDL engine control modules",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to the TOML configuration file to load.",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=logging_cfg.get("level", "info"),
        help="Logging level (e.g. debug, info, warning).",
    )
    parser.add_argument(
        "--log-output",
        dest="log_output",
        default=logging_cfg.get("output", "stderr"),
        help="Logging destination (stdout, stderr or a file path).",
    )
    parser.add_argument(
        "--log-format",
        dest="log_format",
        choices=("json", "text"),
        default=logging_cfg.get("format", "json"),
        help="Logging formatter (json or text).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ports_parser = subparsers.add_parser("ports", help="List the serial ports visible to pyserial.")
    ports_parser.set_defaults(handler=handle_ports)

    decode_parser = subparsers.add_parser(
        "decode",
        help="Decode one response packet with a definition and print its readings.",
    )
    decode_parser.add_argument(
        "definition",
        help="Definition manifest (.toml/.json) or the id/name of a library entry.",
    )
    decode_parser.add_argument("packet", help="Packet bytes as hex, e.g. '00 64 1F'.")
    _add_library_argument(decode_parser)
    decode_parser.set_defaults(handler=handle_decode)

    poll_parser = subparsers.add_parser(
        "poll",
        help="Poll the ECM, record a session log and export it.",
    )
    poll_parser.add_argument(
        "definition",
        nargs="?",
        default=None,
        help="Definition manifest or library id/name (default: active library entry).",
    )
    source = poll_parser.add_mutually_exclusive_group()
    source.add_argument("--port", default=None, help="Serial device of the ALDL interface.")
    source.add_argument(
        "--simulate",
        action="store_true",
        help="Poll a simulated ECM instead of a serial port.",
    )
    poll_parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Seed of the simulated ECM data stream (default: 0).",
    )
    poll_parser.add_argument(
        "--baud-rate",
        dest="baud_rate",
        type=_positive_int,
        default=None,
        help="Override the definition's baud rate.",
    )
    poll_parser.add_argument(
        "--cycles",
        type=_positive_int,
        default=None,
        help="Stop after this many exchanges (default: run until interrupted).",
    )
    poll_parser.add_argument(
        "--interval",
        type=_non_negative_float,
        default=None,
        help=f"Pause between exchanges in seconds (default: {polling.interval:g}).",
    )
    poll_parser.add_argument(
        "--log-dir",
        dest="log_dir",
        type=Path,
        default=None,
        help="Directory receiving the exported session log.",
    )
    poll_parser.add_argument(
        "--format",
        choices=("csv", "parquet"),
        default="csv",
        help="Session log export format (default: csv).",
    )
    poll_parser.add_argument(
        "--analyze",
        action="store_true",
        help="Ask the analysis service to summarise the last reading after polling.",
    )
    _add_library_argument(poll_parser)
    poll_parser.set_defaults(handler=handle_poll)

    library_parser = subparsers.add_parser("library", help="Manage the definition library.")
    _add_library_argument(library_parser)
    library_commands = library_parser.add_subparsers(dest="library_command", required=True)

    list_parser = library_commands.add_parser("list", help="List stored definitions.")
    list_parser.set_defaults(handler=handle_library_list)

    add_parser = library_commands.add_parser(
        "add",
        help="Store a definition manifest, replacing any entry with the same name.",
    )
    add_parser.add_argument("path", type=Path, help="Definition manifest (.toml or .json).")
    add_parser.add_argument(
        "--activate",
        action="store_true",
        help="Make the stored definition the active one.",
    )
    add_parser.set_defaults(handler=handle_library_add)

    activate_parser = library_commands.add_parser("activate", help="Select the active definition.")
    activate_parser.add_argument("definition_id", help="Identifier of the definition.")
    activate_parser.set_defaults(handler=handle_library_activate)

    remove_parser = library_commands.add_parser("remove", help="Delete a stored definition.")
    remove_parser.add_argument("definition_id", help="Identifier of the definition.")
    remove_parser.set_defaults(handler=handle_library_remove)

    explain_parser = subparsers.add_parser(
        "explain",
        help="Ask the analysis service to explain a diagnostic trouble code.",
    )
    explain_parser.add_argument("code", help="Trouble code, e.g. 'Code 14'.")
    explain_parser.set_defaults(handler=handle_explain)

    return parser


__all__ = ["build_parser"]
