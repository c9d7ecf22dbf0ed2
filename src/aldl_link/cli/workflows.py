"""Command handlers behind the ``aldl-link`` subcommands.

Each handler receives the parsed namespace plus the loaded configuration and
returns the text printed on stdout.  Failures are raised as
:class:`~aldl_link.cli.errors.CliError`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Mapping

from ..analysis import ANALYSIS_FALLBACK, DEFAULT_MODEL, GeminiAnalysisService, GuardedAnalysis
from ..configuration import (
    analysis_settings,
    library_path,
    polling_settings,
    serial_settings,
)
from ..connection import ConnectionManager
from ..decoder import TelemetrySample, decode
from ..definitions import Definition, parse_hex_bytes
from ..errors import LinkRefused
from ..library import DefinitionLibrary, LibraryStore, load_definition_file
from ..scheduler import PollScheduler
from ..session_log import SessionLogger
from ..simulator import SimulatedEcm, SimulatedTransport
from ..transport import SerialTransport, Transport, TransportOptions, available_ports
from .errors import CliError

__all__ = [
    "handle_decode",
    "handle_explain",
    "handle_library_activate",
    "handle_library_add",
    "handle_library_list",
    "handle_library_remove",
    "handle_poll",
    "handle_ports",
    "resolve_definition",
]


logger = logging.getLogger(__name__)


_PARQUET_DEPENDENCY_MESSAGE = (
    "Writing Parquet logs requires a pandas Parquet engine "
    "(install 'pyarrow' or 'fastparquet')."
)


def _library_store(namespace: argparse.Namespace, config: Mapping[str, Any]) -> LibraryStore:
    override = getattr(namespace, "library_path", None)
    return LibraryStore(override if override is not None else library_path(config))


def _load_library(store: LibraryStore) -> DefinitionLibrary:
    try:
        return store.load()
    except (OSError, ValueError) as exc:
        raise CliError(
            f"Cannot read definition library: {exc}",
            category="io",
            context={"path": store.path},
        ) from exc


def resolve_definition(
    reference: str | None,
    namespace: argparse.Namespace,
    config: Mapping[str, Any],
) -> Definition:
    """Resolve ``reference`` as a manifest path, a library id or a library name.

    ``None`` selects the active definition of the library.
    """

    if reference:
        candidate = Path(reference).expanduser()
        if candidate.suffix and candidate.exists():
            try:
                return load_definition_file(candidate)
            except (OSError, ValueError, KeyError) as exc:
                raise CliError(
                    f"Invalid definition file {candidate}: {exc}",
                    category="usage",
                    context={"path": candidate},
                ) from exc
    library = _load_library(_library_store(namespace, config))
    if reference:
        definition = library.by_id(reference) or library.get(reference)
    else:
        definition = library.active
    if definition is None:
        raise CliError(
            f"Definition '{reference}' not found." if reference else "No active definition.",
            category="not_found",
            context={"definition": reference},
        )
    return definition


def handle_ports(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    ports = available_ports()
    if not ports:
        return "No serial ports found."
    return "\n".join(ports)


def handle_decode(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    definition = resolve_definition(namespace.definition, namespace, config)
    try:
        packet = parse_hex_bytes(namespace.packet)
    except ValueError as exc:
        raise CliError(
            f"Invalid packet hex string: {namespace.packet!r}",
            category="usage",
            context={"packet": namespace.packet},
        ) from exc
    sample = decode(definition, packet)
    lines = []
    for parameter in definition.parameters:
        if parameter.id not in sample:
            continue
        unit = f" {parameter.units}" if parameter.units else ""
        lines.append(f"{parameter.id}={sample[parameter.id]:g}{unit}")
    return "\n".join(lines)


def _build_transport(
    namespace: argparse.Namespace,
    config: Mapping[str, Any],
    definition: Definition,
) -> Transport:
    if namespace.simulate:
        packet_size = max(
            (parameter.packet_offset + parameter.byte_count for parameter in definition.parameters),
            default=0,
        )
        return SimulatedTransport(
            SimulatedEcm(
                request_command=definition.request_command,
                packet_size=packet_size,
                seed=namespace.seed,
            )
        )
    settings = serial_settings(config)
    port = namespace.port or settings.port
    if not port:
        raise CliError(
            "No serial port given; use --port, --simulate or [tool.aldl_link.serial].port.",
            category="usage",
        )
    return SerialTransport(port, read_timeout=settings.read_timeout)


def _export_session(session_log: SessionLogger, directory: Path, fmt: str) -> Path | None:
    if fmt == "csv":
        return session_log.export_to(directory)
    if not len(session_log):
        return None
    destination = directory.expanduser() / f"aldl_log_{int(time.time() * 1000)}.parquet"
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        session_log.to_frame().to_parquet(destination, index=False)
    except ImportError as exc:
        raise CliError(_PARQUET_DEPENDENCY_MESSAGE, category="io") from exc
    return destination


def handle_poll(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    definition = resolve_definition(namespace.definition, namespace, config)
    transport = _build_transport(namespace, config, definition)
    interval = (
        namespace.interval
        if namespace.interval is not None
        else polling_settings(config).interval
    )
    baud_rate = namespace.baud_rate or serial_settings(config).baud_rate

    session_log = SessionLogger()
    with ConnectionManager(transport, definition=definition) as connection:
        try:
            connection.open(TransportOptions(baud_rate=baud_rate))
        except LinkRefused as exc:
            raise CliError.from_exception(exc, category="io") from exc
        scheduler = PollScheduler(
            connection,
            definition=definition,
            session_log=session_log,
            interval=interval,
            max_cycles=namespace.cycles,
        )
        session_log.start()
        try:
            scheduler.start()
        except KeyboardInterrupt:
            scheduler.stop()
            logger.info("Polling interrupted by user.", extra={"event": "cli.poll_interrupted"})
        finally:
            session_log.stop()

    stats = scheduler.statistics
    lines = [
        f"definition: {definition.name}",
        f"transmitted: {stats['transmitted']}",
        f"received: {stats['received']}",
        f"empty responses: {stats['empty_responses']}",
    ]
    if namespace.analyze:
        lines.append(f"analysis: {_analyze_latest(scheduler.latest, config)}")
    if namespace.log_dir is not None:
        destination = _export_session(session_log, namespace.log_dir, namespace.format)
        lines.append(f"log: {destination}" if destination else "log: nothing recorded")
    failure = scheduler.last_error
    if failure is not None:
        raise CliError(
            "\n".join(lines + [f"error: {failure.message}"]),
            context={**failure.context, "received": stats["received"]},
        ) from failure
    return "\n".join(lines)


def handle_library_list(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    library = _load_library(_library_store(namespace, config))
    if not len(library):
        return "Library is empty."
    lines = []
    for definition in library:
        marker = "*" if definition.id == library.active_id else " "
        lines.append(
            f"{marker} {definition.id}\t{definition.name}\t"
            f"{len(definition.parameters)} parameters\t{definition.baud_rate} baud"
        )
    return "\n".join(lines)


def handle_library_add(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    store = _library_store(namespace, config)
    library = _load_library(store)
    try:
        definition = load_definition_file(namespace.path)
    except FileNotFoundError as exc:
        raise CliError(
            f"Definition file not found: {namespace.path}",
            category="not_found",
            context={"path": namespace.path},
        ) from exc
    except (OSError, ValueError, KeyError) as exc:
        raise CliError(
            f"Invalid definition file {namespace.path}: {exc}",
            category="usage",
            context={"path": namespace.path},
        ) from exc
    try:
        library.add(definition)
    except ValueError as exc:
        raise CliError(str(exc), category="usage") from exc
    if namespace.activate:
        library.activate(definition.id)
    store.save(library)
    return f"Stored '{definition.name}' as {definition.id}."


def handle_library_activate(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    store = _library_store(namespace, config)
    library = _load_library(store)
    try:
        definition = library.activate(namespace.definition_id)
    except KeyError as exc:
        raise CliError(
            f"Definition '{namespace.definition_id}' not found.",
            category="not_found",
            context={"definition": namespace.definition_id},
        ) from exc
    store.save(library)
    return f"Active definition: {definition.name} ({definition.id})."


def handle_library_remove(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    store = _library_store(namespace, config)
    library = _load_library(store)
    removed = library.remove(namespace.definition_id)
    if removed is None:
        raise CliError(
            f"Definition '{namespace.definition_id}' not found.",
            category="not_found",
            context={"definition": namespace.definition_id},
        )
    store.save(library)
    return f"Removed '{removed.name}'."


def _analysis_service(config: Mapping[str, Any]) -> GeminiAnalysisService:
    settings = analysis_settings(config)
    return GeminiAnalysisService(settings.api_key, model=settings.model or DEFAULT_MODEL)


async def _analyze(sample: TelemetrySample, config: Mapping[str, Any]) -> str:
    async with _analysis_service(config) as service:
        return await GuardedAnalysis(service).analyze(sample)


def _analyze_latest(sample: TelemetrySample | None, config: Mapping[str, Any]) -> str:
    """Summarise the last published sample; no sample yields the fallback text."""

    if sample is None:
        return ANALYSIS_FALLBACK
    return asyncio.run(_analyze(sample, config))


async def _explain(code: str, config: Mapping[str, Any]) -> str:
    async with _analysis_service(config) as service:
        return await GuardedAnalysis(service).explain_code(code)


def handle_explain(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    code = namespace.code.strip().upper()
    if not code:
        raise CliError("Fault code must not be empty.", category="usage")
    return asyncio.run(_explain(code, config))
