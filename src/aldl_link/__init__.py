"""ALDL Link: acquisition engine for GM ALDL engine control modules.

The package polls an ECM over the ALDL serial bus, decodes response packets
according to a :class:`~aldl_link.definitions.Definition` and records session
logs that can be exported as CSV.
"""

from ._version import __version__
from .connection import ConnectionManager
from .decoder import TelemetrySample, decode
from .definitions import (
    DEFAULT_BAUD_RATE,
    DEFAULT_REQUEST_COMMAND,
    Definition,
    GaugeBinding,
    GaugeRange,
    ParameterDefinition,
    gauge_range_for,
    rebind_gauge,
)
from .errors import AldlError, AnalysisUnavailable, BusError, LinkRefused, TransportError
from .library import DefinitionLibrary, DefinitionSource, LibraryStore, load_definition_file
from .scheduler import PollScheduler, SchedulerState
from .session_log import SessionLogger
from .transport import Transport, TransportHandle, TransportOptions

__all__ = [
    "AldlError",
    "AnalysisUnavailable",
    "BusError",
    "ConnectionManager",
    "DEFAULT_BAUD_RATE",
    "DEFAULT_REQUEST_COMMAND",
    "Definition",
    "DefinitionLibrary",
    "DefinitionSource",
    "GaugeBinding",
    "GaugeRange",
    "LibraryStore",
    "LinkRefused",
    "ParameterDefinition",
    "PollScheduler",
    "SchedulerState",
    "SessionLogger",
    "TelemetrySample",
    "Transport",
    "TransportError",
    "TransportHandle",
    "TransportOptions",
    "__version__",
    "decode",
    "gauge_range_for",
    "load_definition_file",
    "rebind_gauge",
]
