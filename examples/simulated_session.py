"""Example that polls a simulated ECM and prints the exported CSV log."""

from __future__ import annotations

from pathlib import Path

from aldl_link import ConnectionManager, PollScheduler, SessionLogger, load_definition_file
from aldl_link.simulator import SimulatedEcm, SimulatedTransport

MANIFEST = Path(__file__).with_name("lt1_1227747.toml")


def main() -> None:
    definition = load_definition_file(MANIFEST)
    transport = SimulatedTransport(SimulatedEcm(packet_size=5, seed=42))
    session_log = SessionLogger()
    with ConnectionManager(transport, definition=definition) as connection:
        connection.open()
        scheduler = PollScheduler(
            connection,
            definition=definition,
            session_log=session_log,
            interval=0.0,
            max_cycles=5,
        )
        session_log.start()
        scheduler.start()
        session_log.stop()
    print(session_log.export())


if __name__ == "__main__":
    main()
