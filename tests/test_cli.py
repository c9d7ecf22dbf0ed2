from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from aldl_link.analysis import ANALYSIS_FALLBACK, EXPLANATION_FALLBACK, GeminiAnalysisService
from aldl_link.cli import run_cli
from aldl_link.cli import workflows
from tests.helpers import FakeTransport, ScriptedHandle, definition_payload

MANIFEST_PACKET = "0B B8 80 40"


@pytest.fixture
def workspace(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def manifest(workspace: Path) -> Path:
    path = workspace / "manifest.json"
    path.write_text(json.dumps(definition_payload()), encoding="utf-8")
    return path


def _exit_code(args: list[str]) -> int:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(args)
    return int(excinfo.value.code)


def _serial_stub(monkeypatch: pytest.MonkeyPatch, transport: FakeTransport) -> list[str]:
    ports: list[str] = []

    def _factory(port: str, **_kwargs: object) -> FakeTransport:
        ports.append(port)
        return transport

    monkeypatch.setattr(workflows, "SerialTransport", _factory)
    return ports


def test_ports_lists_devices(monkeypatch: pytest.MonkeyPatch, workspace: Path) -> None:
    monkeypatch.setattr(workflows, "available_ports", lambda: ["/dev/ttyUSB0", "COM3"])

    assert run_cli(["ports"]) == "/dev/ttyUSB0\nCOM3"


def test_ports_without_devices(monkeypatch: pytest.MonkeyPatch, workspace: Path) -> None:
    monkeypatch.setattr(workflows, "available_ports", lambda: [])

    assert run_cli(["ports"]) == "No serial ports found."


def test_decode_prints_readings(manifest: Path, capsys: pytest.CaptureFixture[str]) -> None:
    result = run_cli(["decode", str(manifest), MANIFEST_PACKET])

    assert result == "rpm=3000 rpm\ncoolant=56 C\nmap=64 kPa"
    assert capsys.readouterr().out == result + "\n"


def test_decode_omits_fields_beyond_short_packet(manifest: Path) -> None:
    assert run_cli(["decode", str(manifest), "0B"]) == "rpm=11 rpm"


def test_decode_rejects_invalid_hex(manifest: Path) -> None:
    assert _exit_code(["decode", str(manifest), "zz"]) == 2


def test_decode_unknown_definition(workspace: Path) -> None:
    assert _exit_code(["decode", "missing-ecm", "00"]) == 4


def test_poll_simulated_session_exports_csv(manifest: Path, workspace: Path) -> None:
    result = run_cli(
        [
            "poll",
            str(manifest),
            "--simulate",
            "--cycles",
            "3",
            "--interval",
            "0",
            "--log-dir",
            str(workspace / "logs"),
        ]
    )

    assert "transmitted: 3" in result
    assert "received: 3" in result
    exported = list((workspace / "logs").glob("aldl_log_*.csv"))
    assert len(exported) == 1
    lines = exported[0].read_text(encoding="utf-8").splitlines()
    assert lines[0] == "timestamp,rpm,coolant,map"
    assert len(lines) == 4


def test_poll_parquet_export(manifest: Path, workspace: Path) -> None:
    pytest.importorskip("pyarrow")

    run_cli(
        [
            "poll",
            str(manifest),
            "--simulate",
            "--cycles",
            "2",
            "--interval",
            "0",
            "--log-dir",
            str(workspace),
            "--format",
            "parquet",
        ]
    )

    assert len(list(workspace.glob("aldl_log_*.parquet"))) == 1


def test_poll_requires_port_or_simulation(manifest: Path) -> None:
    assert _exit_code(["poll", str(manifest), "--cycles", "1"]) == 2


def test_poll_link_refused(monkeypatch: pytest.MonkeyPatch, manifest: Path) -> None:
    ports = _serial_stub(monkeypatch, FakeTransport(error=PermissionError("busy")))

    assert _exit_code(["poll", str(manifest), "--port", "COM9", "--cycles", "1"]) == 3
    assert ports == ["COM9"]


def test_poll_bus_error_reports_summary(
    monkeypatch: pytest.MonkeyPatch, manifest: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    handle = ScriptedHandle(default=bytes.fromhex("0BB88040"), read_errors={1: OSError("no echo")})
    _serial_stub(monkeypatch, FakeTransport(handle))

    assert _exit_code(["poll", str(manifest), "--port", "COM9", "--interval", "0"]) == 1

    out = capsys.readouterr().out
    assert "received: 1" in out
    assert "error: no echo" in out
    assert handle.closed


def test_poll_uses_configured_port(
    monkeypatch: pytest.MonkeyPatch, manifest: Path, workspace: Path
) -> None:
    (workspace / "pyproject.toml").write_text(
        '[tool.aldl_link.serial]\nport = "/dev/ttyACM0"\n', encoding="utf-8"
    )
    ports = _serial_stub(monkeypatch, FakeTransport(ScriptedHandle(default=b"\x00")))

    result = run_cli(["poll", str(manifest), "--cycles", "1", "--interval", "0"])

    assert ports == ["/dev/ttyACM0"]
    assert "received: 1" in result


def test_library_workflow(manifest: Path, workspace: Path) -> None:
    store = workspace / "library.json"
    library = ["library", "--library", str(store)]

    assert run_cli(library + ["list"]) == "Library is empty."
    assert run_cli(library + ["add", str(manifest), "--activate"]) == (
        "Stored 'Manifest ECM' as manifest-ecm."
    )
    listing = run_cli(library + ["list"])
    assert listing.startswith("* manifest-ecm\tManifest ECM\t3 parameters")

    result = run_cli(
        ["poll", "--simulate", "--cycles", "1", "--interval", "0", "--library", str(store)]
    )
    assert "definition: Manifest ECM" in result

    assert run_cli(library + ["remove", "manifest-ecm"]) == "Removed 'Manifest ECM'."
    assert json.loads(store.read_text(encoding="utf-8"))["active_id"] is None


def test_library_activate_unknown(workspace: Path) -> None:
    store = workspace / "library.json"

    assert _exit_code(["library", "--library", str(store), "activate", "nope"]) == 4


def test_library_add_missing_file(workspace: Path) -> None:
    store = workspace / "library.json"

    assert _exit_code(["library", "--library", str(store), "add", "absent.json"]) == 4


def test_explain_falls_back_without_api_key(
    workspace: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["explain", "Code 14"]) == EXPLANATION_FALLBACK
    assert EXPLANATION_FALLBACK in capsys.readouterr().out


def test_cli_logs_errors_as_json(
    manifest: Path, workspace: Path
) -> None:
    log_path = workspace / "cli.log"

    assert _exit_code(["--log-output", str(log_path), "decode", "missing-ecm", "00"]) == 4

    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    errors = [record for record in records if record.get("event") == "cli.error"]
    assert errors and errors[-1]["category"] == "not_found"


def _gemini_stub(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    def _factory(api_key: str | None, **kwargs: object) -> GeminiAnalysisService:
        return GeminiAnalysisService(api_key, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(workflows, "GeminiAnalysisService", _factory)


def _poll_and_analyze(manifest: Path) -> list[str]:
    result = run_cli(
        ["poll", str(manifest), "--simulate", "--cycles", "2", "--interval", "0", "--analyze"]
    )
    return result.splitlines()


def test_poll_analyze_prints_answer(monkeypatch: pytest.MonkeyPatch, manifest: Path) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    prompts: list[str] = []

    def _handle(request: httpx.Request) -> httpx.Response:
        prompts.append(json.loads(request.content)["contents"][0]["parts"][0]["text"])
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": "Engine warm."}]}}]}
        )

    _gemini_stub(monkeypatch, _handle)

    lines = _poll_and_analyze(manifest)

    assert lines[-1] == "analysis: Engine warm."
    assert len(prompts) == 1
    assert "rpm: " in prompts[0]


def test_poll_analyze_falls_back_on_service_error(
    monkeypatch: pytest.MonkeyPatch, manifest: Path
) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    _gemini_stub(monkeypatch, lambda request: httpx.Response(503, json={"error": "busy"}))

    assert _poll_and_analyze(manifest)[-1] == f"analysis: {ANALYSIS_FALLBACK}"


def test_poll_analyze_without_api_key_falls_back(manifest: Path) -> None:
    assert _poll_and_analyze(manifest)[-1] == f"analysis: {ANALYSIS_FALLBACK}"
