import re

from localinfer.diagnostics import DiagnosticsLog


def test_lines_are_timestamped(tmp_path):
    log = DiagnosticsLog(tmp_path / "nested" / "diag.log")
    log.write("first")
    log.write("second")
    lines = (tmp_path / "nested" / "diag.log").read_text().splitlines()
    assert len(lines) == 2
    assert re.match(r"^\[\d{2}:\d{2}:\d{2}\.\d{3}\] first$", lines[0])


def test_write_failures_are_ignored(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    log = DiagnosticsLog(blocker / "diag.log")
    log.write("nowhere")
    assert blocker.read_text() == "x"
