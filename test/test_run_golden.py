"""Golden-test runner for the VM.

Each golden YAML record holds a program (list of words), optional stdin and
config, and expectations for the disassembly, output, final state and errors.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any

import processor
import pytest
from disassembler import format_listing
from isa import VMError
from processor import ControlUnit, make_datapath


def _mismatch(msg_title: str, got_text: str, expected_text: str) -> str:
    return f"{msg_title}\n--- got ---\n{got_text}\n--- expected ---\n{expected_text}"


def _reset_logging() -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        h.flush()
        h.close()
        root.removeHandler(h)


@pytest.mark.golden_test("golden/*.yaml")
def test_golden(golden: Any, tmp_path: Path) -> None:  # noqa: C901
    """Run one golden record: disassemble, run and compare outputs."""
    if "__yaml_load_error__" in golden:
        pytest.fail(f"{golden['__name__']}: {golden['__yaml_load_error__']}")

    words = [int(w) for w in golden["program"]]
    expect = golden.get("expect") or {}

    # 1) disassembly
    if "out_dis" in expect:
        got = format_listing(words).strip()
        exp = expect["out_dis"].strip()
        if got != exp:
            raise AssertionError(_mismatch("disassembly mismatch", got, exp))

    # 2) run
    log_path = tmp_path / "processor.log"
    processor.init_logging(logfile=str(log_path), debug=True, console=False)
    stdin = io.BytesIO(str(golden.get("in_stdin", "")).encode("utf-8"))
    stdout = io.BytesIO()
    cfg = golden.get("config") or {}
    dp = make_datapath(words, stdin=stdin, stdout=stdout, config=cfg)
    cu = ControlUnit(dp)

    error: VMError | None = None
    ticks, state = 0, ""
    try:
        ticks, state = cu.run()
    except VMError as e:
        error = e
    finally:
        _reset_logging()

    out = stdout.getvalue().decode("latin-1")

    if "error" in expect:
        assert error is not None, f"expected {expect['error']}, run stopped with state {state}"
        assert type(error).__name__ == expect["error"]
        assert "ERROR" in log_path.read_text(encoding="utf-8")
    elif error is not None:
        raise AssertionError(f"unexpected {type(error).__name__}: {error}")

    # 3) stdout
    if "out_stdout" in expect:
        if out != expect["out_stdout"]:
            raise AssertionError(_mismatch("stdout mismatch", repr(out), repr(expect["out_stdout"])))

    # 4) ticks/state
    if "ticks" in expect:
        assert ticks == int(expect["ticks"]), f"ticks mismatch: got {ticks} expected {expect['ticks']}"
    if "state" in expect:
        assert state == expect["state"], f"state mismatch: got {state} expected {expect['state']}"

    # 5) machine state
    if "registers" in expect:
        assert dp.registers == list(expect["registers"])
    if "stack" in expect:
        assert dp.stack == list(expect["stack"])
    if "memory" in expect:
        for addr, val in expect["memory"].items():
            assert dp.memory[int(addr)] == int(val), f"memory[{addr}] mismatch"
