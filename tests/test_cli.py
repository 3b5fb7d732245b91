"""
z80kit CLI Tests.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import logging

import pytest
import z80kit
from z80_disassembler.log_setup import setup_logging


@pytest.fixture
def rom(tmp_path):
    path = tmp_path / "rom.bin"
    # 8000 LD A,B / RET / 8002 EXX / LD A,C / RET
    path.write_bytes(bytes([0x78, 0xC9, 0xD9, 0x79, 0xC9]))
    return path


# ─── Argument parsing ──────────────────────

class TestParseInt:
    @pytest.mark.parametrize("text,value", [
        ("0x8000", 0x8000), ("0X1f", 0x1F), ("$C000", 0xC000), ("4096", 4096), (" 16 ", 16),
    ])
    def test_formats(self, text, value):
        assert z80kit.parse_int_arg(text) == value

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            z80kit.parse_int_arg("zz")


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert z80kit.main([]) == 0
        assert "disasm" in capsys.readouterr().out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            z80kit.main(["--version"])
        assert exc.value.code == 0
        assert "z80kit" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert z80kit.main(["disasm", str(tmp_path / "nope.bin")]) == 1
        assert "Error:" in capsys.readouterr().err


# ─── disasm ────────────────────────────────

class TestDisasm:
    def test_listing(self, rom, capsys):
        assert z80kit.main(["disasm", str(rom), "--org", "0x8000"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 5
        assert lines[0].startswith("8000  78")
        assert lines[0].endswith("LD A,B")
        assert lines[2].endswith("EXX")

    def test_start_and_count(self, rom, capsys):
        assert z80kit.main(["disasm", str(rom), "--org", "$8000",
                            "--start", "0x8002", "--count", "2"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert [line.split()[0] for line in lines] == ["8002", "8003"]


# ─── regs ──────────────────────────────────

class TestRegs:
    def test_text_output(self, rom, capsys):
        assert z80kit.main(["regs", str(rom), "--org", "0x8000",
                            "--sub", "0x8000", "--sub", "0x8002"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0].startswith("0x8000  in: B ")
        assert out[1].startswith("0x8002  in: C' ")

    def test_json_output(self, rom, capsys):
        assert z80kit.main(["regs", str(rom), "--org", "0x8000",
                            "--sub", "0x8002", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data[0]["address"] == "0x8002"
        assert data[0]["inputs"] == ["C'"]
        assert data[0]["exits"] == ["0x8004"]

    def test_sub_is_required(self, rom):
        with pytest.raises(SystemExit):
            z80kit.main(["regs", str(rom)])


# ─── Logging ───────────────────────────────

class TestLogging:
    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        logger = setup_logging("z80_test_file", log_file=log_file, rich_console=False)
        logger.debug("hello from test")
        for handler in logger.handlers:
            handler.flush()
        text = log_file.read_text(encoding="utf-8")
        assert "hello from test" in text
        assert "| DEBUG   | z80_test_file |" in text

    def test_repeat_call_returns_same_logger(self, tmp_path):
        first = setup_logging("z80_test_repeat", rich_console=False)
        count = len(first.handlers)
        again = setup_logging("z80_test_repeat", log_file=tmp_path / "x.log")
        assert again is first
        assert len(again.handlers) == count
        assert logging.getLogger("z80_test_repeat") is first
