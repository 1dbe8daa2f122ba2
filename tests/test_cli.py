"""
Command line and headless runs of the emulator front end.

None of these build a Tk window.
"""

import pytest

chip8_emulator = pytest.importorskip("chip8_emulator")

from chip8_machine import DISPLAY_HEIGHT


def _program(*words):
    data = bytearray()
    for word in words:
        data += bytes([word >> 8, word & 0xFF])
    return bytes(data)


def _write_rom(tmp_path, *words):
    path = tmp_path / "test.ch8"
    path.write_bytes(_program(*words))
    return str(path)


class TestParseArgs:
    def test_defaults(self):
        args = chip8_emulator.parse_args([])
        assert args.rom is None
        assert args.steps_per_frame == 10
        assert args.seed == 1
        assert args.headless is None
        assert not args.debug

    def test_seed_accepts_hex(self):
        args = chip8_emulator.parse_args(['--seed', '0x10'])
        assert args.seed == 16

    def test_rom_and_headless(self):
        args = chip8_emulator.parse_args(['game.ch8', '--headless', '30', '--steps-per-frame', '20'])
        assert args.rom == 'game.ch8'
        assert args.headless == 30
        assert args.steps_per_frame == 20


class TestHeadless:
    def test_prints_text_display(self, tmp_path, capsys):
        # I = glyph 0; draw at 0,0; loop
        rom = _write_rom(tmp_path, 0xA000, 0xD015, 0x1204)
        config = chip8_emulator.EmulatorConfig()
        assert chip8_emulator.run_headless(config, rom, 1) == 0
        lines = capsys.readouterr().out.rstrip("\n").split("\n")
        assert len(lines) == DISPLAY_HEIGHT
        assert lines[0].startswith("****")
        assert lines[1].startswith("*  *")

    def test_missing_file(self, tmp_path):
        config = chip8_emulator.EmulatorConfig()
        assert chip8_emulator.run_headless(config, str(tmp_path / "missing.ch8"), 1) == 1

    def test_faulting_program(self, tmp_path, capsys):
        rom = _write_rom(tmp_path, 0x00EE)
        config = chip8_emulator.EmulatorConfig()
        assert chip8_emulator.run_headless(config, rom, 5) == 1
        assert "Halted" in capsys.readouterr().err

    def test_main_headless_requires_rom(self):
        assert chip8_emulator.main(['--headless', '1']) == 2

    def test_main_headless_run(self, tmp_path, capsys):
        rom = _write_rom(tmp_path, 0xA000, 0xD015, 0x1204)
        assert chip8_emulator.main([rom, '--headless', '2']) == 0
        assert "****" in capsys.readouterr().out


class TestAudio:
    def test_bell_on_rising_edge_only(self, capsys):
        audio = chip8_emulator.Chip8Audio()
        audio.update(True)
        audio.update(True)
        audio.update(False)
        audio.update(True)
        assert capsys.readouterr().out == '\a\a'
