"""
Headless host tests: frame pacing, keyboard mapping, reset and fault
handling around the core.
"""

import logging

import pytest

from chip8_host import (
    Chip8Session,
    EmulatorConfig,
    FrameResult,
    KEYBOARD_MAP,
    render_text,
)
from chip8_machine import DISPLAY_WIDTH, DISPLAY_HEIGHT, MemoryAccessFault


def _program(*words):
    data = bytearray()
    for word in words:
        data += bytes([word >> 8, word & 0xFF])
    return bytes(data)


# V0 += 1; jump back
COUNTER = _program(0x7001, 0x1200)


class TestFramePacing:
    def test_no_rom_does_nothing(self):
        session = Chip8Session()
        assert session.run_frame() == FrameResult()

    def test_steps_then_single_tick(self):
        session = Chip8Session(EmulatorConfig(steps_per_frame=10))
        session.load_rom(COUNTER, "counter")
        session.machine.delay_timer = 5
        result = session.run_frame()
        assert result.steps == 10
        # 10 steps = 5 increments
        assert session.machine.v[0] == 5
        assert session.machine.delay_timer == 4

    def test_speed_multiplier(self):
        session = Chip8Session(EmulatorConfig(steps_per_frame=10))
        session.load_rom(COUNTER, "counter")
        session.increase_speed()
        assert session.speed_multiplier == 2
        assert session.run_frame().steps == 20

    def test_speed_bounds(self):
        session = Chip8Session(EmulatorConfig(max_speed_multiplier=4))
        for _ in range(5):
            session.increase_speed()
        assert session.speed_multiplier == 4
        for _ in range(5):
            session.decrease_speed()
        assert session.speed_multiplier == 1

    def test_paused_does_nothing(self):
        session = Chip8Session()
        session.load_rom(COUNTER, "counter")
        session.toggle_pause()
        assert session.run_frame().steps == 0
        assert session.machine.v[0] == 0
        session.toggle_pause()
        assert session.run_frame().steps == 10

    def test_sound_reported(self):
        # V1 = 2; ST = V1; loop
        session = Chip8Session(EmulatorConfig(steps_per_frame=2))
        session.load_rom(_program(0x6102, 0xF118, 0x1204), "beep")
        first = session.run_frame()
        assert first.sound_active
        assert not first.tone
        second = session.run_frame()
        assert second.tone
        assert not second.sound_active

    def test_run_frames(self):
        session = Chip8Session(EmulatorConfig(steps_per_frame=4))
        session.load_rom(COUNTER, "counter")
        assert session.run_frames(3) == 12


class TestFaults:
    def test_fault_halts_session(self, caplog):
        session = Chip8Session()
        session.load_rom(_program(0x00EE), "bad")
        with caplog.at_level(logging.ERROR, logger="chip8_host"):
            result = session.run_frame()
        assert result.steps == 0
        assert session.halted
        assert "fault" in caplog.text.lower()
        assert session.run_frame().steps == 0

    def test_unknown_opcode_recorded(self):
        session = Chip8Session()
        session.load_rom(_program(0x6001, 0xF0FF), "bad")
        result = session.run_frame()
        assert result.steps == 1
        assert session.fault.opcode == 0xF0FF

    def test_reset_clears_fault_and_reloads(self):
        session = Chip8Session()
        session.load_rom(_program(0x6007, 0x00EE), "bad")
        session.run_frame()
        assert session.halted
        session.reset()
        assert not session.halted
        assert session.machine.v[0] == 0
        assert session.machine.memory[0x200] == 0x60
        session.cpu.step()
        assert session.machine.v[0] == 7

    def test_oversized_rom_rejected(self):
        session = Chip8Session()
        with pytest.raises(MemoryAccessFault):
            session.load_rom(bytes(4096), "huge")
        assert not session.rom_loaded

    def test_oversized_rom_keeps_running_program(self):
        session = Chip8Session()
        session.load_rom(COUNTER, "counter")
        session.run_frame()
        with pytest.raises(MemoryAccessFault):
            session.load_rom(bytes(4096), "huge")
        assert session.rom_name == "counter"
        assert session.machine.memory[0x200] == 0x70
        assert session.machine.v[0] == 5
        assert session.run_frames(400) == 4000
        assert not session.halted

    def test_load_rom_file(self, tmp_path):
        path = tmp_path / "counter.ch8"
        path.write_bytes(COUNTER)
        session = Chip8Session()
        session.load_rom_file(str(path))
        assert session.rom_name == "counter.ch8"
        assert session.rom == COUNTER

    def test_missing_rom_file(self, tmp_path):
        session = Chip8Session()
        with pytest.raises(OSError):
            session.load_rom_file(str(tmp_path / "missing.ch8"))


class TestInput:
    def test_keyboard_layout(self):
        assert sorted(KEYBOARD_MAP.values()) == list(range(16))
        assert KEYBOARD_MAP['x'] == 0x0
        assert KEYBOARD_MAP['4'] == 0xC

    def test_key_event_maps_to_keypad(self):
        session = Chip8Session()
        assert session.key_event('W', True)
        assert session.machine.keys[0x5]
        assert session.key_event('w', False)
        assert not session.machine.keys[0x5]

    def test_unmapped_key_ignored(self):
        session = Chip8Session()
        assert not session.key_event('Escape', True)
        assert not any(session.machine.keys)

    def test_wait_key_program(self):
        # V3 = key; loop
        session = Chip8Session(EmulatorConfig(steps_per_frame=5))
        session.load_rom(_program(0xF30A, 0x1202), "wait")
        session.run_frame()
        assert session.machine.pc == 0x200
        session.key_event('v', True)
        session.run_frame()
        assert session.machine.v[3] == 0xF
        assert session.machine.pc == 0x202


class TestRenderText:
    def test_render_blank(self):
        session = Chip8Session()
        lines = render_text(session.display).split("\n")
        assert len(lines) == DISPLAY_HEIGHT
        assert all(line == " " * DISPLAY_WIDTH for line in lines)

    def test_render_glyph(self):
        session = Chip8Session()
        # I = glyph 0 (address 0); draw at V0,V1 = 0,0
        session.load_rom(_program(0xA000, 0xD015, 0x1204), "glyph")
        session.run_frame()
        lines = render_text(session.display).split("\n")
        assert lines[0].startswith("****")
        assert lines[1].startswith("*  *")
