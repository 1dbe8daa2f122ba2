"""
Headless host for the CHIP-8 core.

Owns one machine and its engine, maps keyboard input onto the keypad and
drives the reference frame pacing: a batch of instruction steps followed by
one timer tick. The Tkinter front end in chip8_emulator sits on top of this.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence

from chip8_machine import Chip8Machine, EmulationFault, DEFAULT_SEED
from chip8_cpu import Chip8CPU

logger = logging.getLogger(__name__)

# Keyboard mapping (keyboard key -> CHIP-8 key)
#
# CHIP-8 Hex Keypad    PC Keyboard
#  1 2 3 C             1 2 3 4
#  4 5 6 D      ->     Q W E R
#  7 8 9 E             A S D F
#  A 0 B F             Z X C V
KEYBOARD_MAP = {
    '1': 0x1, '2': 0x2, '3': 0x3, '4': 0xC,
    'q': 0x4, 'w': 0x5, 'e': 0x6, 'r': 0xD,
    'a': 0x7, 's': 0x8, 'd': 0x9, 'f': 0xE,
    'z': 0xA, 'x': 0x0, 'c': 0xB, 'v': 0xF,
}


@dataclass
class EmulatorConfig:
    """Emulator configuration settings"""
    # Timing
    steps_per_frame: int = 10     # Instructions per timer tick
    frame_rate: int = 60          # Frames (and timer ticks) per second
    max_speed_multiplier: int = 8

    # Core
    seed: int = DEFAULT_SEED
    debug_opcodes: bool = False   # Enable the 0xDDDD random-fill hook


@dataclass
class FrameResult:
    """What happened during one run_frame() call"""
    steps: int = 0
    tone: bool = False            # Sound timer ran out this frame
    sound_active: bool = False    # Sound timer still non-zero


class Chip8Session:
    """One emulated machine plus the host-side state around it"""

    def __init__(self, config: Optional[EmulatorConfig] = None):
        self.config = config or EmulatorConfig()
        self.machine = Chip8Machine(seed=self.config.seed)
        self.cpu = Chip8CPU(self.machine, debug_opcodes=self.config.debug_opcodes)

        # ROM info
        self.rom = b""
        self.rom_name = ""

        # Run state
        self.paused = False
        self.speed_multiplier = 1
        self.fault: Optional[EmulationFault] = None

    @property
    def rom_loaded(self) -> bool:
        return bool(self.rom_name)

    @property
    def halted(self) -> bool:
        return self.fault is not None

    @property
    def display(self):
        return self.machine.get_display()

    # ==================== ROM ====================

    def load_rom(self, data: bytes, name: str = ""):
        """Reset the machine and load a program image"""
        # A rejected image leaves the current program loaded
        self.machine.check_program_size(data)
        self.machine.reset()
        self.fault = None
        self.machine.load(data)
        self.rom = bytes(data)
        self.rom_name = name or "Unknown"
        logger.info("Loaded ROM %s (%d bytes)", self.rom_name, len(data))

    def load_rom_file(self, path: str):
        with open(path, 'rb') as f:
            data = f.read()
        self.load_rom(data, os.path.basename(path))

    def reset(self):
        """Reset the machine and reload the current ROM"""
        self.machine.reset()
        self.fault = None
        if self.rom_loaded:
            self.machine.load(self.rom)
        logger.debug("Session reset")

    # ==================== INPUT ====================

    def key_event(self, key: str, pressed: bool) -> bool:
        """Apply a keyboard event; returns False for unmapped keys"""
        chip8_key = KEYBOARD_MAP.get(key.lower())
        if chip8_key is None:
            return False
        self.machine.press_key(chip8_key, pressed)
        return True

    def set_key(self, index: int, pressed: bool):
        self.machine.press_key(index, pressed)

    # ==================== EXECUTION ====================

    def run_frame(self) -> FrameResult:
        """Run one frame: a batch of steps, then a single timer tick"""
        result = FrameResult()
        if self.paused or self.halted or not self.rom_loaded:
            return result

        steps = self.config.steps_per_frame * self.speed_multiplier
        try:
            for _ in range(steps):
                self.cpu.step()
                result.steps += 1
        except EmulationFault as e:
            self.fault = e
            logger.error("CPU fault at PC=0x%03X: %s", self.machine.pc, e)
            return result

        result.tone = self.cpu.tick_timers()
        result.sound_active = self.machine.sound_timer > 0
        return result

    def run_frames(self, count: int) -> int:
        """Run up to count frames; stops early on a fault"""
        total = 0
        for _ in range(count):
            total += self.run_frame().steps
            if self.halted:
                break
        return total

    def toggle_pause(self):
        self.paused = not self.paused

    def increase_speed(self):
        if self.speed_multiplier < self.config.max_speed_multiplier:
            self.speed_multiplier *= 2

    def decrease_speed(self):
        if self.speed_multiplier > 1:
            self.speed_multiplier //= 2


def render_text(display: Sequence[Sequence[bool]], on: str = '*', off: str = ' ') -> str:
    """Render a display buffer as text, one line per row"""
    return "\n".join(
        "".join(on if pixel else off for pixel in row) for row in display
    )
