"""
CHIP-8 machine state.

Holds everything the interpreter mutates: memory, registers, call stack,
display buffer, keypad, timers and the pseudo-random generator. There is no
instruction logic here; see chip8_cpu for that.
"""

import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Constants
MEMORY_SIZE = 4096
DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32
STACK_SIZE = 16
NUM_REGISTERS = 16
NUM_KEYS = 16
PROGRAM_START = 0x200
FONT_START = 0x000
MAX_PROGRAM_SIZE = MEMORY_SIZE - PROGRAM_START

DEFAULT_SEED = 1

# CHIP-8 Font sprites (0-F), 5 bytes each, stored at 0x000.
# Standard COSMAC VIP glyphs; some tables draw 1, 4, 7 and 9 differently.
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])
GLYPH_SIZE = 5


# ============================================================================
# FAULTS
# ============================================================================

class EmulationFault(Exception):
    """
    Fatal emulation condition.

    Carries the faulting address and/or opcode so the host can report it
    and decide whether to halt or reset.
    """

    def __init__(self, message: str, address: Optional[int] = None,
                 opcode: Optional[int] = None):
        self.address = address
        self.opcode = opcode
        details = []
        if address is not None:
            details.append(f"address=0x{address:03X}")
        if opcode is not None:
            details.append(f"opcode=0x{opcode:04X}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class MemoryAccessFault(EmulationFault):
    """Read or write outside the 4KB address space"""


class StackFault(EmulationFault):
    pass


class StackOverflowFault(StackFault):
    pass


class StackUnderflowFault(StackFault):
    pass


class KeyIndexFault(EmulationFault):
    """Logical key index outside 0x0-0xF"""


class UnimplementedOpcodeFault(EmulationFault):
    """Instruction word that matches no entry of the instruction set"""


# ============================================================================
# PSEUDO-RANDOM GENERATOR
# ============================================================================

class LinearCongruentialGenerator:
    """32-bit LCG (ANSI C constants) used by CXNN"""

    MULTIPLIER = 1103515245
    INCREMENT = 12345

    def __init__(self, seed: int = DEFAULT_SEED):
        self.state = seed & 0xFFFFFFFF

    def seed(self, value: int):
        self.state = value & 0xFFFFFFFF

    def next(self) -> int:
        """Advance the state and return a 15-bit value"""
        self.state = (self.state * self.MULTIPLIER + self.INCREMENT) & 0xFFFFFFFF
        return (self.state >> 16) & 0x7FFF

    def next_byte(self) -> int:
        return self.next() & 0xFF


# ============================================================================
# CALL STACK
# ============================================================================

class CallStack:
    """Fixed 16-entry stack of 16-bit return addresses"""

    def __init__(self, size: int = STACK_SIZE):
        self.entries = [0] * size
        self.sp = 0

    def __len__(self):
        return self.sp

    def reset(self):
        for i in range(len(self.entries)):
            self.entries[i] = 0
        self.sp = 0

    def push(self, address: int):
        if self.sp >= len(self.entries):
            raise StackOverflowFault("Call stack overflow", address=address)
        self.entries[self.sp] = address & 0xFFFF
        self.sp += 1

    def pop(self) -> int:
        if self.sp == 0:
            raise StackUnderflowFault("Return with empty call stack")
        self.sp -= 1
        return self.entries[self.sp]


# ============================================================================
# MACHINE
# ============================================================================

class Chip8Machine:
    """
    Complete CHIP-8 machine state.

    All containers are allocated once in __init__; reset() restores them
    in place.
    """

    def __init__(self, seed: int = DEFAULT_SEED):
        self.default_seed = seed

        # Main memory (4KB)
        self.memory = bytearray(MEMORY_SIZE)

        # 16 general-purpose 8-bit registers V0-VF
        self.v = [0] * NUM_REGISTERS

        self.stack = CallStack()

        # Display buffer, display[y][x]
        self.display = [[False] * DISPLAY_WIDTH for _ in range(DISPLAY_HEIGHT)]

        # Input state (16 keys)
        self.keys = [False] * NUM_KEYS

        self.rng = LinearCongruentialGenerator(seed)

        self.reset()

    def reset(self):
        """Restore construction-time state"""
        self.memory[:] = bytes(MEMORY_SIZE)
        self.memory[FONT_START:FONT_START + len(FONTSET)] = FONTSET

        for i in range(NUM_REGISTERS):
            self.v[i] = 0
        self.i = 0
        self.pc = PROGRAM_START

        self.stack.reset()

        # Timers (decrement once per tick when non-zero)
        self.delay_timer = 0
        self.sound_timer = 0

        self.clear_display()

        for i in range(NUM_KEYS):
            self.keys[i] = False

        self.rng.seed(self.default_seed)
        logger.debug("Machine reset (seed=%d)", self.default_seed)

    # ==================== MEMORY ====================

    @staticmethod
    def check_program_size(data: bytes):
        if len(data) > MAX_PROGRAM_SIZE:
            raise MemoryAccessFault(
                f"Program too large: {len(data)} bytes (max {MAX_PROGRAM_SIZE})",
                address=PROGRAM_START + len(data) - 1,
            )

    def load(self, data: bytes):
        """Copy a program image into memory at 0x200"""
        self.check_program_size(data)
        self.memory[PROGRAM_START:PROGRAM_START + len(data)] = data
        logger.debug("Loaded %d bytes at 0x%03X", len(data), PROGRAM_START)

    def check_address(self, address: int, opcode: Optional[int] = None):
        if not 0 <= address < MEMORY_SIZE:
            raise MemoryAccessFault("Memory access out of range",
                                    address=address, opcode=opcode)

    def read_byte(self, address: int, opcode: Optional[int] = None) -> int:
        self.check_address(address, opcode)
        return self.memory[address]

    def write_byte(self, address: int, value: int, opcode: Optional[int] = None):
        self.check_address(address, opcode)
        self.memory[address] = value & 0xFF

    # ==================== STACK ====================

    def push(self, address: int):
        self.stack.push(address)

    def pop(self) -> int:
        return self.stack.pop()

    @property
    def sp(self) -> int:
        return self.stack.sp

    # ==================== DISPLAY ====================

    def clear_display(self):
        for row in self.display:
            for x in range(DISPLAY_WIDTH):
                row[x] = False

    def get_display(self) -> Tuple[Tuple[bool, ...], ...]:
        """Read-only snapshot of the display, indexed [y][x]"""
        return tuple(tuple(row) for row in self.display)

    # ==================== INPUT ====================

    def press_key(self, index: int, pressed: bool):
        if not 0 <= index < NUM_KEYS:
            raise KeyIndexFault(f"Key index {index} out of range")
        self.keys[index] = bool(pressed)

    def is_key_pressed(self, index: int, opcode: Optional[int] = None) -> bool:
        if not 0 <= index < NUM_KEYS:
            raise KeyIndexFault(f"Key index {index} out of range", opcode=opcode)
        return self.keys[index]

    # ==================== RANDOM ====================

    def random_byte(self) -> int:
        return self.rng.next_byte()

    def seed(self, value: int):
        """Reseed the generator; reset() returns to the default seed"""
        self.rng.seed(value)
