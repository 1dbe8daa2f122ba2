"""
CHIP-8 execution engine.

Fetches, decodes and executes instructions against a Chip8Machine.
The engine owns no state of its own beyond its dispatch tables, so any
number of engines can drive independent machines.
"""

import logging

from chip8_machine import (
    Chip8Machine,
    MemoryAccessFault,
    UnimplementedOpcodeFault,
    DISPLAY_WIDTH,
    DISPLAY_HEIGHT,
    GLYPH_SIZE,
    MEMORY_SIZE,
    NUM_KEYS,
)

logger = logging.getLogger(__name__)

DEBUG_FILL_OPCODE = 0xDDDD


class Chip8CPU:
    """CHIP-8 CPU core with all 35 opcodes"""

    def __init__(self, machine: Chip8Machine, debug_opcodes: bool = False):
        self.machine = machine
        self.debug_opcodes = debug_opcodes

        # Primary dispatch on the first nibble
        self._ops = {
            0x0: self._execute_0xxx,
            0x1: self._jump,
            0x2: self._call,
            0x3: self._skip_eq_imm,
            0x4: self._skip_ne_imm,
            0x5: self._skip_eq_reg,
            0x6: self._load_imm,
            0x7: self._add_imm,
            0x8: self._execute_8xxx,
            0x9: self._skip_ne_reg,
            0xA: self._load_i,
            0xB: self._jump_v0,
            0xC: self._random,
            0xD: self._draw,
            0xE: self._execute_exxx,
            0xF: self._execute_fxxx,
        }

        # 0x8XYN, keyed by N
        self._alu_ops = {
            0x0: self._alu_mov,
            0x1: self._alu_or,
            0x2: self._alu_and,
            0x3: self._alu_xor,
            0x4: self._alu_add,
            0x5: self._alu_sub,
            0x6: self._alu_shr,
            0x7: self._alu_subn,
            0xE: self._alu_shl,
        }

        # 0xFXNN, keyed by NN
        self._misc_ops = {
            0x07: self._get_delay,
            0x0A: self._wait_key,
            0x15: self._set_delay,
            0x18: self._set_sound,
            0x1E: self._add_i,
            0x29: self._glyph_address,
            0x33: self._store_bcd,
            0x55: self._store_registers,
            0x65: self._load_registers,
        }

    # ==================== CYCLE ====================

    def fetch(self) -> int:
        """Read the big-endian instruction word at PC and advance PC by 2"""
        m = self.machine
        if m.pc < 0 or m.pc + 1 >= MEMORY_SIZE:
            raise MemoryAccessFault("Instruction fetch out of range", address=m.pc)
        opcode = (m.memory[m.pc] << 8) | m.memory[m.pc + 1]
        m.pc += 2
        return opcode

    def step(self) -> int:
        """Execute one fetch-decode-execute cycle; returns the opcode run"""
        opcode = self.fetch()
        self.execute(opcode)
        return opcode

    def execute(self, opcode: int):
        """Decode and execute a single opcode"""
        self._ops[opcode >> 12](opcode)

    def tick_timers(self) -> bool:
        """
        Decrement the delay and sound timers (call once per frame).

        Returns True when the sound timer runs out on this tick, which is
        the host's cue for a tone.
        """
        m = self.machine
        if m.delay_timer > 0:
            m.delay_timer -= 1
        tone = False
        if m.sound_timer > 0:
            tone = m.sound_timer == 1
            m.sound_timer -= 1
        return tone

    # ==================== DECODE HELPERS ====================

    @staticmethod
    def _unimplemented(opcode: int):
        raise UnimplementedOpcodeFault("Unimplemented instruction", opcode=opcode)

    def _skip(self):
        self.machine.pc += 2

    # ==================== 0xxx ====================

    def _execute_0xxx(self, opcode: int):
        if opcode == 0x0000:
            # 0000: No-op
            return
        elif opcode == 0x00E0:
            # 00E0: Clear screen
            self.machine.clear_display()
        elif opcode == 0x00EE:
            # 00EE: Return from subroutine
            self.machine.pc = self.machine.pop()
        else:
            self._unimplemented(opcode)

    # ==================== FLOW CONTROL ====================

    def _jump(self, opcode: int):
        # 1NNN: Jump to NNN
        self.machine.pc = opcode & 0x0FFF

    def _call(self, opcode: int):
        # 2NNN: Call subroutine at NNN
        self.machine.push(self.machine.pc)
        self.machine.pc = opcode & 0x0FFF

    def _skip_eq_imm(self, opcode: int):
        # 3XNN: Skip if VX == NN
        if self.machine.v[(opcode >> 8) & 0xF] == opcode & 0xFF:
            self._skip()

    def _skip_ne_imm(self, opcode: int):
        # 4XNN: Skip if VX != NN
        if self.machine.v[(opcode >> 8) & 0xF] != opcode & 0xFF:
            self._skip()

    def _skip_eq_reg(self, opcode: int):
        # 5XY0: Skip if VX == VY
        if opcode & 0xF != 0:
            self._unimplemented(opcode)
        v = self.machine.v
        if v[(opcode >> 8) & 0xF] == v[(opcode >> 4) & 0xF]:
            self._skip()

    def _skip_ne_reg(self, opcode: int):
        # 9XY0: Skip if VX != VY
        if opcode & 0xF != 0:
            self._unimplemented(opcode)
        v = self.machine.v
        if v[(opcode >> 8) & 0xF] != v[(opcode >> 4) & 0xF]:
            self._skip()

    def _jump_v0(self, opcode: int):
        # BNNN: Jump to NNN + V0
        self.machine.pc = (opcode & 0x0FFF) + self.machine.v[0]

    # ==================== REGISTERS ====================

    def _load_imm(self, opcode: int):
        # 6XNN: VX = NN
        self.machine.v[(opcode >> 8) & 0xF] = opcode & 0xFF

    def _add_imm(self, opcode: int):
        # 7XNN: VX += NN (no carry)
        x = (opcode >> 8) & 0xF
        self.machine.v[x] = (self.machine.v[x] + (opcode & 0xFF)) & 0xFF

    def _load_i(self, opcode: int):
        # ANNN: I = NNN
        self.machine.i = opcode & 0x0FFF

    def _random(self, opcode: int):
        # CXNN: VX = random & NN
        self.machine.v[(opcode >> 8) & 0xF] = self.machine.random_byte() & opcode & 0xFF

    # ==================== ALU (8XYN) ====================

    def _execute_8xxx(self, opcode: int):
        handler = self._alu_ops.get(opcode & 0xF)
        if handler is None:
            self._unimplemented(opcode)
        handler((opcode >> 8) & 0xF, (opcode >> 4) & 0xF)

    def _alu_mov(self, x: int, y: int):
        self.machine.v[x] = self.machine.v[y]

    def _alu_or(self, x: int, y: int):
        self.machine.v[x] |= self.machine.v[y]

    def _alu_and(self, x: int, y: int):
        self.machine.v[x] &= self.machine.v[y]

    def _alu_xor(self, x: int, y: int):
        self.machine.v[x] ^= self.machine.v[y]

    def _alu_add(self, x: int, y: int):
        # 8XY4: VX += VY with carry
        v = self.machine.v
        result = v[x] + v[y]
        v[x] = result & 0xFF
        v[0xF] = 1 if result > 0xFF else 0

    def _alu_sub(self, x: int, y: int):
        # 8XY5: VX -= VY, VF = NOT borrow
        v = self.machine.v
        no_borrow = 1 if v[x] >= v[y] else 0
        v[x] = (v[x] - v[y]) & 0xFF
        v[0xF] = no_borrow

    def _alu_shr(self, x: int, y: int):
        # 8XY6: VX >>= 1, VF = old LSB
        v = self.machine.v
        lsb = v[x] & 1
        v[x] >>= 1
        v[0xF] = lsb

    def _alu_subn(self, x: int, y: int):
        # 8XY7: VX = VY - VX, VF = NOT borrow
        v = self.machine.v
        no_borrow = 1 if v[y] >= v[x] else 0
        v[x] = (v[y] - v[x]) & 0xFF
        v[0xF] = no_borrow

    def _alu_shl(self, x: int, y: int):
        # 8XYE: VX <<= 1, VF = old MSB
        v = self.machine.v
        msb = (v[x] >> 7) & 1
        v[x] = (v[x] << 1) & 0xFF
        v[0xF] = msb

    # ==================== DISPLAY ====================

    def _draw(self, opcode: int):
        """
        DXYN: draw an 8xN sprite from memory[I] at (VX, VY).

        Set sprite bits turn their pixel on; VF is 1 when any of them landed
        on a pixel that was already on. Coordinates wrap on both axes.
        """
        if opcode == DEBUG_FILL_OPCODE and self.debug_opcodes:
            self._fill_random()
            return

        m = self.machine
        x0 = m.v[(opcode >> 8) & 0xF]
        y0 = m.v[(opcode >> 4) & 0xF]
        n = opcode & 0xF

        collision = False
        for row in range(n):
            sprite_byte = m.read_byte(m.i + row, opcode)
            if not sprite_byte:
                continue
            line = m.display[(y0 + row) % DISPLAY_HEIGHT]
            for col in range(8):
                if sprite_byte & (0x80 >> col):
                    px = (x0 + col) % DISPLAY_WIDTH
                    if line[px]:
                        collision = True
                    line[px] = True

        m.v[0xF] = 1 if collision else 0

    def _fill_random(self):
        # Development hook: random noise over the whole display
        m = self.machine
        logger.debug("Random fill at PC=0x%03X", m.pc - 2)
        for row in m.display:
            for x in range(DISPLAY_WIDTH):
                row[x] = m.random_byte() > 127

    # ==================== INPUT (EXNN) ====================

    def _execute_exxx(self, opcode: int):
        nn = opcode & 0xFF
        if nn not in (0x9E, 0xA1):
            self._unimplemented(opcode)
        m = self.machine
        pressed = m.is_key_pressed(m.v[(opcode >> 8) & 0xF], opcode)
        if nn == 0x9E:
            # EX9E: Skip if key VX pressed
            if pressed:
                self._skip()
        elif not pressed:
            # EXA1: Skip if key VX not pressed
            self._skip()

    # ==================== MISC (FXNN) ====================

    def _execute_fxxx(self, opcode: int):
        handler = self._misc_ops.get(opcode & 0xFF)
        if handler is None:
            self._unimplemented(opcode)
        handler((opcode >> 8) & 0xF, opcode)

    def _get_delay(self, x: int, opcode: int):
        self.machine.v[x] = self.machine.delay_timer

    def _wait_key(self, x: int, opcode: int):
        # FX0A: busy-poll; rewind PC until a key is down
        m = self.machine
        for key in range(NUM_KEYS):
            if m.keys[key]:
                m.v[x] = key
                return
        m.pc -= 2

    def _set_delay(self, x: int, opcode: int):
        self.machine.delay_timer = self.machine.v[x]

    def _set_sound(self, x: int, opcode: int):
        self.machine.sound_timer = self.machine.v[x]

    def _add_i(self, x: int, opcode: int):
        # FX1E: I += VX, 16-bit wrap
        self.machine.i = (self.machine.i + self.machine.v[x]) & 0xFFFF

    def _glyph_address(self, x: int, opcode: int):
        self.machine.i = self.machine.v[x] * GLYPH_SIZE

    def _store_bcd(self, x: int, opcode: int):
        # FX33: BCD of VX at I, I+1, I+2
        m = self.machine
        value = m.v[x]
        m.write_byte(m.i, value // 100, opcode)
        m.write_byte(m.i + 1, (value // 10) % 10, opcode)
        m.write_byte(m.i + 2, value % 10, opcode)

    def _store_registers(self, x: int, opcode: int):
        # FX55: V0..VX -> memory[I..I+X], I unchanged
        m = self.machine
        for idx in range(x + 1):
            m.write_byte(m.i + idx, m.v[idx], opcode)

    def _load_registers(self, x: int, opcode: int):
        # FX65: memory[I..I+X] -> V0..VX, I unchanged
        m = self.machine
        for idx in range(x + 1):
            m.v[idx] = m.read_byte(m.i + idx, opcode)
