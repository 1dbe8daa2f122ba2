#!/usr/bin/env python3
"""
Cat's Chip-8 Emulator
CHIP-8 emulator with Tkinter GUI and gamepad support.
Author: Team Flames / Samsoft
"""

import tkinter as tk
from tkinter import messagebox, filedialog
import argparse
import logging
import sys
import time
from typing import Optional, Callable

from chip8_machine import DISPLAY_WIDTH, DISPLAY_HEIGHT, EmulationFault
from chip8_host import Chip8Session, EmulatorConfig, render_text

logger = logging.getLogger(__name__)

# Try to import pygame for controller support
try:
    import pygame
    PYGAME_AVAILABLE = True
except ImportError:
    PYGAME_AVAILABLE = False
    logger.warning("pygame not available. Controller support disabled.")

WINDOW_WIDTH = 640
WINDOW_HEIGHT = 400
DISPLAY_AREA_HEIGHT = 352
STATUS_BAR_HEIGHT = 48

PIXEL_COLOR = "#C0C0C0"
BG_COLOR = "#1A1A1A"
STATUS_BG = "#2A2A2A"
STATUS_FG = "#888888"


class Chip8Audio:
    """Terminal bell rung each time the sound timer starts running"""

    def __init__(self):
        self.active = False

    def update(self, sound_active: bool):
        if sound_active and not self.active:
            print('\a', end='', flush=True)
        self.active = sound_active


class Chip8Controller:
    """Gamepad input mapped onto CHIP-8 keys, polled once per frame"""

    # Controller button mappings for PS5/Atari style
    BUTTON_SQUARE = 0
    BUTTON_CIRCLE = 1
    BUTTON_CROSS = 2
    BUTTON_TRIANGLE = 3
    BUTTON_L1 = 4
    BUTTON_R1 = 5
    BUTTON_L2 = 6
    BUTTON_R2 = 7
    BUTTON_SHARE = 8
    BUTTON_OPTIONS = 9
    BUTTON_PS = 12
    BUTTON_TOUCHPAD = 13

    BUTTON_TO_KEY = {
        BUTTON_CIRCLE: 0x1,
        BUTTON_SQUARE: 0x2,
        BUTTON_TRIANGLE: 0x3,
        BUTTON_CROSS: 0xC,
        BUTTON_L1: 0x4,
        BUTTON_R1: 0x5,
        BUTTON_L2: 0xD,
        BUTTON_R2: 0xE,
        BUTTON_SHARE: 0x7,
        BUTTON_OPTIONS: 0x8,
        BUTTON_PS: 0x9,
        BUTTON_TOUCHPAD: 0xA,
    }

    # D-Pad (as hat) -> 8/2/4/6 like a numeric keypad
    HAT_TO_KEY = {
        (0, 1): 0x8,
        (0, -1): 0x2,
        (-1, 0): 0x4,
        (1, 0): 0x6,
    }

    def __init__(self, on_key_change: Callable[[int, bool], None]):
        self.on_key_change = on_key_change
        self.joystick = None
        self.connected = False
        self.name = "None"

        if PYGAME_AVAILABLE:
            pygame.init()
            pygame.joystick.init()

    def poll(self):
        """Check the connection and forward pending input events"""
        if not PYGAME_AVAILABLE:
            return
        self._check_connection()
        if self.connected:
            self._process_input()

    def stop(self):
        if PYGAME_AVAILABLE:
            pygame.joystick.quit()

    def _check_connection(self):
        pygame.event.pump()
        joystick_count = pygame.joystick.get_count()

        if joystick_count > 0 and not self.connected:
            # Connect to first available controller
            self.joystick = pygame.joystick.Joystick(0)
            self.joystick.init()
            self.connected = True
            self.name = self.joystick.get_name()
            logger.info("Controller connected: %s", self.name)
        elif joystick_count == 0 and self.connected:
            self.connected = False
            self.joystick = None
            self.name = "None"
            logger.info("Controller disconnected")

    def _process_input(self):
        for event in pygame.event.get():
            if event.type == pygame.JOYBUTTONDOWN:
                self._handle_button(event.button, True)
            elif event.type == pygame.JOYBUTTONUP:
                self._handle_button(event.button, False)
            elif event.type == pygame.JOYHATMOTION:
                self._handle_hat(event.value)

    def _handle_button(self, button: int, pressed: bool):
        key = self.BUTTON_TO_KEY.get(button)
        if key is not None:
            self.on_key_change(key, pressed)

    def _handle_hat(self, value: tuple):
        """Handle D-pad input"""
        target = self.HAT_TO_KEY.get(tuple(value))
        for key in self.HAT_TO_KEY.values():
            self.on_key_change(key, key == target)


class Chip8Display:
    """Tkinter display renderer"""

    def __init__(self, canvas: tk.Canvas):
        self.canvas = canvas
        self.scale_x = WINDOW_WIDTH / DISPLAY_WIDTH
        self.scale_y = DISPLAY_AREA_HEIGHT / DISPLAY_HEIGHT
        self.scanlines_enabled = False
        self.pixel_rects = {}
        self.scanline_rects = []
        self._last_frame = None

        # Pre-create pixel rectangles for efficiency
        self._create_pixels()

    def _create_pixels(self):
        self.canvas.delete("all")
        self.pixel_rects = {}

        for y in range(DISPLAY_HEIGHT):
            for x in range(DISPLAY_WIDTH):
                x1 = x * self.scale_x
                y1 = y * self.scale_y
                rect = self.canvas.create_rectangle(
                    x1, y1, x1 + self.scale_x, y1 + self.scale_y,
                    fill=BG_COLOR, outline=""
                )
                self.pixel_rects[(x, y)] = rect

    def toggle_scanlines(self):
        """Show or hide the scanline overlay, creating it on first use"""
        self.scanlines_enabled = not self.scanlines_enabled
        if not self.scanline_rects:
            step = self.scale_y * 2
            self.scanline_rects = [
                self.canvas.create_rectangle(
                    0, row * step + self.scale_y, WINDOW_WIDTH, (row + 1) * step,
                    fill="#000000", stipple="gray50", outline=""
                )
                for row in range(DISPLAY_HEIGHT // 2)
            ]
        state = tk.NORMAL if self.scanlines_enabled else tk.HIDDEN
        for rect in self.scanline_rects:
            self.canvas.itemconfig(rect, state=state)

    def render(self, display):
        """Render the display buffer, touching only changed pixels"""
        last = self._last_frame
        for y, row in enumerate(display):
            if last is not None and last[y] == row:
                continue
            for x, pixel in enumerate(row):
                self.canvas.itemconfig(
                    self.pixel_rects[(x, y)],
                    fill=PIXEL_COLOR if pixel else BG_COLOR
                )
        self._last_frame = display


class Chip8GUI:
    """Main application GUI"""

    def __init__(self, config: Optional[EmulatorConfig] = None):
        self.config = config or EmulatorConfig()

        self.root = tk.Tk()
        self.root.title("Cat's Chip-8 Emulator")
        self.root.geometry(f"{WINDOW_WIDTH}x{WINDOW_HEIGHT}")
        self.root.resizable(False, False)
        self.root.configure(bg=BG_COLOR)

        # Components
        self.session = Chip8Session(self.config)
        self.audio = Chip8Audio()

        # FPS tracking
        self.fps = 0
        self.frame_count = 0
        self.last_fps_time = time.time()
        self._running = False

        self._create_ui()
        self.display_renderer = Chip8Display(self.canvas)
        self.controller = Chip8Controller(self._on_controller_key)
        self._bind_keys()

    def _create_ui(self):
        self.canvas = tk.Canvas(
            self.root,
            width=WINDOW_WIDTH,
            height=DISPLAY_AREA_HEIGHT,
            bg=BG_COLOR,
            highlightthickness=0
        )
        self.canvas.pack(side=tk.TOP)

        self.status_frame = tk.Frame(
            self.root,
            height=STATUS_BAR_HEIGHT,
            bg=STATUS_BG
        )
        self.status_frame.pack(side=tk.BOTTOM, fill=tk.X)
        self.status_frame.pack_propagate(False)

        def label(text, side):
            widget = tk.Label(
                self.status_frame,
                text=text,
                fg=STATUS_FG,
                bg=STATUS_BG,
                font=("Courier", 10)
            )
            widget.pack(side=side, padx=10)
            return widget

        self.rom_label = label("No ROM", tk.LEFT)
        self.fps_label = label("FPS: 0", tk.LEFT)
        self.controller_label = label("Controller: None", tk.LEFT)
        self.state_label = label("Stopped", tk.RIGHT)
        self.speed_label = label("1×", tk.RIGHT)

    def _bind_keys(self):
        self.root.bind("<KeyPress>", self._on_key_down)
        self.root.bind("<KeyRelease>", self._on_key_up)
        self.root.bind("<Button-1>", self._on_click)

        # Control keys
        self.root.bind("<Control-r>", lambda e: self._reset())
        self.root.bind("<space>", lambda e: self._toggle_pause())
        self.root.bind("<F1>", lambda e: self._decrease_speed())
        self.root.bind("<F2>", lambda e: self._increase_speed())
        self.root.bind("<F3>", lambda e: self.display_renderer.toggle_scanlines())

    def _on_key_down(self, event):
        self.session.key_event(event.keysym, True)

    def _on_key_up(self, event):
        self.session.key_event(event.keysym, False)

    def _on_controller_key(self, key: int, pressed: bool):
        self.session.set_key(key, pressed)

    def _on_click(self, event):
        """Show file dialog if no ROM loaded"""
        if not self.session.rom_loaded:
            self._open_file_dialog()

    def _open_file_dialog(self):
        filepath = filedialog.askopenfilename(
            title="Select CHIP-8 ROM",
            filetypes=[("CHIP-8 ROM", "*.ch8"), ("All files", "*.*")]
        )
        if filepath:
            self._load_rom(filepath)

    def _load_rom(self, filepath: str):
        try:
            self.session.load_rom_file(filepath)
        except (OSError, EmulationFault) as e:
            logger.error("Failed to load ROM %s: %s", filepath, e)
            messagebox.showerror("Error", f"Failed to load ROM:\n{e}")
            return
        self.rom_label.config(text=f"ROM: {self.session.rom_name} ({len(self.session.rom)}b)")
        self._start_emulation()

    def _start_emulation(self):
        self._update_status()
        if not self._running:
            self._running = True
            self._frame_loop()

    def _frame_loop(self):
        """One emulated frame: input, steps, timers, render"""
        if not self._running:
            return

        self.controller.poll()
        was_halted = self.session.halted
        result = self.session.run_frame()
        self.audio.update(result.sound_active)
        self.display_renderer.render(self.session.display)

        if self.session.halted and not was_halted:
            self._update_status()

        self.frame_count += 1
        now = time.time()
        if now - self.last_fps_time >= 1.0:
            self.fps = self.frame_count
            self.frame_count = 0
            self.last_fps_time = now
            self.fps_label.config(text=f"FPS: {self.fps}")
            self.controller_label.config(text=f"Controller: {self.controller.name}")

        self.root.after(1000 // self.config.frame_rate, self._frame_loop)

    def _update_status(self):
        if self.session.halted:
            self.state_label.config(text="Halted")
        elif self.session.paused:
            self.state_label.config(text="Paused")
        elif self.session.rom_loaded:
            self.state_label.config(text="Running")
        else:
            self.state_label.config(text="Stopped")

        self.speed_label.config(text=f"{self.session.speed_multiplier}×")

    def _reset(self):
        if self.session.rom_loaded:
            self.session.reset()
            self.display_renderer.render(self.session.display)
            self._update_status()

    def _toggle_pause(self):
        self.session.toggle_pause()
        self._update_status()

    def _increase_speed(self):
        self.session.increase_speed()
        self._update_status()

    def _decrease_speed(self):
        self.session.decrease_speed()
        self._update_status()

    def run(self):
        self.root.protocol("WM_DELETE_WINDOW", self._on_close)
        self.root.mainloop()

    def _on_close(self):
        self._running = False
        self.controller.stop()
        self.root.destroy()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Cat's Chip-8 Emulator")
    parser.add_argument('rom', nargs='?', help="CHIP-8 program image to load")
    parser.add_argument('--steps-per-frame', type=int, default=EmulatorConfig.steps_per_frame,
                        help="Instructions executed per 60Hz timer tick")
    parser.add_argument('--seed', type=lambda s: int(s, 0), default=EmulatorConfig.seed,
                        help="Seed for the CXNN random generator")
    parser.add_argument('--headless', type=int, metavar="FRAMES",
                        help="Run FRAMES frames without a window and print the display")
    parser.add_argument('--debug', action='store_true',
                        help="Enable verbose debug logging")
    return parser.parse_args(argv)


def run_headless(config: EmulatorConfig, rom_path: str, frames: int) -> int:
    session = Chip8Session(config)
    try:
        session.load_rom_file(rom_path)
    except (OSError, EmulationFault) as e:
        logger.error("Failed to load ROM %s: %s", rom_path, e)
        return 1
    session.run_frames(frames)
    print(render_text(session.display))
    if session.halted:
        print(f"Halted: {session.fault}", file=sys.stderr)
        return 1
    return 0


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = EmulatorConfig(steps_per_frame=args.steps_per_frame, seed=args.seed)

    if args.headless is not None:
        if not args.rom:
            logger.error("--headless requires a ROM")
            return 2
        return run_headless(config, args.rom, args.headless)

    app = Chip8GUI(config)
    if args.rom:
        # Schedule ROM load after GUI is ready
        app.root.after(100, lambda: app._load_rom(args.rom))
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
