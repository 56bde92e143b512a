import argparse
from collections import namedtuple
import datetime
import logging
import types

import pygame

from c8vm import C8Computer, Chip8Error, HeldKey, TickReference, SCREEN_WIDTH, SCREEN_HEIGHT

logger = logging.getLogger(__name__)

SCALE_FACTOR = 8
# Tweak this per ROM - how many instructions to execute per second.  Larger makes things faster.
INSTRUCTIONS_PER_SECOND = 700
DEBUG_DUMP_FILE = "debug.txt"

HostConfig = namedtuple("HostConfig", ["rom", "instructions_per_second", "scale", "dump_file"])


# The keyboard layout for the CHIP-8 assumes:
#   1 2 3 C
#   4 5 6 D
#   7 8 9 E
#   A 0 B F
#
# We map this to the following keys on our keyboard:
#   1 2 3 4
#   Q W E R
#   A S D F
#   Z X C V

def build_keymap():
    return types.MappingProxyType({
        pygame.K_1: 0x01,
        pygame.K_2: 0x02,
        pygame.K_3: 0x03,
        pygame.K_4: 0x0C,
        pygame.K_q: 0x04,
        pygame.K_w: 0x05,
        pygame.K_e: 0x06,
        pygame.K_r: 0x0D,
        pygame.K_a: 0x07,
        pygame.K_s: 0x08,
        pygame.K_d: 0x09,
        pygame.K_f: 0x0E,
        pygame.K_z: 0x0A,
        pygame.K_x: 0x00,
        pygame.K_c: 0x0B,
        pygame.K_v: 0x0F
    })


def instruction_delay(instructions_per_second):
    # microseconds to wait between instructions; 0 means run unthrottled
    if instructions_per_second <= 0:
        return 0
    return 1000000 // instructions_per_second


def poll_keys(events, pressed, keymap, held_key):
    '''
    Update held_key from this frame's pygame events and keyboard state.  Returns False when the
    user asked to quit.
    '''
    for event in events:
        if event.type == pygame.QUIT:
            return False
        elif event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                return False
            if event.key in keymap:
                held_key.press(keymap[event.key])
    # a key that is still down is pressed again, even after the interpreter consumed it
    for physical_key, hex_key in keymap.items():
        if pressed[physical_key]:
            held_key.press(hex_key)
    return True


def draw(window, computer):
    surface = pygame.image.frombuffer(computer.render(), (SCREEN_WIDTH, SCREEN_HEIGHT), "RGBA")
    window.blit(pygame.transform.scale(surface, window.get_size()), (0, 0))
    pygame.display.flip()


def write_debug_dump(computer, dump_file):
    with open(dump_file, "w") as outfile:
        computer.debug_dump(outfile)
    logger.info("Wrote machine state to %s", dump_file)


def run(computer, config, keymap):
    pygame.init()
    try:
        window = pygame.display.set_mode((SCREEN_WIDTH * config.scale, SCREEN_HEIGHT * config.scale))
        pygame.display.set_caption("c8vm - {}".format(config.rom))
        draw(window, computer)
        run_loop(computer, config, keymap, window)
    finally:
        pygame.quit()


def run_loop(computer, config, keymap, window):
    held_key = HeldKey()
    tick_ref = TickReference()
    delay = instruction_delay(config.instructions_per_second)

    start_time = datetime.datetime.now()
    last_instruction_time = start_time
    num_instr = 0
    num_renders = 0

    running = True
    while running:
        running = poll_keys(pygame.event.get(), pygame.key.get_pressed(), keymap, held_key)
        if not running:
            break

        curtime = datetime.datetime.now()
        tickdiff = int((curtime - last_instruction_time).total_seconds() * 1000000)
        if tickdiff >= delay:
            try:
                display_changed = computer.step(held_key, tick_ref)
            except Chip8Error:
                logger.exception("Machine fault at PC 0x%03X", computer.PC)
                write_debug_dump(computer, config.dump_file)
                raise
            num_instr += 1
            last_instruction_time = curtime
            if display_changed:
                draw(window, computer)
                num_renders += 1

    write_debug_dump(computer, config.dump_file)
    duration = (datetime.datetime.now() - start_time).total_seconds()
    logger.info("Duration: %.2f sec.", duration)
    if duration > 0:
        logger.info("Performance: %.0f instructions per second", num_instr / duration)
    logger.info("Screen num renders: %d", num_renders)
    if computer.halted:
        logger.info("Machine halted at PC 0x%03X", computer.PC)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 virtual machine")
    parser.add_argument("rom", help="path to a CHIP-8 ROM image")
    parser.add_argument("--ips", type=int, default=INSTRUCTIONS_PER_SECOND,
                        help="instructions per second, 0 for unthrottled (default: %(default)s)")
    parser.add_argument("--scale", type=int, default=SCALE_FACTOR,
                        help="window pixels per CHIP-8 pixel (default: %(default)s)")
    parser.add_argument("--dump", default=DEBUG_DUMP_FILE,
                        help="file the machine state is written to on exit (default: %(default)s)")
    parser.add_argument("--debug", action="store_true", help="log ignored opcodes and other detail")
    args = parser.parse_args(argv)
    if args.scale < 1:
        parser.error("--scale must be at least 1")
    return HostConfig(args.rom, args.ips, args.scale, args.dump), args.debug


def main(argv=None):
    config, debug = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")
    keymap = build_keymap()
    computer = C8Computer.from_rom(config.rom)
    logger.info("Starting %s at %d instructions per second", config.rom, config.instructions_per_second)
    run(computer, config, keymap)


if __name__ == "__main__":
    # call the main function
    main()
