from array import array
from collections import namedtuple
import logging
import random
import time

logger = logging.getLogger(__name__)

SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
# RGBA colors used by render()
PIXEL_OFF = (0x00, 0xF0, 0x00, 0xFF)
PIXEL_ON = (0xFF, 0xFF, 0xFF, 0xFF)

# Addresses 0x000-0xFFE.  The last instruction that can be fetched starts at 0xFFD.
MEMORY_SIZE = 0xFFF
ROM_START = 0x200
HALT_ADDRESS = 0xFFE
STACK_DEPTH = 16
# Timers count down at 60Hz regardless of how fast instructions execute
TIMER_INTERVAL = 1.0 / 60.0

FONT = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
        0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

# How an instruction wants the program counter updated.
NEXT = 0  # PC += 2
SKIP = 1  # PC += 4
GOTO = 2  # PC = target; the timers do not tick on this step

Outcome = namedtuple("Outcome", ["flow", "target", "display_changed"])

ADVANCE = Outcome(NEXT, None, False)
SKIP_NEXT = Outcome(SKIP, None, False)
REDRAW = Outcome(NEXT, None, True)


class Chip8Error(Exception):
    pass


class RomLoadError(Chip8Error):
    pass


class StackOverflowError(Chip8Error):
    pass


class StackUnderflowError(Chip8Error):
    pass


class HeldKey:
    '''
    The hex key (0x0..0xF) the host currently considers pressed, or None.

    The host writes it; the interpreter clears it when Ex9E, ExA1 or Fx0A consume the press.
    '''

    def __init__(self, key=None):
        self.key = key

    def press(self, key):
        if not 0 <= key <= 0xF:
            raise ValueError("not a hex key: {!r}".format(key))
        self.key = key

    def clear(self):
        self.key = None


class TickReference:
    '''
    Wall-clock marker for the 60Hz delay/sound timers.  clock must be monotonic and return seconds.
    '''

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self.last_tick = clock()

    def elapsed(self):
        return self.clock() - self.last_tick

    def reset(self):
        self.last_tick = self.clock()


def random_byte():
    return random.randrange(0, 256)


class C8Screen:
    def __init__(self, xsize=SCREEN_WIDTH, ysize=SCREEN_HEIGHT):
        self.xsize = xsize
        self.ysize = ysize
        self.vram = array('B', [0 for i in range(self.xsize * self.ysize)])

    def clear(self):
        for i in range(self.xsize * self.ysize):
            self.vram[i] = 0

    def getpx(self, x, y):
        return self.vram[(y * self.xsize) + x]

    def xor8px(self, x, y, val):
        assert 0 <= val <= 0xFF
        assert 0 <= x
        assert 0 <= y

        # rows below the screen are dropped rather than wrapped
        if y >= self.ysize:
            return False

        # xors the 8 cells from (x,y) to (x+7,y) with the bits in val
        vramcell = (y * self.xsize) + x

        # avoid wrapping
        numpx = min([8, self.xsize - x])

        collision = False

        for i in range(numpx):
            if (val << i) & 0x80:
                # 0 means do nothing, so only treat the 1 case
                if self.vram[vramcell] == 1:
                    collision = True
                    self.vram[vramcell] = 0
                else:
                    self.vram[vramcell] = 1
            vramcell += 1
        return collision

    def render(self):
        pixels = bytearray()
        for cell in self.vram:
            if cell:
                pixels.extend(PIXEL_ON)
            else:
                pixels.extend(PIXEL_OFF)
        return bytes(pixels)


class C8Computer:

    def __init__(self, rand_byte=None):
        # 4095 Bytes of RAM, 0x000-0xFFE
        self.RAM = array('B', [0 for i in range(MEMORY_SIZE)])
        # The 16 registers are named V0..VF
        self.V = array('B', [0 for i in range(16)])
        # Special-purpose 16-bit register, used as a memory address
        self.I = 0
        self.delay_register = 0
        self.sound_register = 0
        # Program Counter
        self.PC = ROM_START
        # sp counts the return addresses in use; stack[sp - 1] is the top
        self.stack = array('H', [0 for i in range(STACK_DEPTH)])
        self.sp = 0
        self.screen = C8Screen()
        self.rand_byte = rand_byte or random_byte
        self.load_font_sprites()

        # Using a list of functions to speed the lookup, vs. doing a big nested
        # if/else.  There is one instruction for each of the high-order nibbles
        # 1, 2, 3, 4, 6, 7, A, B, C and D.  The others (0, 5, 8, 9, E, F) check
        # further bits.
        self.operation_list = [
            self._0_opcodes, self._1nnn, self._2nnn, self._3xkk, self._4xkk, self._5xy0,
            self._6xkk, self._7xkk, self._8_opcodes, self._9xy0, self._Annn, self._Bnnn,
            self._Cxkk, self._Dxyn, self._E_opcodes, self._F_opcodes
        ]

        # opcodes beginning with 8 can be determined based on the least-significant
        # nibble (0..7 and E)
        self._8_operations = [
            self._8xy0, self._8xy1, self._8xy2, self._8xy3, self._8xy4, self._8xy5,
            self._8xy6, self._8xy7, self.ignored_op, self.ignored_op,
            self.ignored_op, self.ignored_op, self.ignored_op, self.ignored_op,
            self._8xyE, self.ignored_op
        ]

        # opcodes beginning with F can be determined based on the least_significant
        # byte (07, 0A, 15, 18, 1E, 29, 33, 55, and 65).  Since this is sparse,
        # will use a dictionary.
        self._F_operations = {
            0x07: self._Fx07,
            0x0A: self._Fx0A,
            0x15: self._Fx15,
            0x18: self._Fx18,
            0x1E: self._Fx1E,
            0x29: self._Fx29,
            0x33: self._Fx33,
            0x55: self._Fx55,
            0x65: self._Fx65
        }

    @classmethod
    def from_rom(cls, source, rand_byte=None):
        '''
        Build a machine with the font at 0x000 and the ROM read from source (a path or a binary file
        object) at 0x200.  Raises RomLoadError if the ROM cannot be read.
        '''
        try:
            if hasattr(source, "read"):
                data = source.read()
            else:
                with open(source, "rb") as infile:
                    data = infile.read()
        except OSError as e:
            raise RomLoadError("cannot read ROM {!r}: {}".format(source, e)) from e
        computer = cls(rand_byte=rand_byte)
        computer.load_rom_bytes(data)
        return computer

    def load_font_sprites(self):
        '''
        Video in the CHIP-8 is sprite-driven.  Each sprite is 8 pixels wide, and from 1-15 pixels high.
        A font representing 0..9 + A..F is required for proper operation.  Example for the character 2:

                   ****....
                   ...*....
                   ****....
                   *.......
                   ****....

        Each glyph is 5 bytes; the font lives at 0x000-0x04F so Fx29 can find glyph N at 5 * N.
        '''
        for i in range(len(FONT)):
            self.RAM[i] = FONT[i]

    def load_rom_bytes(self, data):
        room = MEMORY_SIZE - ROM_START
        if len(data) > room:
            logger.warning("ROM is %d bytes, only the first %d fit in memory", len(data), room)
            data = data[:room]
        for i, byte in enumerate(data):
            self.RAM[ROM_START + i] = byte
        logger.info("Loaded %d byte ROM at 0x%03X", len(data), ROM_START)

    def read_byte(self, address):
        # reads past the end of memory see 0
        if address < MEMORY_SIZE:
            return self.RAM[address]
        return 0

    def write_byte(self, address, value):
        # writes past the end of memory are dropped
        if address < MEMORY_SIZE:
            self.RAM[address] = value

    @property
    def halted(self):
        return self.PC >= HALT_ADDRESS

    @property
    def sound_active(self):
        return self.sound_register > 0

    def render(self):
        return self.screen.render()

    def debug_dump(self, outfile):
        outfile.write("PC: 0x{}\n".format(hex(self.PC).upper()[2:]))
        if not self.halted:
            outfile.write("Next instr.: 0x{}\n".format(hex(self.fetch()).upper()[2:].zfill(4)))
        outfile.write("I: 0x{}\n".format(hex(self.I).upper()[2:]))
        for i in range(16):
            outfile.write("V{}: 0x{}".format(hex(i).upper()[2], hex(self.V[i])[2:].zfill(2).upper()))
            if i % 4 == 3:
                outfile.write('\n')
            else:
                outfile.write('\t')
        outfile.write("delay register: 0x{}\n".format(hex(self.delay_register).upper()[2:]))
        outfile.write("sound register: 0x{}\n".format(hex(self.sound_register).upper()[2:]))
        outfile.write("stack: [{}]\n".format(
            ", ".join("0x{}".format(hex(addr).upper()[2:]) for addr in self.stack[:self.sp])))
        outfile.write("\n\nRAM:\n")
        for i in range(MEMORY_SIZE):
            if i % 32 == 0:
                outfile.write("0x{} - 0x{}:  ".format(hex(i)[2:].zfill(3).upper(),
                                                      hex(min(i + 31, MEMORY_SIZE - 1))[2:].zfill(3).upper()))
            outfile.write(hex(self.RAM[i])[2:].zfill(2).upper())
            if i % 32 == 31 or i == MEMORY_SIZE - 1:
                outfile.write("\n")

    def fetch(self):
        return self.RAM[self.PC] << 8 | self.RAM[self.PC + 1]

    def tick_timers(self, tick_ref):
        if tick_ref.elapsed() >= TIMER_INTERVAL:
            if self.delay_register > 0:
                self.delay_register -= 1
            if self.sound_register > 0:
                self.sound_register -= 1
            tick_ref.reset()

    def _0_opcodes(self, opcode, vx, vy, n, kk, nnn, key):
        if kk == 0xE0:
            # 00E0 - CLS (the middle nibbles are not checked)
            # clear the screen
            self.screen.clear()
            return REDRAW
        elif kk == 0xEE:
            # 00EE - RET
            # Return from a subroutine
            if self.sp == 0:
                raise StackUnderflowError("RET with an empty stack at 0x{:03X}".format(self.PC))
            self.sp -= 1
            return Outcome(GOTO, self.stack[self.sp], False)
        return self.ignored_op(opcode)

    def _1nnn(self, opcode, vx, vy, n, kk, nnn, key):
        # 1nnn - JP addr
        # Jump to location nnn
        return Outcome(GOTO, nnn, False)

    def _2nnn(self, opcode, vx, vy, n, kk, nnn, key):
        # 2nnn - CALL addr
        # Call subroutine at nnn; the return address is the instruction after the call
        if self.sp >= STACK_DEPTH:
            raise StackOverflowError("CALL 0x{:03X} at 0x{:03X} exceeds {} frames".format(nnn, self.PC, STACK_DEPTH))
        self.stack[self.sp] = self.PC + 2
        self.sp += 1
        return Outcome(GOTO, nnn, False)

    def _3xkk(self, opcode, vx, vy, n, kk, nnn, key):
        # 3xkk - SE Vx, byte
        # Skip next instruction if Vx == kk
        if self.V[vx] == kk:
            return SKIP_NEXT
        return ADVANCE

    def _4xkk(self, opcode, vx, vy, n, kk, nnn, key):
        # 4xkk - SNE Vx, byte
        # Skip next instruction if Vx != kk
        if self.V[vx] != kk:
            return SKIP_NEXT
        return ADVANCE

    def _5xy0(self, opcode, vx, vy, n, kk, nnn, key):
        # 5xy0 - SE Vx, Vy
        # Skip next instruction if Vx == Vy
        if n != 0:
            return self.ignored_op(opcode)
        if self.V[vx] == self.V[vy]:
            return SKIP_NEXT
        return ADVANCE

    def _6xkk(self, opcode, vx, vy, n, kk, nnn, key):
        # 6xkk - LD Vx, byte
        # Set Vx = kk
        self.V[vx] = kk
        return ADVANCE

    def _7xkk(self, opcode, vx, vy, n, kk, nnn, key):
        # 7xkk - ADD Vx, byte
        # Add value in kk to vx, stores result in vx, does NOT set overflow flag
        self.V[vx] = (self.V[vx] + kk) & 0xFF
        return ADVANCE

    def ignored_op(self, opcode, *args):
        logger.debug("Ignoring unknown opcode 0x%04X at 0x%03X", opcode, self.PC)
        return ADVANCE

    # The 8xy_ handlers read both operands before writing anything, and write VF last,
    # so 8Fy_ and 8xF_ still leave the flag in VF.

    def _8xy0(self, opcode, vx, vy):
        # 8xy0 - LD Vx, Vy
        # Set Vx = Vy
        self.V[vx] = self.V[vy]
        return ADVANCE

    def _8xy1(self, opcode, vx, vy):
        # 8xy1 - OR Vx, Vy
        # Set Vx = Vx OR Vy.  VF is left alone.
        self.V[vx] = self.V[vx] | self.V[vy]
        return ADVANCE

    def _8xy2(self, opcode, vx, vy):
        # 8xy2 - AND Vx, Vy
        # Set Vx = Vx AND Vy
        self.V[vx] = self.V[vx] & self.V[vy]
        return ADVANCE

    def _8xy3(self, opcode, vx, vy):
        # 8xy3 - XOR Vx, Vy
        # Set Vx = Vx XOR Vy
        self.V[vx] = self.V[vx] ^ self.V[vy]
        return ADVANCE

    def _8xy4(self, opcode, vx, vy):
        # 8xy4 - ADD Vx, Vy
        # Set Vx = Vx + Vy, set VF = carry.  Must be done in this order.
        sum = self.V[vx] + self.V[vy]
        self.V[vx] = sum & 0xFF
        if sum > 255:
            self.V[0xF] = 1
        else:
            self.V[0xF] = 0
        return ADVANCE

    def _8xy5(self, opcode, vx, vy):
        # 8xy5 - SUB Vx, Vy
        # Set Vx = Vx - Vy.  Set VF = NOT borrow (VF = 1 unless Vx < Vy)
        x = self.V[vx]
        y = self.V[vy]
        self.V[vx] = (x - y) & 0xFF
        if x >= y:
            self.V[0xF] = 1
        else:
            self.V[0xF] = 0
        return ADVANCE

    def _8xy6(self, opcode, vx, vy):
        # 8xy6 - SHR Vx, Vy
        # Shift Vy right by 1 and store the result in Vx.  VF = the bit shifted out.
        # See: https://tobiasvl.github.io/blog/write-a-chip-8-emulator/#8xy6-and-8xye-shift
        y = self.V[vy]
        self.V[vx] = y >> 1
        self.V[0xF] = y & 0x1
        return ADVANCE

    def _8xy7(self, opcode, vx, vy):
        # 8xy7 - SUBN Vx, Vy
        # Set Vx = Vy - Vx.  Set VF = NOT borrow (VF = 1 unless Vy < Vx)
        x = self.V[vx]
        y = self.V[vy]
        self.V[vx] = (y - x) & 0xFF
        if y >= x:
            self.V[0xF] = 1
        else:
            self.V[0xF] = 0
        return ADVANCE

    def _8xyE(self, opcode, vx, vy):
        # 8xyE - SHL Vx, Vy
        # Shift Vy left by 1 and store the result in Vx.  VF = the bit shifted out.
        y = self.V[vy]
        self.V[vx] = (y << 1) & 0xFF
        self.V[0xF] = (y >> 7) & 0x1
        return ADVANCE

    def _8_opcodes(self, opcode, vx, vy, n, kk, nnn, key):
        return self._8_operations[n](opcode, vx, vy)

    def _9xy0(self, opcode, vx, vy, n, kk, nnn, key):
        # 9xy0 - SNE Vx, Vy
        # Skip next instruction if Vx != Vy
        if n != 0:
            return self.ignored_op(opcode)
        if self.V[vx] != self.V[vy]:
            return SKIP_NEXT
        return ADVANCE

    def _Annn(self, opcode, vx, vy, n, kk, nnn, key):
        # Annn - LD I, addr
        # The value of register I is set to nnn
        self.I = nnn
        return ADVANCE

    def _Bnnn(self, opcode, vx, vy, n, kk, nnn, key):
        # Bnnn - JP V0, addr
        # The program counter is set to nnn plus the value of V0
        return Outcome(GOTO, nnn + self.V[0], False)

    def _Cxkk(self, opcode, vx, vy, n, kk, nnn, key):
        # Cxkk - RND Vx, byte
        # Set Vx = random byte AND kk
        self.V[vx] = self.rand_byte() & kk
        return ADVANCE

    def _Dxyn(self, opcode, vx, vy, n, kk, nnn, key):
        # Dxyn - DRW Vx, Vy, nibble
        # The starting position wraps; pixels past the right or bottom edge are clipped.
        # See https://laurencescotford.com/chip-8-on-the-cosmac-vip-drawing-sprites/
        x = self.V[vx] % self.screen.xsize
        y = self.V[vy] % self.screen.ysize
        memloc = self.I
        collision = 0
        for i in range(n):
            if self.screen.xor8px(x, y + i, self.read_byte(memloc)):
                collision = 1
            memloc += 1
        self.V[0xF] = collision
        return REDRAW

    def _E_opcodes(self, opcode, vx, vy, n, kk, nnn, key):
        if kk == 0x9E:
            # Ex9E - SKP Vx
            # Skip next instruction if the held key is Vx.  The press is consumed.
            if key.key is not None and key.key == self.V[vx]:
                key.clear()
                return SKIP_NEXT
        elif kk == 0xA1:
            # ExA1 - SKNP Vx
            # Skip next instruction if the held key is not Vx.  A different key is consumed;
            # with no key held there is nothing to consume.
            if key.key is None:
                return SKIP_NEXT
            if key.key != self.V[vx]:
                key.clear()
                return SKIP_NEXT
        else:
            return self.ignored_op(opcode)
        return ADVANCE

    def _Fx07(self, vx, key):
        # Fx07 - LD Vx, DT
        # The value of the Delay Timer is placed into Vx.
        self.V[vx] = self.delay_register
        return ADVANCE

    def _Fx0A(self, vx, key):
        # Fx0A - LD, Vx, Key
        # Wait for a key press, store the value of the key in Vx
        # Waiting re-runs this instruction on the next step instead of blocking.
        if key.key is None:
            return Outcome(GOTO, self.PC, False)
        self.V[vx] = key.key
        key.clear()
        return ADVANCE

    def _Fx15(self, vx, key):
        # Fx15 - LD DT, Vx
        # Set Delay Timer = Vx
        self.delay_register = self.V[vx]
        return ADVANCE

    def _Fx18(self, vx, key):
        # Fx18 - LD ST, Vx
        # Set Sound Timer = Vx
        self.sound_register = self.V[vx]
        return ADVANCE

    def _Fx1E(self, vx, key):
        # Fx1E - Set I = I + Vx - do not set the overflow flag
        self.I = (self.I + self.V[vx]) & 0xFFFF
        return ADVANCE

    def _Fx29(self, vx, key):
        # Fx29 - LD F, Vx
        # Set I = location of sprite for digit Vx ("F" = Font)
        # each character is 5 bytes, with "0" starting at 0x00 in memory
        self.I = 5 * self.V[vx]
        return ADVANCE

    def _Fx33(self, vx, key):
        # Fx33 - LD B, Fx
        # Store binary coded decimal value of Vx in memory locations I, I+1, I+2
        val = self.V[vx]
        self.write_byte(self.I, val // 100)
        self.write_byte(self.I + 1, (val // 10) % 10)
        self.write_byte(self.I + 2, val % 10)
        return ADVANCE

    def _Fx55(self, vx, key):
        # Fx55 - LD[I], Vx
        # Store registers V0 through Vx in memory starting at location I.  I is not changed.
        for i in range(vx + 1):
            self.write_byte(self.I + i, self.V[i])
        return ADVANCE

    def _Fx65(self, vx, key):
        # Fx65 - LD Vx, [I]
        # Read values from memory starting at location I into registers V0 through Vx
        for i in range(vx + 1):
            self.V[i] = self.read_byte(self.I + i)
        return ADVANCE

    def _F_opcodes(self, opcode, vx, vy, n, kk, nnn, key):
        if kk in self._F_operations:
            return self._F_operations[kk](vx, key)
        return self.ignored_op(opcode)

    def step(self, key, tick_ref):
        '''
        Execute the instruction at PC and return True if the screen changed.

        Instructions have one of 6 patterns:
        All 4 nibbles fixed:
            00E0, 00EE
        Operation + nnn (address)
            1nnn, 2nnn, Annn, Bnnn
        Operation + Vx + kk (byte)
            3xkk, 4xkk, 6xkk, 7xkk, Cxkk
        Operation + Vx + Vy + nibble-type
            5xy0, 8xy0, 8xy1, 8xy2, 8xy3,
            8xy4, 8xy5, 8xy6, 8xy7, 8xyE, 9xy0
        Operation + Vx + Vy + n (nibble)
            Dxyn
        Operation + Vx + byte-type
            Ex9E, ExA1, Fx07, Fx0A, Fx15,
            Fx18, Fx1E, Fx29, Fx33, Fx55,
            Fx65

        To minimize redundant code, calculate all the possible ways
        to parse the opcode and then later use only the ones that are needed.

        key is the HeldKey slot and may be cleared.  tick_ref is the TickReference for the
        60Hz timers and is reset whenever they tick.  Once PC reaches 0xFFE the machine is
        halted: nothing is executed and nothing changes.
        '''
        if self.halted:
            return False

        opcode = self.fetch()
        operation = opcode >> 12
        vx = opcode >> 8 & 0xF
        vy = opcode >> 4 & 0xF
        n = opcode & 0xF
        nnn = opcode & 0xFFF
        kk = opcode & 0xFF
        outcome = self.operation_list[operation](opcode, vx, vy, n, kk, nnn, key)

        if outcome.flow == GOTO:
            self.PC = outcome.target
            return outcome.display_changed

        self.tick_timers(tick_ref)
        if outcome.flow == SKIP:
            self.PC += 4
        else:
            self.PC += 2
        return outcome.display_changed
