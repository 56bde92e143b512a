import pytest

from c8vm import C8Computer, HeldKey, TickReference


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def load(program, rand_byte=None):
    '''Build a machine with program (a list of 16-bit opcodes) loaded at 0x200.'''
    data = bytearray()
    for opcode in program:
        data.append(opcode >> 8)
        data.append(opcode & 0xFF)
    computer = C8Computer(rand_byte=rand_byte)
    computer.load_rom_bytes(bytes(data))
    return computer


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tick_ref(clock):
    return TickReference(clock)


@pytest.fixture
def held_key():
    return HeldKey()


@pytest.fixture
def run(held_key, tick_ref):
    '''Step a machine count times and return the display-changed flag of the last step.'''
    def _run(computer, count=1):
        changed = False
        for _ in range(count):
            changed = computer.step(held_key, tick_ref)
        return changed
    return _run
