import pytest

from conftest import load


def test_add_byte_wraps_without_touching_vf(run):
    for x in range(15):
        computer = load([0x6000 | (x << 8) | 0xFF, 0x7000 | (x << 8) | 0x02])
        computer.V[0xF] = 0x55
        run(computer, 2)
        assert computer.V[x] == 0x01
        assert computer.V[0xF] == 0x55


def test_load_byte(run):
    computer = load([0x6A42])
    run(computer)
    assert computer.V[0xA] == 0x42
    assert computer.PC == 0x202


@pytest.mark.parametrize("opcode, vx, vy, expected", [
    (0x8120, 0x0F, 0xF0, 0xF0),
    (0x8121, 0x0F, 0xF0, 0xFF),
    (0x8122, 0x3C, 0xF0, 0x30),
    (0x8123, 0xFF, 0x0F, 0xF0),
])
def test_logic_ops_leave_vf_alone(run, opcode, vx, vy, expected):
    computer = load([opcode])
    computer.V[1] = vx
    computer.V[2] = vy
    computer.V[0xF] = 7
    run(computer)
    assert computer.V[1] == expected
    assert computer.V[0xF] == 7


@pytest.mark.parametrize("vx, vy, result, carry", [
    (0x10, 0x20, 0x30, 0),
    (0xFF, 0x01, 0x00, 1),
    (0x80, 0x80, 0x00, 1),
    (0xFF, 0x00, 0xFF, 0),
])
def test_add_sets_carry(run, vx, vy, result, carry):
    computer = load([0x8124])
    computer.V[1] = vx
    computer.V[2] = vy
    run(computer)
    assert computer.V[1] == result
    assert computer.V[0xF] == carry


@pytest.mark.parametrize("vx, vy, result, not_borrow", [
    (0x30, 0x10, 0x20, 1),
    (0x10, 0x10, 0x00, 1),
    (0x10, 0x30, 0xE0, 0),
])
def test_sub_sets_not_borrow(run, vx, vy, result, not_borrow):
    computer = load([0x8125])
    computer.V[1] = vx
    computer.V[2] = vy
    run(computer)
    assert computer.V[1] == result
    assert computer.V[0xF] == not_borrow


@pytest.mark.parametrize("vx, vy, result, not_borrow", [
    (0x10, 0x30, 0x20, 1),
    (0x10, 0x10, 0x00, 1),
    (0x30, 0x10, 0xE0, 0),
])
def test_subn_subtracts_in_reverse(run, vx, vy, result, not_borrow):
    computer = load([0x8127])
    computer.V[1] = vx
    computer.V[2] = vy
    run(computer)
    assert computer.V[1] == result
    assert computer.V[0xF] == not_borrow


def test_shift_right_reads_vy(run):
    computer = load([0x8126])
    computer.V[1] = 0xFF
    computer.V[2] = 0x05
    run(computer)
    assert computer.V[1] == 0x02
    assert computer.V[2] == 0x05
    assert computer.V[0xF] == 1


def test_shift_left_reads_vy(run):
    computer = load([0x812E])
    computer.V[1] = 0x00
    computer.V[2] = 0x81
    run(computer)
    assert computer.V[1] == 0x02
    assert computer.V[0xF] == 1


def test_shift_left_without_evicted_bit(run):
    computer = load([0x812E])
    computer.V[2] = 0x41
    run(computer)
    assert computer.V[1] == 0x82
    assert computer.V[0xF] == 0


def test_flag_wins_when_vf_is_the_destination(run):
    computer = load([0x8F14])
    computer.V[0xF] = 0xFF
    computer.V[1] = 0x02
    run(computer)
    assert computer.V[0xF] == 1


def test_unknown_alu_code_is_ignored(run):
    computer = load([0x8128])
    computer.V[1] = 3
    computer.V[2] = 4
    run(computer)
    assert computer.V[1] == 3
    assert computer.PC == 0x202


def test_random_is_masked(run):
    values = iter([0xAB, 0xFF])
    computer = load([0xC30F, 0xC4F0], rand_byte=lambda: next(values))
    run(computer, 2)
    assert computer.V[3] == 0x0B
    assert computer.V[4] == 0xF0


def test_bcd(run):
    computer = load([0xA300, 0xF533])
    computer.V[5] = 157
    run(computer, 2)
    assert list(computer.RAM[0x300:0x303]) == [1, 5, 7]


def test_store_then_load_registers_round_trip(run):
    computer = load([0xA400, 0xF755, 0x6000, 0x6799, 0xF765])
    original = [0x11 * i for i in range(8)]
    for i, value in enumerate(original):
        computer.V[i] = value
    computer.V[8] = 0xEE
    run(computer, 5)
    assert list(computer.V[:8]) == original
    assert list(computer.RAM[0x400:0x408]) == original
    assert computer.RAM[0x408] == 0
    assert computer.V[8] == 0xEE
    assert computer.I == 0x400


def test_add_to_index_wraps_at_16_bits(run):
    computer = load([0xF21E])
    computer.I = 0xFFFF
    computer.V[2] = 2
    run(computer)
    assert computer.I == 0x0001


def test_font_glyph_address(run):
    computer = load([0xF629])
    computer.V[6] = 0xA
    run(computer)
    assert computer.I == 50


def test_store_registers_drops_writes_past_memory(run):
    computer = load([0xF355])
    computer.I = 0xFFD
    for i in range(4):
        computer.V[i] = 0x10 + i
    run(computer)
    assert list(computer.RAM[0xFFD:]) == [0x10, 0x11]
    assert computer.PC == 0x202


def test_load_registers_reads_zero_past_memory(run):
    computer = load([0xF365])
    computer.I = 0xFFD
    computer.RAM[0xFFD] = 0x10
    computer.RAM[0xFFE] = 0x11
    for i in range(4):
        computer.V[i] = 0xAA
    run(computer)
    assert list(computer.V[:4]) == [0x10, 0x11, 0, 0]


def test_bcd_drops_digits_past_memory(run):
    computer = load([0xF033])
    computer.I = 0xFFE
    computer.V[0] = 157
    run(computer)
    assert computer.RAM[0xFFE] == 1
    assert len(computer.RAM) == 0xFFF
    assert computer.PC == 0x202
