"""Tests for Chip8Registry instruction primitives."""

import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm.decode import VALID_KEYS, decode
from chip8_vm.errors import InvalidOpcode, OutOfBoundsAccess, StackOverflow, StackUnderflow
from chip8_vm import Chip8CPU
from chip8_vm.registry import Chip8Registry
from chip8_vm.state import create_initial_state, DISPLAY_WIDTH, FONTSET


@pytest.fixture
def registry():
    return Chip8Registry(random.Random(1234))


@pytest.fixture
def state():
    return create_initial_state()


def execute(registry, state, word):
    return registry.execute(state, decode(word))


class TestRegistryStructure:
    """Test registry construction and freezing."""

    def test_all_keys_registered(self, registry):
        """Every decoder key has a primitive."""
        assert registry.get_valid_keys() == VALID_KEYS

    def test_registry_frozen(self, registry):
        assert registry.is_frozen() is True
        with pytest.raises(RuntimeError):
            registry.register("OP_CLS", lambda s, i: s.pc + 2)

    def test_each_cpu_owns_a_registry(self):
        """CPUs never share a registry, so their CXNN sources stay independent."""
        a = Chip8CPU(seed=7)
        b = Chip8CPU(seed=7)
        assert a.registry is not b.registry
        assert a.registry.rng is not b.registry.rng

    def test_execute_advances_pc_and_cycle(self, registry, state):
        next_pc = execute(registry, state, 0x6000)
        assert next_pc == 0x202
        assert state.pc == 0x202
        assert state.cycle_count == 1


class TestRegisterLoads:
    """Test 6XNN, 7XNN, 8XY0 and CXNN."""

    @pytest.mark.parametrize("x", range(16))
    @pytest.mark.parametrize("nn", [0x00, 0x01, 0x7F, 0x80, 0xFF])
    def test_load_immediate(self, registry, x, nn):
        """6XNN then reading VX yields NN."""
        state = create_initial_state()
        execute(registry, state, 0x6000 | (x << 8) | nn)
        assert state.registers[x] == nn

    def test_add_immediate_wraps_without_flag(self, registry, state):
        """7XNN wraps mod 256 and leaves VF alone."""
        state.registers[0] = 0xFF
        state.registers[0xF] = 0
        execute(registry, state, 0x7002)
        assert state.registers[0] == 0x01
        assert state.registers[0xF] == 0

    def test_copy_register(self, registry, state):
        state.registers[3] = 0x42
        execute(registry, state, 0x8130)
        assert state.registers[1] == 0x42

    def test_random_masked(self, registry, state):
        """CXNN ANDs the random byte with NN."""
        for _ in range(50):
            execute(registry, state, 0xC00F)
            assert state.registers[0] <= 0x0F
        execute(registry, state, 0xC100)
        assert state.registers[1] == 0

    def test_random_is_seeded(self):
        """Two registries with the same seed produce the same sequence."""
        a, b = Chip8Registry(random.Random(7)), Chip8Registry(random.Random(7))
        sa, sb = create_initial_state(), create_initial_state()
        for _ in range(10):
            execute(a, sa, 0xC0FF)
            execute(b, sb, 0xC0FF)
            assert sa.registers[0] == sb.registers[0]


class TestALU:
    """Test the 8XYN arithmetic and logic group."""

    def test_or_and_xor(self, registry, state):
        state.registers[0], state.registers[1] = 0b1100, 0b1010
        execute(registry, state, 0x8011)
        assert state.registers[0] == 0b1110
        state.registers[0] = 0b1100
        execute(registry, state, 0x8012)
        assert state.registers[0] == 0b1000
        state.registers[0] = 0b1100
        execute(registry, state, 0x8013)
        assert state.registers[0] == 0b0110

    def test_add_with_carry(self, registry, state):
        """Vx=250, Vy=10: 8XY4 gives 4 and VF=1."""
        state.registers[0], state.registers[1] = 250, 10
        execute(registry, state, 0x8014)
        assert state.registers[0] == 4
        assert state.registers[0xF] == 1

    def test_add_with_carry_reversed(self, registry, state):
        """Vx=10, Vy=250: sum still wraps to 4 with VF=1."""
        state.registers[0], state.registers[1] = 10, 250
        execute(registry, state, 0x8014)
        assert state.registers[0] == 4
        assert state.registers[0xF] == 1

    def test_add_without_carry(self, registry, state):
        state.registers[0], state.registers[1] = 10, 20
        state.registers[0xF] = 1
        execute(registry, state, 0x8014)
        assert state.registers[0] == 30
        assert state.registers[0xF] == 0

    def test_sub_no_borrow(self, registry, state):
        """8XY5 with Vx >= Vy sets VF=1."""
        state.registers[0], state.registers[1] = 10, 10
        execute(registry, state, 0x8015)
        assert state.registers[0] == 0
        assert state.registers[0xF] == 1

    def test_sub_borrow(self, registry, state):
        state.registers[0], state.registers[1] = 5, 10
        execute(registry, state, 0x8015)
        assert state.registers[0] == 251
        assert state.registers[0xF] == 0

    def test_subn(self, registry, state):
        """8XY7: Vx = Vy - Vx, VF = 1 if Vy >= Vx."""
        state.registers[0], state.registers[1] = 5, 10
        execute(registry, state, 0x8017)
        assert state.registers[0] == 5
        assert state.registers[0xF] == 1

        state.registers[0], state.registers[1] = 10, 5
        execute(registry, state, 0x8017)
        assert state.registers[0] == 251
        assert state.registers[0xF] == 0

    def test_shift_right(self, registry, state):
        """8XY6 with Vx=0b11 gives VF=1, Vx=1."""
        state.registers[0] = 0b00000011
        execute(registry, state, 0x8016)
        assert state.registers[0] == 1
        assert state.registers[0xF] == 1

    def test_shift_right_ignores_vy(self, registry, state):
        state.registers[0], state.registers[1] = 0b100, 0xFF
        execute(registry, state, 0x8016)
        assert state.registers[0] == 0b10
        assert state.registers[0xF] == 0

    def test_shift_left(self, registry, state):
        """8XYE with Vx=0b10000001 gives VF=1, Vx=2."""
        state.registers[0] = 0b10000001
        execute(registry, state, 0x801E)
        assert state.registers[0] == 2
        assert state.registers[0xF] == 1

    def test_flag_wins_when_target_is_vf(self, registry, state):
        """With X=F the flag overwrites the arithmetic result."""
        state.registers[0xF], state.registers[1] = 200, 100
        execute(registry, state, 0x8F14)
        assert state.registers[0xF] == 1


class TestFlowControl:
    """Test jumps, calls, returns and skips."""

    def test_jump(self, registry, state):
        execute(registry, state, 0x1ABC)
        assert state.pc == 0xABC

    def test_jump_with_offset(self, registry, state):
        state.registers[0] = 0x10
        execute(registry, state, 0xB300)
        assert state.pc == 0x310

    def test_jump_with_offset_out_of_memory(self, registry, state):
        """BNNN landing past 0xFFF faults."""
        state.registers[0] = 0xFF
        with pytest.raises(OutOfBoundsAccess) as excinfo:
            execute(registry, state, 0xBFFF)
        assert excinfo.value.pc == 0x200
        assert excinfo.value.opcode == 0xBFFF
        assert state.pc == 0x200

    def test_call_and_return(self, registry, state):
        """CALL pushes the post-fetch PC, RET pops it."""
        execute(registry, state, 0x2400)
        assert state.pc == 0x400
        assert state.stack == [0x202]
        execute(registry, state, 0x00EE)
        assert state.pc == 0x202
        assert state.stack == []

    def test_stack_overflow(self, registry, state):
        """The 17th nested CALL faults."""
        for _ in range(16):
            execute(registry, state, 0x2200)
        assert len(state.stack) == 16
        with pytest.raises(StackOverflow) as excinfo:
            execute(registry, state, 0x2200)
        assert excinfo.value.opcode == 0x2200
        assert len(state.stack) == 16

    def test_stack_underflow(self, registry, state):
        with pytest.raises(StackUnderflow) as excinfo:
            execute(registry, state, 0x00EE)
        assert excinfo.value.pc == 0x200
        assert "0x200" in str(excinfo.value)

    @pytest.mark.parametrize("word,vx,vy,skips", [
        (0x3042, 0x42, 0, True),
        (0x3042, 0x41, 0, False),
        (0x4042, 0x41, 0, True),
        (0x4042, 0x42, 0, False),
        (0x5010, 7, 7, True),
        (0x5010, 7, 8, False),
        (0x9010, 7, 8, True),
        (0x9010, 7, 7, False),
    ])
    def test_skips(self, registry, state, word, vx, vy, skips):
        state.registers[0], state.registers[1] = vx, vy
        execute(registry, state, word)
        assert state.pc == (0x204 if skips else 0x202)

    def test_skip_on_key(self, registry, state):
        state.registers[0] = 0xA
        execute(registry, state, 0xE09E)
        assert state.pc == 0x202
        state.keypad[0xA] = True
        execute(registry, state, 0xE09E)
        assert state.pc == 0x206

    def test_skip_on_key_not_pressed(self, registry, state):
        state.registers[0] = 0x3
        execute(registry, state, 0xE0A1)
        assert state.pc == 0x204
        state.keypad[0x3] = True
        execute(registry, state, 0xE0A1)
        assert state.pc == 0x206

    def test_invalid_opcode(self, registry, state):
        with pytest.raises(InvalidOpcode) as excinfo:
            execute(registry, state, 0x0123)
        assert excinfo.value.opcode == 0x0123
        assert state.pc == 0x200
        assert state.cycle_count == 0


class TestIndexAndMemory:
    """Test ANNN, FX1E, FX29, FX33, FX55 and FX65."""

    def test_set_index(self, registry, state):
        execute(registry, state, 0xA2F0)
        assert state.index == 0x2F0

    def test_add_index_wraps_16_bits(self, registry, state):
        state.index = 0xFFFF
        state.registers[2] = 2
        execute(registry, state, 0xF21E)
        assert state.index == 1

    def test_font_address(self, registry, state):
        """FX29 points I at the glyph for the digit in Vx."""
        state.registers[0] = 0xB
        execute(registry, state, 0xF029)
        assert state.index == 5 * 0xB
        assert bytes(state.memory[state.index:state.index + 5]) == FONTSET[55:60]

    def test_bcd(self, registry, state):
        state.registers[4] = 254
        state.index = 0x300
        execute(registry, state, 0xF433)
        assert list(state.memory[0x300:0x303]) == [2, 5, 4]

    def test_bcd_out_of_bounds(self, registry, state):
        """BCD straddling the end of memory faults without writing."""
        state.index = 0xFFE
        with pytest.raises(OutOfBoundsAccess):
            execute(registry, state, 0xF033)
        assert state.memory[0xFFE] == 0

    def test_store_registers(self, registry, state):
        """FX55 stores V0..VX inclusive and leaves I unchanged."""
        state.registers[:4] = [1, 2, 3, 4]
        state.index = 0x300
        execute(registry, state, 0xF255)
        assert list(state.memory[0x300:0x304]) == [1, 2, 3, 0]
        assert state.index == 0x300

    def test_load_registers(self, registry, state):
        """FX65 loads V0..VX inclusive."""
        state.memory[0x300:0x304] = bytes([9, 8, 7, 6])
        state.index = 0x300
        execute(registry, state, 0xF265)
        assert state.registers[:4] == [9, 8, 7, 0]

    def test_store_into_fontset_faults(self, registry, state):
        state.index = 0x000
        with pytest.raises(OutOfBoundsAccess):
            execute(registry, state, 0xF055)
        assert bytes(state.memory[:80]) == FONTSET

    def test_load_past_memory_faults(self, registry, state):
        state.index = 0xFFF
        with pytest.raises(OutOfBoundsAccess):
            execute(registry, state, 0xF165)


class TestTimersAndInput:
    """Test FX07, FX15, FX18 and FX0A."""

    def test_timer_registers(self, registry, state):
        state.registers[1] = 30
        execute(registry, state, 0xF115)
        execute(registry, state, 0xF118)
        assert state.delay_timer == 30
        assert state.sound_timer == 30
        state.delay_timer = 12
        execute(registry, state, 0xF207)
        assert state.registers[2] == 12

    def test_wait_for_key(self, registry, state):
        """FX0A records the register to fill and moves past the instruction."""
        execute(registry, state, 0xF50A)
        assert state.waiting_for_key == 5
        assert state.pc == 0x202


class TestDraw:
    """Test DXYN sprite drawing."""

    def test_clear_screen(self, registry, state):
        """00E0 turns every pixel off."""
        for row in state.display:
            row[:] = [1] * DISPLAY_WIDTH
        execute(registry, state, 0x00E0)
        assert not any(any(row) for row in state.framebuffer())

    def test_draw_sprite(self, registry, state):
        """Sprite bits are drawn MSB first from (Vx, Vy)."""
        state.memory[0x300] = 0b10100000
        state.index = 0x300
        state.registers[0], state.registers[1] = 4, 2
        execute(registry, state, 0xD011)
        assert state.display[2][4:8] == [1, 0, 1, 0]
        assert state.registers[0xF] == 0
        assert state.display_dirty is True

    def test_xor_self_cancels(self, registry, state):
        """Drawing 0xFF twice clears the row and sets VF on the second draw."""
        state.memory[0x300] = 0xFF
        state.index = 0x300
        execute(registry, state, 0xD011)
        assert state.display[0][:8] == [1] * 8
        assert state.registers[0xF] == 0
        execute(registry, state, 0xD011)
        assert state.display[0][:8] == [0] * 8
        assert state.registers[0xF] == 1

    def test_partial_overlap_collision(self, registry, state):
        """Only pixels turned off count as collisions; others are toggled on."""
        state.memory[0x300] = 0b11000000
        state.memory[0x301] = 0b01100000
        state.index = 0x300
        execute(registry, state, 0xD011)
        state.index = 0x301
        execute(registry, state, 0xD011)
        assert state.display[0][:3] == [1, 0, 1]
        assert state.registers[0xF] == 1

    def test_origin_wraps(self, registry, state):
        """Origin coordinates wrap modulo the screen size."""
        state.memory[0x300] = 0x80
        state.index = 0x300
        state.registers[0], state.registers[1] = 64 + 3, 32 + 1
        execute(registry, state, 0xD011)
        assert state.display[1][3] == 1

    def test_clips_right_edge(self, registry, state):
        """Pixels past column 63 are dropped, not wrapped."""
        state.memory[0x300] = 0xFF
        state.index = 0x300
        state.registers[0], state.registers[1] = 60, 0
        execute(registry, state, 0xD011)
        assert state.display[0][60:64] == [1, 1, 1, 1]
        assert state.display[0][:4] == [0, 0, 0, 0]

    def test_clips_bottom_edge(self, registry, state):
        """Rows past line 31 are dropped, not wrapped."""
        state.memory[0x300:0x304] = bytes([0x80] * 4)
        state.index = 0x300
        state.registers[0], state.registers[1] = 0, 30
        execute(registry, state, 0xD014)
        assert state.display[30][0] == 1
        assert state.display[31][0] == 1
        assert state.display[0][0] == 0
        assert state.display[1][0] == 0

    def test_vf_reset_before_draw(self, registry, state):
        state.registers[0xF] = 1
        state.memory[0x300] = 0x80
        state.index = 0x300
        execute(registry, state, 0xD011)
        assert state.registers[0xF] == 0

    def test_sprite_past_memory_faults(self, registry, state):
        state.index = 0xFFE
        with pytest.raises(OutOfBoundsAccess):
            execute(registry, state, 0xD015)
