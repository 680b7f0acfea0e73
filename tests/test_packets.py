"""Byte layout of the three configuration packets."""
import itertools
import struct

import pytest

import glorious
from glorious import (
    BLUE,
    BUTTONS_PACKET_SIZE,
    DEBOUNCE_PACKET_SIZE,
    MAIN_PACKET_SIZE,
    MAIN_RESERVED,
    RED,
    ButtonAction,
    Color,
    Config,
    ConfigError,
    DebounceTime,
    LightingMode,
    LiftoffDistance,
    PollingRate,
    RainbowDirection,
    build_buttons_packet,
    build_debounce_packet,
    build_main_packet,
)


def _with_enabled(config, enabled, selected):
    for index, dpi in enumerate(config.dpi):
        dpi.enabled = index in enabled
    config.current_dpi = selected
    config.validate()
    return config


class TestWireCodes:
    @pytest.mark.parametrize('enum_cls', [
        LightingMode, RainbowDirection, PollingRate, LiftoffDistance,
        DebounceTime, ButtonAction,
    ])
    def test_codes_are_unique(self, enum_cls):
        values = [member.value for member in enum_cls]
        assert len(values) == len(set(values))

    def test_lighting_modes(self):
        assert [mode.value for mode in LightingMode] == list(range(0x00, 0x0b))

    def test_polling_rates(self):
        assert PollingRate.HZ_125 == 0x01
        assert PollingRate.HZ_1000 == 0x04

    def test_debounce_times(self):
        assert [t.value for t in DebounceTime] == list(range(0x02, 0x09))

    def test_button_codes_low_word_is_zero(self):
        for action in ButtonAction:
            assert action & 0xffff == 0
        assert ButtonAction.DISABLE == 0x50010000

    def test_every_member_has_a_name(self):
        for enum_cls, names in glorious.ENUM_NAMES.items():
            assert set(names.values()) == set(enum_cls)


class TestMainPacket:
    def test_default_layout(self):
        packet = build_main_packet(Config())

        assert len(packet) == MAIN_PACKET_SIZE
        assert packet[0:10] == bytes([0x04, 0x11, 0x00, 0x7b, 0x00, 0x00, 0x00, 0x00, 0x64, 0x06])
        assert packet[10] & 0x07 == PollingRate.HZ_1000
        assert packet[10] & 0x08 == 0
        assert packet[11] == 0x13
        assert packet[12] == ~0b00000111 & 0xff
        assert packet[13:19] == bytes([4, 8, 12, 14, 16, 18])
        assert packet[19:25] == bytes(6)
        assert packet[25:29] == bytes(4)
        assert packet[29:47] == b'\xff' * 18
        assert packet[47:53] == bytes(6)
        assert packet[53] == LightingMode.OFF
        assert packet[54:56] == bytes([0x42, RainbowDirection.BACKWARD])
        assert packet[56] == 0x40
        assert packet[57:60] == b'\xff\xff\xff'
        assert packet[60:62] == bytes([0x42, 0x07])
        assert packet[62:83] == b'\xff' * 21
        assert packet[83] == 0x42
        assert packet[84] == 0x42
        assert packet[85:117] == MAIN_RESERVED
        assert packet[117] == 0x42
        assert packet[118:124] == RED.to_wire() + BLUE.to_wire()
        assert packet[124] == 0x02
        assert packet[125] == 0x42
        assert packet[126] == 0x02
        assert packet[127:130] == b'\xff\xff\xff'
        assert packet[130] == LiftoffDistance.MM_2
        assert packet[131:] == bytes(MAIN_PACKET_SIZE - 131)

    def test_reserved_block_is_unchanged(self):
        assert len(MAIN_RESERVED) == 32
        assert MAIN_RESERVED[19] == 0xfa

    def test_deterministic(self):
        config = Config()
        config.lighting.mode = LightingMode.RAVE
        assert build_main_packet(config) == build_main_packet(config)

    def test_returns_bytes(self):
        assert isinstance(build_main_packet(Config()), bytes)

    @pytest.mark.parametrize('enabled', [
        subset
        for size in range(1, 7)
        for subset in itertools.combinations(range(6), size)
    ])
    def test_enable_flags_are_inverted(self, enabled):
        config = _with_enabled(Config(), set(enabled), enabled[0])
        packet = build_main_packet(config)

        mask = sum(1 << index for index in enabled)
        assert packet[12] & 0x3f == ~mask & 0x3f
        assert packet[12] == ~mask & 0xff
        assert packet[11] & 0x0f == len(enabled)
        assert packet[11] >> 4 == 1
        assert len(packet) == MAIN_PACKET_SIZE

    @pytest.mark.parametrize('selected, position', [(0, 1), (2, 2), (4, 3)])
    def test_selected_dpi_position(self, selected, position):
        config = _with_enabled(Config(), {0, 2, 4}, selected)
        packet = build_main_packet(config)
        assert packet[11] == (position << 4) | 3

    def test_separate_xy(self):
        config = Config()
        config.dpi[3].y = 20
        config.polling_rate = PollingRate.HZ_500
        packet = build_main_packet(config)

        assert packet[10] == 0x08 | PollingRate.HZ_500
        assert packet[13:25] == bytes([4, 4, 8, 8, 12, 12, 14, 20, 16, 16, 18, 18])
        assert packet[25:29] == bytes(4)
        assert len(packet) == MAIN_PACKET_SIZE

    def test_dpi_colors(self):
        config = Config()
        config.dpi[1].color = Color(0x11, 0x22, 0x33)
        packet = build_main_packet(config)
        assert packet[32:35] == bytes([0x11, 0x33, 0x22])

    def test_brightness_speed(self):
        config = Config()
        lighting = config.lighting
        lighting.tail.brightness, lighting.tail.speed = 4, 3
        lighting.rave.brightness, lighting.rave.speed = 4, 3
        lighting.wave.brightness, lighting.wave.speed = 4, 3
        lighting.rainbow.speed = 2
        lighting.fade.speed = 1
        lighting.solid.brightness = 3
        packet = build_main_packet(config)

        assert packet[83] == 0x43
        assert packet[117] == 0x43
        assert packet[125] == 0x43
        assert packet[54] == 0x42
        assert packet[84] == 0x41
        assert packet[56] == 0x30

    def test_lighting_colors(self):
        config = Config()
        lighting = config.lighting
        lighting.mode = LightingMode.BREATHING_SINGLE
        lighting.rainbow.direction = RainbowDirection.FORWARD
        lighting.solid.color = Color(0x01, 0x02, 0x03)
        lighting.breathing.colors[6] = Color(0x0a, 0x0b, 0x0c)
        lighting.rave.colors[1] = Color(0x21, 0x22, 0x23)
        lighting.breathing_single.speed = 3
        lighting.breathing_single.color = Color(0x31, 0x32, 0x33)
        config.liftoff_distance = LiftoffDistance.MM_3
        packet = build_main_packet(config)

        assert packet[53] == 0x0a
        assert packet[55] == 0x01
        assert packet[57:60] == bytes([0x01, 0x03, 0x02])
        assert packet[80:83] == bytes([0x0a, 0x0c, 0x0b])
        assert packet[121:124] == bytes([0x21, 0x23, 0x22])
        assert packet[126] == 0x03
        assert packet[127:130] == bytes([0x31, 0x33, 0x32])
        assert packet[130] == 0x02

    def test_selected_dpi_not_enabled(self):
        config = Config()
        config.dpi[0].enabled = False
        with pytest.raises(ConfigError, match='not enabled'):
            build_main_packet(config)


class TestButtonsPacket:
    def test_default_layout(self):
        packet = build_buttons_packet(Config())

        assert len(packet) == BUTTONS_PACKET_SIZE
        assert packet[0:8] == bytes([0x04, 0x12, 0x00, 0x50, 0x00, 0x00, 0x00, 0x00])
        assert packet[8:32] == struct.pack(
            '>6I',
            ButtonAction.LEFT_CLICK,
            ButtonAction.RIGHT_CLICK,
            ButtonAction.MIDDLE_CLICK,
            ButtonAction.BACK_CLICK,
            ButtonAction.FORWARD_CLICK,
            ButtonAction.DPI_LOOP,
        )
        assert packet[32:84] == bytes([0x50, 0x01, 0x00, 0x00]) * 13
        assert packet[84:] == bytes(BUTTONS_PACKET_SIZE - 84)

    def test_button_order(self):
        config = Config()
        buttons = config.buttons
        buttons.left = ButtonAction.SCROLL_UP
        buttons.right = ButtonAction.SCROLL_DOWN
        buttons.middle = ButtonAction.DPI_PLUS
        buttons.forward = ButtonAction.DPI_MINUS
        buttons.back = ButtonAction.DISABLE
        buttons.dpi = ButtonAction.LEFT_CLICK
        packet = build_buttons_packet(config)

        codes = struct.unpack('>19I', packet[8:84])
        assert codes[:6] == (
            ButtonAction.SCROLL_UP,
            ButtonAction.SCROLL_DOWN,
            ButtonAction.DPI_PLUS,
            ButtonAction.DISABLE,
            ButtonAction.DPI_MINUS,
            ButtonAction.LEFT_CLICK,
        )
        assert codes[6:] == (ButtonAction.DISABLE,) * 13


class TestDebouncePacket:
    @pytest.mark.parametrize('debounce', list(DebounceTime))
    def test_layout(self, debounce):
        config = Config(debounce_time=debounce)
        packet = build_debounce_packet(config)
        assert len(packet) == DEBOUNCE_PACKET_SIZE
        assert packet == bytes([0x05, 0x1a, debounce, 0x00, 0x00, 0x00])
