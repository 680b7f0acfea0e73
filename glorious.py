#!/usr/bin/env python3
import argparse
import copy
import dataclasses
import enum
import json
import logging
import os
import pathlib
import struct
import sys
import typing

import usb.core
import usb.util

log = logging.getLogger(__name__)

# (vendor id, product id)
TARGET_DEVICES = (
    (0x258a, 0x0033),  # Model D
    (0x258a, 0x0036),  # Model O
)

INTERFACES = (0, 1)

REQUEST_TYPE = 0x21  # Host-to-device, class, interface
REQUEST = 0x09  # Set report
REPORT_MAIN = 0x0304
REPORT_DEBOUNCE = 0x0305
REPORT_INTERFACE = 0x01
TIMEOUT_MS = 5000

MAIN_PACKET_SIZE = 520
BUTTONS_PACKET_SIZE = 520
DEBOUNCE_PACKET_SIZE = 6

MAIN_PREAMBLE = bytes([0x04, 0x11, 0x00, 0x7b, 0x00, 0x00, 0x00, 0x00, 0x64, 0x06])
BUTTONS_PREAMBLE = bytes([0x04, 0x12, 0x00, 0x50, 0x00, 0x00, 0x00, 0x00])
DEBOUNCE_PREAMBLE = bytes([0x05, 0x1a])

SEPARATE_XY_FLAG = 0x08
SPEED_MARKER = 0x40
BREATHING_MARKER = bytes([0x42, 0x07])
WAVE_MARKER = bytes([0x02])

# unknown data; probably the colors of an unexposed effect
MAIN_RESERVED = bytes([
    0x00, 0xff, 0x00, 0x00, 0x00, 0xff, 0x00, 0x00,
    0x00, 0xff, 0xff, 0xff, 0x00, 0x00, 0xff, 0xff,
    0xff, 0xff, 0xff, 0xfa, 0x00, 0xff, 0xff, 0x00,
    0x00, 0xff, 0x00, 0x00, 0xff, 0x00, 0x00, 0x00,
])

UNUSED_BUTTON_SLOTS = 13

DPI_COUNT = 6
DPI_INDEX_MIN = 0
DPI_INDEX_MAX = DPI_COUNT - 1

# stored as dpi / 100; the command line takes 100..25500
DPI_RAW_MIN = 0x01
DPI_RAW_MAX = 0xff
DPI_STEP = 100

BRIGHTNESS_MIN = 1
BRIGHTNESS_MAX = 4

SPEED_MIN = 1
SPEED_MAX = 3

BREATHING_COLOR_COUNT = 7
RAVE_COLOR_COUNT = 2


class GloriousError(Exception):
    pass


class ConfigError(GloriousError, ValueError):
    pass


class DeviceNotFoundError(GloriousError):
    pass


class ClaimError(GloriousError):
    pass


class ReleaseError(GloriousError):
    pass


class TransferError(GloriousError):
    pass


class LightingMode(enum.IntEnum):
    OFF = 0x00
    RAINBOW = 0x01
    SOLID = 0x02
    BREATHING = 0x03
    TAIL = 0x04
    FADE = 0x05
    WAVE_SOLID = 0x06
    RAVE = 0x07
    RANDOM = 0x08
    WAVE = 0x09
    BREATHING_SINGLE = 0x0a


class RainbowDirection(enum.IntEnum):
    BACKWARD = 0x00
    FORWARD = 0x01


class PollingRate(enum.IntEnum):
    HZ_125 = 0x01
    HZ_250 = 0x02
    HZ_500 = 0x03
    HZ_1000 = 0x04


class LiftoffDistance(enum.IntEnum):
    MM_2 = 0x01
    MM_3 = 0x02


class DebounceTime(enum.IntEnum):
    MS_4 = 0x02
    MS_6 = 0x03
    MS_8 = 0x04
    MS_10 = 0x05
    MS_12 = 0x06
    MS_14 = 0x07
    MS_16 = 0x08


class ButtonAction(enum.IntEnum):
    DISABLE = 0x50010000
    LEFT_CLICK = 0x11010000
    RIGHT_CLICK = 0x11020000
    MIDDLE_CLICK = 0x11040000
    BACK_CLICK = 0x11080000
    FORWARD_CLICK = 0x11100000
    SCROLL_UP = 0x12010000
    SCROLL_DOWN = 0x12ff0000
    DPI_LOOP = 0x41000000
    DPI_PLUS = 0x41010000
    DPI_MINUS = 0x41020000


# names used on the command line and in the config file
ENUM_NAMES = {
    LightingMode: {
        'off': LightingMode.OFF,
        'rainbow': LightingMode.RAINBOW,
        'solid': LightingMode.SOLID,
        'breathing': LightingMode.BREATHING,
        'tail': LightingMode.TAIL,
        'fade': LightingMode.FADE,
        'wave-solid': LightingMode.WAVE_SOLID,
        'rave': LightingMode.RAVE,
        'random': LightingMode.RANDOM,
        'wave': LightingMode.WAVE,
        'breathing-single': LightingMode.BREATHING_SINGLE,
    },
    RainbowDirection: {
        'backward': RainbowDirection.BACKWARD,
        'forward': RainbowDirection.FORWARD,
    },
    PollingRate: {
        '125hz': PollingRate.HZ_125,
        '250hz': PollingRate.HZ_250,
        '500hz': PollingRate.HZ_500,
        '1000hz': PollingRate.HZ_1000,
    },
    LiftoffDistance: {
        '2mm': LiftoffDistance.MM_2,
        '3mm': LiftoffDistance.MM_3,
    },
    DebounceTime: {
        '4ms': DebounceTime.MS_4,
        '6ms': DebounceTime.MS_6,
        '8ms': DebounceTime.MS_8,
        '10ms': DebounceTime.MS_10,
        '12ms': DebounceTime.MS_12,
        '14ms': DebounceTime.MS_14,
        '16ms': DebounceTime.MS_16,
    },
    ButtonAction: {
        'disable': ButtonAction.DISABLE,
        'left-click': ButtonAction.LEFT_CLICK,
        'right-click': ButtonAction.RIGHT_CLICK,
        'middle-click': ButtonAction.MIDDLE_CLICK,
        'back-click': ButtonAction.BACK_CLICK,
        'forward-click': ButtonAction.FORWARD_CLICK,
        'scroll-up': ButtonAction.SCROLL_UP,
        'scroll-down': ButtonAction.SCROLL_DOWN,
        'dpi-loop': ButtonAction.DPI_LOOP,
        'dpi-plus': ButtonAction.DPI_PLUS,
        'dpi-minus': ButtonAction.DPI_MINUS,
    },
}


def inverse(dict_obj):
    return {v: k for k, v in dict_obj.items()}


def enum_from_name(enum_cls, name):
    try:
        return ENUM_NAMES[enum_cls][name]
    except KeyError:
        choices = ', '.join(ENUM_NAMES[enum_cls])
        raise ConfigError(f'invalid {enum_cls.__name__} {name!r} (choose from {choices})') from None


def enum_to_name(value):
    return inverse(ENUM_NAMES[type(value)])[value]


def check_range(name, value, minimum, maximum):
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f'{name} must be an integer, got {value!r}')
    if not (minimum <= value <= maximum):
        raise ConfigError(f'{name} {value} was not in range {minimum}..{maximum}')


def check_enum(name, value, enum_cls):
    if not isinstance(value, enum_cls):
        raise ConfigError(f'{name} must be a {enum_cls.__name__}, got {value!r}')


def check_colors(name, colors, count):
    if len(colors) != count:
        raise ConfigError(f'{name} must have {count} colors, got {len(colors)}')
    for color in colors:
        color.validate()


def color_to_int(value):
    value = value.removeprefix('#')
    if len(value) != 6:
        raise ConfigError(f'could not parse {value!r} as hex color')
    try:
        return (
            int(value[0:2], 16),
            int(value[2:4], 16),
            int(value[4:6], 16),
        )
    except ValueError:
        raise ConfigError(f'could not parse {value!r} as hex color') from None


def int_to_color(r, g, b):
    return f'{r:02x}{g:02x}{b:02x}'


@dataclasses.dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int

    def __post_init__(self):
        self.validate()

    def validate(self):
        for channel in ('r', 'g', 'b'):
            check_range(f'color channel {channel}', getattr(self, channel), 0x00, 0xff)

    @classmethod
    def from_hex(cls, value):
        return cls(*color_to_int(value))

    def to_hex(self):
        return int_to_color(self.r, self.g, self.b)

    def to_wire(self):
        # the firmware expects red, blue, green
        return bytes([self.r, self.b, self.g])


WHITE = Color(0xff, 0xff, 0xff)
RED = Color(0xff, 0x00, 0x00)
BLUE = Color(0x00, 0x00, 0xff)


class Validated:
    def __post_init__(self):
        self.validate()

    def validate(self):
        raise NotImplementedError


@dataclasses.dataclass
class Rainbow(Validated):
    speed: int = 2
    direction: RainbowDirection = RainbowDirection.BACKWARD

    def validate(self):
        check_range('rainbow speed', self.speed, SPEED_MIN, SPEED_MAX)
        check_enum('rainbow direction', self.direction, RainbowDirection)


@dataclasses.dataclass
class Solid(Validated):
    brightness: int = 4
    color: Color = WHITE

    def validate(self):
        check_range('solid brightness', self.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        self.color.validate()


@dataclasses.dataclass
class Breathing(Validated):
    brightness: int = 4
    speed: int = 2
    colors: list[Color] = dataclasses.field(
        default_factory=lambda: [WHITE] * BREATHING_COLOR_COUNT)

    def validate(self):
        check_range('breathing brightness', self.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        check_range('breathing speed', self.speed, SPEED_MIN, SPEED_MAX)
        check_colors('breathing', self.colors, BREATHING_COLOR_COUNT)


@dataclasses.dataclass
class Tail(Validated):
    brightness: int = 4
    speed: int = 2

    def validate(self):
        check_range('tail brightness', self.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        check_range('tail speed', self.speed, SPEED_MIN, SPEED_MAX)


@dataclasses.dataclass
class Fade(Validated):
    speed: int = 2

    def validate(self):
        check_range('fade speed', self.speed, SPEED_MIN, SPEED_MAX)


@dataclasses.dataclass
class Rave(Validated):
    brightness: int = 4
    speed: int = 2
    colors: list[Color] = dataclasses.field(default_factory=lambda: [RED, BLUE])

    def validate(self):
        check_range('rave brightness', self.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        check_range('rave speed', self.speed, SPEED_MIN, SPEED_MAX)
        check_colors('rave', self.colors, RAVE_COLOR_COUNT)


@dataclasses.dataclass
class Wave(Validated):
    brightness: int = 4
    speed: int = 2

    def validate(self):
        check_range('wave brightness', self.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        check_range('wave speed', self.speed, SPEED_MIN, SPEED_MAX)


@dataclasses.dataclass
class BreathingSingle(Validated):
    speed: int = 2
    color: Color = WHITE

    def validate(self):
        check_range('breathing single speed', self.speed, SPEED_MIN, SPEED_MAX)
        self.color.validate()


@dataclasses.dataclass
class Lighting(Validated):
    mode: LightingMode = LightingMode.OFF
    rainbow: Rainbow = dataclasses.field(default_factory=Rainbow)
    solid: Solid = dataclasses.field(default_factory=Solid)
    breathing: Breathing = dataclasses.field(default_factory=Breathing)
    tail: Tail = dataclasses.field(default_factory=Tail)
    fade: Fade = dataclasses.field(default_factory=Fade)
    rave: Rave = dataclasses.field(default_factory=Rave)
    wave: Wave = dataclasses.field(default_factory=Wave)
    breathing_single: BreathingSingle = dataclasses.field(default_factory=BreathingSingle)

    def validate(self):
        check_enum('lighting mode', self.mode, LightingMode)
        for effect in (self.rainbow, self.solid, self.breathing, self.tail,
                       self.fade, self.rave, self.wave, self.breathing_single):
            effect.validate()


@dataclasses.dataclass
class Dpi(Validated):
    enabled: bool
    x: int
    y: int
    color: Color = WHITE

    def validate(self):
        if not isinstance(self.enabled, bool):
            raise ConfigError(f'dpi enabled must be a boolean, got {self.enabled!r}')
        check_range('x dpi', self.x, 0x00, 0xff)
        check_range('y dpi', self.y, 0x00, 0xff)
        self.color.validate()


def default_dpis():
    return [
        Dpi(True, 4, 4),
        Dpi(True, 8, 8),
        Dpi(True, 12, 12),
        Dpi(False, 14, 14),
        Dpi(False, 16, 16),
        Dpi(False, 18, 18),
    ]


@dataclasses.dataclass
class Buttons(Validated):
    left: ButtonAction = ButtonAction.LEFT_CLICK
    right: ButtonAction = ButtonAction.RIGHT_CLICK
    middle: ButtonAction = ButtonAction.MIDDLE_CLICK
    forward: ButtonAction = ButtonAction.FORWARD_CLICK
    back: ButtonAction = ButtonAction.BACK_CLICK
    dpi: ButtonAction = ButtonAction.DPI_LOOP

    def validate(self):
        for field in dataclasses.fields(self):
            check_enum(f'{field.name} button', getattr(self, field.name), ButtonAction)


@dataclasses.dataclass
class Config(Validated):
    lighting: Lighting = dataclasses.field(default_factory=Lighting)
    dpi: list[Dpi] = dataclasses.field(default_factory=default_dpis)
    current_dpi: int = 0
    polling_rate: PollingRate = PollingRate.HZ_1000
    liftoff_distance: LiftoffDistance = LiftoffDistance.MM_2
    debounce_time: DebounceTime = DebounceTime.MS_10
    buttons: Buttons = dataclasses.field(default_factory=Buttons)

    def validate(self):
        self.lighting.validate()
        if len(self.dpi) != DPI_COUNT:
            raise ConfigError(f'expected {DPI_COUNT} dpi settings, got {len(self.dpi)}')
        for dpi in self.dpi:
            dpi.validate()
        check_range('selected dpi', self.current_dpi, DPI_INDEX_MIN, DPI_INDEX_MAX)
        if not any(dpi.enabled for dpi in self.dpi):
            raise ConfigError('at least one DPI must be enabled')
        if not self.dpi[self.current_dpi].enabled:
            raise ConfigError(f'selected DPI {self.current_dpi} is not enabled')
        check_enum('polling rate', self.polling_rate, PollingRate)
        check_enum('liftoff distance', self.liftoff_distance, LiftoffDistance)
        check_enum('debounce time', self.debounce_time, DebounceTime)
        self.buttons.validate()

    def to_dict(self):
        return to_json(self)

    @classmethod
    def from_dict(cls, data):
        return from_json(cls, data, 'config')


def to_json(value):
    if isinstance(value, Color):
        return value.to_hex()
    if isinstance(value, enum.IntEnum):
        return enum_to_name(value)
    if dataclasses.is_dataclass(value):
        return {
            field.name: to_json(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, list):
        return [to_json(item) for item in value]
    return value


def from_json(kind, data, path):
    if typing.get_origin(kind) is list:
        if not isinstance(data, list):
            raise ConfigError(f'{path} must be a list')
        item_kind, = typing.get_args(kind)
        return [from_json(item_kind, item, f'{path}[{i}]') for i, item in enumerate(data)]
    if kind is Color:
        if not isinstance(data, str):
            raise ConfigError(f'{path} must be a hex color string')
        return Color.from_hex(data)
    if kind in ENUM_NAMES:
        if not isinstance(data, str):
            raise ConfigError(f'{path} must be a string')
        return enum_from_name(kind, data)
    if dataclasses.is_dataclass(kind):
        if not isinstance(data, dict):
            raise ConfigError(f'{path} must be an object')
        fields = {field.name: field for field in dataclasses.fields(kind)}
        kwargs = {}
        for key, value in data.items():
            if key not in fields:
                log.warning('ignoring unknown config key %s.%s', path, key)
                continue
            kwargs[key] = from_json(fields[key].type, value, f'{path}.{key}')
        try:
            return kind(**kwargs)
        except TypeError as e:
            raise ConfigError(f'{path}: {e}') from None
    return data


def combine_brightness_speed(brightness, speed):
    return (brightness << 4) | speed


def finish_packet(packet, size):
    assert len(packet) <= size, f'packet overflow: {len(packet)} > {size}'
    packet.extend(bytes(size - len(packet)))
    return bytes(packet)


def build_main_packet(config):
    """
    Lighting, DPI, polling rate and liftoff distance.

    Every effect's parameters are sent regardless of the active mode.
    """
    lighting = config.lighting
    separate_xy = any(dpi.x != dpi.y for dpi in config.dpi)

    dpi_count = 0
    dpi_flags = 0
    current_dpi = None
    for index, dpi in enumerate(config.dpi):
        if not dpi.enabled:
            continue
        dpi_count += 1
        dpi_flags |= 0b1 << index
        if index == config.current_dpi:
            # position among the enabled settings, counting from 1
            current_dpi = dpi_count
    if current_dpi is None:
        raise ConfigError(f'selected DPI {config.current_dpi} is not enabled')

    packet = bytearray(MAIN_PREAMBLE)
    packet.append((SEPARATE_XY_FLAG if separate_xy else 0x00) | config.polling_rate)

    # firmware takes the disabled mask
    packet += bytes([(current_dpi << 4) | dpi_count, ~dpi_flags & 0xff])

    if separate_xy:
        for dpi in config.dpi:
            packet += bytes([dpi.x, dpi.y])
    else:
        packet += bytes(dpi.x for dpi in config.dpi)
        packet += bytes(DPI_COUNT)

    # unknown data
    packet += bytes(4)

    for dpi in config.dpi:
        packet += dpi.color.to_wire()

    # unknown data
    packet += bytes(6)

    packet.append(lighting.mode)
    packet += bytes([SPEED_MARKER | lighting.rainbow.speed, lighting.rainbow.direction])
    packet.append(lighting.solid.brightness << 4)
    packet += lighting.solid.color.to_wire()

    packet += BREATHING_MARKER
    for color in lighting.breathing.colors:
        packet += color.to_wire()

    packet.append(combine_brightness_speed(lighting.tail.brightness, lighting.tail.speed))
    packet.append(SPEED_MARKER | lighting.fade.speed)

    packet += MAIN_RESERVED

    packet.append(combine_brightness_speed(lighting.rave.brightness, lighting.rave.speed))
    for color in lighting.rave.colors:
        packet += color.to_wire()

    packet += WAVE_MARKER
    packet.append(combine_brightness_speed(lighting.wave.brightness, lighting.wave.speed))

    packet.append(lighting.breathing_single.speed)
    packet += lighting.breathing_single.color.to_wire()

    packet.append(config.liftoff_distance)

    return finish_packet(packet, MAIN_PACKET_SIZE)


def build_buttons_packet(config):
    buttons = config.buttons
    packet = bytearray(BUTTONS_PREAMBLE)
    for action in (buttons.left, buttons.right, buttons.middle,
                   buttons.back, buttons.forward, buttons.dpi):
        packet += struct.pack('>I', action)
    for _ in range(UNUSED_BUTTON_SLOTS):
        packet += struct.pack('>I', ButtonAction.DISABLE)
    return finish_packet(packet, BUTTONS_PACKET_SIZE)


def build_debounce_packet(config):
    packet = bytearray(DEBOUNCE_PREAMBLE)
    packet.append(config.debounce_time)
    return finish_packet(packet, DEBOUNCE_PACKET_SIZE)


def supports_detach_kernel_driver():
    return sys.platform.startswith('linux')


def find_device(targets=TARGET_DEVICES):
    try:
        devices = list(usb.core.find(find_all=True))
    except (usb.core.NoBackendError, usb.core.USBError) as e:
        raise DeviceNotFoundError(f'could not load usb device list: {e}') from e
    for device in devices:
        if (device.idVendor, device.idProduct) in targets:
            log.debug('found device %04x:%04x', device.idVendor, device.idProduct)
            return device
    raise DeviceNotFoundError('could not find usb device')


class InterfaceClaim:
    """
    Claims interfaces for the duration of a with block.

    Kernel drivers are detached before claiming where the platform allows
    it, and reattached after the interfaces are released.
    """

    def __init__(self, device, interfaces, detach=None):
        self.device = device
        self.interfaces = tuple(interfaces)
        if detach is None:
            detach = supports_detach_kernel_driver()
        self.detach = detach
        self.claimed = []
        self.detached = []

    def __enter__(self):
        try:
            for interface in self.interfaces:
                self._claim(interface)
        except BaseException:
            self.release()
            raise
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        failures = self.release()
        if failures and exc_type is None:
            raise ReleaseError('; '.join(failures))
        return False

    def _claim(self, interface):
        try:
            if self.detach and self.device.is_kernel_driver_active(interface):
                self.device.detach_kernel_driver(interface)
                self.detached.append(interface)
                log.debug('detached kernel driver from interface %d', interface)
            usb.util.claim_interface(self.device, interface)
        except usb.core.USBError as e:
            raise ClaimError(f'could not claim interface {interface}: {e}') from e
        self.claimed.append(interface)
        log.debug('claimed interface %d', interface)

    def release(self):
        """
        Release every claimed interface and reattach every detached driver.

        All calls are attempted; failures are logged and returned.
        """
        failures = []
        for interface in reversed(self.interfaces):
            if interface in self.claimed:
                self.claimed.remove(interface)
                try:
                    usb.util.release_interface(self.device, interface)
                    log.debug('released interface %d', interface)
                except usb.core.USBError as e:
                    log.warning('could not release interface %d: %s', interface, e)
                    failures.append(f'could not release interface {interface}: {e}')
            if interface in self.detached:
                self.detached.remove(interface)
                try:
                    self.device.attach_kernel_driver(interface)
                    log.debug('reattached kernel driver to interface %d', interface)
                except usb.core.USBError as e:
                    log.warning('could not reattach kernel driver to interface %d: %s', interface, e)
                    failures.append(f'could not reattach kernel driver to interface {interface}: {e}')
        try:
            usb.util.dispose_resources(self.device)
        except usb.core.USBError as e:
            log.warning('could not dispose of device resources: %s', e)
            failures.append(f'could not dispose of device resources: {e}')
        return failures


class Device:
    def __init__(self, device=None):
        if device is None:
            device = find_device()
        self.device = device

    def claim(self, interfaces=INTERFACES):
        return InterfaceClaim(self.device, interfaces)

    def write(self, payload, value):
        if not isinstance(payload, bytes):
            payload = bytes(payload)
        log.debug('writing %d bytes to report 0x%04x', len(payload), value)
        try:
            res = self.device.ctrl_transfer(
                REQUEST_TYPE,
                REQUEST,
                value,
                REPORT_INTERFACE,
                payload,
                TIMEOUT_MS)
        except usb.core.USBError as e:
            raise TransferError(f'could not write report 0x{value:04x}: {e}') from e
        if res != len(payload):
            raise TransferError(f'short write to report 0x{value:04x}: {res} of {len(payload)} bytes')


def apply_config(config, device=None):
    config.validate()
    main_packet = build_main_packet(config)
    buttons_packet = build_buttons_packet(config)
    debounce_packet = build_debounce_packet(config)

    if device is None:
        device = Device()

    with device.claim():
        device.write(main_packet, REPORT_MAIN)
        device.write(buttons_packet, REPORT_MAIN)
        device.write(debounce_packet, REPORT_DEBOUNCE)


def default_config_path():
    base = os.environ.get('XDG_CONFIG_HOME') or os.path.join(os.path.expanduser('~'), '.config')
    return pathlib.Path(base, 'glorious', 'config.json')


def load_config(path):
    try:
        text = path.read_text(encoding='utf-8')
    except FileNotFoundError:
        log.debug('%s does not exist, using defaults', path)
        return Config()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f'could not read {path}: {e}') from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f'could not parse {path}: {e}') from e
    return Config.from_dict(data)


def save_config(config, path):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(pretty_json(config.to_dict()) + '\n', encoding='utf-8')
    except OSError as e:
        raise ConfigError(f'could not write {path}: {e}') from e
    log.debug('saved config to %s', path)


def pretty_json(data):
    return json.dumps(data, indent=2, sort_keys=True)


def dpi_to_raw(value):
    if not value.endswith('00'):
        raise ConfigError('dpi did not end in "00"')
    try:
        raw = int(value[:-2] or '0')
    except ValueError:
        raise ConfigError(f'could not parse dpi {value!r}') from None
    if not (DPI_RAW_MIN <= raw <= DPI_RAW_MAX):
        raise ConfigError(f'dpi was not between {DPI_RAW_MIN * DPI_STEP} and {DPI_RAW_MAX * DPI_STEP}')
    return raw


def _argparse_type(func):
    def wrapper(value):
        try:
            return func(value)
        except ConfigError as e:
            raise argparse.ArgumentTypeError(str(e)) from None
    wrapper.__name__ = func.__name__
    return wrapper


def _parser_range(minimum, maximum):
    def parse(value):
        try:
            value = int(value)
        except ValueError:
            raise ConfigError(f'invalid integer {value!r}') from None
        check_range('value', value, minimum, maximum)
        return value
    parse.__name__ = 'int'
    return _argparse_type(parse)


def _parser_enum(enum_cls):
    def parse(value):
        return enum_from_name(enum_cls, value)
    parse.__name__ = enum_cls.__name__
    return _argparse_type(parse)


def _parser_indexed(parse_value, max_index):
    def parse(value):
        index, sep, rest = value.partition(':')
        if not sep:
            raise ConfigError('must be in the form "<index>:<value>"')
        try:
            index = int(index)
        except ValueError:
            raise ConfigError(f'invalid index {index!r}') from None
        check_range('index', index, 0, max_index)
        return index, parse_value(rest)
    parse.__name__ = 'indexed value'
    return _argparse_type(parse)


_parser_color = _argparse_type(Color.from_hex)
_parser_brightness = _parser_range(BRIGHTNESS_MIN, BRIGHTNESS_MAX)
_parser_speed = _parser_range(SPEED_MIN, SPEED_MAX)
_parser_dpi_index = _parser_range(DPI_INDEX_MIN, DPI_INDEX_MAX)


def apply_args(config, args):
    """Return a copy of config with the command line overrides applied."""
    config = copy.deepcopy(config)
    lighting = config.lighting

    if args.mode is not None:
        lighting.mode = args.mode

    if args.rainbow_speed is not None:
        lighting.rainbow.speed = args.rainbow_speed
    if args.rainbow_direction is not None:
        lighting.rainbow.direction = args.rainbow_direction

    if args.solid_brightness is not None:
        lighting.solid.brightness = args.solid_brightness
    if args.solid_color is not None:
        lighting.solid.color = args.solid_color

    if args.breathing_brightness is not None:
        lighting.breathing.brightness = args.breathing_brightness
    if args.breathing_speed is not None:
        lighting.breathing.speed = args.breathing_speed
    for index, color in args.breathing_color:
        lighting.breathing.colors[index] = color

    if args.tail_brightness is not None:
        lighting.tail.brightness = args.tail_brightness
    if args.tail_speed is not None:
        lighting.tail.speed = args.tail_speed

    if args.fade_speed is not None:
        lighting.fade.speed = args.fade_speed

    if args.rave_brightness is not None:
        lighting.rave.brightness = args.rave_brightness
    if args.rave_speed is not None:
        lighting.rave.speed = args.rave_speed
    for index, color in args.rave_color:
        lighting.rave.colors[index] = color

    if args.wave_brightness is not None:
        lighting.wave.brightness = args.wave_brightness
    if args.wave_speed is not None:
        lighting.wave.speed = args.wave_speed

    if args.breathing_single_speed is not None:
        lighting.breathing_single.speed = args.breathing_single_speed
    if args.breathing_single_color is not None:
        lighting.breathing_single.color = args.breathing_single_color

    toggle = set(args.toggle_dpi)
    enable = set(args.enable_dpi)
    disable = set(args.disable_dpi)
    dpi_base = dict(args.dpi)
    dpi_x = dict(args.dpi_x)
    dpi_y = dict(args.dpi_y)
    dpi_color = dict(args.dpi_color)
    for index, dpi in enumerate(config.dpi):
        if index in toggle:
            dpi.enabled = not dpi.enabled
        elif index in enable:
            dpi.enabled = True
        elif index in disable or args.reset_dpis:
            dpi.enabled = False
        dpi.x = dpi_x.get(index, dpi_base.get(index, dpi.x))
        dpi.y = dpi_y.get(index, dpi_base.get(index, dpi.y))
        dpi.color = dpi_color.get(index, dpi.color)

    if args.select_dpi is not None:
        config.current_dpi = args.select_dpi

    if args.polling_rate is not None:
        config.polling_rate = args.polling_rate

    if args.liftoff_distance is not None:
        config.liftoff_distance = args.liftoff_distance

    if args.debounce_time is not None:
        config.debounce_time = args.debounce_time

    for field in dataclasses.fields(Buttons):
        action = getattr(args, f'button_{field.name}')
        if action is not None:
            setattr(config.buttons, field.name, action)

    config.validate()
    return config


def build_parser():
    parser = argparse.ArgumentParser(
        description='Configure a Glorious Model O / Model D mouse')
    parser.add_argument('--config', type=pathlib.Path,
                        help='config file (default: %(default)s)',
                        default=default_config_path())
    parser.add_argument('--print-config', action='store_true',
                        help='print the resulting config instead of applying it')
    parser.add_argument('--no-save', action='store_true',
                        help='do not write the resulting config back to the config file')
    parser.add_argument('-v', '--verbose', action='store_true')

    lighting = parser.add_argument_group('lighting')
    lighting.add_argument('--mode', type=_parser_enum(LightingMode),
                          metavar='{' + ','.join(ENUM_NAMES[LightingMode]) + '}',
                          help='LED lighting mode')
    lighting.add_argument('--rainbow-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--rainbow-direction', type=_parser_enum(RainbowDirection),
                          metavar='{' + ','.join(ENUM_NAMES[RainbowDirection]) + '}')
    lighting.add_argument('--solid-brightness', type=_parser_brightness, help='1-4')
    lighting.add_argument('--solid-color', type=_parser_color, help='hex color')
    lighting.add_argument('--breathing-brightness', type=_parser_brightness, help='1-4')
    lighting.add_argument('--breathing-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--breathing-color', action='append', default=[],
                          type=_parser_indexed(Color.from_hex, BREATHING_COLOR_COUNT - 1),
                          metavar='IDX:HEX', help='breathing color (index 0-6)')
    lighting.add_argument('--tail-brightness', type=_parser_brightness, help='1-4')
    lighting.add_argument('--tail-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--fade-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--rave-brightness', type=_parser_brightness, help='1-4')
    lighting.add_argument('--rave-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--rave-color', action='append', default=[],
                          type=_parser_indexed(Color.from_hex, RAVE_COLOR_COUNT - 1),
                          metavar='IDX:HEX', help='rave color (index 0-1)')
    lighting.add_argument('--wave-brightness', type=_parser_brightness, help='1-4')
    lighting.add_argument('--wave-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--breathing-single-speed', type=_parser_speed, help='1-3')
    lighting.add_argument('--breathing-single-color', type=_parser_color, help='hex color')

    dpi = parser.add_argument_group('dpi')
    dpi.add_argument('--enable-dpi', action='append', default=[], type=_parser_dpi_index,
                     metavar='IDX', help='enable a DPI setting (0-5)')
    dpi.add_argument('--disable-dpi', action='append', default=[], type=_parser_dpi_index,
                     metavar='IDX', help='disable a DPI setting (0-5)')
    dpi.add_argument('--toggle-dpi', action='append', default=[], type=_parser_dpi_index,
                     metavar='IDX', help='toggle a DPI setting (0-5)')
    dpi.add_argument('--dpi-color', action='append', default=[],
                     type=_parser_indexed(Color.from_hex, DPI_INDEX_MAX),
                     metavar='IDX:HEX', help='color of a DPI setting')
    dpi.add_argument('--dpi', action='append', default=[],
                     type=_parser_indexed(dpi_to_raw, DPI_INDEX_MAX),
                     metavar='IDX:DPI', help='X and Y DPI of a DPI setting (ending in 00)')
    dpi.add_argument('--dpi-x', action='append', default=[],
                     type=_parser_indexed(dpi_to_raw, DPI_INDEX_MAX),
                     metavar='IDX:DPI', help='X DPI of a DPI setting (ending in 00)')
    dpi.add_argument('--dpi-y', action='append', default=[],
                     type=_parser_indexed(dpi_to_raw, DPI_INDEX_MAX),
                     metavar='IDX:DPI', help='Y DPI of a DPI setting (ending in 00)')
    dpi.add_argument('--reset-dpis', action='store_true',
                     help='disable DPI settings not enabled or toggled')
    dpi.add_argument('--select-dpi', type=_parser_dpi_index, metavar='IDX',
                     help='select the current DPI setting')

    device = parser.add_argument_group('device')
    device.add_argument('--polling-rate', type=_parser_enum(PollingRate),
                        metavar='{' + ','.join(ENUM_NAMES[PollingRate]) + '}')
    device.add_argument('--liftoff-distance', type=_parser_enum(LiftoffDistance),
                        metavar='{' + ','.join(ENUM_NAMES[LiftoffDistance]) + '}')
    device.add_argument('--debounce-time', type=_parser_enum(DebounceTime),
                        metavar='{' + ','.join(ENUM_NAMES[DebounceTime]) + '}')

    buttons = parser.add_argument_group('buttons')
    for field in dataclasses.fields(Buttons):
        buttons.add_argument(f'--button-{field.name}', type=_parser_enum(ButtonAction),
                             metavar='ACTION',
                             help=f'{field.name} button action')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s: %(message)s',
    )

    try:
        config = apply_args(load_config(args.config), args)
        if args.print_config:
            print(pretty_json(config.to_dict()))
            return
        apply_config(config)
        if not args.no_save:
            save_config(config, args.config)
    except GloriousError as e:
        parser.exit(1, f'{parser.prog}: error: {e}\n')


if __name__ == '__main__':
    main()
