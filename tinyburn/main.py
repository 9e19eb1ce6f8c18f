#!/usr/bin/env python
"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Main CLI Handler for Tinyburn Project
"""

import sys
import argparse
import signal
import logging
import platform
from pathlib import Path

import argcomplete
from argcomplete.completers import BaseCompleter
from rich.prompt import Confirm
from tqdm.contrib.logging import logging_redirect_tqdm

from tinyburn import __version__ as version
from tinyburn.avr_tool import (
    Avrdude,
    AvrdudeCommandError,
    AvrdudeConfigNotFoundError,
    AvrdudeNotFoundError,
)
from tinyburn.chips import Protocol, load_registry
from tinyburn.config import ConfigManager
from tinyburn.constants import *
from tinyburn.fuses import (
    FuseEditError,
    apply_edits,
    decode_fuses,
    encode_fuses,
    fuse_byte_names,
)
from tinyburn.hexfile import ParseError, load_hex_file, parse_intel_hex
from tinyburn.isp import (
    FuseWriteError,
    bytes_to_fuse_values,
    fuse_values_to_bytes,
    identify_isp,
    program_isp,
    sync_fuses,
)
from tinyburn.logging_utils import SingleLineStatusHandler, TraceWriter, UploadProgress
from tinyburn.pragmas import declared_fuses, exported_parms, parse_pragmas, select_chip
from tinyburn.programmer import TpiProgrammer, build_download
from tinyburn.protocol import ProtocolEngine, State
from tinyburn.serial_comm import SerialError, SerialLink, find_programmer_port, list_ports
from tinyburn.sketch import generate_sketch, sketch_path
from tinyburn.utils import parse_number

logger = logging.getLogger("Tinyburn")

ON_VALUES = ("on", "1", "true", "yes", "enabled", "programmed")
OFF_VALUES = ("off", "0", "false", "no", "disabled", "unprogrammed")


class ChipCompleter(BaseCompleter):
    def __call__(self, prefix, **kwargs):
        return load_registry().names()


def chip_validator(chip, prefix):
    return chip.lower().startswith(prefix.lower())


def add_chip_args(parser):
    chip = parser.add_argument(
        "-c", "--chip", type=str, help="Target device, defaults to '#pragma chip' or the saved chip."
    )
    chip.completer = ChipCompleter()
    parser.add_argument(
        "-s", "--source", type=str, help="Firmware source file holding '#pragma' declarations."
    )


def add_port_args(parser):
    parser.add_argument("-p", "--port", type=str, help="Serial port name (optional)")
    parser.add_argument("-b", "--baud", type=int, help="Serial baud rate (optional)")


def create_upload_args(parser):
    upload_parser = parser.add_parser("upload", help="Programs an Intel HEX file into the device.")
    add_chip_args(upload_parser)
    add_port_args(upload_parser)
    upload_parser.add_argument("hex_file", type=str, help="Intel HEX file to program")
    upload_parser.add_argument(
        "-f", "--fuse", type=str, help="TPI fuse nibble override in dec/hex"
    )
    upload_parser.add_argument(
        "-y", "--yes", action="store_true", help="Don't ask before writing fuses."
    )


def create_fuse_args(parser):
    fuse_parser = parser.add_parser("fuses", help="Reads and optionally modifies the fuse byte(s).")
    add_chip_args(fuse_parser)
    add_port_args(fuse_parser)
    fuse_parser.add_argument(
        "--set",
        dest="edits",
        action="append",
        default=[],
        metavar="NAME=on|off",
        help="Enable or disable a fuse (label or group, e.g. CKDIV8=off). Repeatable.",
    )
    fuse_parser.add_argument(
        "-y", "--yes", action="store_true", help="Don't ask before writing fuses."
    )


def create_signature_args(parser):
    sig_parser = parser.add_parser("signature", help="Reads the device signature.")
    add_chip_args(sig_parser)
    add_port_args(sig_parser)


def create_calibrate_args(parser):
    cal_parser = parser.add_parser(
        "calibrate", help="Uploads and runs clock calibration code (TPI only)."
    )
    add_chip_args(cal_parser)
    add_port_args(cal_parser)
    cal_parser.add_argument("clock_hex", type=str, help="Clock calibration Intel HEX file")


def create_power_args(parser):
    power_parser = parser.add_parser("power", help="Switches target power (TPI programmer).")
    add_port_args(power_parser)
    power_parser.add_argument("state", choices=["on", "off"], help="Power state")


def create_sketch_args(parser):
    sketch_parser = parser.add_parser(
        "sketch", help="Generates an Arduino sketch that programs the device with a HEX file."
    )
    add_chip_args(sketch_parser)
    sketch_parser.add_argument("hex_file", type=str, help="Intel HEX file")
    sketch_parser.add_argument("-t", "--template", type=str, required=True, help="Sketch template")
    sketch_parser.add_argument("-o", "--output", type=str, help="Output sketch file name")
    sketch_parser.add_argument("-n", "--name", type=str, help="Program name shown by the sketch")


def create_config_args(parser):
    config_parser = parser.add_parser("config", help="Shows or sets CONFIGURATION values.")
    config_parser.add_argument("--port", type=str, help="Default serial port")
    config_parser.add_argument("--baud", type=int, help="TPI programmer baud rate")
    config_parser.add_argument("--chip", type=str, help="Default target device")
    config_parser.add_argument("--isp-programmer", type=str, help="avrdude programmer id")
    config_parser.add_argument("--avrdude-path", type=str, help="Full path to avrdude")
    config_parser.add_argument("--avrdude-config-path", type=str, help="Full path to avrdude.conf")
    config_parser.add_argument(
        "--timeout-ticks", type=int, help="Programmer timeout in 100 ms ticks"
    )


class CommandHandler:
    """Runs the CLI commands against the chip table, the serial programmer and avrdude."""

    def __init__(self, config: ConfigManager, registry, trace: TraceWriter = None):
        self.config = config
        self.registry = registry
        self.trace = trace

    def _read_source(self, args):
        source = getattr(args, "source", None)
        if not source:
            return ""
        return Path(source).read_text()

    def resolve_chip(self, args):
        name = getattr(args, "chip", None)
        if not name:
            name = select_chip(self._read_source(args), self.registry)
        if not name:
            name = self.config.get_value("chip")
        if not name:
            logger.error("Target device type not selected, use --chip or '#pragma chip'.")
            return None, None
        info = self.registry.get(name)
        if info is None:
            logger.error(f"Unknown device '{name}'.")
            return None, None
        return name.lower(), info

    def _resolve_port(self, args):
        port = find_programmer_port(args.port or self.config.get_value("port"))
        if not port:
            raise SerialError("No programmer port found, use --port.")
        return port

    def build_engine(self, args, progress=None):
        port = self._resolve_port(args)
        baud = args.baud or int(self.config.get_value("baud-rate", BAUD_RATE))
        ticks = int(self.config.get_value("timeout-ticks", TIMEOUT_TICKS))
        link = SerialLink(port, baud_rate=baud)
        return ProtocolEngine(link, ticks=ticks, trace=self.trace, progress=progress)

    def build_avrdude(self, args, info):
        port = getattr(args, "port", None) or self.config.get_value("port")
        return Avrdude(
            partno=info.part,
            programmer_id=self.config.get_value("isp-programmer", DEFAULT_ISP_PROGRAMMER),
            port=port,
            avrdude_path=self.config.get_value("avrdude-path"),
            avrdude_config_path=self.config.get_value("avrdude-config-path"),
            verbose=logger.isEnabledFor(logging.DEBUG),
        )

    def _finish(self, engine, session) -> bool:
        session.wait()
        if session.state == State.COMPLETE:
            self.config.set_value("port", engine.link.port_name)
            logger.info("Done")
            return True
        return False

    def _confirm(self, args, question) -> bool:
        if getattr(args, "yes", False):
            return True
        return Confirm.ask(question, default=False)

    def list_chips(self) -> bool:
        divider = f"+{'':-<11}+{'':-<7}+{'':-<6}+{'':-<16}+{'':-<11}+"
        logger.info(divider)
        logger.info(
            f"| {'Name': <10}| {'Proto': <6}| {'Part': <5}| {'Fuses': <15}| {'Signature': <10}|"
        )
        logger.info(divider)
        for name, info in self.registry.items():
            logger.info(
                f"| {name: <10}| {info.protocol.value: <6}| {info.part: <5}| {info.fuses: <15}| {info.signature: <10}|"
            )
        logger.info(divider)
        return True

    def list_ports(self) -> bool:
        ports = list_ports()
        if not ports:
            logger.info("No serial ports found.")
            return False
        for port in ports:
            logger.info(f"{port.device}: {port.description}")
        return True

    def upload(self, args) -> bool:
        name, info = self.resolve_chip(args)
        if not info:
            return False
        hex_text = load_hex_file(args.hex_file)
        if info.protocol is Protocol.TPI:
            fuse = parse_number(args.fuse) if args.fuse else None
            payload = build_download(hex_text, fuse)
            progress = UploadProgress(len(payload) + 1, f"Sending code for {Path(args.hex_file).name}")
            try:
                with logging_redirect_tqdm():
                    engine = self.build_engine(args, progress=progress)
                    session = TpiProgrammer(engine).upload(hex_text, fuse)
                    return self._finish(engine, session)
            finally:
                progress.close()
        if info.protocol is Protocol.ISP:
            targets = declared_fuses(parse_pragmas(self._read_source(args)))
            if targets and not self._confirm(args, f"Write fuses {self._format_targets(targets)}?"):
                targets = None
            program_isp(self.build_avrdude(args, info), hex_text, targets)
            return True
        raise ValueError(f"Unsupported protocol {info.protocol}")

    @staticmethod
    def _format_targets(targets):
        return ", ".join(f"{name}=0x{value:02X}" for name, value in targets.items())

    @staticmethod
    def _parse_edits(edit_args):
        edits = {}
        for item in edit_args:
            if "=" not in item:
                raise FuseEditError(f"Expected NAME=on|off, got '{item}'")
            name, value = item.split("=", 1)
            value = value.strip().lower()
            if value in ON_VALUES:
                edits[name.strip()] = True
            elif value in OFF_VALUES:
                edits[name.strip()] = False
            else:
                raise FuseEditError(f"Expected on or off for {name}, got '{value}'")
        return edits

    def _show_fuses(self, protocol, raw):
        settings = decode_fuses(protocol, raw)
        for byte, value in zip(fuse_byte_names(protocol), raw):
            logger.info(f"{byte}FUSE: 0x{value:02X}")
            for field, enabled in settings.items():
                if field.byte != byte or field.reserved:
                    continue
                marker = "!" if field.dangerous else " "
                logger.info(f"  {marker}{field.label: <10} {'enabled' if enabled else 'disabled'}")
        return settings

    def fuses(self, args) -> bool:
        name, info = self.resolve_chip(args)
        if not info:
            return False
        edits = self._parse_edits(args.edits)
        if info.protocol is Protocol.TPI:
            programmer = TpiProgrammer(self.build_engine(args))
            raw = (programmer.read_fuse(),)
        elif info.protocol is Protocol.ISP:
            tool = self.build_avrdude(args, info)
            current = tool.read_fuses()
            raw = fuse_values_to_bytes(current)
        else:
            raise ValueError(f"Unsupported protocol {info.protocol}")

        settings = self._show_fuses(info.protocol, raw)
        if not edits:
            return True
        new_raw = encode_fuses(info.protocol, apply_edits(info.protocol, settings, edits), raw)
        if new_raw == tuple(raw):
            logger.info("Fuses already set correctly, so left unchanged")
            return True
        new_str = ", ".join(f"0x{value:02X}" for value in new_raw)
        if not self._confirm(args, f"Program fuses {new_str}?"):
            logger.info("Fuse update cancelled by user.")
            return True

        if info.protocol is Protocol.TPI:
            session = programmer.write_fuse(new_raw[0])
            return self._finish(programmer.engine, session)
        sync_fuses(tool, bytes_to_fuse_values(new_raw), current)
        return True

    def signature(self, args) -> bool:
        name, info = self.resolve_chip(args)
        if not info:
            return False
        if info.protocol is Protocol.TPI:
            logger.info("Read Device Signature and Fuse")
            response = TpiProgrammer(self.build_engine(args)).read_signature()
            logger.info(response.strip())
            return True
        identify_isp(self.build_avrdude(args, info), self.registry)
        return True

    def calibrate(self, args) -> bool:
        name, info = self.resolve_chip(args)
        if not info:
            return False
        if info.protocol is not Protocol.TPI:
            logger.error("Not Implemented for ISP Protocol")
            return False
        logger.info("Programming Clock Code")
        engine = self.build_engine(args)
        session = TpiProgrammer(engine).calibrate(load_hex_file(args.clock_hex))
        return self._finish(engine, session)

    def power(self, args) -> bool:
        engine = self.build_engine(args)
        programmer = TpiProgrammer(engine)
        if args.state == "on":
            logger.info("Enable Vcc to target")
            session = programmer.power_on()
        else:
            logger.info("Disable Vcc to target")
            session = programmer.power_off()
        return self._finish(engine, session)

    def sketch(self, args) -> bool:
        name, info = self.resolve_chip(args)
        if not info:
            return False
        if info.protocol is not Protocol.TPI:
            logger.error("Not Implemented for ISP Protocol")
            return False
        image = parse_intel_hex(load_hex_file(args.hex_file))
        template = Path(args.template).read_text()
        parms = exported_parms(parse_pragmas(self._read_source(args)))
        program_name = args.name or Path(args.source or args.hex_file).name
        output = Path(args.output) if args.output else sketch_path(args.source or args.hex_file)
        if output.exists() and not Confirm.ask(f"Overwrite existing file {output}?", default=False):
            return False
        output.write_text(generate_sketch(template, image, program_name, parms))
        logger.info(f"Sketch written to {output}")
        return True

    def configure(self, args) -> bool:
        values = {
            "port": args.port,
            "baud-rate": args.baud,
            "chip": args.chip,
            "isp-programmer": args.isp_programmer,
            "avrdude-path": args.avrdude_path,
            "avrdude-config-path": args.avrdude_config_path,
            "timeout-ticks": args.timeout_ticks,
        }
        if args.chip and args.chip not in self.registry:
            logger.error(f"Unknown device '{args.chip}'.")
            return False
        changed = False
        for key, value in values.items():
            if value is not None:
                self.config.set_value(key, value)
                changed = True
        if not changed:
            for key, value in self.config.list_all().items():
                logger.info(f"{key}: {value}")
        return True


def setup_logging(verbose: bool) -> TraceWriter:
    log_level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    trace = TraceWriter()
    handler = SingleLineStatusHandler(trace=trace)
    if verbose:
        formatter = logging.Formatter(
            "%(levelname)-7s:%(name)-11s:%(lineno)4d: %(message)s"
        )
    else:
        formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)
    root_logger.handlers = [handler]
    return trace


def build_parser():
    parser = argparse.ArgumentParser(
        description="Programs ATtiny devices through a TPI programmer sketch or avrdude."
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose mode"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Tinyburn version: {version}",
        help="Show the Tinyburn version and exit.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("chips", help="List the supported devices.")
    subparsers.add_parser("ports", help="List the serial ports.")
    create_upload_args(subparsers)
    create_fuse_args(subparsers)
    create_signature_args(subparsers)
    create_calibrate_args(subparsers)
    create_power_args(subparsers)
    create_sketch_args(subparsers)
    create_config_args(subparsers)
    return parser


def main(argv=None):
    signal.signal(signal.SIGINT, exit_gracefully)

    parser = build_parser()
    argcomplete.autocomplete(parser, validator=chip_validator)

    if argv is None and len(sys.argv) == 1:
        parser.print_help()
        return 1

    args = parser.parse_args(argv)
    trace = setup_logging(args.verbose)

    config_manager = ConfigManager()
    registry = load_registry()
    handler = CommandHandler(config_manager, registry, trace)

    logger.debug(f"Tinyburn version: {version}")
    logger.debug(f"Running on Python: {platform.python_version()}")
    logger.debug(f"Platform: {platform.system()} {platform.release()}")

    commands = {
        "chips": lambda: handler.list_chips(),
        "ports": lambda: handler.list_ports(),
        "upload": lambda: handler.upload(args),
        "fuses": lambda: handler.fuses(args),
        "signature": lambda: handler.signature(args),
        "calibrate": lambda: handler.calibrate(args),
        "power": lambda: handler.power(args),
        "sketch": lambda: handler.sketch(args),
        "config": lambda: handler.configure(args),
    }
    try:
        return 0 if commands[args.command]() else 1
    except (
        ParseError,
        SerialError,
        FuseWriteError,
        ValueError,
        AvrdudeNotFoundError,
        AvrdudeConfigNotFoundError,
        AvrdudeCommandError,
    ) as e:
        logger.error(f"{e}")
        return 1
    except OSError as e:
        logger.error(f"File error: {e}")
        return 1


def exit_gracefully(signum, frame):
    logger.warning("\nProcess interrupted.")
    sys.exit(1)


if __name__ == "__main__":
    sys.exit(main())
