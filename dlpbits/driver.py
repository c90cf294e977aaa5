#!/usr/bin/env python3
"""
dlpbits: recover DLP programs from an HP 85620A mass memory dump and load
them into an HP 856xE spectrum analyzer over GPIB.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import textwrap
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import DEFAULT_CONFIG_NAME, LoaderConfig, check_encoding, load_config
from .errors import DLPError
from .image import decode_image, read_image
from .segment import extract_records, format_marker, parse_marker
from .transport import VisaTransport, clear_mass_memory, validate_address
from .upload import BatchResult, BatchState, UploadSequencer, render_command

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 48
EXIT_CANCELLED = 130


class ConsoleProgress:
    def __init__(self, stream=None) -> None:
        self.stream = stream if stream is not None else sys.stdout

    def on_record_completed(self, index: int, total: int) -> None:
        print(f"Completed {index} of {total} parts.", file=self.stream)
        self.stream.flush()


class CancelFlag:
    """Poll-able cancellation signal; SIGINT sets it while installed."""

    def __init__(self) -> None:
        self.requested = False
        self._previous = None

    def __call__(self) -> bool:
        return self.requested

    def set(self) -> None:
        self.requested = True

    def _handle(self, signum, frame) -> None:
        print("\nCancel requested; stopping after the current part.", file=sys.stderr)
        self.set()

    def __enter__(self) -> "CancelFlag":
        self._previous = signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        signal.signal(signal.SIGINT, self._previous)


def open_transport(config: LoaderConfig) -> VisaTransport:
    transport = VisaTransport(
        config.resource_name(), timeout_ms=config.timeout_ms, backend=config.visa_backend
    )
    transport.open()
    return transport


def load_records(path: Path, config: LoaderConfig) -> List[bytes]:
    raw = read_image(path)
    decoded = decode_image(raw)
    records = extract_records(decoded, config.start_marker, config.end_marker)
    logger.info("Found %d part(s) between the specified byte sequences.", len(records))
    return records


def preview(record: bytes, encoding: str, width: int = PREVIEW_CHARS) -> str:
    text = record.decode(encoding, errors="replace")
    text = text.replace("\r", " ").replace("\n", " ")
    if len(text) > width:
        text = text[: width - 3] + "..."
    return text


def describe_result(result: BatchResult) -> str:
    if result.state is BatchState.COMPLETED:
        return f"Upload complete: {result.completed} of {result.total} parts written."
    if result.state is BatchState.CANCELLED:
        return f"Upload cancelled: {result.completed} of {result.total} parts written."
    failure = result.failure
    detail = failure.detail if failure is not None else "unknown failure"
    return f"Upload aborted after {result.completed} of {result.total} parts: {detail}"


def run_upload(
    config: LoaderConfig,
    records: Sequence[bytes],
    transport_factory: Optional[Callable[[LoaderConfig], VisaTransport]] = None,
    cancelled: Optional[Callable[[], bool]] = None,
) -> BatchResult:
    transport = (transport_factory or open_transport)(config)
    try:
        sequencer = UploadSequencer(
            transport, progress=ConsoleProgress(), cancelled=cancelled, encoding=config.encoding
        )
        return sequencer.run(records)
    finally:
        transport.close()


def exit_status(result: BatchResult) -> int:
    if result.state is BatchState.COMPLETED:
        return 0
    if result.state is BatchState.CANCELLED:
        return EXIT_CANCELLED
    return 1


def apply_overrides(config: LoaderConfig, args: argparse.Namespace) -> LoaderConfig:
    if getattr(args, "start", None):
        config.start_marker = parse_marker(args.start)
    if getattr(args, "end", None):
        config.end_marker = parse_marker(args.end)
    if getattr(args, "encoding", None):
        config.encoding = check_encoding(args.encoding)
    if getattr(args, "address", None) is not None:
        config.gpib_address = validate_address(args.address)
        config.resource = None
    if getattr(args, "resource", None):
        config.resource = args.resource
    if getattr(args, "backend", None):
        config.visa_backend = args.backend
    return config


def command_records(args: argparse.Namespace, config: LoaderConfig) -> int:
    records = load_records(Path(args.image), config)
    if not records:
        print("No DLP records found.")
        return 0

    print(
        f"Records in {args.image} "
        f"(start {format_marker(config.start_marker)}, end {format_marker(config.end_marker)}):"
    )
    print(f"{'Index':>5} {'Bytes':>7}  Preview")
    print("-" * (16 + PREVIEW_CHARS))
    for index, record in enumerate(records, start=1):
        print(f"{index:>5} {len(record):>7}  {preview(record, config.encoding)}")
    return 0


def command_extract(args: argparse.Namespace, config: LoaderConfig) -> int:
    records = load_records(Path(args.image), config)
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    for index, record in enumerate(records, start=1):
        (output_dir / f"dlp-{index:03d}.bin").write_bytes(record)
    print(f"Wrote {len(records)} record(s) to {output_dir}.")
    return 0


def command_decode(args: argparse.Namespace, config: LoaderConfig) -> int:
    decoded = decode_image(read_image(Path(args.image)))
    output = Path(args.output)
    output.write_bytes(decoded)
    print(f"Wrote {len(decoded)} decoded byte(s) to {output}.")
    return 0


def command_upload(args: argparse.Namespace, config: LoaderConfig) -> int:
    records = load_records(Path(args.image), config)
    if not records:
        print("No parts available to create DLPs.", file=sys.stderr)
        return 1

    if args.dry_run:
        for record in records:
            print(render_command(record, config.encoding))
        return 0

    with CancelFlag() as cancel:
        result = run_upload(config, records, cancelled=cancel)
    print(describe_result(result))
    return exit_status(result)


def confirm(prompt: str, input_func: Optional[Callable[[str], str]] = None) -> bool:
    try:
        answer = (input_func or input)(f"{prompt} [y/N] ").strip().lower()
    except EOFError:
        return False
    return answer in ("y", "yes")


def command_clear(args: argparse.Namespace, config: LoaderConfig) -> int:
    if not args.yes and not confirm(
        "Are you sure you want to clear mass memory? This action cannot be undone."
    ):
        print("Mass memory clear cancelled.")
        return 0
    transport = open_transport(config)
    try:
        clear_mass_memory(transport)
    finally:
        transport.close()
    print("DISPOSE ALL sent; the analyzer does not confirm the clear.")
    return 0


SHELL_HELP = textwrap.dedent(
    """
    Commands:
      address [N]   show or set the analyzer GPIB address (1-30)
      read [PATH]   read an SRAM image file and extract DLPs
      clear         clear the analyzer's mass memory (DISPOSE ALL)
      upload        create DLPs on the analyzer from the extracted parts
      quit          leave the shell
    """
).strip("\n")


class Shell:
    """Interactive menu: set address, read image, clear, upload."""

    def __init__(
        self,
        config: LoaderConfig,
        input_func: Callable[[str], str] = input,
        transport_factory: Optional[Callable[[LoaderConfig], VisaTransport]] = None,
    ) -> None:
        self.config = config
        self.input = input_func
        self.transport_factory = transport_factory or open_transport
        self.records: Optional[List[bytes]] = None

    def status_line(self) -> str:
        image_read = self.records is not None
        parts = f", Parts: {len(self.records)}" if self.records else ""
        return f"GPIB Address: {self.config.gpib_address} | ROM Read: {image_read}{parts}"

    def run(self) -> int:
        print("DLPBits - DLP Creator for the HP 85671A and 85672A utilities")
        print(SHELL_HELP)
        while True:
            print(self.status_line())
            try:
                line = self.input("dlpbits> ").strip()
            except EOFError:
                line = "quit"
            if not line:
                continue
            command, _, argument = line.partition(" ")
            command = command.lower()
            if command in ("quit", "exit", "q"):
                return 0
            try:
                self.dispatch(command, argument.strip())
            except DLPError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                logger.debug("Shell command %r failed", line, exc_info=True)

    def dispatch(self, command: str, argument: str) -> None:
        if command in ("address", "a"):
            self.set_address(argument)
        elif command in ("read", "r"):
            self.read_image(argument)
        elif command == "clear":
            self.clear()
        elif command in ("upload", "u"):
            self.upload()
        elif command in ("help", "?"):
            print(SHELL_HELP)
        else:
            print("Unknown command; type 'help' for a list.")

    def set_address(self, argument: str) -> None:
        if not argument:
            print(f"GPIB address: {self.config.gpib_address}")
            return
        try:
            address = int(argument, 10)
        except ValueError:
            print(f"Address must be a number, got {argument!r}.")
            return
        self.config.gpib_address = validate_address(address)
        self.config.resource = None
        print("GPIB Address updated.")

    def read_image(self, argument: str) -> None:
        path = Path(argument or self.config.image_path)
        if not path.is_file():
            print(f"File does not exist: {path}")
            return
        self.records = None
        self.records = load_records(path, self.config)
        self.config.image_path = str(path)
        print(f"SRAM image read: {len(self.records)} part(s).")

    def clear(self) -> None:
        if not confirm(
            "Are you sure you want to clear mass memory? This action cannot be undone.",
            self.input,
        ):
            print("Mass memory clear cancelled.")
            return
        transport = self.transport_factory(self.config)
        try:
            clear_mass_memory(transport)
        finally:
            transport.close()
        print("DISPOSE ALL sent; the analyzer does not confirm the clear.")

    def upload(self) -> None:
        if not self.records:
            print("No parts available to create DLPs. Please read the ROM first.")
            return
        with CancelFlag() as cancel:
            result = run_upload(self.config, self.records, self.transport_factory, cancel)
        print(describe_result(result))


def command_shell(args: argparse.Namespace, config: LoaderConfig) -> int:
    return Shell(config).run()


def add_marker_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", help="Start marker as hex bytes (default from config: 10 80)")
    parser.add_argument("--end", help="End marker as hex bytes (default from config: 3b ff)")
    parser.add_argument("--encoding", help="Text encoding of DLP payloads (default: utf-8)")


def add_instrument_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--address", type=int, help="Analyzer GPIB address (1-30, default 18)")
    parser.add_argument("--resource", help="Full VISA resource string, overrides --address")
    parser.add_argument("--backend", help="pyvisa backend, e.g. '@py'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recover DLPs from an HP 85620A SRAM image and load them over GPIB.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """
            Examples:
              python -m dlpbits records SRAM_85620A.bin
              python -m dlpbits extract SRAM_85620A.bin dlps/
              python -m dlpbits upload SRAM_85620A.bin --address 18
              python -m dlpbits shell
            """
        ),
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path(DEFAULT_CONFIG_NAME),
        help="Configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log output (-vv for debug)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    records_parser = subparsers.add_parser("records", help="List DLP records found in an image")
    records_parser.add_argument("image", help="Raw SRAM image file")
    add_marker_options(records_parser)
    records_parser.set_defaults(func=command_records)

    extract_parser = subparsers.add_parser("extract", help="Write each DLP record to a file")
    extract_parser.add_argument("image", help="Raw SRAM image file")
    extract_parser.add_argument("output", help="Output directory")
    add_marker_options(extract_parser)
    extract_parser.set_defaults(func=command_extract)

    decode_parser = subparsers.add_parser("decode", help="Write the unscrambled image")
    decode_parser.add_argument("image", help="Raw SRAM image file")
    decode_parser.add_argument("output", help="Output file for the decoded image")
    decode_parser.set_defaults(func=command_decode)

    upload_parser = subparsers.add_parser("upload", help="Create DLPs on the analyzer")
    upload_parser.add_argument("image", help="Raw SRAM image file")
    upload_parser.add_argument(
        "--dry-run", action="store_true", help="Print FUNCDEF commands instead of sending them"
    )
    add_marker_options(upload_parser)
    add_instrument_options(upload_parser)
    upload_parser.set_defaults(func=command_upload)

    clear_parser = subparsers.add_parser("clear", help="Clear the analyzer's mass memory")
    clear_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    add_instrument_options(clear_parser)
    clear_parser.set_defaults(func=command_clear)

    shell_parser = subparsers.add_parser("shell", help="Interactive menu")
    add_marker_options(shell_parser)
    add_instrument_options(shell_parser)
    shell_parser.set_defaults(func=command_shell)

    return parser


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config, loaded = load_config(args.config)
    if loaded:
        logger.info("Loaded configuration from %s", args.config)
    apply_overrides(config, args)
    return args.func(args, config)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except DLPError as exc:
        print(f"dlpbits: {exc}", file=sys.stderr)
        sys.exit(1)
