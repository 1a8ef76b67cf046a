#!/usr/bin/env python3
"""
d88cpm
Writes a host file into the free space at the end of a CP/M disk image
stored in .d88 format (PC-8801 emulator disks)
"""

import argparse
import sys
from typing import Optional

from d88cpm.disk.d88_image import D88Image, IoFailure
from d88cpm.disk.geometry import D88Error, DiskGeometry, GeometryError
from d88cpm.fs.allocation import AllocationEngine, WriteOutcome, WriteStatus
from d88cpm.fs.directory import DirectoryScanner, InvalidFilename, encode_filename
from d88cpm.fs.file_operations import FileOperations
from d88cpm.utils.config import Config, ConfigError
from d88cpm.utils.logger import Logger, LogLevel, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_NAME_CONFLICT = 3
EXIT_CAPACITY_EXCEEDED = 4

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class VerificationError(D88Error):
    """Raised when the records read back differ from the source file"""
    pass


class D88CPMManager:
    """Sequences name encoding, the directory scan and the write"""

    def __init__(self, config: Optional[Config] = None, logger: Optional[Logger] = None):
        self.config = config or Config()
        self.logger = logger or setup_logging(self.config.get_section('logging'))
        self.geometry = DiskGeometry.from_dict(self.config.get_section('geometry'))

    def add_file(self, image_filename: str, host_filename: str,
                 transactional: Optional[bool] = None,
                 verify: Optional[bool] = None) -> WriteOutcome:
        """Write host_filename into the image; raises InvalidFilename or IoFailure"""
        if transactional is None:
            transactional = self.config.get('write', 'transactional', False)
        if verify is None:
            verify = self.config.get('write', 'verify', False)

        name, extension = encode_filename(host_filename)
        self.logger.debug(f"Encoded name: {name!r} {extension!r}")

        image = D88Image(image_filename, self.geometry)
        integrity = image.verify_integrity()
        if integrity['status'] == 'error':
            raise IoFailure(integrity['message'], image_filename)
        if integrity['write_protected']:
            raise IoFailure("Image is write-protected", image_filename)
        if integrity['status'] == 'warning':
            self.logger.warning(f"{image_filename}: {integrity['message']}")

        try:
            source = open(host_filename, 'rb')
        except OSError as e:
            raise IoFailure(f"Failed to open source: {e}", host_filename) from e

        with source, image:
            scan = DirectoryScanner(image, self.geometry).scan(name, extension)
            self.logger.info(
                f"Last live entry: {scan.last_live_entry_index}, "
                f"last used block: {scan.last_used_block}")

            engine = AllocationEngine(image, self.geometry, transactional=transactional)
            with self.logger.performance(f"writing {host_filename} into {image_filename}"):
                outcome = engine.write(source, name, extension, scan)

            if outcome.ok and verify:
                source.seek(0)
                self._verify(image, host_filename, source.read())

        self.logger.info(
            f"{outcome.status.value}: {outcome.records_written} records, "
            f"entries {outcome.entries_written}")
        return outcome

    def _verify(self, image: D88Image, host_filename: str, data: bytes):
        """Read the new file back through its directory entries"""
        g = self.geometry
        stored = FileOperations(image, g).read_file(host_filename)
        padding = -len(data) % g.record_size
        expected = data + bytes([g.fill_byte]) * padding
        if stored != expected:
            raise VerificationError(f"Read-back of {host_filename} does not match the source")
        self.logger.info(f"Verified {len(data)} bytes")


def exit_code_for(outcome: WriteOutcome, legacy: bool = False) -> int:
    """Map a write outcome to a process exit code"""
    if legacy or outcome.status is WriteStatus.SUCCESS:
        return EXIT_SUCCESS
    if outcome.status is WriteStatus.NAME_CONFLICT:
        return EXIT_NAME_CONFLICT
    return EXIT_CAPACITY_EXCEEDED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='d88cpm',
        usage='%(prog)s [options] IMAGE HOSTFILE',
        description='Write the file HOSTFILE into the CP/M disk image IMAGE (.d88 format) '
                    'for PC-8801 emulators. Only the free space after the last used '
                    'block is used.')
    parser.add_argument('paths', nargs='*', metavar='PATH',
                        help='IMAGE (.d88 file) followed by HOSTFILE (file to write)')
    parser.add_argument('--config', help='Configuration file (JSON)')
    parser.add_argument('--log-level', choices=LOG_LEVELS, help='Logging level')
    parser.add_argument('--transactional', action='store_true', default=None,
                        help='Write nothing unless the whole file fits')
    parser.add_argument('--verify', action='store_true', default=None,
                        help='Read the file back after writing and compare')
    return parser


def main(argv=None) -> int:
    """Main CLI interface"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.paths:
        parser.print_help()
        return EXIT_SUCCESS
    if len(args.paths) != 2:
        print("Invalid arguments.")
        parser.print_usage()
        return EXIT_FAILURE

    image_filename, host_filename = args.paths

    try:
        config = Config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    if args.log_level:
        config.set('logging', 'log_level', args.log_level)

    logger = setup_logging(config.get_section('logging'))
    if logger.is_enabled_for(LogLevel.DEBUG):
        logger.log_system_info()

    try:
        manager = D88CPMManager(config, logger)
    except GeometryError as e:
        logger.error(f"Invalid geometry: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print(f"{host_filename} --> {image_filename}")

    try:
        outcome = manager.add_file(image_filename, host_filename,
                                   transactional=args.transactional, verify=args.verify)
    except InvalidFilename as e:
        print(f"Invalid filename: {e}")
        return EXIT_FAILURE
    except (IoFailure, VerificationError) as e:
        logger.exception(f"Writing {host_filename} into {image_filename} failed")
        print(f"Error: {e}")
        return EXIT_FAILURE

    if outcome.status is WriteStatus.NAME_CONFLICT:
        print("A same name file exists. Cancel writing.")
    elif outcome.status is WriteStatus.CAPACITY_EXCEEDED:
        if outcome.records_written:
            print(f"Not enough capacity. The writing is incomplete "
                  f"({outcome.records_written} records written).")
        else:
            print("Not enough capacity. Nothing was written.")
    else:
        print("Done.")

    return exit_code_for(outcome, config.get('cli', 'legacy_exit_codes', False))


if __name__ == "__main__":
    sys.exit(main())
