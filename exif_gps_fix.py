#!/usr/bin/env python3
"""
EXIF GPS Fix Tool

Copies GPS coordinates to photos that lack them from the photo taken
closest in time that has them, as long as the time difference stays within
a configurable window.

Every folder given is scanned recursively. Photos with GPS become references,
photos without GPS get the coordinates of their nearest reference. Folders
passed with --source only provide references.

Usage:
    python exif_gps_fix.py [folder ...] [--source <gps_folder>] [--max-time-diff 20] [--dry-run]
"""

import argparse
import json
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from loguru import logger

from gps_logging import init_logging
from gps_match import DEFAULT_MAX_GAP, Coordinate, MatchPolicy, PhotoRecord, TimeOrderedIndex, match_all

# Supported image extensions
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.heic', '.heif', '.raf', '.dng', '.nef', '.tiff', '.tif', '.png'}

BATCH_SIZE = 100

TIMESTAMP_FORMATS = ('%Y:%m:%d %H:%M:%S', '%Y:%m:%d %H:%M:%S.%f')

INSTALL_HINT = "Install it with: brew install exiftool (macOS) or apt install libimage-exiftool-perl (Linux)"


@dataclass
class ScanResult:
    """Photos found in the scanned folders, split by GPS presence."""

    gps_records: list = field(default_factory=list)
    queries: list = field(default_factory=list)
    no_timestamp: list = field(default_factory=list)
    no_timestamp_gps: list = field(default_factory=list)
    unreadable: list = field(default_factory=list)
    total: int = 0


@dataclass(frozen=True)
class WriteOutcome:
    target: Path
    ok: bool
    message: str = ''


@dataclass
class BatchReport:
    """Per-file results of writing GPS data for a batch of matches."""

    outcomes: list = field(default_factory=list)

    @property
    def written(self):
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self):
        return [o for o in self.outcomes if not o.ok]


def check_exiftool():
    """Check if exiftool is installed."""
    try:
        subprocess.run(['exiftool', '-ver'], capture_output=True, check=True)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


def parse_timestamp(value):
    """Parse an EXIF date string, returning None if it is not a valid date."""
    if not value or not isinstance(value, str):
        return None
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


def parse_exif_record(exif):
    """Parse a single exiftool JSON record into our format."""
    # DateTimeOriginal first, then CreateDate
    timestamp = None
    for date_field in ['DateTimeOriginal', 'CreateDate']:
        timestamp = parse_timestamp(exif.get(date_field))
        if timestamp:
            break

    coordinate = None
    lat = exif.get('GPSLatitude')
    lon = exif.get('GPSLongitude')
    if lat is not None and lon is not None:
        try:
            alt = exif.get('GPSAltitude')
            coordinate = Coordinate(
                lat=float(lat),
                lon=float(lon),
                alt=float(alt) if alt not in (None, '') else None,
            )
        except (TypeError, ValueError):
            logger.warning("Unusable GPS values in {}: {}, {}", exif.get('SourceFile'), lat, lon)

    return {'timestamp': timestamp, 'coordinate': coordinate, 'has_gps': coordinate is not None}


def get_batch_exif_data(file_paths, batch_size=BATCH_SIZE, show_progress=False):
    """
    Extract EXIF data from multiple files using batched exiftool calls.

    Returns dict mapping file_path -> exif_data (or None on error).
    """
    results = {}
    total = len(file_paths)

    for i in range(0, total, batch_size):
        batch = file_paths[i : i + batch_size]

        if show_progress:
            progress = min(i + batch_size, total)
            print(f"\r  Reading EXIF data: {progress}/{total}", end='', flush=True)

        try:
            cmd = [
                'exiftool',
                '-json',
                '-n',
                '-DateTimeOriginal',
                '-CreateDate',
                '-GPSLatitude',
                '-GPSLongitude',
                '-GPSAltitude',
            ] + [str(p) for p in batch]

            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            data = json.loads(result.stdout)

            for exif in data:
                file_path = Path(exif.get('SourceFile', ''))
                results[file_path] = parse_exif_record(exif)

        except (subprocess.CalledProcessError, json.JSONDecodeError) as e:
            logger.warning("exiftool failed on a batch of {} files: {}", len(batch), e)
            for p in batch:
                results[p] = None

    if show_progress:
        print()  # Newline after progress

    return results


def find_image_files(folder):
    """Recursively list image files under `folder`."""
    return sorted(
        f
        for f in Path(folder).rglob('*')
        if f.is_file() and f.suffix.lower() in IMAGE_EXTENSIONS
    )


def scan_folders(folders, reference_folders=(), show_progress=False):
    """
    Read every photo in the given folders and split them by GPS presence.

    Photos without GPS in `reference_folders` are ignored; those folders
    only contribute reference photos.
    """
    wants_match = {}
    for folder in reference_folders:
        for f in find_image_files(folder):
            wants_match.setdefault(f, False)
    for folder in folders:
        for f in find_image_files(folder):
            wants_match[f] = True

    files = list(wants_match)
    scan = ScanResult(total=len(files))
    all_exif = get_batch_exif_data(files, show_progress=show_progress)

    for file_path in files:
        logger.debug("checking photo file: {}", file_path)
        exif = all_exif.get(file_path)

        if not exif:
            scan.unreadable.append(file_path)
            continue

        if not exif['timestamp']:
            logger.debug("no capture time, skipping: {}", file_path)
            if exif['has_gps']:
                scan.no_timestamp_gps.append(file_path)
            else:
                scan.no_timestamp.append(file_path)
            continue

        record = PhotoRecord(identity=file_path, captured_at=exif['timestamp'], coordinate=exif['coordinate'])
        logger.debug("got photo data: time: {}, gps: {}", record.captured_at, record.coordinate)

        if record.has_gps:
            scan.gps_records.append(record)
        elif wants_match[file_path]:
            scan.queries.append(record)

    return scan


def plan_matches(scan, policy):
    """
    Match every photo missing GPS against the GPS-tagged photos.

    Returns (accepted, rejected) lists of MatchResult.
    """
    index = TimeOrderedIndex(scan.gps_records)
    accepted = []
    rejected = []

    for result in match_all(index, scan.queries, policy):
        if not result.found:
            logger.info("no reference photos for {}, skipping", result.query.identity)
            rejected.append(result)
            continue

        logger.debug(
            "found nearest match for {} is {}, time diff: {}",
            result.query.identity,
            result.record.identity,
            result.delta,
        )
        if result.accepted:
            accepted.append(result)
        else:
            logger.info("time difference to nearest photo is too big, skipping {}", result.query.identity)
            rejected.append(result)

    return accepted, rejected


def write_gps_data(file_path, coordinate, dry_run=False):
    """
    Write GPS coordinates to a file using exiftool.

    Never raises for exiftool failures; the returned WriteOutcome tells
    whether the file was updated.
    """
    lat = coordinate.lat
    lon = coordinate.lon
    alt = coordinate.alt

    # Determine lat/lon references
    lat_ref = 'N' if lat >= 0 else 'S'
    lon_ref = 'E' if lon >= 0 else 'W'

    args = [
        'exiftool',
        '-overwrite_original_in_place',
        f'-GPSLatitude={abs(lat)}',
        f'-GPSLatitudeRef={lat_ref}',
        f'-GPSLongitude={abs(lon)}',
        f'-GPSLongitudeRef={lon_ref}',
    ]

    if alt is not None:
        alt_ref = 0 if alt >= 0 else 1  # 0 = above sea level, 1 = below
        args.extend(
            [
                f'-GPSAltitude={abs(alt)}',
                f'-GPSAltitudeRef={alt_ref}',
            ],
        )

    args.append(str(file_path))

    if dry_run:
        return WriteOutcome(Path(file_path), True, 'dry run')

    try:
        subprocess.run(args, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        message = (e.stderr or '').strip() or f"exiftool exited with status {e.returncode}"
        logger.error("failed to write GPS data to {}: {}", file_path, message)
        return WriteOutcome(Path(file_path), False, message)
    except OSError as e:
        logger.error("could not run exiftool for {}: {}", file_path, e)
        return WriteOutcome(Path(file_path), False, str(e))

    return WriteOutcome(Path(file_path), True)


def apply_matches(matches, dry_run=False, jobs=1):
    """
    Write the coordinates of every accepted match to its photo.

    Each file is written independently; a failure is recorded in the
    report and the remaining files are still processed.
    """

    def write(result):
        return write_gps_data(result.query.identity, result.record.coordinate, dry_run=dry_run)

    if jobs > 1 and len(matches) > 1:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            outcomes = list(executor.map(write, matches))
    else:
        outcomes = [write(m) for m in matches]

    return BatchReport(outcomes=outcomes)


def format_time_diff(delta):
    """Format time difference in human-readable form."""
    seconds = int(abs(delta.total_seconds()))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def window_minutes(value):
    """argparse type for --max-time-diff: a finite, non-negative number of minutes."""
    try:
        minutes = float(value)
        MatchPolicy.from_minutes(minutes)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid window '{value}': {e}") from None
    return minutes


def build_parser():
    parser = argparse.ArgumentParser(
        description='Copy GPS coordinates to photos without GPS from the photo taken closest in time.',
    )
    parser.add_argument(
        'paths',
        nargs='*',
        default=['.'],
        help='Folders to scan; photos without GPS here are updated (default: current folder)',
    )
    parser.add_argument(
        '--source',
        '-s',
        action='append',
        default=[],
        help='Extra folder that only provides GPS reference photos (can be repeated)',
    )
    parser.add_argument(
        '--max-time-diff',
        '-m',
        type=window_minutes,
        default=DEFAULT_MAX_GAP.total_seconds() / 60,
        help='Maximum time difference in minutes for matching (default: 20)',
    )
    parser.add_argument(
        '--dry-run',
        '-d',
        action='store_true',
        help='Preview matches without writing any changes',
    )
    parser.add_argument(
        '--jobs',
        '-j',
        type=int,
        default=1,
        help='Number of files written in parallel (default: 1)',
    )
    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Show per-file diagnostics on stderr',
    )
    parser.add_argument(
        '--log-file',
        help='Also write diagnostics to this file',
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    init_logging(verbose=args.verbose, log_file=args.log_file)

    if args.jobs < 1:
        parser.error('--jobs must be at least 1')

    # Check exiftool is available
    if not check_exiftool():
        print("Error: exiftool is not installed.", file=sys.stderr)
        print(INSTALL_HINT, file=sys.stderr)
        sys.exit(1)

    # Validate paths
    for folder in args.paths + args.source:
        if not Path(folder).exists():
            print(f"Error: Folder does not exist: {folder}", file=sys.stderr)
            sys.exit(1)

    policy = MatchPolicy.from_minutes(args.max_time_diff)
    window = f"{args.max_time_diff:g}min"

    if args.dry_run:
        print("=== DRY RUN MODE - No files will be modified ===\n")

    print(f"Scanning photos in: {', '.join(args.paths)}")
    if args.source:
        print(f"Reference-only folders: {', '.join(args.source)}")

    scan = scan_folders(args.paths, args.source, show_progress=True)
    print(f"  Found {scan.total} image files")
    print(f"  {len(scan.gps_records)} photos with GPS data, {len(scan.queries)} without")

    if not scan.gps_records and scan.queries:
        print("\nWarning: No photos with GPS data found, nothing to copy from.", file=sys.stderr)

    matches, no_matches = plan_matches(scan, policy)
    report = BatchReport()

    # Print matches
    if matches:
        matches.sort(key=lambda m: m.query.captured_at)
        report = apply_matches(matches, dry_run=args.dry_run, jobs=args.jobs)

        print("\nMatches found:")
        print("-" * 80)
        for match, outcome in zip(matches, report.outcomes):
            coordinate = match.record.coordinate
            print(f"  {match.query.identity.name}")
            print(f"    <- {match.record.identity.name} (time diff: {format_time_diff(match.delta)})")
            print(f"    GPS: {coordinate.lat:.6f}, {coordinate.lon:.6f}")
            if not outcome.ok:
                print(f"  Error writing GPS to {outcome.target}: {outcome.message}", file=sys.stderr)
            print()

    # Print no matches (with closest reference for adjusting threshold)
    if no_matches:
        print(f"\nNo match found (outside {window} window):")
        print("-" * 80)
        for item in sorted(no_matches, key=lambda x: x.delta if x.found else timedelta.max):
            print(f"  {item.query.identity.name}")
            if item.found:
                diff_minutes = item.delta.total_seconds() / 60
                print(f"    Closest: {item.record.identity.name} (time diff: {format_time_diff(item.delta)} = {diff_minutes:.1f}min)")
            else:
                print("    No reference photos found")
        print()

    # Print summary
    errors = len(scan.unreadable) + len(report.failed)
    print("=" * 80)
    print("Summary:")
    print(f"  Photos matched and {'would be ' if args.dry_run else ''}updated: {len(report.written)}")
    print(f"  Reference photos with GPS: {len(scan.gps_records)}")
    print(f"  Skipped (no timestamp): {len(scan.no_timestamp)}")
    print(f"  No match found (outside {window} window): {len(no_matches)}")
    if errors:
        print(f"  Errors: {errors}")

    if args.dry_run and report.written:
        print("\nRun without --dry-run to apply changes.")


if __name__ == '__main__':
    main()
