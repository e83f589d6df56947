#!/usr/bin/env python3
"""
Find images missing GPS metadata.

Scans a folder recursively and reports which images lack GPS coordinates,
grouped by folder with summary statistics. With --nearest, also shows the
closest GPS-tagged photo for every missing image, so the matching window
of exif_gps_fix.py can be tuned before running it.

Usage:
    python find_missing_gps.py <folder> [--list] [--with-dates] [--nearest]
"""

import argparse
import sys
from collections import defaultdict
from datetime import datetime
from pathlib import Path

from gps_logging import init_logging
from exif_gps_fix import INSTALL_HINT, check_exiftool, format_time_diff, scan_folders, window_minutes
from gps_match import DEFAULT_MAX_GAP, MatchPolicy, TimeOrderedIndex, match_photo


def group_by_folder(scan, root_path):
    """
    Group scanned photos by their folder relative to `root_path`.

    Photos without a capture time are counted by their GPS tags even
    though they cannot be matched. Unreadable files are left out.
    """
    folders = defaultdict(lambda: {'with_gps': [], 'missing_gps': []})

    def folder_key(file_path):
        rel_folder = file_path.parent.relative_to(root_path)
        return str(rel_folder) if str(rel_folder) != '.' else '(root)'

    for record in scan.gps_records:
        folders[folder_key(record.identity)]['with_gps'].append(
            {'path': record.identity, 'timestamp': record.captured_at, 'record': record},
        )
    for record in scan.queries:
        folders[folder_key(record.identity)]['missing_gps'].append(
            {'path': record.identity, 'timestamp': record.captured_at, 'record': record},
        )
    for file_path in scan.no_timestamp:
        folders[folder_key(file_path)]['missing_gps'].append({'path': file_path, 'timestamp': None, 'record': None})
    for file_path in scan.no_timestamp_gps:
        folders[folder_key(file_path)]['with_gps'].append({'path': file_path, 'timestamp': None, 'record': None})

    # Sort folders by number of missing images (descending)
    return sorted(
        folders.items(),
        key=lambda x: len(x[1]['missing_gps']),
        reverse=True,
    )


def describe_nearest(entry, index, policy):
    """One line describing the closest GPS-tagged photo for a missing entry."""
    if entry['record'] is None:
        return "no timestamp, cannot be matched"

    result = match_photo(index, entry['record'], policy)
    if not result.found:
        return "no reference photos"

    verdict = 'within window' if result.accepted else 'outside window'
    return f"closest: {result.record.identity.name} ({format_time_diff(result.delta)}, {verdict})"


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Find images missing GPS metadata, grouped by folder.',
    )
    parser.add_argument(
        'folder',
        help='Folder to scan (recursive)',
    )
    parser.add_argument(
        '--list',
        '-l',
        action='store_true',
        help='List individual files missing GPS',
    )
    parser.add_argument(
        '--with-dates',
        action='store_true',
        help='Show date range for missing images',
    )
    parser.add_argument(
        '--all',
        action='store_true',
        help='Show all folders, including those with complete GPS coverage',
    )
    parser.add_argument(
        '--nearest',
        '-n',
        action='store_true',
        help='Show the closest GPS-tagged photo for each missing file (implies --list)',
    )
    parser.add_argument(
        '--max-time-diff',
        '-m',
        type=window_minutes,
        default=DEFAULT_MAX_GAP.total_seconds() / 60,
        help='Matching window in minutes used by --nearest (default: 20)',
    )
    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Show per-file diagnostics on stderr',
    )

    args = parser.parse_args(argv)

    init_logging(verbose=args.verbose)

    if not check_exiftool():
        print("Error: exiftool is not installed.", file=sys.stderr)
        print(INSTALL_HINT, file=sys.stderr)
        sys.exit(1)

    root_path = Path(args.folder).resolve()
    if not root_path.exists():
        print(f"Error: Folder does not exist: {root_path}", file=sys.stderr)
        sys.exit(1)

    print(f"Scanning: {root_path}\n")

    scan = scan_folders([root_path], show_progress=True)
    print(f"Found {scan.total} images")

    if not scan.total:
        sys.exit(0)

    sorted_folders = group_by_folder(scan, root_path)
    show_list = args.list or args.nearest

    index = None
    policy = None
    if args.nearest:
        index = TimeOrderedIndex(scan.gps_records)
        policy = MatchPolicy.from_minutes(args.max_time_diff)

    # Print results
    total_missing = 0
    total_with_gps = 0
    folders_with_missing = 0

    print("=" * 70)
    print("FOLDERS WITH MISSING GPS DATA")
    print("=" * 70)

    for folder_name, data in sorted_folders:
        missing = data['missing_gps']
        with_gps = data['with_gps']
        total = len(missing) + len(with_gps)

        total_missing += len(missing)
        total_with_gps += len(with_gps)

        if not missing and not args.all:
            continue

        if missing:
            folders_with_missing += 1

        pct_missing = (len(missing) / total * 100) if total > 0 else 0

        # Folder header
        print(f"\n{folder_name}/")
        print(f"  {len(missing)}/{total} missing GPS ({pct_missing:.0f}%)")

        # Date range for missing images
        if args.with_dates and missing:
            timestamps = [e['timestamp'] for e in missing if e['timestamp']]
            if timestamps:
                min_date = min(timestamps).strftime('%Y-%m-%d')
                max_date = max(timestamps).strftime('%Y-%m-%d')
                if min_date == max_date:
                    print(f"  Date: {min_date}")
                else:
                    print(f"  Dates: {min_date} to {max_date}")

        # List individual files
        if show_list and missing:
            for entry in sorted(missing, key=lambda x: x['timestamp'] or datetime.min):
                name = entry['path'].name
                if entry['timestamp']:
                    date_str = entry['timestamp'].strftime('%Y-%m-%d %H:%M')
                    print(f"    - {name} ({date_str})")
                else:
                    print(f"    - {name}")
                if args.nearest:
                    print(f"        {describe_nearest(entry, index, policy)}")

    # Summary
    total_images = total_missing + total_with_gps
    pct_missing = (total_missing / total_images * 100) if total_images > 0 else 0

    print("\n" + "=" * 70)
    print("SUMMARY")
    print("=" * 70)
    print(f"Total images:        {total_images}")
    print(f"With GPS:            {total_with_gps}")
    print(f"Missing GPS:         {total_missing} ({pct_missing:.1f}%)")
    print(f"Folders with gaps:   {folders_with_missing}")
    if scan.unreadable:
        print(f"Unreadable:          {len(scan.unreadable)}")

    if total_missing > 0:
        print("\nTip: Use exif_gps_fix.py to backfill GPS from photos taken around the same time.")


if __name__ == '__main__':
    main()
