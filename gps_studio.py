#!/usr/bin/env python3
"""GPS Studio - Review and apply GPS matches in the browser."""

import json
import tempfile
import webbrowser
from pathlib import Path

from flask import Flask, jsonify, request, send_file
from loguru import logger

from exif_gps_fix import find_image_files, scan_folders, write_gps_data
from gps_logging import init_logging
from gps_match import Coordinate, TimeOrderedIndex, find_nearest

app = Flask(__name__)

# Session state
SESSION_FILE = Path(tempfile.gettempdir()) / "gps_studio_session.json"

PORT = 8001

MAX_ERROR_DETAILS = 10

HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>GPS Studio</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
               background: #1a1a1a; color: #eee; margin: 0; padding: 20px; }
        input[type=text] { width: 340px; background: #2a2a2a; color: #eee; border: 1px solid #444; padding: 6px; }
        button { background: #3a6ff7; color: #fff; border: 0; padding: 7px 14px; cursor: pointer; }
        table { border-collapse: collapse; margin-top: 16px; width: 100%; }
        td, th { border-bottom: 1px solid #333; padding: 6px; text-align: left; font-size: 13px; }
        .outside { color: #888; }
        #status { margin-top: 10px; color: #9cf; }
    </style>
</head>
<body>
    <h2>GPS Studio</h2>
    <div>
        <label>Reference folder <input type="text" id="source"></label>
        <label>Target folder <input type="text" id="target"></label>
        <button onclick="runScan()">Scan</button>
    </div>
    <div style="margin-top: 10px">
        Window: <input type="range" id="window" min="1" max="240" value="20" oninput="render()">
        <span id="windowLabel"></span>
        <label><input type="checkbox" id="dryRun" checked> Dry run</label>
        <button onclick="applyChanges()">Apply selected</button>
    </div>
    <div id="status"></div>
    <table>
        <thead><tr><th></th><th>Photo</th><th>Taken</th><th>Closest GPS photo</th><th>Time diff</th><th>GPS</th></tr></thead>
        <tbody id="rows"></tbody>
    </table>
    <script>
        let matches = [];

        function windowSeconds() {
            return Number(document.getElementById('window').value) * 60;
        }

        function formatTimeDiff(seconds) {
            if (seconds === null) return '-';
            const m = Math.floor(seconds / 60);
            const s = Math.floor(seconds % 60);
            return m > 0 ? `${m}m ${s}s` : `${s}s`;
        }

        function render() {
            document.getElementById('windowLabel').textContent = `${document.getElementById('window').value} min`;
            const rows = matches.map((m, i) => {
                const inside = m.gps && m.time_diff !== null && m.time_diff <= windowSeconds();
                const gps = m.gps ? `${m.gps.lat.toFixed(6)}, ${m.gps.lon.toFixed(6)}` : '-';
                return `<tr class="${inside ? '' : 'outside'}">
                    <td><input type="checkbox" data-idx="${i}" ${inside ? 'checked' : 'disabled'}></td>
                    <td><a href="/api/photo?path=${encodeURIComponent(m.target)}" target="_blank">${m.target_name}</a></td>
                    <td>${m.target_time || 'no timestamp'}</td>
                    <td>${m.source_name || '-'}</td>
                    <td>${formatTimeDiff(m.time_diff)}</td>
                    <td>${gps}</td>
                </tr>`;
            });
            document.getElementById('rows').innerHTML = rows.join('');
        }

        async function runScan() {
            const source = document.getElementById('source').value;
            const target = document.getElementById('target').value;
            document.getElementById('status').textContent = 'Scanning...';
            const res = await fetch(`/api/scan?source=${encodeURIComponent(source)}&target=${encodeURIComponent(target)}`);
            const data = await res.json();
            if (data.error) {
                document.getElementById('status').textContent = data.error;
                return;
            }
            matches = data.all_matches;
            document.getElementById('status').textContent =
                `${data.total} photos, ${data.has_gps} with GPS, ${data.missing_gps} missing`;
            render();
        }

        async function applyChanges() {
            const changes = [...document.querySelectorAll('input[data-idx]:checked')]
                .map(el => matches[Number(el.dataset.idx)])
                .map(m => ({target: m.target, gps: m.gps}));
            const dryRun = document.getElementById('dryRun').checked;
            const res = await fetch('/api/apply', {
                method: 'POST',
                headers: {'Content-Type': 'application/json'},
                body: JSON.stringify({changes: changes, dry_run: dryRun}),
            });
            const data = await res.json();
            document.getElementById('status').textContent = data.error
                ? data.error
                : `${dryRun ? 'Dry run: ' : ''}${data.success} written, ${data.errors} errors`;
        }

        async function loadSession() {
            const res = await fetch('/api/session');
            const data = await res.json();
            if (data.source) document.getElementById('source').value = data.source;
            if (data.target) document.getElementById('target').value = data.target;
            render();
        }

        loadSession();
    </script>
</body>
</html>"""


def get_session():
    """Load session data."""
    if SESSION_FILE.exists():
        try:
            return json.loads(SESSION_FILE.read_text())
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable session file: {}", SESSION_FILE)
    return {}


def save_session(data):
    """Save session data."""
    SESSION_FILE.write_text(json.dumps(data))


def coordinate_to_json(coordinate):
    return {"lat": coordinate.lat, "lon": coordinate.lon, "alt": coordinate.alt}


def coordinate_from_json(gps):
    alt = gps.get("alt")
    return Coordinate(
        lat=float(gps["lat"]),
        lon=float(gps["lon"]),
        alt=float(alt) if alt is not None else None,
    )


@app.route("/")
def index():
    return HTML


@app.route("/api/session")
def api_session():
    return jsonify(get_session())


@app.route("/api/photo")
def api_photo():
    """Serve full image."""
    path = request.args.get("path", "")
    if not path or not Path(path).is_file():
        return "Not found", 404
    return send_file(Path(path).resolve())


@app.route("/api/scan")
def api_scan():
    """Scan folders and find the closest GPS photo for every target photo missing GPS."""
    source = request.args.get("source", "")
    target = request.args.get("target", "")

    if not source or not target:
        return jsonify({"error": "Source and target folders required"})

    source_path = Path(source)
    target_path = Path(target)

    if not source_path.exists():
        return jsonify({"error": f"Source folder not found: {source}"})
    if not target_path.exists():
        return jsonify({"error": f"Target folder not found: {target}"})

    # Save session (folder paths only, window is client-side)
    save_session({"source": source, "target": target})

    scan = scan_folders([target_path], [source_path])
    index = TimeOrderedIndex(scan.gps_records)
    target_files = set(find_image_files(target_path))

    results = {
        "total": len(target_files),
        "has_gps": sum(1 for r in scan.gps_records if r.identity in target_files)
        + sum(1 for p in scan.no_timestamp_gps if p in target_files),
        "missing_gps": 0,
        "all_matches": [],
    }

    for record in scan.queries:
        results["missing_gps"] += 1
        # No window applied here; the page filters with its slider
        result = find_nearest(index, record.captured_at, query=record)
        results["all_matches"].append(
            {
                "target": str(record.identity),
                "target_name": record.identity.name,
                "target_time": record.captured_at.strftime("%Y-%m-%d %H:%M"),
                "source": str(result.record.identity) if result.found else "",
                "source_name": result.record.identity.name if result.found else None,
                "time_diff": result.delta.total_seconds() if result.found else None,
                "gps": coordinate_to_json(result.record.coordinate) if result.found else None,
            },
        )

    for file_path in scan.no_timestamp:
        if file_path not in target_files:
            continue
        results["missing_gps"] += 1
        results["all_matches"].append(
            {
                "target": str(file_path),
                "target_name": file_path.name,
                "target_time": None,
                "source": "",
                "source_name": None,
                "time_diff": None,
                "gps": None,
            },
        )

    # Sort by time diff (None values at end)
    results["all_matches"].sort(key=lambda x: x["time_diff"] if x["time_diff"] is not None else float("inf"))

    return jsonify(results)


@app.route("/api/apply", methods=["POST"])
def api_apply():
    """Apply GPS changes to files."""
    data = request.get_json(silent=True) or {}
    changes = data.get("changes", [])
    dry_run = data.get("dry_run", True)

    if not changes:
        return jsonify({"error": "No changes provided"})

    success = 0
    errors = 0
    error_details = []
    total = len(changes)

    logger.info("Applying GPS to {} files (dry_run={})", total, dry_run)

    for i, change in enumerate(changes):
        target = change.get("target")
        gps = change.get("gps")

        if not target or not gps:
            errors += 1
            error_details.append("Invalid change entry")
            continue

        try:
            coordinate = coordinate_from_json(gps)
        except (KeyError, TypeError, ValueError):
            errors += 1
            error_details.append(f"Invalid GPS data for {Path(target).name}")
            continue

        outcome = write_gps_data(Path(target), coordinate, dry_run=dry_run)
        if outcome.ok:
            success += 1
        else:
            errors += 1
            error_details.append(f"Failed to write: {Path(target).name}: {outcome.message}")

        if (i + 1) % 10 == 0 or (i + 1) == total:
            logger.info("Progress: {}/{}", i + 1, total)

    result = {"success": success, "errors": errors}
    if error_details:
        result["error_details"] = error_details[:MAX_ERROR_DETAILS]
    return jsonify(result)


def main():
    init_logging(verbose=True)
    print(f"Starting GPS Studio at http://localhost:{PORT}")
    print("Press Ctrl+C to stop")
    webbrowser.open(f"http://localhost:{PORT}")
    app.run(port=PORT, debug=False, threaded=True)


if __name__ == "__main__":
    main()
