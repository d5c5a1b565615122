"""Bulk document uploader & processing monitor.

Usage (host or container, API running):

python -m scripts.bulk_upload --dir /data/filings --pattern .pdf .xlsx --concurrency 4

Environment variables:
  BACKEND_URL (default http://localhost:8000)

Each file is posted to /api/documents/upload, then its status endpoint is
polled until the document is completed or failed.
"""
from __future__ import annotations
import argparse, mimetypes, os, time, sys, threading
from pathlib import Path
from typing import List, Tuple

import httpx

BACKEND = os.environ.get("BACKEND_URL", "http://localhost:8000")
TERMINAL = ("completed", "failed")


def iter_files(root: Path, patterns: List[str]) -> List[Path]:
    files: List[Path] = []
    for p in root.rglob('*'):
        if not p.is_file():
            continue
        if not patterns or any(p.name.lower().endswith(ext.lower()) for ext in patterns):
            files.append(p)
    return files


def upload_file(client: httpx.Client, path: Path) -> int:
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with path.open('rb') as f:
        r = client.post(f"{BACKEND}/api/documents/upload", files={'file': (path.name, f, content_type)}, timeout=300)
    if r.status_code >= 400:
        raise RuntimeError(r.json().get("error", r.text))
    return r.json()['id']


def poll_status(client: httpx.Client, doc_id: int, interval=2, timeout=1800) -> dict:
    start = time.time()
    while True:
        r = client.get(f"{BACKEND}/api/documents/{doc_id}/status", timeout=30)
        r.raise_for_status()
        js = r.json()
        if js.get('processingStatus') in TERMINAL or (time.time() - start) > timeout:
            return js
        time.sleep(interval)


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('--dir', required=True, help='Directory containing documents')
    ap.add_argument('--pattern', nargs='*', default=['.pdf', '.xlsx', '.xls', '.csv', '.docx', '.png', '.jpg'])
    ap.add_argument('--concurrency', type=int, default=3)
    ap.add_argument('--no-wait', action='store_true', help='Upload only; do not poll processing status.')
    args = ap.parse_args()

    root = Path(args.dir)
    if not root.exists():
        print(f"Directory not found: {root}", file=sys.stderr)
        sys.exit(1)
    files = iter_files(root, args.pattern)
    if not files:
        print('No matching files found.')
        return
    print(f"Discovered {len(files)} files. Starting uploads (concurrency={args.concurrency})...")

    lock = threading.Lock()
    queue = files.copy()
    results: List[Tuple[Path, int]] = []

    def worker():
        with httpx.Client() as client:
            while True:
                with lock:
                    if not queue:
                        return
                    path = queue.pop()
                try:
                    doc_id = upload_file(client, path)
                    with lock:
                        results.append((path, doc_id))
                    print(f"Uploaded {path.name} -> doc {doc_id}")
                except Exception as e:
                    print(f"Error uploading {path}: {e}", file=sys.stderr)

    threads = [threading.Thread(target=worker, daemon=True) for _ in range(args.concurrency)]
    for t in threads: t.start()
    for t in threads: t.join()

    if args.no_wait:
        return

    print('Polling processing status...')
    failed = 0
    with httpx.Client() as client:
        for path, doc_id in results:
            info = poll_status(client, doc_id)
            status = info.get('processingStatus')
            if status == 'failed':
                failed += 1
                print(f"Doc {doc_id} ({path.name}) -> failed: {info.get('errorMessage')}")
            else:
                print(f"Doc {doc_id} ({path.name}) -> {status}")
    print(f"Processed {len(results) - failed}/{len(results)} documents without error")


if __name__ == '__main__':
    main()
