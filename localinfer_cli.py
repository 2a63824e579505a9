import argparse
import sys
import time
from typing import List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8100"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _print_status(status: dict) -> None:
    state = "available" if status.get("available") else ("initialized" if status.get("initialized") else "not ready")
    print(f"Local inference: {state}")
    default = status.get("default_model")
    if default:
        print(f"Default model: {default}")
    models = status.get("models") or []
    print(f"Local models: {len(models)}")
    for name in models:
        print(f"- {name}")
    if status.get("host_registered"):
        print(f"Host: {status.get('host_id')}")
    elif status.get("authenticated"):
        print("Host: not registered")
    else:
        print("Host: sign in to register")


def _print_download(name: str, progress: dict) -> None:
    state = progress.get("status") or "unknown"
    fraction = float(progress.get("fraction") or 0.0)
    received = progress.get("bytes") or 0
    total = progress.get("total")
    size = f"{received}/{total} bytes" if total else f"{received} bytes"
    print(f"{name}: {state} {fraction * 100:.1f}% ({size})")
    if progress.get("error"):
        print(f"  error: {progress['error']}")


def _poll_download(client: httpx.Client, base: str, name: str, timeout_s: int = 3600) -> int:
    start = time.time()
    while time.time() - start < timeout_s:
        resp = client.get(_join_url(base, "/models/downloads"), timeout=30)
        resp.raise_for_status()
        progress = (resp.json().get("downloads") or {}).get(name) or {}
        _print_download(name, progress)
        state = progress.get("status")
        if state == "complete":
            return 0
        if state in ("error", "cancelled"):
            return 1
        time.sleep(2)
    print("Timed out waiting for the download to finish.")
    return 1


def run_status(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        resp = client.get(_join_url(base, "/status"), timeout=10)
        if resp.status_code >= 400:
            print(f"Failed to fetch status: HTTP {resp.status_code}")
            return 1
        _print_status(resp.json())
    return 0


def run_models_missing(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        resp = client.get(_join_url(base, "/models/downloads"), timeout=30)
        if resp.status_code >= 400:
            print(f"Failed to check downloads: HTTP {resp.status_code}")
            return 1
        missing = resp.json().get("missing") or []
    if not missing:
        print("All required models are present.")
        return 0
    for info in missing:
        marker = " (default)" if info.get("is_default") else ""
        print(f"- {info.get('name')}: {info.get('file_name')}{marker}")
    return 0


def run_models_download(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        resp = client.post(_join_url(base, "/models/downloads"), json={"name": args.name}, timeout=30)
        if resp.status_code >= 400:
            detail = resp.json().get("detail") if resp.headers.get("content-type", "").startswith("application/json") else ""
            print(f"Failed to start download: HTTP {resp.status_code} {detail}".rstrip())
            return 1
        print(f"Downloading {args.name}")
        if args.wait:
            return _poll_download(client, base, args.name, timeout_s=args.timeout)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LocalInfer CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show local inference status")

    models = subparsers.add_parser("models", help="Model management")
    models_sub = models.add_subparsers(dest="models_cmd")

    models_sub.add_parser("missing", help="List required models that are not on disk")

    download = models_sub.add_parser("download", help="Download a required model")
    download.add_argument("name", help="Model name from the manifest")
    download.add_argument("--wait", action="store_true", help="Wait for the download to finish")
    download.add_argument("--timeout", type=int, default=3600, help="Max wait seconds")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "status":
        return run_status(args)
    if args.command == "models" and args.models_cmd == "missing":
        return run_models_missing(args)
    if args.command == "models" and args.models_cmd == "download":
        return run_models_download(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
