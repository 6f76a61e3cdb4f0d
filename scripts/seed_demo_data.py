"""Seed a running dashboard gateway with demo nodes and sample files."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import requests

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = REPO_ROOT / "sample_data"


@dataclass
class SeedNode:
    name: str
    capacity_total: int
    status: str = "online"


DEFAULT_NODES = [
    SeedNode("alpha", 500),
    SeedNode("beta", 500),
    SeedNode("gamma", 250),
    SeedNode("delta", 250, status="offline"),
]


def _rest_request(method: str, rest_base: str, path: str, user_id: str, **kwargs) -> requests.Response:
    url = f"{rest_base.rstrip('/')}{path}"
    headers = {"X-User-Id": user_id}
    headers.update(kwargs.pop("headers", {}))
    resp = requests.request(method, url, headers=headers, timeout=30, **kwargs)
    resp.raise_for_status()
    return resp


def _discover_files(data_dir: Path) -> list[Path]:
    if not data_dir.exists():
        raise FileNotFoundError(f"Sample data directory not found: {data_dir}")
    return [path for path in sorted(data_dir.rglob("*")) if path.is_file()]


def seed(rest_base: str, data_files: Sequence[Path], user_id: str, replicas: int) -> None:
    node_ids: list[str] = []
    for spec in DEFAULT_NODES:
        node = _rest_request(
            "post",
            rest_base,
            "/nodes",
            user_id,
            json={"name": spec.name, "capacity_total": spec.capacity_total, "status": spec.status},
        ).json()
        print(f"Created node {node['name']} ({node['id']}, {node['status']})")
        if node["status"] == "online":
            node_ids.append(node["id"])

    if not node_ids:
        raise SystemExit("No online nodes were created; nothing to upload to")
    for index, path in enumerate(data_files):
        targets = [node_ids[(index + offset) % len(node_ids)] for offset in range(min(replicas, len(node_ids)))]
        print(f"Uploading {path.name} ({path.stat().st_size} bytes) to {len(targets)} node(s)")
        with path.open("rb") as handle:
            resp = _rest_request(
                "post",
                rest_base,
                "/files",
                user_id,
                data={"node_ids": targets},
                files={"file": (path.name, handle)},
            )
        payload = resp.json()
        for failure in payload["failures"]:
            print(f" !! {failure['node_id']}: {failure['reason']}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the storage dashboard with demo data")
    parser.add_argument("--rest-base", default="http://localhost:8000", help="REST base URL")
    parser.add_argument("--data-dir", type=Path, default=DEFAULT_DATA_DIR, help="Directory of sample files")
    parser.add_argument("--replicas", type=int, default=2, help="Replicas per uploaded file")
    parser.add_argument("--user-id", default=os.environ.get("DFS_DASHBOARD_USER", "user-seeder"))
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    files = _discover_files(args.data_dir)
    if not files:
        raise SystemExit(f"No files found in {args.data_dir}")
    seed(args.rest_base, files, args.user_id, max(1, args.replicas))


if __name__ == "__main__":
    main()
