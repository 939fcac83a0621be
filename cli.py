from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Website Operator CLI")
    p.add_argument("--api", default="http://localhost:8080", help="Admin API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("health", help="Show controller health")
    sub.add_parser("queue", help="Show work queue state")

    s_ev = sub.add_parser("events", help="Show operator events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_pass = sub.add_parser("passes", help="Show recent reconcile passes")
    s_pass.add_argument("--limit", type=int, default=20)
    s_pass.add_argument("--namespace")
    s_pass.add_argument("--name")

    s_rec = sub.add_parser("reconcile", help="Queue a Website for reconciliation")
    s_rec.add_argument("namespace")
    s_rec.add_argument("name")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    base = args.api.rstrip("/")

    if args.cmd == "health":
        r = requests.get(f"{base}/healthz", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "queue":
        _print(requests.get(f"{base}/queue", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "passes":
        params = {"limit": args.limit}
        if args.namespace and args.name:
            params.update(namespace=args.namespace, name=args.name)
        _print(requests.get(f"{base}/passes", params=params, timeout=10).json())
        return 0

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/websites/{args.namespace}/{args.name}/reconcile", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
