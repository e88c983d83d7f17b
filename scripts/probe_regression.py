#!/usr/bin/env python3
"""
Probe regression harness.

Runs audit profiles against intentionally vulnerable apps and computes
TP/FP/FN metrics from a baseline file so each release can be compared.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from routeaudit.audit import AuditRunner
from routeaudit.config import MODES, get_config
from routeaudit.log import setup_logging


def load_baseline(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("Baseline must be a JSON object")
    profiles = data.get("profiles")
    if not isinstance(profiles, dict) or not profiles:
        raise ValueError("Baseline requires a non-empty 'profiles' object")
    return data


def match_expected(finding: Dict[str, Any], expected: Dict[str, Any]) -> bool:
    if str(finding.get("attack", "")).lower() != str(expected.get("attack", "")).lower():
        return False
    route_contains = str(expected.get("route_contains", "") or "").strip()
    if route_contains and route_contains not in str(finding.get("route", "")):
        return False
    severity = str(expected.get("severity", "") or "").strip().lower()
    if severity and severity != str(finding.get("severity", "")).lower():
        return False
    return True


def score_findings(findings: List[Dict[str, Any]], expected_list: List[Dict[str, Any]]) -> Dict[str, Any]:
    matched_expected_idx = set()
    tp = 0
    fp = 0
    false_positives: List[Dict[str, Any]] = []

    for finding in findings:
        match_idx = None
        for i, exp in enumerate(expected_list):
            if i in matched_expected_idx:
                continue
            if match_expected(finding, exp):
                match_idx = i
                break
        if match_idx is not None:
            matched_expected_idx.add(match_idx)
            tp += 1
        else:
            fp += 1
            false_positives.append(finding)

    fn = max(0, len(expected_list) - len(matched_expected_idx))
    return {**_rates(tp, fp, fn), "false_positives": false_positives[:100]}


def _rates(tp: int, fp: int, fn: int) -> Dict[str, Any]:
    precision = (tp / (tp + fp)) if (tp + fp) > 0 else 0.0
    recall = (tp / (tp + fn)) if (tp + fn) > 0 else 0.0
    f1 = (2 * precision * recall / (precision + recall)) if (precision + recall) > 0 else 0.0
    return {
        "tp": tp,
        "fp": fp,
        "fn": fn,
        "precision": round(precision, 4),
        "recall": round(recall, 4),
        "f1": round(f1, 4),
    }


async def run_profile(runner: AuditRunner, profile_name: str, profile: Dict[str, Any]) -> Dict[str, Any]:
    mode = str(profile.get("mode", "deep") or "deep")
    if mode not in MODES:
        raise ValueError(f"Profile '{profile_name}' has unknown mode '{mode}'")

    target_url = str(profile.get("target_url", "") or "").strip()
    targets = [str(u) for u in (profile.get("targets") or []) if str(u).strip()]
    if targets:
        report = await runner.probe(targets, mode=mode)
    elif target_url:
        report = await runner.run(
            target_url,
            mode=mode,
            max_pages=int(profile.get("max_pages", 20)),
            select=bool(profile.get("select_targets", False)),
        )
    else:
        raise ValueError(f"Profile '{profile_name}' requires target_url or targets")

    findings = [f.to_dict() for f in report.findings]
    expected = list(profile.get("expected", []) or [])
    return {
        "profile": profile_name,
        "target_url": target_url or None,
        "mode": mode,
        "scan_summary": {
            "targets": len(report.targets),
            "findings_count": len(findings),
            "security_score": report.summary.get("securityScore"),
        },
        "metrics": score_findings(findings, expected),
        "findings": findings,
        "expected": expected,
    }


def aggregate(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    tp = sum(int(r["metrics"]["tp"]) for r in results)
    fp = sum(int(r["metrics"]["fp"]) for r in results)
    fn = sum(int(r["metrics"]["fn"]) for r in results)
    return _rates(tp, fp, fn)


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run probe regression profiles and compute FP/FN metrics.")
    p.add_argument(
        "--baseline",
        default="regression/baseline.example.json",
        help="Baseline JSON file with profiles and expected findings",
    )
    p.add_argument("--profiles", default="", help="Comma-separated profile names (default: all)")
    p.add_argument("--config", default=None, help="User config JSON")
    p.add_argument("--release", default="", help="Release label (e.g. v0.4.2)")
    p.add_argument("--no-ai", action="store_true", help="Deterministic planner and static solutions only")
    p.add_argument(
        "--output",
        default="regression/reports/latest.json",
        help="Output report JSON path",
    )
    return p.parse_args(argv)


async def run_all(args: argparse.Namespace) -> int:
    baseline_path = Path(args.baseline)
    baseline = load_baseline(baseline_path)
    profiles_cfg = baseline["profiles"]

    selected = [x.strip() for x in args.profiles.split(",") if x.strip()]
    if selected:
        missing = [name for name in selected if name not in profiles_cfg]
        if missing:
            raise ValueError(f"Unknown profile(s): {', '.join(missing)}")
        names = selected
    else:
        names = sorted(profiles_cfg.keys())

    config = get_config(config_path=Path(args.config) if args.config else None)
    if args.no_ai:
        config.ai["enabled"] = False

    results: List[Dict[str, Any]] = []
    runner = AuditRunner(config)
    try:
        for name in names:
            print(f"[regression] running profile: {name}")
            result = await run_profile(runner, name, profiles_cfg[name])
            results.append(result)
            m = result["metrics"]
            print(
                f"[regression] {name}: TP={m['tp']} FP={m['fp']} FN={m['fn']} "
                f"precision={m['precision']:.4f} recall={m['recall']:.4f} f1={m['f1']:.4f}"
            )
    finally:
        await runner.close()

    summary = aggregate(results)
    report = {
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "release": args.release or "",
        "baseline": str(baseline_path),
        "profiles": names,
        "summary": summary,
        "results": results,
    }

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)

    print(
        f"[regression] summary: TP={summary['tp']} FP={summary['fp']} FN={summary['fn']} "
        f"precision={summary['precision']:.4f} recall={summary['recall']:.4f} f1={summary['f1']:.4f}"
    )
    print(f"[regression] report written: {output_path}")
    return 0


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging()
    return asyncio.run(run_all(args))


if __name__ == "__main__":
    raise SystemExit(main())
