#!/usr/bin/env python3
"""
Run the upgrade checker over event scripts and print the verdicts.

Without arguments every `playground/*.bu` file is analyzed. With --json the
results are printed as one JSON document per file; otherwise diagnostics are
printed in human-readable form. The exit code is 1 if any script fails to
parse or any unit faults; rejected upgrades are ordinary results.
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Iterable, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from borrowup.analyzer import AnalyzerOptions, analyze_program, summarize
from borrowup.places import AliasGranularity
from borrowup.script import ScriptError, parse_file


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Upgrade-check playground for event scripts")
    ap.add_argument(
        "paths",
        nargs="*",
        default=["playground"],
        help="script files or directories to analyze (default: playground)",
    )
    ap.add_argument(
        "--granularity",
        choices=[g.value for g in AliasGranularity],
        default=AliasGranularity.FIELD.value,
        help="alias granularity: disjoint fields do not alias (field) or any two places of a location do (owner)",
    )
    ap.add_argument("-j", "--jobs", type=int, default=1, help="analyze units on N worker threads")
    ap.add_argument(
        "--json",
        action="store_true",
        help="emit verdicts and diagnostics as JSON",
    )
    return ap.parse_args(argv)


def _collect_files(targets: Iterable[str]) -> List[Path]:
    out: List[Path] = []
    for target in targets:
        base = Path(target)
        if base.is_file():
            out.append(base)
        elif base.is_dir():
            out.extend(sorted(base.rglob("*.bu")))
    return out


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    options = AnalyzerOptions(granularity=AliasGranularity(args.granularity), jobs=args.jobs)
    files = _collect_files(args.paths)
    if not files:
        print("no playground files found", file=sys.stderr)
        return 1

    failed = False
    for path in files:
        try:
            script = parse_file(path)
        except ScriptError as exc:
            failed = True
            if args.json:
                print(json.dumps({"file": str(path), "exit_code": 1, "diagnostics": [exc.to_diagnostic().to_dict()]}))
            else:
                print(f"[script error] {exc.to_diagnostic().format_human()}", file=sys.stderr)
            continue

        results = analyze_program(script.units, options)
        allowed, rejected, faulted = summarize(results)
        failed = failed or faulted > 0
        if args.json:
            print(
                json.dumps(
                    {
                        "file": str(path),
                        "exit_code": 1 if faulted else 0,
                        "units": [r.to_dict() for r in results],
                    }
                )
            )
            continue
        print(f"[{path}] allowed={allowed} rejected={rejected} faulted={faulted}")
        for result in results:
            for diag in result.diagnostics:
                print(f"  {result.name}: {diag.format_human()}")

    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
