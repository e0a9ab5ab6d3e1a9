#!/usr/bin/env python3
"""
Run the greensched test suite, or selected test modules, through pytest.

    python tests/run_tests.py                      # everything
    python tests/run_tests.py ledger rewards       # test_ledger.py, test_rewards.py
    python tests/run_tests.py -k balance           # extra args go to pytest
"""
import subprocess
import sys
from pathlib import Path

TEST_DIR = Path(__file__).resolve().parent


def _module_path(name):
    stem = name if name.startswith("test_") else f"test_{name}"
    if stem.endswith(".py"):
        stem = stem[:-3]
    return TEST_DIR / f"{stem}.py"


def run(args):
    # A bare word after -k/-m (e.g. "-k balance") belongs to that option
    targets, extra = [], []
    skip_next = False
    for arg in args:
        if skip_next:
            extra.append(arg)
            skip_next = False
        elif arg.startswith("-"):
            extra.append(arg)
            skip_next = arg in ("-k", "-m")
        else:
            targets.append(str(_module_path(arg)))

    cmd = [sys.executable, "-m", "pytest", *(targets or [str(TEST_DIR)]), "-v", "--tb=short", *extra]
    print("Running:", " ".join(cmd))
    return subprocess.run(cmd, cwd=TEST_DIR.parent).returncode


if __name__ == "__main__":
    sys.exit(run(sys.argv[1:]))
