"""Run the LARK smoke tests, then one offline command through the CLI."""

from __future__ import annotations

import subprocess
import sys


def main() -> int:
    checks = [
        [sys.executable, "-m", "pytest", "-q", "tests/test_smoke.py"],
        [sys.executable, "-m", "lark_voice.cli", "--offline", "--text", "read miranda rights in spanish"],
    ]
    for cmd in checks:
        code = subprocess.call(cmd)
        if code != 0:
            print(f"Smoke check failed: {' '.join(cmd[2:])}", file=sys.stderr)
            return code
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
