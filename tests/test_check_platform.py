"""Tests for the deployment smoke-check script run as a standalone program."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "check_platform.py"


def _clean_env() -> dict[str, str]:
    env = {k: v for k, v in os.environ.items() if not k.startswith("SUPABASE_")}
    env.pop("PYTHONPATH", None)
    return env


def test_runs_from_outside_the_project_root(tmp_path):
    result = subprocess.run(
        [sys.executable, str(SCRIPT)],
        cwd=tmp_path,
        env=_clean_env(),
        capture_output=True,
        text=True,
        timeout=60,
    )

    assert "ModuleNotFoundError" not in result.stderr
    assert result.returncode == 1
    assert "[FAIL] configuration" in result.stdout
    assert "SUPABASE_URL is required but not set" in result.stdout
