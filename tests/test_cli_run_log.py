from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


def _run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    repo_root = Path(__file__).resolve().parents[1]

    env = dict(os.environ)
    env["APIFY_TOKEN"] = "dummy"

    existing_pp = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (
        f"{repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(repo_root)
    )

    return subprocess.run(
        [sys.executable, "-m", "x_ingest", *args],
        cwd=repo_root,
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )


def _events(log_path: Path) -> list[str]:
    events: list[str] = []
    for ln in log_path.read_text(encoding="utf-8").splitlines():
        if not ln.strip():
            continue
        try:
            obj = json.loads(ln)
        except ValueError:
            continue
        ev = obj.get("event")
        if isinstance(ev, str):
            events.append(ev)
    return events


class TestCommandsWriteLog(unittest.TestCase):
    def test_poll_creates_run_log_on_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            out_dir = Path(td) / "out"
            missing_cfg = Path(td) / "missing_config.yaml"

            proc = _run_cli("poll", "--config", str(missing_cfg), "--out", str(out_dir))

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)
            self.assertIn("Config file not found", proc.stderr)

            log_path = out_dir / "run.log"
            self.assertTrue(log_path.exists())

            events = _events(log_path)
            self.assertIn("poll_command_started", events)
            self.assertIn("poll_command_failed", events)

    def test_stream_logs_validation_failure(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            out_dir = Path(td) / "out"
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text("stream:\n  stream_type: fromUsers\n  usernames: ' , '\n", encoding="utf-8")

            proc = _run_cli(
                "stream",
                "--config",
                str(cfg_path),
                "--out",
                str(out_dir),
                "--offline",
            )

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)
            self.assertIn("Usernames are required", proc.stderr)

            events = _events(out_dir / "run.log")
            self.assertIn("stream_command_started", events)
            self.assertIn("stream_command_failed", events)
            self.assertNotIn("stream_started", events)


if __name__ == "__main__":
    unittest.main()
