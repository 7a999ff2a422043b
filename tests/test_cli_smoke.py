from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

_CONFIG = """\
trigger:
  trigger_on: newTweets
  search_query: n8n
  poll_interval: 0.05
  max_results: 10

stream:
  stream_type: hashtags
  hashtags: "n8n,automation"
  polling_interval: 10

state:
  scope: smoke
"""


def _run_cli(repo_root: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    env.pop("APIFY_TOKEN", None)

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


def _stdout_value(stdout: str, key: str) -> str:
    for line in stdout.splitlines():
        if line.startswith(f"{key}="):
            return line.split("=", 1)[1]
    raise AssertionError(f"{key}= not found in output: {stdout!r}")


def _read_jsonl(path: Path) -> list[dict]:
    return [json.loads(ln) for ln in path.read_text(encoding="utf-8").splitlines() if ln.strip()]


class TestCLISmoke(unittest.TestCase):
    def setUp(self) -> None:
        self.repo_root = Path(__file__).resolve().parents[1]
        self._td = tempfile.TemporaryDirectory()
        self.tmp = Path(self._td.name)
        self.cfg_path = self.tmp / "config.yaml"
        self.cfg_path.write_text(_CONFIG, encoding="utf-8")
        self.out_dir = self.tmp / "out"

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_poll_offline(self) -> None:
        proc = _run_cli(
            self.repo_root,
            "poll",
            "--config",
            str(self.cfg_path),
            "--out",
            str(self.out_dir),
            "--offline",
            "--duration",
            "1.5",
        )

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertTrue(_stdout_value(proc.stdout, "activation_id"))

        records = _read_jsonl(self.out_dir / "events.jsonl")
        ids = [r["id"] for r in records]
        self.assertGreaterEqual(len(ids), 3)
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(int(_stdout_value(proc.stdout, "emitted")), len(ids))
        self.assertTrue((self.out_dir / "state.sqlite").exists())

        events = [r["event"] for r in _read_jsonl(self.out_dir / "run.log")]
        self.assertIn("poll_command_started", events)
        self.assertIn("poll_cycle_completed", events)
        self.assertIn("poll_command_completed", events)

    def test_stream_offline(self) -> None:
        proc = _run_cli(
            self.repo_root,
            "stream",
            "--config",
            str(self.cfg_path),
            "--out",
            str(self.out_dir),
            "--offline",
            "--duration",
            "1.0",
        )

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)

        records = _read_jsonl(self.out_dir / "events.jsonl")
        self.assertEqual(records[0]["type"], "stream_start")
        self.assertGreaterEqual(len(records), 4)

        events = [r["event"] for r in _read_jsonl(self.out_dir / "run.log")]
        self.assertIn("stream_started", events)
        self.assertIn("stream_released", events)

    def test_manual_offline(self) -> None:
        proc = _run_cli(
            self.repo_root,
            "manual",
            "--config",
            str(self.cfg_path),
            "--out",
            str(self.out_dir),
            "--offline",
        )

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertEqual(_stdout_value(proc.stdout, "fetched"), "3")
        ids = [r["id"] for r in _read_jsonl(self.out_dir / "events.jsonl")]
        self.assertEqual(ids, ["1001", "1002", "1003"])

    def test_missing_token_is_a_config_error(self) -> None:
        proc = _run_cli(
            self.repo_root,
            "poll",
            "--config",
            str(self.cfg_path),
            "--out",
            str(self.out_dir),
            "--duration",
            "0.1",
        )

        self.assertEqual(proc.returncode, 2, msg=proc.stderr)
        self.assertIn("APIFY_TOKEN", proc.stderr)


if __name__ == "__main__":
    unittest.main()
