from __future__ import annotations

import json
import os
import subprocess
import threading
from pathlib import Path
from datetime import datetime, timezone
from typing import Iterable


class CommandError(RuntimeError):
    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def write_json(path: Path, data) -> None:
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def read_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def run_cmd(
    cmd: Iterable[str],
    timeout: float = 600,
    cwd: str | Path | None = None,
    env: dict | None = None,
    log_file: Path | None = None,
) -> subprocess.CompletedProcess:
    cmd = list(cmd)
    try:
        process = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"Command not found: {cmd[0]}") from exc

    timed_out = threading.Event()

    def _kill() -> None:
        timed_out.set()
        process.kill()

    # The deadline covers the whole run, including a process that stays silent.
    timer = threading.Timer(timeout, _kill)
    timer.daemon = True
    timer.start()

    output_lines = []
    try:
        for line in iter(process.stdout.readline, ""):
            output_lines.append(line)
            if log_file:
                with log_file.open("a", encoding="utf-8") as f:
                    f.write(line)
        return_code = process.wait()
    finally:
        timer.cancel()
        process.stdout.close()

    output = "".join(output_lines)
    if timed_out.is_set():
        raise CommandError(f"Command timed out after {timeout}s: {' '.join(cmd)}", output)
    if return_code != 0:
        raise CommandError(f"Command failed ({return_code}): {' '.join(cmd)}", output)

    return subprocess.CompletedProcess(args=cmd, returncode=return_code, stdout=output, stderr=None)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def get_cache_dir() -> Path:
    return Path(os.path.expanduser("~/.cache/patchpro"))
