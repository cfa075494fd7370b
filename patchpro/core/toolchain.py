from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from patchpro.core import versions
from patchpro.core.models import ModuleFix
from patchpro.core.utils import CommandError, run_cmd

logger = logging.getLogger(__name__)

VET_COMMAND = ("go", "vet", "./...")
TEST_COMMAND = ("go", "test", "./...")
TIDY_COMMAND = ("go", "mod", "tidy")


class GoToolchain:
    """Runs ``go`` against a checkout: module upgrades, tidy, vet and tests.

    Every method raises ``CommandError`` with the captured output on failure.
    """

    def __init__(
        self,
        timeout: int = 600,
        vet_command: Sequence[str] = VET_COMMAND,
        test_command: Sequence[str] = TEST_COMMAND,
        tidy_command: Sequence[str] = TIDY_COMMAND,
    ):
        self.timeout = timeout
        self.vet_command = list(vet_command)
        self.test_command = list(test_command)
        self.tidy_command = list(tidy_command)

    def _run(self, cmd: List[str], root: Path, log_file: Optional[Path]) -> str:
        logger.debug("Running %s in %s", " ".join(cmd), root)
        result = run_cmd(cmd, timeout=self.timeout, cwd=root, log_file=log_file)
        return result.stdout

    def upgrade(self, root: Path, fix: ModuleFix, log_file: Optional[Path] = None) -> None:
        spec = f"{fix.path}@{versions.with_prefix(fix.target_version)}"
        logger.info("Upgrading %s", spec)
        self._run(["go", "get", spec], root, log_file)

    def reconcile(self, root: Path, log_file: Optional[Path] = None) -> None:
        logger.info("Running %s", " ".join(self.tidy_command))
        self._run(self.tidy_command, root, log_file)

    def validate(self, root: Path, log_file: Optional[Path] = None) -> None:
        for cmd in (self.vet_command, self.test_command):
            try:
                self._run(cmd, root, log_file)
            except CommandError as exc:
                logger.warning("Validation step failed: %s", " ".join(cmd))
                raise CommandError(f"{' '.join(cmd)} failed", exc.output) from exc
