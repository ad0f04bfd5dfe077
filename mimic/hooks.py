"""Post-apply hooks.

Hooks are an opaque, ordered list as far as reconciliation is concerned:
they run after every resource has been processed and are never recorded
in state. Only ``command`` hooks are executed; any other type is reported
as failed.
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from mimic.config.models import HookDecl

logger = logging.getLogger(__name__)

FAILURE_MODES = ("continue", "fail")


@dataclass
class HookResult:
    """Result of executing a single hook."""

    name: str
    hook_type: str
    passed: bool
    fail_on_error: bool = False
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: str = ""


class HookRunner:
    """Runs hooks sequentially in a working directory."""

    def __init__(self, working_dir: str | Path | None = None, timeout: int = 600):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.timeout = timeout

    def run(self, hooks: list[HookDecl]) -> list[HookResult]:
        results = []
        for hook in hooks:
            result = self.run_hook(hook)
            if not result.passed:
                logger.warning("Hook %s failed: %s", result.name, result.error or result.stderr.strip())
            results.append(result)
        return results

    def run_hook(self, hook: HookDecl) -> HookResult:
        fail_on_error = hook.on_failure == "fail"
        if hook.on_failure not in FAILURE_MODES:
            return HookResult(
                name=hook.display_name,
                hook_type=hook.type,
                passed=False,
                fail_on_error=True,
                error=f"Unknown on_failure mode: {hook.on_failure}",
            )
        if hook.type != "command":
            return HookResult(
                name=hook.display_name,
                hook_type=hook.type,
                passed=False,
                fail_on_error=fail_on_error,
                error=f"Unsupported hook type: {hook.type}",
            )
        if not hook.command:
            return HookResult(
                name=hook.display_name,
                hook_type=hook.type,
                passed=False,
                fail_on_error=fail_on_error,
                error="Hook has type 'command' but no 'command' field.",
            )
        return self._run_command(hook, fail_on_error)

    def _run_command(self, hook: HookDecl, fail_on_error: bool) -> HookResult:
        start = time.monotonic()
        try:
            proc = subprocess.run(
                hook.command,
                shell=True,
                cwd=self.working_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return HookResult(
                name=hook.display_name,
                hook_type=hook.type,
                passed=False,
                fail_on_error=fail_on_error,
                error=f"Hook timed out after {self.timeout}s.",
                duration_ms=self.timeout * 1000,
            )
        except OSError as e:
            return HookResult(
                name=hook.display_name,
                hook_type=hook.type,
                passed=False,
                fail_on_error=fail_on_error,
                error=str(e),
            )

        return HookResult(
            name=hook.display_name,
            hook_type=hook.type,
            passed=proc.returncode == 0,
            fail_on_error=fail_on_error,
            exit_code=proc.returncode,
            stdout=proc.stdout[:5000],
            stderr=proc.stderr[:5000],
            duration_ms=int((time.monotonic() - start) * 1000),
        )
