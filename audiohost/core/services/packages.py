"""
Package installer — apt-get with batch-then-per-package fallback.

Flow:
    classify (dpkg-query) → update once → batch install → on failure,
    per-package install with a single retry → InstallReport

A package the repository doesn't carry never blocks the ones it does:
the batch call fails, the fallback installs everything installable and
records the rest in ``failed``.  Package failures are reported, not
raised; the calling step decides whether they fail the stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from audiohost.adapters.shell.command import CommandRunner
from audiohost.core.errors import ExecutionError

logger = logging.getLogger(__name__)

# Process-wide: has `apt-get update` already run?
_updated = False

# Attempts per package in the fallback path (first try + one retry).
MAX_ATTEMPTS = 2

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def reset_update_state() -> None:
    """Forget that the package index was refreshed (start of a run)."""
    global _updated
    _updated = False


@dataclass
class InstallReport:
    """What happened to each requested package."""

    installed: list[str] = field(default_factory=list)
    already_present: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "installed": list(self.installed),
            "already_present": list(self.already_present),
            "failed": dict(self.failed),
        }


class PackageInstaller:
    """Install Debian packages through ``apt-get``.

    Args:
        runner: Command runner (real, dry-run or mock).
        timeout: Per-invocation timeout in seconds.
    """

    def __init__(self, runner: CommandRunner, timeout: float | None = 1800):
        self._runner = runner
        self._timeout = timeout

    def is_installed(self, package: str) -> bool:
        """Check a single package with ``dpkg-query``.

        Returns False when the query cannot run, so the package is
        treated as missing and handed to apt-get.
        """
        try:
            r = self._runner.run(
                ["dpkg-query", "-W", "-f=${Status}", package],
                timeout=30,
                read_only=True,
            )
        except ExecutionError:
            logger.warning("dpkg-query not available; treating %s as missing", package)
            return False
        return r.ok and "install ok installed" in r.stdout

    def update(self) -> None:
        """Refresh the package index, at most once per process.

        A failing update is logged and not retried: installs against a
        stale index may still succeed.
        """
        global _updated
        if _updated:
            logger.debug("Package index already refreshed; skipping apt-get update")
            return
        _updated = True
        r = self._runner.run(
            ["apt-get", "update"],
            timeout=self._timeout,
            env=_APT_ENV,
            needs_root=True,
        )
        if not r.ok:
            logger.warning("apt-get update failed: %s", r.error_text)

    def install(self, packages: list[str]) -> InstallReport:
        """Install packages, reporting per-package results.

        Args:
            packages: Package names, installed in this order.

        Returns:
            InstallReport. Never raises for package-level failures.

        Raises:
            ExecutionError: apt-get itself cannot be spawned.
            CommandTimeout: apt-get exceeded the timeout.
        """
        report = InstallReport()
        requested = list(dict.fromkeys(packages))
        if not requested:
            return report

        missing: list[str] = []
        for pkg in requested:
            if self.is_installed(pkg):
                report.already_present.append(pkg)
            else:
                missing.append(pkg)

        if not missing:
            logger.info("All %d packages already installed", len(requested))
            return report

        self.update()

        logger.info("Installing %d packages: %s", len(missing), " ".join(missing))
        batch = self._apt_install(missing)
        if batch.ok:
            report.installed.extend(missing)
            return report

        logger.warning(
            "Batch install failed (exit %d); falling back to per-package install",
            batch.exit_code,
        )
        for pkg in missing:
            error = ""
            for attempt in range(1, MAX_ATTEMPTS + 1):
                r = self._apt_install([pkg])
                if r.ok:
                    report.installed.append(pkg)
                    error = ""
                    break
                error = r.error_text
                logger.debug("Install of %s failed (attempt %d/%d)", pkg, attempt, MAX_ATTEMPTS)
            if error:
                report.failed[pkg] = error
                logger.warning("Package %s failed: %s", pkg, error.splitlines()[-1])

        return report

    def _apt_install(self, packages: list[str]):
        return self._runner.run(
            ["apt-get", "install", "-y", *packages],
            timeout=self._timeout,
            env=_APT_ENV,
            needs_root=True,
        )
