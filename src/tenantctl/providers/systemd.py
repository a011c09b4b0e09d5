"""Systemd compute backend running each instance as a local service unit."""
from __future__ import annotations

import json
import os
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from jinja2 import TemplateError

from ..templates import TemplateEngine
from .compute import ComputeHandle, ComputeProviderError, ComputeStatus

UNIT_TEMPLATE = "systemd/service.j2"

_ACTIVE_STATES = {
    "active": ComputeStatus.RUNNING,
    "reloading": ComputeStatus.RUNNING,
    "activating": ComputeStatus.BOOTING,
    "deactivating": ComputeStatus.STOPPING,
    "inactive": ComputeStatus.STOPPED,
    "failed": ComputeStatus.STOPPED,
}


class SystemdError(ComputeProviderError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdComputeProvider:
    """Render and manage systemd service units for tenant instances."""

    templates: TemplateEngine
    instance_root: Path
    domain: str
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    service_user: str = "tenant"
    exec_start: str = "/opt/tenant/{version}/bin/server"

    def provider_id(self, subdomain: str) -> str:
        """Return the provider instance id used for *subdomain*."""
        safe = subdomain.replace("/", "-")
        return f"tenantctl-{safe}"

    def unit_name(self, provider_instance_id: str) -> str:
        """Return the systemd unit name for *provider_instance_id*."""
        return f"{provider_instance_id}.service"

    def unit_path(self, provider_instance_id: str) -> Path:
        """Return the full path for the instance unit file."""
        return self.systemd_dir / self.unit_name(provider_instance_id)

    def instance_dir(self, provider_instance_id: str) -> Path:
        """Return the working directory of the instance."""
        return self.instance_root / provider_instance_id

    def config_path(self, provider_instance_id: str) -> Path:
        """Return where pushed configuration is written."""
        return self.instance_dir(provider_instance_id) / "config.json"

    def render_unit(self, provider_instance_id: str, context: Mapping[str, object]) -> bool:
        """Render the unit file for *provider_instance_id* using *context*."""
        path = self.unit_path(provider_instance_id)
        changed = self.templates.render_to_path(UNIT_TEMPLATE, path, context, mode=0o644)
        if changed:
            self._reload_daemon()
        return changed

    # ------------------------------------------------------------------
    def create(self, account_id: int, subdomain: str, version: str) -> ComputeHandle:
        """Write the unit for *subdomain* and start it without waiting."""
        provider_instance_id = self.provider_id(subdomain)
        working_directory = self.instance_dir(provider_instance_id)
        try:
            working_directory.mkdir(parents=True, exist_ok=True)
            self.render_unit(
                provider_instance_id,
                {
                    "subdomain": subdomain,
                    "service_user": self.service_user,
                    "working_directory": str(working_directory),
                    "account_id": account_id,
                    "version": version,
                    "config_file": str(self.config_path(provider_instance_id)),
                    "exec_start": self.exec_start.format(version=version),
                },
            )
        except (OSError, TemplateError) as exc:
            raise SystemdError(f"Failed to write unit for {subdomain}: {exc}") from exc
        self._systemctl("enable", self.unit_name(provider_instance_id))
        self._systemctl("start", self.unit_name(provider_instance_id), no_block=True)
        return ComputeHandle(
            provider_instance_id=provider_instance_id,
            host_name=f"{subdomain}.{self.domain}",
        )

    def stop(self, provider_instance_id: str) -> None:
        """Stop and disable the unit, then remove its unit file."""
        unit = self.unit_name(provider_instance_id)
        self._systemctl("stop", unit, no_block=True)
        self._systemctl("disable", unit, check=False)
        try:
            self.unit_path(provider_instance_id).unlink()
        except FileNotFoundError:
            return
        self._reload_daemon()

    def restart(self, provider_instance_id: str) -> None:
        """Restart the unit without waiting for completion."""
        self._systemctl("restart", self.unit_name(provider_instance_id), no_block=True)

    def status(self, provider_instance_id: str) -> ComputeStatus:
        """Map ``systemctl is-active`` output onto :class:`ComputeStatus`."""
        if not self.unit_path(provider_instance_id).exists():
            return ComputeStatus.STOPPED
        result = self._systemctl("is-active", self.unit_name(provider_instance_id), check=False)
        state = (result.stdout or "").strip().splitlines()
        if not state:
            return ComputeStatus.UNKNOWN
        return _ACTIVE_STATES.get(state[0].strip(), ComputeStatus.PENDING)

    def push_config(self, provider_instance_id: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* as the instance's ``config.json``."""
        target = self.config_path(provider_instance_id)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=".config.")
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2, sort_keys=True)
                os.replace(tmp_path, target)
                os.chmod(target, 0o600)
            finally:
                tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            raise SystemdError(f"Failed to push configuration to {target}: {exc}") from exc
        self._systemctl("reload-or-restart", self.unit_name(provider_instance_id), no_block=True)

    # ------------------------------------------------------------------
    def _reload_daemon(self) -> None:
        try:
            self._systemctl("daemon-reload")
        except SystemdError as exc:
            if "not found" in str(exc).lower():
                return
            raise

    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        no_block: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if no_block:
            args.append("--no-block")
        if unit is not None:
            args.append(unit)
        return self._run_command(args, check=check, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdComputeProvider", "SystemdError"]
