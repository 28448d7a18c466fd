"""WSL path utilities.

A project living on the WSL filesystem is addressed from Windows as a UNC
path (``\\\\wsl$\\<distro>\\...`` or ``\\\\wsl.localhost\\<distro>\\...``).
Windows-native shells cannot use it as a working directory, so spawns are
routed through ``wsl.exe`` with the POSIX form of the path instead.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

WSL_LAUNCHER = "wsl.exe"

_WSL_UNC_RE = re.compile(r"^[\\/]{2}(?:wsl\$|wsl\.localhost)[\\/]([^\\/]+)", re.IGNORECASE)


def is_wsl_path(path: str) -> bool:
    """Detect ``\\\\wsl$\\<distro>\\...`` and ``\\\\wsl.localhost\\<distro>\\...`` paths."""
    return bool(path) and _WSL_UNC_RE.match(path) is not None


def get_wsl_distro(path: str) -> str | None:
    """Extract the distro name from a WSL UNC path, or ``None``."""
    m = _WSL_UNC_RE.match(path or "")
    return m.group(1) if m else None


def to_wsl_posix_path(unc_path: str) -> str:
    """Convert a WSL UNC path to its POSIX equivalent inside the distro.

    ``\\\\wsl$\\Ubuntu\\home\\user`` -> ``/home/user``; the distro root maps
    to ``/``. Raises ``ValueError`` for non-WSL paths.
    """
    m = _WSL_UNC_RE.match(unc_path or "")
    if not m:
        raise ValueError(f"Not a WSL UNC path: {unc_path}")
    posix = unc_path[m.end():].replace("\\", "/")
    return posix or "/"


def to_windows_unc_path(distro: str, posix_path: str) -> str:
    """Convert a distro + POSIX path back to the canonical ``\\\\wsl$`` form."""
    return "\\\\wsl$\\" + distro + posix_path.replace("/", "\\")


@dataclass(frozen=True)
class WslTarget:
    """A WSL UNC working directory, decomposed."""

    distro: str
    posix_cwd: str

    def launcher_args(self) -> list[str]:
        return ["-d", self.distro, "--cd", self.posix_cwd]


def wsl_target(path: str) -> WslTarget | None:
    """Return the decomposed target for a WSL path, or ``None`` for host paths."""
    distro = get_wsl_distro(path)
    if distro is None:
        return None
    return WslTarget(distro=distro, posix_cwd=to_wsl_posix_path(path))


def host_home() -> str:
    """A safe host-side cwd for ``wsl.exe`` (never the UNC path itself)."""
    return os.path.expanduser("~")
