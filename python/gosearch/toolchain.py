"""
Toolchain - Resolves where Go sources live outside the workspace.

Queries the `go` command for GOROOT, the module build list and its version.
Every query degrades to an empty result when the toolchain is missing or
fails, so a broken Go install only empties the affected domains.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from .config import get_config, IndexerConfig
from .errors import ToolchainError, handle_error
from .hasher import hash_files


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleLocation:
    """A resolved dependency module and the directory holding its sources."""
    module: str
    version: str
    directory: Path


class Toolchain(Protocol):
    """What the index needs from a language toolchain."""

    def resolve_stdlib_roots(self) -> List[Path]: ...

    def resolve_dependency_roots(self, workspace_root: Path) -> List[ModuleLocation]: ...

    def manifest_fingerprint(self, workspace_roots: Iterable[Path]) -> str: ...

    def toolchain_fingerprint(self) -> str: ...


class GoToolchain:
    """
    Toolchain resolver backed by the `go` command line.

    Only the module versions selected by the workspace's build list are
    returned, never every version sitting in the module cache.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    def _run(self, args: List[str], cwd: Optional[Path] = None) -> str:
        """Run a go subcommand and return stdout, raising ToolchainError on failure."""
        command = [self.config.go_executable, *args]
        try:
            result = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=self.config.toolchain_timeout_seconds,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ToolchainError(f"{' '.join(command)}: {e}") from e

        if result.returncode != 0:
            raise ToolchainError(
                f"{' '.join(command)} exited {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    def resolve_stdlib_roots(self) -> List[Path]:
        try:
            goroot = self._run(["env", "GOROOT"]).strip()
        except ToolchainError as e:
            handle_error(e, context="stdlib_roots")
            return []

        if not goroot:
            return []

        src = Path(goroot) / "src"
        if not src.is_dir():
            logger.info(f"Go standard library source not found under {goroot}")
            return []
        return [src]

    def resolve_dependency_roots(self, workspace_root: Path) -> List[ModuleLocation]:
        """
        Resolve the dependency modules of one workspace root.

        Parses `go list -m -json all`, which prints one JSON object per
        module of the build list. The main module and modules that have not
        been downloaded (no Dir) are skipped. A vendor directory, when
        present, is included as a pseudo-module.
        """
        locations: Dict[Path, ModuleLocation] = {}

        if (workspace_root / "go.mod").is_file():
            try:
                output = self._run(["list", "-m", "-json", "all"], cwd=workspace_root)
            except ToolchainError as e:
                handle_error(e, workspace_root, "dependency_roots")
                output = ""

            for module in parse_module_list(output):
                location = _module_location(module, workspace_root)
                if location is not None:
                    locations.setdefault(location.directory, location)

        vendor = workspace_root / "vendor"
        if vendor.is_dir():
            locations.setdefault(vendor, ModuleLocation("vendor", "", vendor))

        return list(locations.values())

    def manifest_fingerprint(self, workspace_roots: Iterable[Path]) -> str:
        manifests = [
            Path(root) / name
            for root in workspace_roots
            for name in sorted(self.config.manifest_names)
            if (Path(root) / name).is_file()
        ]
        return hash_files(manifests)

    def toolchain_fingerprint(self) -> str:
        try:
            return self._run(["version"]).strip()
        except ToolchainError as e:
            handle_error(e, context="toolchain_fingerprint")
            return ""


def parse_module_list(output: str) -> List[dict]:
    """Decode the concatenated JSON objects printed by `go list -m -json`."""
    decoder = json.JSONDecoder()
    modules: List[dict] = []
    pos = 0
    length = len(output)

    while pos < length:
        # Skip whitespace between objects
        while pos < length and output[pos].isspace():
            pos += 1
        if pos >= length:
            break
        try:
            obj, pos = decoder.raw_decode(output, pos)
        except json.JSONDecodeError as e:
            logger.warning(f"Unparsable go list output at offset {pos}: {e}")
            break
        if isinstance(obj, dict):
            modules.append(obj)

    return modules


def _module_location(module: dict, workspace_root: Path) -> Optional[ModuleLocation]:
    if module.get("Main"):
        return None

    replace = module.get("Replace") or {}
    directory = replace.get("Dir") or module.get("Dir")
    if not directory:
        return None

    path = Path(directory)
    if not path.is_absolute():
        path = (workspace_root / path).resolve()
    if not path.is_dir():
        return None

    return ModuleLocation(
        module=module.get("Path", ""),
        version=replace.get("Version") or module.get("Version", ""),
        directory=path,
    )
