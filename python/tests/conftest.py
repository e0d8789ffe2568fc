"""
Test Configuration - Shared fixtures for index tests.

Uses pytest fixtures to create isolated workspaces, storage directories and
a fake Go toolchain, so no test needs a real `go` installation.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, Iterable, List

import pytest

from gosearch.config import IndexerConfig, set_config
from gosearch.hasher import hash_files
from gosearch.toolchain import ModuleLocation


class FakeToolchain:
    """Toolchain resolver backed by fixed directories."""

    def __init__(
        self,
        stdlib_roots: List[Path] | None = None,
        dependency_dirs: List[Path] | None = None,
        version: str = "go version go1.22.0 linux/amd64",
    ):
        self.stdlib_roots = stdlib_roots or []
        self.dependency_dirs = dependency_dirs or []
        self.version = version
        self.dependency_calls = 0

    def resolve_stdlib_roots(self) -> List[Path]:
        return list(self.stdlib_roots)

    def resolve_dependency_roots(self, workspace_root: Path) -> List[ModuleLocation]:
        self.dependency_calls += 1
        return [
            ModuleLocation(module=f"example.com/{d.name}", version="v1.0.0", directory=d)
            for d in self.dependency_dirs
        ]

    def manifest_fingerprint(self, workspace_roots: Iterable[Path]) -> str:
        return hash_files(
            Path(root) / name
            for root in workspace_roots
            for name in ("go.mod", "go.sum")
            if (Path(root) / name).is_file()
        )

    def toolchain_fingerprint(self) -> str:
        return self.version


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="gosearch_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def workspace(temp_dir: Path) -> Path:
    root = temp_dir / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def test_config(temp_dir: Path, workspace: Path) -> IndexerConfig:
    """Create an isolated test configuration with short timers."""
    config = IndexerConfig(
        roots=[workspace],
        storage_dir=temp_dir / "storage",
        batch_size=4,
        reader_concurrency=4,
        workspace_debounce_seconds=0.05,
        manifest_debounce_seconds=0.1,
        freshness_check_interval_seconds=3600,
    )
    set_config(config)
    return config


@pytest.fixture
def go_tree(temp_dir: Path, workspace: Path) -> Dict[str, Path]:
    """
    A small Go workspace plus fake stdlib and dependency source trees.
    """
    files: Dict[str, Path] = {}

    files["go.mod"] = workspace / "go.mod"
    files["go.mod"].write_text(
        "module example.com/app\n\n"
        "go 1.22\n\n"
        "require github.com/acme/widgets v1.2.3\n"
    )

    files["main"] = workspace / "main.go"
    files["main"].write_text(
        "package main\n\n"
        "import \"fmt\"\n\n"
        "func main() {\n"
        "\tfmt.Println(NewServer().Name)\n"
        "}\n"
    )

    pkg = workspace / "internal" / "server"
    pkg.mkdir(parents=True)
    files["server"] = pkg / "server.go"
    files["server"].write_text(
        "package server\n\n"
        "type Server struct {\n"
        "\tName string\n"
        "}\n\n"
        "func NewServer() *Server {\n"
        "\treturn &Server{Name: \"gosearch\"}\n"
        "}\n\n"
        "func (s *Server) Start() error {\n"
        "\treturn nil\n"
        "}\n"
    )
    files["server_test"] = pkg / "server_test.go"
    files["server_test"].write_text(
        "package server\n\n"
        "import \"testing\"\n\n"
        "func TestNewServer(t *testing.T) {\n"
        "\tif NewServer() == nil {\n"
        "\t\tt.Fatal(\"nil server\")\n"
        "\t}\n"
        "}\n"
    )

    # Skipped: VCS metadata and non-Go files
    git = workspace / ".git"
    git.mkdir()
    files["git"] = git / "hooks.go"
    files["git"].write_text("package hooks\n")
    files["readme"] = workspace / "README.md"
    files["readme"].write_text("NewServer docs\n")

    stdlib = temp_dir / "goroot" / "src"
    (stdlib / "strings").mkdir(parents=True)
    files["stdlib"] = stdlib / "strings" / "builder.go"
    files["stdlib"].write_text(
        "package strings\n\n"
        "type Builder struct {\n"
        "\tbuf []byte\n"
        "}\n\n"
        "func (b *Builder) String() string {\n"
        "\treturn string(b.buf)\n"
        "}\n"
    )

    dep = temp_dir / "modcache" / "widgets@v1.2.3"
    dep.mkdir(parents=True)
    files["dependency"] = dep / "widget.go"
    files["dependency"].write_text(
        "package widgets\n\n"
        "// NewServer is unrelated to the app's server.\n"
        "func NewWidget() *Widget {\n"
        "\treturn &Widget{}\n"
        "}\n"
    )

    files["stdlib_root"] = stdlib
    files["dependency_root"] = dep
    return files


@pytest.fixture
def fake_toolchain(go_tree: Dict[str, Path]) -> FakeToolchain:
    return FakeToolchain(
        stdlib_roots=[go_tree["stdlib_root"]],
        dependency_dirs=[go_tree["dependency_root"]],
    )


@pytest.fixture
def empty_toolchain() -> FakeToolchain:
    """A toolchain that finds no Go installation and no modules."""
    return FakeToolchain()
