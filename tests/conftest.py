import importlib
import sys
import textwrap
import types
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

TOOL_DIR = Path(__file__).resolve().parent.parent
if str(TOOL_DIR) not in sys.path:
    sys.path.insert(0, str(TOOL_DIR))

import stubsmith  # noqa: E402


@pytest.fixture
def packages_dir(tmp_path: Path) -> Path:
    path = tmp_path / "site"
    path.mkdir()
    return path


@pytest.fixture
def make_package(
    packages_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[Callable[..., types.ModuleType]]:
    """Write a throwaway package under tmp_path and import it."""
    created: list[str] = []
    monkeypatch.syspath_prepend(str(packages_dir))

    def _make_package(
        name: str,
        source: str,
        *,
        version: str = "0.0.1",
        submodules: dict[str, str] | None = None,
    ) -> types.ModuleType:
        package_dir = packages_dir / name
        package_dir.mkdir()
        init_source = textwrap.dedent(source) + f'\n__version__ = "{version}"\n'
        (package_dir / "__init__.py").write_text(init_source, encoding="utf-8")
        for module_name, module_source in (submodules or {}).items():
            (package_dir / f"{module_name}.py").write_text(
                textwrap.dedent(module_source), encoding="utf-8"
            )
        importlib.invalidate_caches()
        created.append(name)
        return importlib.import_module(name)

    yield _make_package

    for name in created:
        for module_name in list(sys.modules):
            if module_name == name or module_name.startswith(name + "."):
                del sys.modules[module_name]


@pytest.fixture
def caps_at() -> Callable[[str], frozenset[stubsmith.Capability]]:
    def _caps_at(version: str) -> frozenset[stubsmith.Capability]:
        return stubsmith.capabilities_for(version)

    return _caps_at


@pytest.fixture
def header() -> Callable[[str], str]:
    def _header(package: str) -> str:
        return (
            "# pyright: basic\n"
            "\n"
            "# DO NOT EDIT MANUALLY\n"
            f"# This is an autogenerated file for types exported from the `{package}` package.\n"
            f"# Please instead update this file by running `stubsmith {package}`.\n"
        )

    return _header
