import re
import sys
from pathlib import Path

try:
    import tomllib  # py3.11+
except ModuleNotFoundError:  # py3.10 fallback
    import tomli as tomllib  # type: ignore[no-redef]

_VERSION_LINE = re.compile(r"^__version__\s*=.*$", re.MULTILINE)


def read_version(pyproject_path: Path) -> str:
    data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    version = (data.get("project") or {}).get("version")
    if not version:
        raise KeyError("version not found in [project]")
    return str(version).strip()


def sync_version() -> None:
    """Copy [project].version from pyproject.toml into intelcache/__init__.py."""
    repo_root = Path(__file__).resolve().parent.parent
    pyproject_path = repo_root / "pyproject.toml"
    init_path = repo_root / "src" / "intelcache" / "__init__.py"

    for p in (pyproject_path, init_path):
        if not p.exists():
            print(f"{p.name} not found at {p}", file=sys.stderr)
            sys.exit(1)

    version = read_version(pyproject_path)
    text = init_path.read_text(encoding="utf-8")
    line = f"__version__ = '{version}'"
    if _VERSION_LINE.search(text):
        text = _VERSION_LINE.sub(line, text, count=1)
    else:
        text = text.rstrip() + "\n\n" + line
    init_path.write_text(text.rstrip() + "\n", encoding="utf-8")
    print(f"intelcache __version__ -> {version}")


if __name__ == "__main__":
    sync_version()
