"""File-system collaborator used to load external OGF children and sidecars.

The decoder never touches the disk directly: anything it needs beyond the
input buffer goes through an object with this interface, so it can run
fully in memory.

Paths may start with a `$alias$` prefix (for example
`$game_meshes$actors/stalker.ogf`); such paths are turned into real ones
by `resolve_path` at the moment a file is opened.
"""
from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple, Union

from ogf_errors import StructuralError


class FileSystem(Protocol):
    def resolve_path(self, alias: str, relative: str) -> str:
        ...

    def open_read(self, path: str) -> Optional[bytes]:
        ...


def split_alias(path: str) -> Optional[Tuple[str, str]]:
    """Split `$alias$relative` into (alias, relative); None for plain paths."""
    if not path.startswith("$"):
        return None
    end = path.find("$", 1)
    if end < 0:
        return None
    return path[:end + 1], path[end + 1:].lstrip("/\\")


def split_path(path: str) -> Tuple[str, str, str]:
    """Split a path into (folder with trailing separator, stem, extension).

    An alias prefix stays on the folder, so names joined onto it resolve
    through the same alias.
    """
    prefix = ""
    aliased = split_alias(path)
    if aliased is not None:
        prefix, path = aliased
    p = Path(path)
    folder = str(p.parent)
    if folder == ".":
        folder = ""
    elif not folder.endswith(("/", "\\")):
        folder += "/"
    return prefix + folder, p.stem, p.suffix


def expand_path(fs: FileSystem, path: str) -> str:
    """Resolve an aliased path through the file system; plain paths pass through.

    Raises:
        StructuralError: If the alias is unknown to the file system
    """
    aliased = split_alias(path)
    if aliased is None:
        return path
    alias, relative = aliased
    try:
        return fs.resolve_path(alias, relative)
    except KeyError:
        raise StructuralError(f"Unknown path alias {alias} in {path}") from None


class LocalFileSystem:
    """Reads files from disk, with optional `$alias$` -> folder mapping.

    Example:
        fs = LocalFileSystem({"$game_meshes$": "/data/gamedata/meshes"})
        fs.resolve_path("$game_meshes$", "actors/stalker.ogf")
    """

    def __init__(self, aliases: Optional[Dict[str, Union[str, Path]]] = None):
        self.aliases = {name: str(folder) for name, folder in (aliases or {}).items()}

    def resolve_path(self, alias: str, relative: str) -> str:
        if alias not in self.aliases:
            raise KeyError(f"Unknown path alias: {alias}")
        return str(Path(self.aliases[alias]) / relative)

    def open_read(self, path: str) -> Optional[bytes]:
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None


class MemoryFileSystem:
    """In-memory file system keyed by path string; handy for tests and tools."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None,
                 aliases: Optional[Dict[str, str]] = None):
        self.files = dict(files or {})
        self.aliases = dict(aliases or {})

    def resolve_path(self, alias: str, relative: str) -> str:
        if alias not in self.aliases:
            raise KeyError(f"Unknown path alias: {alias}")
        return self.aliases[alias] + relative

    def open_read(self, path: str) -> Optional[bytes]:
        return self.files.get(path)
