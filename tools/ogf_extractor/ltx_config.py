"""LTX text configuration reader.

LTX is an ini dialect: `[section]` headers, `key = value` lines, lines
holding only a key, `;` comments. Line order within a section matters
(partition bone lists, motion lists), so lines are addressable by index.
"""
import configparser
from typing import List, Optional, Protocol, Tuple

from ogf_errors import StructuralError

TRUE_VALUES = {"on", "yes", "true", "1"}
FALSE_VALUES = {"off", "no", "false", "0", ""}


class TextConfig(Protocol):
    def section_exists(self, section: str) -> bool:
        ...

    def line_count(self, section: str) -> int:
        ...

    def read_line(self, section: str, index: int) -> Tuple[str, Optional[str]]:
        ...

    def get_string(self, section: str, key: str) -> str:
        ...

    def get_float(self, section: str, key: str) -> float:
        ...

    def get_bool(self, section: str, key: str) -> bool:
        ...


class LtxConfig:
    """configparser-backed TextConfig."""

    def __init__(self, text: str = ""):
        self._parser = configparser.ConfigParser(
            allow_no_value=True,
            delimiters=("=",),
            comment_prefixes=(";", "#"),
            inline_comment_prefixes=(";",),
            strict=True,
            interpolation=None,
            default_section="__ltx_defaults__",
        )
        self._parser.optionxform = str
        # indented lines would otherwise be taken as value continuations
        lines = "\n".join(line.strip() for line in text.splitlines())
        try:
            self._parser.read_string(lines)
        except configparser.Error as e:
            raise StructuralError(f"Malformed LTX text: {e}") from None

    @classmethod
    def from_bytes(cls, data: bytes, encoding: str = "cp1251") -> "LtxConfig":
        return cls(data.decode(encoding, errors="replace"))

    def sections(self) -> List[str]:
        return self._parser.sections()

    def section_exists(self, section: str) -> bool:
        return self._parser.has_section(section)

    def _items(self, section: str) -> List[Tuple[str, Optional[str]]]:
        if not self._parser.has_section(section):
            raise StructuralError(f"Missing config section [{section}]")
        return list(self._parser.items(section, raw=True))

    def line_count(self, section: str) -> int:
        if not self._parser.has_section(section):
            return 0
        return len(self._items(section))

    def read_line(self, section: str, index: int) -> Tuple[str, Optional[str]]:
        items = self._items(section)
        if not 0 <= index < len(items):
            raise StructuralError(f"Line {index} out of range in [{section}] ({len(items)} lines)")
        return items[index]

    def get_string(self, section: str, key: str) -> str:
        value = self._parser.get(section, key, raw=True, fallback=None) \
            if self._parser.has_section(section) else None
        if value is None:
            raise StructuralError(f"Missing key {key!r} in config section [{section}]")
        return value.strip().strip('"')

    def get_float(self, section: str, key: str) -> float:
        value = self.get_string(section, key)
        try:
            return float(value)
        except ValueError:
            raise StructuralError(f"[{section}] {key} = {value!r} is not a number") from None

    def get_bool(self, section: str, key: str) -> bool:
        value = self.get_string(section, key).lower()
        if value in TRUE_VALUES:
            return True
        if value in FALSE_VALUES:
            return False
        raise StructuralError(f"[{section}] {key} = {value!r} is not a boolean")
