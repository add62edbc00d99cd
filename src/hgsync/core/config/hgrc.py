"""
Reading and writing a repository's .hg/hgrc.

The hgrc is an ini file. hgsync keeps these sections in it:

    [ui]                       username = <identity used for commits>
    [paths]                    <alias> = <uri>
    [DefaultSyncRepositories]  <alias> =     (aliases always synced with)
    [extensions]               <name> =
    [encode]                   **.<ext> = dumbencode:

Every write goes through a temp file and an atomic replace so a crash never
leaves a half-written hgrc behind.
"""

from __future__ import annotations

import configparser
import logging
from collections.abc import Iterable
from pathlib import Path

from hgsync.core.errors import ConfigurationError, RepositoryNotFound

logger = logging.getLogger(__name__)

DEFAULT_SYNC_SECTION = "DefaultSyncRepositories"

_DEFAULT_SYNC_COMMENT = (
    "# Aliases in this section are always synced with. To enable a path, enter it\n"
    "# in [paths], e.g. fiz = http://fiz.com/fooproject, then add 'fiz =' here.\n"
)


class HgrcStore:
    """
    Section/key access to one repository's hgrc.

    Example:
        >>> store = HgrcStore(Path("/work/project"))
        >>> store.set_user_name("bob")
        >>> store.get_user_name("nobody")
        'bob'
    """

    def __init__(self, repository_path: str | Path) -> None:
        self.repository_path = Path(repository_path)

    @property
    def path(self) -> Path:
        return self.repository_path / ".hg" / "hgrc"

    def _load(self) -> configparser.ConfigParser:
        if not self.path.exists():
            if not self.path.parent.is_dir():
                raise RepositoryNotFound(f"There is no repository at {self.path.parent}")
            try:
                self.path.write_text("")
            except OSError as e:
                raise ConfigurationError(f"Could not create {self.path}: {e}") from e

        parser = configparser.ConfigParser(
            interpolation=None,
            allow_no_value=True,
            strict=False,
            default_section="hgsync:none",
        )
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        try:
            with self.path.open(encoding="utf-8") as f:
                parser.read_file(f)
        except (configparser.Error, OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Could not read {self.path}: {e}") from e
        return parser

    def _save(self, parser: configparser.ConfigParser, header: dict[str, str] | None = None) -> None:
        temp_path = self.path.with_suffix(".tmp")
        try:
            with temp_path.open("w", encoding="utf-8") as f:
                for section in parser.sections():
                    if header and section in header:
                        f.write(header[section])
                    f.write(f"[{section}]\n")
                    for key, value in parser.items(section):
                        f.write(f"{key} = {value}\n" if value else f"{key} =\n")
                    f.write("\n")
            temp_path.replace(self.path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigurationError(f"Could not save {self.path}: {e}") from e

    def _section_keys(self, section: str) -> list[str]:
        parser = self._load()
        if not parser.has_section(section):
            return []
        return list(parser.options(section))

    # Identity

    def get_user_name(self, default: str) -> str:
        """Return [ui] username, or default if the file or key is missing or unreadable."""
        if not self.path.exists():
            return default
        try:
            parser = self._load()
        except ConfigurationError as e:
            logger.warning("Couldn't determine user name, will use %s (%s)", default, e)
            return default
        value = parser.get("ui", "username", fallback=None)
        return value if value else default

    def set_user_name(self, name: str) -> None:
        parser = self._load()
        if not parser.has_section("ui"):
            parser.add_section("ui")
        parser.set("ui", "username", name)
        self._save(parser, self._headers())

    # Remote aliases

    def get_paths(self) -> list[tuple[str, str]]:
        """Return (alias, uri) pairs from [paths] in file order."""
        parser = self._load()
        if not parser.has_section("paths"):
            return []
        return [(name, uri or "") for name, uri in parser.items("paths")]

    def set_paths(self, paths: Iterable[tuple[str, str]]) -> None:
        """Replace [paths] with the given (alias, uri) pairs."""
        parser = self._load()
        parser.remove_section("paths")
        parser.add_section("paths")
        for name, uri in paths:
            parser.set("paths", name, uri)
        self._save(parser, self._headers())

    def get_default_sync_aliases(self) -> list[str]:
        return self._section_keys(DEFAULT_SYNC_SECTION)

    def set_default_sync_aliases(self, aliases: Iterable[str]) -> None:
        parser = self._load()
        parser.remove_section(DEFAULT_SYNC_SECTION)
        parser.add_section(DEFAULT_SYNC_SECTION)
        for alias in aliases:
            parser.set(DEFAULT_SYNC_SECTION, alias, "")
        self._save(parser, self._headers())

    def set_is_default_sync_alias(self, alias: str, include: bool) -> None:
        parser = self._load()
        if not parser.has_section(DEFAULT_SYNC_SECTION):
            parser.add_section(DEFAULT_SYNC_SECTION)
        if include:
            parser.set(DEFAULT_SYNC_SECTION, alias, "")
        else:
            parser.remove_option(DEFAULT_SYNC_SECTION, alias)
        self._save(parser, self._headers())

    # Extensions and end-of-line rules

    def get_enabled_extensions(self) -> list[str]:
        return self._section_keys("extensions")

    def ensure_extensions_enabled(self, names: Iterable[str]) -> list[str]:
        """
        Add any missing extensions to [extensions].

        Only presence is checked; an existing entry keeps its value.

        Returns:
            The names that were added.
        """
        parser = self._load()
        if not parser.has_section("extensions"):
            parser.add_section("extensions")
        added = []
        for name in names:
            if not parser.has_option("extensions", name):
                parser.set("extensions", name, "")
                added.append(name)
        if added:
            self._save(parser, self._headers())
        return added

    def set_end_of_line_rules(self, extensions: Iterable[str]) -> None:
        """Replace [encode] with a dumbencode rule for each text file extension."""
        parser = self._load()
        parser.remove_section("encode")
        parser.add_section("encode")
        for extension in extensions:
            parser.set("encode", f"**.{extension.lstrip('.')}", "dumbencode:")
        self._save(parser, self._headers())

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")

    def _headers(self) -> dict[str, str]:
        return {DEFAULT_SYNC_SECTION: _DEFAULT_SYNC_COMMENT}
