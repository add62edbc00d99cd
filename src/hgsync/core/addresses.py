"""
Remote repository addresses.

An address is one entry of the [paths] section: an alias and a URI. Network
addresses (http, https, ssh) may carry an account name and password in the
URI's user info; directory addresses point at a local path or USB key.
"""

from __future__ import annotations

from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, computed_field

NETWORK_SCHEMES = ("http", "ssh")


def is_local_uri(uri: str) -> bool:
    """True unless the URI is reached over the network (http, https, ssh)."""
    return not uri.startswith(NETWORK_SCHEMES)


def strip_user_account_info(uri: str) -> str:
    """Remove 'user:password@' from a network URI."""
    parts = urlsplit(uri)
    if not parts.netloc or "@" not in parts.netloc:
        return uri
    host = parts.netloc.rsplit("@", 1)[1]
    return parts._replace(netloc=host).geturl()


class RepositoryAddress(BaseModel):
    """
    One configured remote.

    Use RepositoryAddress.create() to get the right variant for a URI.

    Example:
        >>> a = RepositoryAddress.create("depot", "http://bob:pw@hg.example.org/proj")
        >>> a.user_name, a.password, a.is_local
        ('bob', 'pw', False)
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Alias in the [paths] section")
    uri: str = Field(description="Where the repository lives")
    user_name: str | None = None
    password: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_local(self) -> bool:
        return is_local_uri(self.uri)

    @staticmethod
    def create(name: str, uri: str) -> RepositoryAddress:
        if is_local_uri(uri):
            return DirectoryRepositoryAddress(name=name, uri=uri)
        parts = urlsplit(uri)
        return HttpRepositoryAddress(
            name=name,
            uri=uri,
            user_name=unquote(parts.username) if parts.username else None,
            password=unquote(parts.password) if parts.password else None,
        )

    def full_name(self, target_uri: str | None = None) -> str:
        """Label used in status messages."""
        return self.name


class HttpRepositoryAddress(RepositoryAddress):
    """A repository reached over http(s) or ssh."""


class DirectoryRepositoryAddress(RepositoryAddress):
    """A repository in a local directory, network share or USB key."""

    def full_name(self, target_uri: str | None = None) -> str:
        if target_uri and target_uri != self.uri:
            return f"{self.name} ({target_uri})"
        return self.name
