"""
Network reachability and HTTP proxy discovery.

Two problems are solved here:

1. Deciding, cheaply, whether a remote repository is worth trying. A pull
   over a dead link can take minutes to fail, so we ping first. Many networks
   block ICMP, so a failed ping is cross-checked against a well-known public
   host and against DNS before giving up.

2. Getting hg through an HTTP proxy. hg reads proxy settings from its config,
   but those go stale as users move between networks and would leave
   credentials in clear text on disk. Instead we probe a known-good URL,
   find the proxy in use, and pass it to each network command as
   ``--config http_proxy.*`` overrides.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import subprocess
import sys
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

import httpx
import psutil

from hgsync.core.addresses import is_local_uri
from hgsync.core.errors import NetworkUnavailable
from hgsync.core.progress import NullProgress, Progress

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://www.mercurial-scm.org"
DEFAULT_CONTROL_HOST = "google.com"
DEFAULT_PING_TIMEOUT_SECONDS = 3
PROBE_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class ProxyInfo:
    """An HTTP proxy in use on this network."""

    host_and_port: str
    user_name: str | None = None
    password: str | None = None


ProxyDiscovery = Callable[[str], "ProxyInfo | None"]


def discover_proxy(probe_url: str, timeout: float = PROBE_TIMEOUT_SECONDS) -> ProxyInfo | None:
    """
    Find the HTTP proxy this machine uses and check that it works.

    The proxy comes from the platform settings (environment variables, or the
    registry on Windows). The probe URL is fetched through it; any HTTP
    response, even an error status, shows the proxy is passing traffic.

    Args:
        probe_url: Known-good URL to fetch
        timeout: Seconds to wait for the probe

    Returns:
        ProxyInfo, or None if no proxy is configured.

    Raises:
        httpx.HTTPError: If the probe could not be made through the proxy.
    """
    proxies = urllib.request.getproxies()
    scheme = urlsplit(probe_url).scheme or "http"
    proxy_url = proxies.get(scheme) or proxies.get("http")
    if not proxy_url:
        logger.debug("No proxy configured for %s", scheme)
        return None

    if "://" not in proxy_url:
        proxy_url = f"http://{proxy_url}"

    with httpx.Client(proxy=proxy_url, timeout=timeout, trust_env=False) as client:
        response = client.get(probe_url)
    if response.status_code == httpx.codes.PROXY_AUTHENTICATION_REQUIRED:
        logger.warning("Proxy %s requires credentials", proxy_url)

    parts = urlsplit(proxy_url)
    host_and_port = parts.hostname or ""
    if parts.port:
        host_and_port = f"{host_and_port}:{parts.port}"
    return ProxyInfo(
        host_and_port=host_and_port,
        user_name=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


def make_proxy_parameters(info: ProxyInfo) -> list[str]:
    """
    Format proxy settings as hg ``--config`` overrides.

    Example:
        >>> make_proxy_parameters(ProxyInfo("proxy:8080", "bob"))
        ['--config', 'http_proxy.host=proxy:8080', '--config', 'http_proxy.user=bob']
    """
    params = ["--config", f"http_proxy.host={info.host_and_port}"]
    if info.user_name:
        params += ["--config", f"http_proxy.user={info.user_name}"]
        if info.password:
            params += ["--config", f"http_proxy.passwd={info.password}"]
    return params


def determine_proxy_parameters(
    progress: Progress,
    *,
    probe_url: str = DEFAULT_PROBE_URL,
    discover: ProxyDiscovery = discover_proxy,
) -> list[str]:
    """
    Probe for a proxy and return hg parameters for it.

    The probe deliberately ignores the caller's target: some hg servers
    require a login, which would confound the probe.

    Returns:
        The --config parameters, or an empty list if there is no proxy or
        the probe failed.
    """
    progress.write_verbose("Checking for proxy by trying to http-get {0}...", probe_url)
    try:
        info = discover(probe_url)
    except (httpx.HTTPError, OSError, ValueError) as e:
        progress.write_warning("Failed to determine if we need to use authentication for a proxy...")
        progress.write_exception(e)
        return []
    if info is None or not info.host_and_port:
        return []
    return make_proxy_parameters(info)


class ProxyProber:
    """
    Per-repository memo of the proxy parameters.

    The first lookup for a network URI decides the answer for the lifetime
    of the object, whether the probe succeeded or failed. Local URIs never
    trigger a probe.
    """

    def __init__(
        self,
        progress: Progress | None = None,
        *,
        probe_url: str = DEFAULT_PROBE_URL,
        discover: ProxyDiscovery = discover_proxy,
    ) -> None:
        self.progress = progress or NullProgress()
        self.probe_url = probe_url
        self.discover = discover
        self._have_looked_into_proxy = False
        self._parameters: list[str] = []

    @property
    def has_probed(self) -> bool:
        return self._have_looked_into_proxy

    def proxy_parameters(self, target_uri: str) -> list[str]:
        if not self._have_looked_into_proxy and not is_local_uri(target_uri):
            self._parameters = determine_proxy_parameters(
                self.progress, probe_url=self.probe_url, discover=self.discover
            )
            self._have_looked_into_proxy = True
        return list(self._parameters)


def ping_host(host: str, timeout_seconds: int = DEFAULT_PING_TIMEOUT_SECONDS) -> bool:
    """Send one ICMP echo with the system ping; True on a reply."""
    if sys.platform == "win32":
        command = ["ping", "-n", "1", "-w", str(timeout_seconds * 1000), host]
    elif sys.platform == "darwin":
        command = ["ping", "-c", "1", "-t", str(timeout_seconds), host]
    else:
        command = ["ping", "-c", "1", "-W", str(timeout_seconds), host]
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout_seconds + 2,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug("ping %s failed: %s", host, e)
        return False
    return result.returncode == 0


def resolves(host: str) -> bool:
    """True if DNS gives at least one address for the host."""
    try:
        return len(socket.getaddrinfo(host, None)) > 0
    except (socket.gaierror, UnicodeError):
        return False


def is_network_available() -> bool:
    """True if any interface that is up has a non-loopback address."""
    stats = psutil.net_if_stats()
    for name, addresses in psutil.net_if_addrs().items():
        if name not in stats or not stats[name].isup:
            continue
        for address in addresses:
            if address.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                ip = ipaddress.ip_address(address.address.split("%", 1)[0])
            except ValueError:
                continue
            if not ip.is_loopback and not ip.is_link_local:
                return True
    return False


def can_reach_remote(
    uri: str,
    progress: Progress | None = None,
    *,
    control_host: str = DEFAULT_CONTROL_HOST,
    ping_timeout_seconds: int = DEFAULT_PING_TIMEOUT_SECONDS,
    pinger: Callable[[str, int], bool] = ping_host,
    resolver: Callable[[str], bool] = resolves,
    network_available: Callable[[], bool] = is_network_available,
) -> bool:
    """
    Guess whether hg could reach the host of a remote URI.

    This is much cheaper than `hg incoming`, which costs as much as a pull.

    1. No live network interface: False.
    2. The host answers a ping: True.
    3. The control host does not answer either, so ping may be blocked here:
       True if the host name resolves.
    4. The control host answers but the target does not: the server may be
       temporarily down, yet hg may still succeed, so True if it resolves.
    """
    progress = progress or NullProgress()
    try:
        host = urlsplit(uri).hostname
    except ValueError:
        return False
    if not host:
        return False

    try:
        if not network_available():
            progress.write_warning("This machine does not have a live network connection.")
            return False

        progress.write_verbose("Pinging {0}...", host)
        if pinger(host, ping_timeout_seconds):
            progress.write_verbose("Ping to {0} succeeded", host)
            return True
        progress.write_verbose("Ping failed. Trying {0}...", control_host)

        if not pinger(control_host, ping_timeout_seconds):
            progress.write_verbose("Ping to {0} failed, too.", control_host)
            if resolver(host):
                progress.write_verbose(
                    "Did resolve the host name, so it's worth trying to use hg to connect... "
                    "some places block ping."
                )
                return True
            progress.write_verbose("Could not resolve the host name '{0}'.", host)
            return False

        if resolver(host):
            progress.write_status(
                "Could ping {0}, and did get an IP address for {1}, but could not ping it, "
                "so it could be that the server is temporarily unavailable.",
                control_host,
                host,
            )
            return True

        progress.write_error(
            "Please check the spelling of address {0}. It could not be resolved to an IP address.",
            host,
        )
        return False
    except OSError as e:
        logger.debug("Reachability check for %s failed: %s", uri, e)
        return False


def ensure_reachable(uri: str, progress: Progress | None = None, **kwargs: object) -> None:
    """
    Raise unless can_reach_remote() says the URI is worth trying.

    Raises:
        NetworkUnavailable: If the remote looks unreachable.
    """
    if not can_reach_remote(uri, progress, **kwargs):  # type: ignore[arg-type]
        raise NetworkUnavailable(f"Cannot reach {urlsplit(uri).hostname or uri}")
