"""Static descriptors of the seven media stack containers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

MEDIA_NETWORK = "media_network"
JD_NETWORK = "jd_network"
LOOPBACK = "127.0.0.1"


class BindScope(Enum):
    LOOPBACK = "loopback"
    HOST = "host"


@dataclass(frozen=True)
class ServiceDefinition:
    """One deployed container."""

    name: str
    image: str
    port: int
    scope: BindScope = BindScope.LOOPBACK
    network: Optional[str] = MEDIA_NETWORK
    mount_library: bool = True
    uid_var: str = "PUID"
    gid_var: str = "PGID"
    extra_env: Tuple[Tuple[str, str], ...] = ()
    group: str = "admin-only services"

    @property
    def config_dir(self) -> str:
        """Host config directory, relative to the container directory."""
        return f"./{self.name}/config"

    def environment(self, puid: int, pgid: int, timezone: str) -> List[str]:
        env = [f"{self.uid_var}={puid}", f"{self.gid_var}={pgid}", f"TZ={timezone}"]
        env.extend(f"{key}={value}" for key, value in self.extra_env)
        return env

    def volumes(self, library_dir: str) -> List[object]:
        volumes: List[object] = [f"{self.config_dir}:/config"]
        if self.mount_library:
            volumes.append(f"{library_dir}:/media")
        return volumes

    def to_compose(self, puid: int, pgid: int, timezone: str, library_dir: str) -> Dict[str, object]:
        return {
            "image": self.image,
            "container_name": self.name,
            "environment": self.environment(puid, pgid, timezone),
            "volumes": self.volumes(library_dir),
            "networks": [self.network],
            "ports": [f"{LOOPBACK}:{self.port}:{self.port}"],
            "restart": "unless-stopped",
        }


@dataclass(frozen=True)
class JDownloaderService(ServiceDefinition):
    """Writes into its own downloads folder instead of the whole library."""

    def volumes(self, library_dir: str) -> List[object]:
        return [
            f"{self.config_dir}:/config",
            f"{library_dir}/downloads/{self.name}:/output:rw",
        ]


@dataclass(frozen=True)
class JellyfinService(ServiceDefinition):
    """The only user-facing service: host networking and a read-only library."""

    cache_size: str = "128M"
    extra_hosts: Tuple[str, ...] = field(default=("host.docker.internal:host-gateway",))

    def volumes(self, library_dir: str) -> List[object]:
        return [
            f"{self.config_dir}:/config",
            {"type": "tmpfs", "target": "/cache", "tmpfs": {"size": self.cache_size}},
            {"type": "bind", "source": library_dir, "target": "/media", "read_only": True},
        ]

    def to_compose(self, puid: int, pgid: int, timezone: str, library_dir: str) -> Dict[str, object]:
        return {
            "image": self.image,
            "container_name": self.name,
            "environment": self.environment(puid, pgid, timezone),
            "volumes": self.volumes(library_dir),
            "network_mode": "host",
            "restart": "unless-stopped",
            "extra_hosts": list(self.extra_hosts),
        }


SERVICES: Tuple[ServiceDefinition, ...] = (
    ServiceDefinition("prowlarr", "lscr.io/linuxserver/prowlarr:latest", 9696, mount_library=False),
    ServiceDefinition("sonarr", "lscr.io/linuxserver/sonarr:latest", 8989),
    ServiceDefinition("radarr", "lscr.io/linuxserver/radarr:latest", 7878),
    ServiceDefinition("bazarr", "lscr.io/linuxserver/bazarr:latest", 6767),
    ServiceDefinition(
        "qbittorrent",
        "lscr.io/linuxserver/qbittorrent:latest",
        8080,
        extra_env=(("WEBUI_PORT", "8080"),),
    ),
    JDownloaderService(
        "jdownloader-2",
        "jlesage/jdownloader-2",
        5800,
        network=JD_NETWORK,
        uid_var="USER_ID",
        gid_var="GROUP_ID",
        group="isolated admin-only services",
    ),
    JellyfinService(
        "jellyfin",
        "jellyfin/jellyfin:latest",
        8096,
        scope=BindScope.HOST,
        network=None,
        group="user services",
    ),
)

PRIMARY_SERVICE = "jellyfin"

# Order of forwards in the printed tunnel command and the sshd PermitOpen list.
TUNNEL_PORT_ORDER = (6767, 7878, 8989, 9696, 8080, 5800)


def get_service(name: str) -> ServiceDefinition:
    for service in SERVICES:
        if service.name == name:
            return service
    raise KeyError(name)


def loopback_services() -> List[ServiceDefinition]:
    return [s for s in SERVICES if s.scope is BindScope.LOOPBACK]


def tunnel_ports() -> List[int]:
    ports = {s.port for s in loopback_services()}
    ordered = [p for p in TUNNEL_PORT_ORDER if p in ports]
    return ordered + sorted(ports.difference(ordered))


def networks() -> List[str]:
    seen: List[str] = []
    for service in SERVICES:
        if service.network and service.network not in seen:
            seen.append(service.network)
    return seen
