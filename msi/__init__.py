"""
Media Server Installer
----------------------

Provisions a Jellyfin media stack (plus Prowlarr, Sonarr, Radarr, Bazarr,
qBittorrent and JDownloader 2) on a Debian/Ubuntu host using Docker Compose,
ufw firewall rules and an SSH tunnel-only user.

Requires root privileges.
"""

__version__ = "1.0.0"
