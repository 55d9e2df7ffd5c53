"""Render the Docker Compose document for the media stack."""

from typing import Dict, Iterable, Optional

import yaml

from msi.services import SERVICES, ServiceDefinition, networks

HEADER = "# Managed by msi. Re-run 'msi install' to regenerate.\n"


def build_document(
    puid: int,
    pgid: int,
    timezone: str,
    library_dir: str,
    services: Optional[Iterable[ServiceDefinition]] = None,
) -> Dict[str, object]:
    services = list(SERVICES if services is None else services)
    return {
        "services": {
            s.name: s.to_compose(puid, pgid, timezone, library_dir) for s in services
        },
        "networks": {name: {"driver": "bridge"} for name in networks()},
    }


def render_compose(puid: int, pgid: int, timezone: str, library_dir: str) -> str:
    """
    Render the compose document as YAML.

    Identical inputs always produce byte-identical output: keys keep their
    declaration order and nothing time- or host-dependent is embedded.
    """
    document = build_document(puid, pgid, timezone, library_dir)
    body = yaml.safe_dump(
        document, sort_keys=False, default_flow_style=False, indent=2, width=120
    )
    return HEADER + body
