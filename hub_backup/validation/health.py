"""
Post-restore reachability probes.

A probe only asks whether something answers on the endpoint. Any HTTP
response counts as reachable; connection errors and timeouts mean the
service is still starting. Probes never fail a restore.
"""

import logging
from typing import Dict, List, Optional

import httpx

from hub_backup.models.session import HealthResult

logger = logging.getLogger(__name__)


def expand_endpoints(templates: Dict[str, str], local_ip: str) -> Dict[str, str]:
    """Fill the ``{local_ip}`` placeholder of endpoint URL templates."""
    return {name: url.format(local_ip=local_ip) for name, url in templates.items()}


class HealthChecker:
    """Bounded-timeout reachability checks for well-known service endpoints."""

    def __init__(
        self,
        endpoints: Optional[Dict[str, str]] = None,
        timeout: float = 3.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.endpoints = dict(endpoints or {})
        self.timeout = timeout
        self.transport = transport

    def probe(self, client: httpx.Client, name: str, url: str) -> HealthResult:
        try:
            response = client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"{name} probe failed: {e}")
            return HealthResult(name=name, url=url, reachable=False, detail="still starting")
        return HealthResult(name=name, url=url, reachable=True, detail=f"HTTP {response.status_code}")

    def check_all(self, extra: Optional[Dict[str, str]] = None) -> List[HealthResult]:
        """Probe every configured endpoint plus *extra*, skipping duplicate URLs."""
        targets = dict(self.endpoints)
        known_urls = set(targets.values())
        for name, url in (extra or {}).items():
            if url and url not in known_urls and name not in targets:
                targets[name] = url
                known_urls.add(url)

        results = []
        with httpx.Client(timeout=self.timeout, transport=self.transport, follow_redirects=False) as client:
            for name, url in targets.items():
                result = self.probe(client, name, url)
                if result.reachable:
                    logger.info(f"{name}: {url} - Ready")
                else:
                    logger.info(f"{name}: {url} - Still starting")
                results.append(result)
        return results
