# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
AUR RPC client

Remote metadata lookup against the AUR RPC interface (version 5).

Usage:
    async with AurClient() as aur:
        packages = await aur.info(["yay", "paru"])
        providers = await aur.providers("java-environment")
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..core.exceptions import NetworkError, retry_on_error
from ..core.index import RemoteMetadata
from ..core.models import Package, PackageSource

logger = logging.getLogger("pacforge.sources.aur")

RPC_VERSION = 5

# RPC field -> Package field
_LIST_FIELDS = {
    "Depends": "depends",
    "MakeDepends": "make_depends",
    "CheckDepends": "check_depends",
    "OptDepends": "opt_depends",
    "Provides": "provides",
    "Conflicts": "conflicts",
    "Replaces": "replaces",
}


def package_from_rpc(record: Dict[str, Any]) -> Package:
    """Convert one RPC result record into a Package."""
    lists = {field: record.get(key) or [] for key, field in _LIST_FIELDS.items()}
    return Package.create(
        name=record["Name"],
        version=str(record["Version"]),
        source=PackageSource.REMOTE_SOURCE,
        base=record.get("PackageBase") or record["Name"],
        out_of_date=record.get("OutOfDate") is not None,
        **lists,
    )


class AurClient(RemoteMetadata):
    """
    AUR RPC client.

    Args:
        base_url: AUR root URL
        timeout: Per-request timeout in seconds
        max_retries: Retries on transport errors
        max_args_per_request: Names per ``info`` request; longer lists are split
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        base_url: str = "https://aur.archlinux.org",
        timeout: float = 30.0,
        max_retries: int = 3,
        max_args_per_request: int = 150,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_args_per_request = max(1, max_args_per_request)
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._get = retry_on_error(
            max_retries=max_retries,
            delay_ms=500,
            exceptions=(httpx.TransportError,),
        )(self._request)

    @classmethod
    def from_config(cls, config, **kwargs) -> "AurClient":
        return cls(
            base_url=config.remote.aur_url,
            timeout=config.remote.timeout_seconds,
            max_retries=config.remote.max_retries,
            max_args_per_request=config.remote.max_args_per_request,
            **kwargs,
        )

    async def __aenter__(self):
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={"User-Agent": "pacforge"},
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Requests
    # =========================================================================

    async def _request(self, params: List[tuple]) -> List[Dict[str, Any]]:
        client = await self._get_client()
        response = await client.get("/rpc/", params=params)
        if response.status_code != 200:
            raise NetworkError(
                f"AUR request failed with HTTP {response.status_code}",
                url=str(response.url),
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise NetworkError("AUR returned invalid JSON", url=str(response.url), cause=e)

        if payload.get("type") == "error":
            raise NetworkError(
                f"AUR error: {payload.get('error', 'unknown')}", url=str(response.url)
            )
        return payload.get("results") or []

    async def _fetch(self, params: List[tuple]) -> List[Dict[str, Any]]:
        try:
            return await self._get(params)
        except httpx.TransportError as e:
            raise NetworkError(f"AUR unreachable: {e}", url=self.base_url, cause=e)

    async def info(self, names: Sequence[str]) -> List[Package]:
        """Fetch records for exact names, splitting long lists into several requests."""
        names = list(dict.fromkeys(names))
        packages: List[Package] = []
        for start in range(0, len(names), self.max_args_per_request):
            chunk = names[start : start + self.max_args_per_request]
            params = [("v", RPC_VERSION), ("type", "info")]
            params.extend(("arg[]", name) for name in chunk)
            records = await self._fetch(params)
            packages.extend(package_from_rpc(record) for record in records)
        logger.debug(f"AUR info: {len(packages)}/{len(names)} found")
        return packages

    async def providers(self, name: str) -> List[Package]:
        """Packages whose name or provides match ``name``."""
        params = [("v", RPC_VERSION), ("type", "search"), ("by", "provides"), ("arg", name)]
        hits = await self._fetch(params)
        names = sorted({hit["Name"] for hit in hits})
        if not names:
            return []
        # search results carry no dependency fields
        return await self.info(names)
