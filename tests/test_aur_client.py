# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the AUR RPC client (served by httpx.MockTransport)
"""

import httpx
import pytest

from pacforge.core.exceptions import NetworkError
from pacforge.core.models import PackageSource
from pacforge.sources.aur import AurClient, package_from_rpc

RECORDS = {
    "yay": {
        "Name": "yay",
        "PackageBase": "yay",
        "Version": "12.3.5-1",
        "Depends": ["pacman>6.1", "git"],
        "MakeDepends": ["go>=1.21"],
        "OutOfDate": None,
    },
    "jdk-bin": {
        "Name": "jdk-bin",
        "PackageBase": "jdk-bin",
        "Version": "21.0.2-1",
        "Provides": ["java-environment=21"],
        "OutOfDate": 1700000000,
    },
    "openjdk-git": {
        "Name": "openjdk-git",
        "Version": "22.r1-1",
        "Provides": ["java-environment"],
    },
}


class FakeRpc:
    def __init__(self, fail_first: int = 0, status: int = 200):
        self.requests = []
        self.fail_first = fail_first
        self.status = status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_first:
            self.fail_first -= 1
            raise httpx.ConnectError("connection refused", request=request)
        if self.status != 200:
            return httpx.Response(self.status, text="unavailable")

        params = request.url.params
        if params.get("type") == "info":
            results = [RECORDS[n] for n in params.get_list("arg[]") if n in RECORDS]
        elif params.get("type") == "search":
            arg = params.get("arg")
            results = [
                {"Name": r["Name"]}
                for r in RECORDS.values()
                if any(p.split("=")[0] == arg for p in r.get("Provides", []))
            ]
        else:
            return httpx.Response(200, json={"type": "error", "error": "Incorrect request type specified."})
        return httpx.Response(200, json={"version": 5, "type": "multiinfo", "results": results})


def client_for(rpc: FakeRpc, **kwargs) -> AurClient:
    kwargs.setdefault("max_retries", 0)
    return AurClient(transport=httpx.MockTransport(rpc), **kwargs)


def test_package_from_rpc():
    """Test RPC records map onto remote packages"""
    yay = package_from_rpc(RECORDS["yay"])
    assert yay.source is PackageSource.REMOTE_SOURCE
    assert yay.version == "12.3.5-1"
    assert [str(d) for d in yay.make_depends] == ["go>=1.21"]
    assert not yay.out_of_date

    jdk = package_from_rpc(RECORDS["jdk-bin"])
    assert jdk.out_of_date

    git = package_from_rpc(RECORDS["openjdk-git"])
    assert git.base == "openjdk-git"


@pytest.mark.asyncio
async def test_info_splits_long_requests():
    """Test names are deduplicated and chunked per request"""
    rpc = FakeRpc()
    async with client_for(rpc, max_args_per_request=2) as aur:
        packages = await aur.info(["yay", "jdk-bin", "yay", "missing"])

    assert sorted(p.name for p in packages) == ["jdk-bin", "yay"]
    assert [r.url.params.get_list("arg[]") for r in rpc.requests] == [
        ["yay", "jdk-bin"],
        ["missing"],
    ]
    assert all(r.url.path == "/rpc/" for r in rpc.requests)
    assert rpc.requests[0].url.params.get("v") == "5"


@pytest.mark.asyncio
async def test_providers_searches_then_loads_details():
    """Test provider search is followed by an info request"""
    rpc = FakeRpc()
    async with client_for(rpc) as aur:
        providers = await aur.providers("java-environment")

    assert [p.name for p in providers] == ["jdk-bin", "openjdk-git"]
    assert rpc.requests[0].url.params.get("by") == "provides"
    assert rpc.requests[1].url.params.get("type") == "info"


@pytest.mark.asyncio
async def test_providers_without_hits():
    """Test an empty search makes no info request"""
    rpc = FakeRpc()
    async with client_for(rpc) as aur:
        assert await aur.providers("nothing-provides-this") == []
    assert len(rpc.requests) == 1


@pytest.mark.asyncio
async def test_http_error_raises_network_error():
    """Test non-200 responses become NetworkError"""
    async with client_for(FakeRpc(status=503)) as aur:
        with pytest.raises(NetworkError) as exc_info:
            await aur.info(["yay"])

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_errors_are_retried():
    """Test a dropped connection is retried before giving up"""
    rpc = FakeRpc(fail_first=1)
    async with client_for(rpc, max_retries=1) as aur:
        packages = await aur.info(["yay"])

    assert [p.name for p in packages] == ["yay"]
    assert len(rpc.requests) == 2


@pytest.mark.asyncio
async def test_unreachable_raises_network_error():
    """Test exhausted retries surface as NetworkError"""
    async with client_for(FakeRpc(fail_first=5)) as aur:
        with pytest.raises(NetworkError, match="unreachable"):
            await aur.info(["yay"])
