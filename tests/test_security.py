import socket
from unittest.mock import patch

import pytest

from doc_fetcher.errors import FetchError
from doc_fetcher.http_client import HttpClient
from doc_fetcher.security import is_blocked_address, is_safe_url


def _dns(*addresses):
    return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (a, 80)) for a in addresses]


def test_blocks_local_and_private_literals():
    # Loopback
    assert not is_safe_url("http://127.0.0.1")
    assert not is_safe_url("http://localhost:3000/docs")
    assert not is_safe_url("http://[::1]")

    # Private
    assert not is_safe_url("http://10.0.0.1")
    assert not is_safe_url("http://192.168.1.100/sitemap.xml")

    # Link-local (cloud metadata)
    assert not is_safe_url("http://169.254.169.254/latest/meta-data")


def test_blocks_other_schemes():
    assert not is_safe_url("file:///etc/passwd")
    assert not is_safe_url("ftp://docs.example.com")
    assert not is_safe_url("docs.example.com/guide")


def test_literals_skip_dns():
    with patch("socket.getaddrinfo") as mock_dns:
        assert is_safe_url("https://93.184.216.34/docs")
    mock_dns.assert_not_called()


def test_name_resolving_to_private_address():
    with patch("socket.getaddrinfo", return_value=_dns("8.8.8.8", "127.0.0.1")):
        assert not is_safe_url("https://rebinding.example.com")


def test_public_name():
    with patch("socket.getaddrinfo", return_value=_dns("93.184.216.34")):
        assert is_safe_url("https://docs.example.com/guide?x=1")


def test_unresolvable_name_is_let_through():
    with patch("socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
        assert is_safe_url("https://does-not-exist.invalid")


def test_resolution_can_be_disabled():
    with patch("socket.getaddrinfo") as mock_dns:
        assert is_safe_url("https://docs.example.com", resolve=False)
    mock_dns.assert_not_called()


@pytest.mark.parametrize(
    "address,blocked",
    [
        ("10.1.2.3", True),
        ("fe80::1%eth0", True),
        ("0.0.0.0", True),
        ("224.0.0.1", True),
        ("1.1.1.1", False),
        ("not-an-ip", False),
    ],
)
def test_is_blocked_address(address, blocked):
    assert is_blocked_address(address) is blocked


@pytest.mark.asyncio
async def test_client_refuses_private_hosts(options, site):
    opts = options.model_copy(update={"block_private_hosts": True})
    async with HttpClient(opts, transport=site.transport) as client:
        with pytest.raises(FetchError) as exc_info:
            await client.get("http://127.0.0.1:8000/docs")
    assert exc_info.value.status_code == 403
    assert site.requests == []
