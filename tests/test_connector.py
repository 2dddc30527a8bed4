import asyncio
import time

from fastmcp import Client, FastMCP

from conftest import FakeClient, fake_connector, tool
from mcpchat.tools import ProviderConnector, ProviderListing, ProviderSpec, ProviderUnavailable


def _run(coro):
    return asyncio.run(coro)


def _demo_server() -> FastMCP:
    server = FastMCP("Demo Tools")

    @server.tool()
    def shout(text: str) -> str:
        """Upper-case the given text."""
        return text.upper()

    return server


def test_connect_lists_tools_from_in_memory_server() -> None:
    server = _demo_server()
    connector = ProviderConnector(5.0, client_factory=lambda spec, timeout: Client(server))
    spec = ProviderSpec(url="memory://demo")

    listing = _run(connector.connect(spec))
    assert isinstance(listing, ProviderListing)
    assert listing.ok
    assert list(listing.tools) == ["shout"]
    assert listing.tools["shout"].description == "Upper-case the given text."
    assert "text" in listing.tools["shout"].parameters
    assert listing.tools["shout"].required == ("text",)


def test_call_tool_returns_text_content() -> None:
    server = _demo_server()
    connector = ProviderConnector(5.0, client_factory=lambda spec, timeout: Client(server))

    result = _run(connector.call_tool(ProviderSpec(url="memory://demo"), "shout", {"text": "hi"}))
    assert result == "HI"


def test_connection_failure_is_a_value() -> None:
    connector = fake_connector({})
    listing = _run(connector.connect(ProviderSpec(url="http://down.example/sse")))
    assert isinstance(listing, ProviderUnavailable)
    assert not listing.ok
    assert "connection refused" in listing.reason


def test_failing_handshake_is_a_value() -> None:
    client = FakeClient([tool("a")], fail=RuntimeError("bad handshake"))
    connector = fake_connector({"http://broken/sse": client})
    listing = _run(connector.connect(ProviderSpec(url="http://broken/sse")))
    assert isinstance(listing, ProviderUnavailable)
    assert listing.reason == "bad handshake"


def test_hanging_provider_times_out() -> None:
    client = FakeClient([tool("a")], hang=True)
    connector = fake_connector({"http://slow/sse": client}, timeout=0.2)

    started = time.monotonic()
    listing = _run(connector.connect(ProviderSpec(url="http://slow/sse")))
    assert isinstance(listing, ProviderUnavailable)
    assert listing.reason == "timeout"
    assert time.monotonic() - started < 2.0


def test_probe_reports_server_info_and_resources() -> None:
    client = FakeClient(
        [tool("list_files", "List files", path="string")],
        server_name="Files",
        instructions="Browse a shared drive",
        resources=["file:///readme"],
    )
    connector = fake_connector({"http://files/sse": client})

    listing = _run(connector.connect(ProviderSpec(url="http://files/sse"), probe=True))
    assert listing.server_info.name == "Files"
    assert listing.server_info.description == "Browse a shared drive"
    assert listing.resources == ["file:///readme"]
    assert listing.tools["list_files"].required == ("path",)


def test_listing_without_probe_skips_server_info() -> None:
    client = FakeClient([tool("a")], server_name="Named")
    listing = _run(fake_connector({"http://a/sse": client}).connect(ProviderSpec(url="http://a/sse")))
    assert listing.server_info is None
    assert listing.resources is None
