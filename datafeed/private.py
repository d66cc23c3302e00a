# datafeed/private.py
from datafeed.streams import ExecutionStream, OrderStream, PositionStream, WalletStream
from infra.enums import ChannelType
from infra.ws_client import WSClient


class PrivateStreams:
    """Account topics on one authenticated connection. Empty category = all categories."""

    def __init__(self, client: WSClient) -> None:
        if client.channel is not ChannelType.PRIVATE:
            raise ValueError("PrivateStreams needs a private channel client")
        self.client = client

    def position(self, category: str = "") -> PositionStream:
        return PositionStream(self.client, category)

    def execution(self, category: str = "") -> ExecutionStream:
        return ExecutionStream(self.client, category)

    def order(self, category: str = "") -> OrderStream:
        return OrderStream(self.client, category)

    def wallet(self) -> WalletStream:
        return WalletStream(self.client)
