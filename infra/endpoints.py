# infra/endpoints.py
from urllib.parse import urlencode

from infra.enums import ChannelType

SCHEME = "wss"
MAINNET_HOST = "stream.bybit.com"
TESTNET_HOST = "stream-testnet.bybit.com"

PRIVATE_PATH = "/v5/private"
LINEAR_PATH = "/v5/public/linear"

# category -> public path; anything unlisted goes to linear
PUBLIC_PATHS = {
    "spot": "/v5/public/spot",
    "usdt_contract": LINEAR_PATH,
    "usdc_contract": LINEAR_PATH,
    "usdc_futures": LINEAR_PATH,
    "inverse_contract": "/v5/public/inverse",
    "usdc_option": "/v5/public/option",
}


def host_for(is_testnet: bool) -> str:
    return TESTNET_HOST if is_testnet else MAINNET_HOST


def path_for(channel: ChannelType, category: str = "") -> str:
    if channel is ChannelType.PRIVATE:
        return PRIVATE_PATH
    return PUBLIC_PATHS.get(category, LINEAR_PATH)


def build_ws_url(channel: ChannelType, category: str = "", *,
                 is_testnet: bool = False, max_active_time: str = "") -> str:
    url = f"{SCHEME}://{host_for(is_testnet)}{path_for(channel, category)}"
    if channel is ChannelType.PRIVATE and max_active_time:
        url += "?" + urlencode({"max_active_time": max_active_time})
    return url
