# examples/run_stream.py
import asyncio

from datafeed import BybitWebSocket
from infra import ChannelType, WSClient, settings_from_cfg
from utils.logger import logger
from utils.config import load_cfg

async def main():
    cfg = load_cfg()
    settings = settings_from_cfg(cfg)
    ex_cfg = cfg.get("example", {})
    symbols = ex_cfg.get("symbols", ["BTCUSDT"])

    def on_error(err):
        logger.error(f"stream error: {err}")

    public = WSClient.from_settings(settings, ChannelType.PUBLIC,
                                    on_connected=lambda: logger.info("public stream up"),
                                    on_connection_error=on_error)
    private = None
    if settings.has_credentials:
        private = WSClient.from_settings(settings, ChannelType.PRIVATE, on_connection_error=on_error)

    ws = BybitWebSocket(public, private)

    # slow consumers read from their own queue instead of blocking the receive loop
    klines: asyncio.Queue = asyncio.Queue(maxsize=1000)

    async def drain():
        while True:
            for k in await klines.get():
                if k.confirm:
                    logger.info(f"kline closed {k.symbol} {k.interval} close={k.close}")

    await ws.public().ticker().subscribe_many(
        symbols, lambda t: logger.info(f"ticker {t.symbol} last={t.lastPrice}"))
    await ws.public().kline().subscribe_queue(symbols[0], klines, interval=ex_cfg.get("kline_interval", "1"))
    if private is not None:
        await ws.private().position().subscribe(lambda rows: logger.info(f"positions {rows}"))
        await ws.private().wallet().subscribe(lambda rows: logger.info(f"wallet {rows}"))

    consumer = asyncio.create_task(drain())
    try:
        await ws.connect()
        await public.wait_closed()
    finally:
        consumer.cancel()
        await ws.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
