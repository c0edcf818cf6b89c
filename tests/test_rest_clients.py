import pytest
from aiohttp import web
from aiohttp import test_utils

from conftest import D
from exchange.coingecko_rest import CoinGeckoClient
from exchange.errors import FeedConnectionError, FeedError, RateLimitError
from exchange.kucoin_rest import KuCoinRestClient


async def serve(routes):
    app = web.Application()
    app.add_routes(routes)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


# ==================== KuCoin ====================

@pytest.mark.asyncio
async def test_ws_token():
    async def bullet(request):
        return web.json_response({"code": "200000", "data": {
            "token": "abc",
            "instanceServers": [{"endpoint": "wss://ws-api-spot.kucoin.com/", "pingInterval": 18000}],
        }})

    server = await serve([web.post("/api/v1/bullet-public", bullet)])
    client = KuCoinRestClient(base_url=str(server.make_url("/")))
    try:
        token = await client.get_ws_token()
    finally:
        await client.close()
        await server.close()

    assert token.token == "abc"
    assert token.endpoint == "wss://ws-api-spot.kucoin.com/"
    assert token.expires_at is not None


@pytest.mark.asyncio
async def test_candles_params_and_payload():
    seen = {}

    async def candles(request):
        seen.update(request.query)
        return web.json_response({"code": "200000", "data": [["1704067200", "1", "2", "3", "0.5", "10", "20"]]})

    server = await serve([web.get("/api/v1/market/candles", candles)])
    client = KuCoinRestClient(base_url=str(server.make_url("/")))
    try:
        rows = await client.get_candles("BTC-USDT", "1hour", start_at=1700000000)
    finally:
        await client.close()
        await server.close()

    assert rows == [["1704067200", "1", "2", "3", "0.5", "10", "20"]]
    assert seen == {"type": "1hour", "symbol": "BTC-USDT", "startAt": "1700000000"}


@pytest.mark.asyncio
async def test_kucoin_errors():
    async def limited(request):
        return web.json_response({}, status=429, headers={"Retry-After": "7"})

    async def refused(request):
        return web.json_response({"code": "400100", "msg": "bad symbol"})

    async def broken(request):
        return web.Response(status=503)

    server = await serve([
        web.post("/api/v1/bullet-public", limited),
        web.get("/api/v1/market/candles", refused),
        web.get("/broken", broken),
    ])
    client = KuCoinRestClient(base_url=str(server.make_url("/")))
    try:
        with pytest.raises(RateLimitError) as exc:
            await client.get_ws_token()
        assert exc.value.retry_after == 7.0
        assert exc.value.source == "kucoin"

        with pytest.raises(FeedError, match="bad symbol"):
            await client.get_candles("NOPE-USDT", "1hour")

        with pytest.raises(FeedConnectionError):
            await client._request("GET", "/broken")
    finally:
        await client.close()
        await server.close()


# ==================== CoinGecko ====================

@pytest.mark.asyncio
async def test_coingecko_batch_prices():
    seen = {}

    async def simple_price(request):
        seen.update(request.query)
        return web.json_response({
            "bitcoin": {"usd": 42000.5, "usd_24h_vol": 1},
            "ethereum": {"usd": "2500"},
            "solana": {},
        })

    server = await serve([web.get("/simple/price", simple_price)])
    client = CoinGeckoClient(base_url=str(server.make_url("/")))
    try:
        prices = await client.get_prices(["bitcoin", "ethereum", "solana"])
    finally:
        await client.close()
        await server.close()

    assert seen["ids"] == "bitcoin,ethereum,solana"
    assert seen["vs_currencies"] == "usd"
    assert prices == {"bitcoin": D("42000.5"), "ethereum": D(2500)}


@pytest.mark.asyncio
async def test_coingecko_rate_limit():
    async def limited(request):
        return web.Response(status=429)

    server = await serve([web.get("/simple/price", limited)])
    client = CoinGeckoClient(base_url=str(server.make_url("/")))
    try:
        with pytest.raises(RateLimitError) as exc:
            await client.get_prices(["bitcoin"])
    finally:
        await client.close()
        await server.close()

    assert exc.value.source == "coingecko"
    assert exc.value.retry_after is None


@pytest.mark.asyncio
async def test_coingecko_unreachable():
    client = CoinGeckoClient(base_url="http://127.0.0.1:9", timeout=2)
    try:
        with pytest.raises(FeedConnectionError):
            await client.get_prices(["bitcoin"])
    finally:
        await client.close()
