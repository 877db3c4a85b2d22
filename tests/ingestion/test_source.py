"""Tests for the JSON-RPC block source."""

from __future__ import annotations

import json

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import httpx
import pytest

from mantle_indexer.helpers.errors import IncompleteBlockError, RPCError
from mantle_indexer.ingestion.source import RPCBlockSource, check_receipts
from tests.factories import (
    ALICE,
    BOB,
    block_hash,
    erc20_transfer_log,
    fetched_block,
    rpc_block,
    rpc_receipt,
    rpc_transaction,
    tx_hash,
)


if TYPE_CHECKING:
    from pytest_httpx import HTTPXMock


RPC_URL = "https://rpc.test"


def _result(result: object, id_: int = 1) -> dict:
    return {"jsonrpc": "2.0", "id": id_, "result": result}


def _methods(httpx_mock: "HTTPXMock") -> list[str | list[str]]:
    methods: list[str | list[str]] = []
    for request in httpx_mock.get_requests():
        payload = json.loads(request.read())
        if isinstance(payload, list):
            methods.append([item["method"] for item in payload])
        else:
            methods.append(payload["method"])
    return methods


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Make retry backoff instantaneous."""
    sleep = AsyncMock()
    monkeypatch.setattr("mantle_indexer.helpers.http.sleep", sleep)
    return sleep


class TestRPCBlockSource:
    """Tests for RPCBlockSource."""

    @pytest.mark.asyncio
    async def test_get_head_number(self, httpx_mock: "HTTPXMock") -> None:
        """Test the head height."""
        httpx_mock.add_response(url=RPC_URL, json=_result("0x10"))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            assert await source.get_head_number() == 16

    @pytest.mark.asyncio
    async def test_get_block_with_block_receipts(self, httpx_mock: "HTTPXMock") -> None:
        """Test block plus eth_getBlockReceipts."""
        h = tx_hash(100, 0)
        httpx_mock.add_response(
            url=RPC_URL,
            json=_result(rpc_block(100, transactions=[rpc_transaction(h)])),
        )
        httpx_mock.add_response(url=RPC_URL, json=_result([rpc_receipt(h)]))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            fetched = await source.get_block(100)

        assert fetched is not None
        assert fetched.number == 100
        assert fetched.hash == block_hash(100)
        assert set(fetched.receipts) == {h}
        assert _methods(httpx_mock) == ["eth_getBlockByNumber", "eth_getBlockReceipts"]
        receipts_request = json.loads(httpx_mock.get_requests()[1].read())
        assert receipts_request["params"] == [block_hash(100)]

    @pytest.mark.asyncio
    async def test_get_block_falls_back_to_receipts(
        self, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test per-transaction receipts when block receipts are unsupported."""
        h0, h1 = tx_hash(100, 0), tx_hash(100, 1)
        httpx_mock.add_response(
            url=RPC_URL,
            json=_result(
                rpc_block(
                    100, transactions=[rpc_transaction(h0, 0), rpc_transaction(h1, 1)]
                )
            ),
        )
        httpx_mock.add_response(
            url=RPC_URL,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}},
        )
        httpx_mock.add_response(
            url=RPC_URL,
            json=[_result(rpc_receipt(h0), 0), _result(rpc_receipt(h1, status=0), 1)],
        )

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            fetched = await source.get_block(100)

        assert fetched is not None
        assert fetched.receipts[h1].status == "0x0"
        assert _methods(httpx_mock) == [
            "eth_getBlockByNumber",
            "eth_getBlockReceipts",
            ["eth_getTransactionReceipt", "eth_getTransactionReceipt"],
        ]

    @pytest.mark.asyncio
    async def test_unproduced_block(self, httpx_mock: "HTTPXMock") -> None:
        """Test a height beyond the head."""
        httpx_mock.add_response(url=RPC_URL, json=_result(None))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            assert await source.get_block(10**9) is None

    @pytest.mark.asyncio
    async def test_get_block_hash(self, httpx_mock: "HTTPXMock") -> None:
        """Test hash lookups skip transaction bodies and lowercase the hash."""
        block = rpc_block(7)
        block["hash"] = "0x" + block["hash"][2:].upper()
        httpx_mock.add_response(url=RPC_URL, json=_result(block))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            assert await source.get_block_hash(7) == block_hash(7)

        payload = json.loads(httpx_mock.get_request().read())
        assert payload["params"] == ["0x7", False]

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, httpx_mock: "HTTPXMock", no_sleep: AsyncMock
    ) -> None:
        """Test a 503 followed by success."""
        httpx_mock.add_response(url=RPC_URL, status_code=503)
        httpx_mock.add_response(url=RPC_URL, json=_result("0x20"))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            assert await source.get_head_number() == 32

        no_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rpc_error_retried_then_raised(
        self, httpx_mock: "HTTPXMock", no_sleep: AsyncMock
    ) -> None:
        """Test persistent RPC errors escape after the retry budget."""
        for _ in range(5):
            httpx_mock.add_response(
                url=RPC_URL,
                json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "busy"}},
            )

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            with pytest.raises(RPCError, match="busy"):
                await source.get_head_number()

        assert len(httpx_mock.get_requests()) == 5

    @pytest.mark.asyncio
    async def test_client_error_not_retried(
        self, httpx_mock: "HTTPXMock", no_sleep: AsyncMock
    ) -> None:
        """Test 4xx responses are raised immediately."""
        httpx_mock.add_response(url=RPC_URL, status_code=401)

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            with pytest.raises(httpx.HTTPStatusError):
                await source.get_head_number()

        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_shared_client_is_not_closed(self) -> None:
        """Test a caller-provided client outlives the source."""
        async with httpx.AsyncClient() as http:
            async with RPCBlockSource(RPC_URL, timeout=5.0, client=http):
                pass
            assert not http.is_closed


INCOMPLETE_RECEIPTS = [
    pytest.param([], id="not-yet-indexed"),
    pytest.param(
        [rpc_receipt(tx_hash(100, 0, "b"), block=block_hash(100, "b"))],
        id="other-fork",
    ),
]


class TestIncompleteBlocks:
    """Tests for blocks whose receipts do not cover every transaction."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("receipts", INCOMPLETE_RECEIPTS)
    async def test_refetched_until_complete(
        self,
        httpx_mock: "HTTPXMock",
        no_sleep: AsyncMock,
        receipts: list[dict],
    ) -> None:
        """Test the block is fetched again instead of being returned short."""
        h = tx_hash(100, 0)
        block = rpc_block(
            100, transactions=[rpc_transaction(h, input_data="0xa9059cbb")]
        )
        complete = [
            rpc_receipt(
                h,
                block=block_hash(100),
                logs=[erc20_transfer_log(ALICE, BOB, 5)],
            )
        ]
        httpx_mock.add_response(url=RPC_URL, json=_result(block))
        httpx_mock.add_response(url=RPC_URL, json=_result(receipts))
        httpx_mock.add_response(url=RPC_URL, json=_result(block))
        httpx_mock.add_response(url=RPC_URL, json=_result(complete))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            fetched = await source.get_block(100)

        assert fetched is not None
        assert fetched.receipts[h].status == "0x1"
        assert len(fetched.receipts[h].logs) == 1
        no_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("receipts", INCOMPLETE_RECEIPTS)
    async def test_raised_after_retry_budget(
        self,
        httpx_mock: "HTTPXMock",
        no_sleep: AsyncMock,
        receipts: list[dict],
    ) -> None:
        """Test a persistently short block escapes as a transient error."""
        block = rpc_block(100, transactions=[rpc_transaction(tx_hash(100, 0))])
        for _ in range(5):
            httpx_mock.add_response(url=RPC_URL, json=_result(block))
            httpx_mock.add_response(url=RPC_URL, json=_result(receipts))

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            with pytest.raises(IncompleteBlockError, match="Block 100"):
                await source.get_block(100)

        assert len(httpx_mock.get_requests()) == 10

    @pytest.mark.asyncio
    async def test_missing_fallback_receipt(
        self, httpx_mock: "HTTPXMock", no_sleep: AsyncMock
    ) -> None:
        """Test a null per-transaction receipt is not committed as pending."""
        h = tx_hash(100, 0)
        block = rpc_block(100, transactions=[rpc_transaction(h)])
        httpx_mock.add_response(url=RPC_URL, json=_result(block))
        httpx_mock.add_response(
            url=RPC_URL,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}},
        )
        httpx_mock.add_response(url=RPC_URL, json=[_result(None, 0)])
        httpx_mock.add_response(url=RPC_URL, json=_result(block))
        httpx_mock.add_response(url=RPC_URL, json=[_result(rpc_receipt(h), 0)])

        async with RPCBlockSource(RPC_URL, timeout=5.0) as source:
            fetched = await source.get_block(100)

        assert fetched is not None
        assert set(fetched.receipts) == {h}


class TestCheckReceipts:
    """Tests for check_receipts."""

    def test_complete_block(self) -> None:
        """Test receipts with and without a blockHash are accepted."""
        h0, h1 = tx_hash(100, 0), tx_hash(100, 1)
        check_receipts(
            fetched_block(
                100,
                transactions=[rpc_transaction(h0, 0), rpc_transaction(h1, 1)],
                receipts=[rpc_receipt(h0, block=block_hash(100)), rpc_receipt(h1)],
            )
        )

    def test_empty_block(self) -> None:
        """Test a block without transactions needs no receipts."""
        check_receipts(fetched_block(100))

    def test_missing_receipt(self) -> None:
        """Test one absent receipt rejects the block."""
        h0, h1 = tx_hash(100, 0), tx_hash(100, 1)
        block = fetched_block(
            100,
            transactions=[rpc_transaction(h0, 0), rpc_transaction(h1, 1)],
            receipts=[rpc_receipt(h0)],
        )

        with pytest.raises(IncompleteBlockError, match=h1):
            check_receipts(block)

    def test_receipt_from_other_block(self) -> None:
        """Test a receipt naming another block hash rejects the block."""
        h = tx_hash(100, 0)
        block = fetched_block(
            100,
            transactions=[rpc_transaction(h)],
            receipts=[rpc_receipt(h, block=block_hash(100, "b"))],
        )

        with pytest.raises(IncompleteBlockError, match="belongs to block"):
            check_receipts(block)
