"""Solana JSON-RPC client - read-only ledger queries over httpx."""

from __future__ import annotations

import itertools
import logging

import httpx

from omeganode_checkout.errors import LedgerError
from omeganode_checkout.models.payment import SignatureInfo, TokenBalance, TransactionDetail

log = logging.getLogger(__name__)

# Raised by well-formed JSON with the wrong shape
_SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)


def _account_keys(tx: dict, meta: dict) -> list[str]:
    """Flatten static and address-table keys in transaction index order."""
    message = (tx.get("transaction") or {}).get("message") or {}
    keys: list[str] = []
    for key in message.get("accountKeys") or []:
        # jsonParsed gives {"pubkey": ...}, plain json gives the string
        keys.append(key["pubkey"] if isinstance(key, dict) else str(key))
    loaded = meta.get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys


def _token_balances(entries: list[dict] | None) -> list[TokenBalance]:
    balances: list[TokenBalance] = []
    for entry in entries or []:
        ui = entry.get("uiTokenAmount") or {}
        try:
            balances.append(
                TokenBalance(
                    account_index=int(entry["accountIndex"]),
                    mint=str(entry.get("mint", "")),
                    amount=int(ui.get("amount", "0")),
                    decimals=int(ui.get("decimals", 0)),
                    owner=entry.get("owner"),
                )
            )
        except (KeyError, TypeError, ValueError):
            log.debug("Skipping malformed token balance entry: %s", entry)
    return balances


def parse_transaction(signature: str, result: dict) -> TransactionDetail:
    """Normalize a getTransaction result into a TransactionDetail."""
    meta = result.get("meta") or {}
    return TransactionDetail(
        signature=signature,
        err=meta.get("err"),
        account_keys=_account_keys(result, meta),
        pre_balances=[int(b) for b in meta.get("preBalances") or []],
        post_balances=[int(b) for b in meta.get("postBalances") or []],
        pre_token_balances=_token_balances(meta.get("preTokenBalances")),
        post_token_balances=_token_balances(meta.get("postTokenBalances")),
        block_time=result.get("blockTime"),
    )


class SolanaRpcClient:
    """Read-only queries against a Solana JSON-RPC endpoint.

    Every method is idempotent. Transport failures, non-2xx responses,
    JSON-RPC error objects and results of the wrong shape all raise
    LedgerError; the caller decides how to surface them.
    """

    def __init__(
        self,
        rpc_url: str = "https://api.mainnet-beta.solana.com",
        request_timeout: int = 15,
        commitment: str = "confirmed",
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout = request_timeout
        self._commitment = commitment
        self._ids = itertools.count(1)
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=5))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, params: list) -> object:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            resp = await self._http().post(self._rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.TimeoutException as exc:
            raise LedgerError(f"{method} timed out") from exc
        except httpx.HTTPError as exc:
            raise LedgerError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerError(f"{method} returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise LedgerError(f"{method} returned an unexpected payload")
        if body.get("error"):
            err = body["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise LedgerError(f"{method} error: {message}")
        return body.get("result")

    async def get_signatures(self, address: str, limit: int = 10) -> list[SignatureInfo]:
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self._commitment}],
        )
        try:
            signatures = [
                SignatureInfo(
                    signature=str(entry["signature"]),
                    block_time=entry.get("blockTime"),
                    err=entry.get("err"),
                )
                for entry in result or []
            ]
        except _SHAPE_ERRORS as exc:
            raise LedgerError("getSignaturesForAddress returned a malformed result") from exc
        log.debug("getSignaturesForAddress(%s): %d entries", address[:8], len(signatures))
        return signatures

    async def get_transaction(self, signature: str) -> TransactionDetail | None:
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self._commitment,
                },
            ],
        )
        if not result:
            return None
        try:
            return parse_transaction(signature, result)
        except _SHAPE_ERRORS as exc:
            raise LedgerError(f"getTransaction returned a malformed result for {signature[:8]}") from exc

    async def find_token_account(self, owner: str, mint: str) -> str | None:
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self._commitment}],
        )
        try:
            accounts = (result or {}).get("value") or []
            if not accounts:
                return None
            return str(accounts[0]["pubkey"])
        except _SHAPE_ERRORS as exc:
            raise LedgerError("getTokenAccountsByOwner returned a malformed result") from exc
