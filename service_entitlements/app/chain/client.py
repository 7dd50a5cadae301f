"""
JSON-RPC client for read-only contract calls.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from shared.circuit_breaker import CircuitBreakerManager
from shared.config import RpcEndpoints
from shared.errors import RPCError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .abi import encode_call


class _EndpointFailure(Exception):
    """Transport-level failure: try the next endpoint."""


class _RemoteError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, error: Any):
        self.error = error
        super().__init__(str(error))


class BlockchainClient:
    """``eth_call`` over HTTP JSON-RPC with a primary and optional fallback per chain.

    Each call makes at most one attempt per configured endpoint, primary
    first. Timeouts, transport errors, HTTP error statuses and unparsable
    responses move on to the fallback; a JSON-RPC error object is a real
    answer from the chain and is raised immediately. Endpoints whose
    circuit breaker is open are skipped.
    """

    def __init__(self,
                 endpoints: Dict[int, RpcEndpoints],
                 timeout: float = 5.0,
                 http_client: Optional[httpx.AsyncClient] = None,
                 breakers: Optional[CircuitBreakerManager] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.endpoints = dict(endpoints)
        self.timeout = timeout
        self.logger = get_logger("entitlements.chain")
        self.metrics = metrics
        self.breakers = breakers or CircuitBreakerManager()
        self._client = http_client or httpx.AsyncClient()
        self._ids = itertools.count(1)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def supports(self, chain_id: int) -> bool:
        return chain_id in self.endpoints

    async def call(self,
                   chain_id: int,
                   contract_address: str,
                   method_selector: str,
                   args: Sequence[Tuple[str, Any]] = (),
                   timeout: Optional[float] = None) -> bytes:
        """Execute ``eth_call`` against ``latest`` and return the raw result bytes."""
        params = [{"to": contract_address, "data": encode_call(method_selector, args)}, "latest"]
        result = await self._request(chain_id, "eth_call", params, timeout)
        try:
            return bytes.fromhex(result[2:])
        except ValueError:
            raise RPCError(details={"chain_id": chain_id, "reason": "result is not hex"})

    async def health_check(self, chain_id: int) -> int:
        """Return the latest block number, proving an endpoint is reachable."""
        result = await self._request(chain_id, "eth_blockNumber", [], None)
        return int(result, 16)

    async def _request(self, chain_id: int, method: str, params: List[Any], timeout: Optional[float]) -> str:
        endpoints = self.endpoints.get(chain_id)
        if endpoints is None:
            raise RPCError(details={"chain_id": chain_id, "reason": "no RPC endpoint configured"})

        attempts = [("primary", endpoints.primary)]
        if endpoints.fallback:
            attempts.append(("fallback", endpoints.fallback))

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        deadline = timeout if timeout is not None else self.timeout
        last_error = "no endpoint attempted"

        for label, url in attempts:
            breaker = self.breakers.get_circuit_breaker(f"chain-{chain_id}-{label}")
            if not breaker.allow_request():
                self._record(chain_id, label, "circuit_open")
                last_error = f"{label} circuit open"
                continue

            try:
                result = await asyncio.wait_for(self._post(url, payload), timeout=deadline)
            except _RemoteError as e:
                breaker.record_success()
                self._record(chain_id, label, "rpc_error")
                self.logger.warning("RPC returned error", chain_id=chain_id, endpoint=label, method=method,
                                    error=str(e.error))
                raise RPCError(details={"chain_id": chain_id, "reason": "rpc error", "error": e.error})
            except (asyncio.TimeoutError, httpx.HTTPError, _EndpointFailure) as e:
                breaker.record_failure()
                reason = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e) or type(e).__name__
                self._record(chain_id, label, "timeout" if reason == "timeout" else "failure")
                self.logger.warning("RPC endpoint failed", chain_id=chain_id, endpoint=label, method=method,
                                    reason=reason)
                last_error = f"{label}: {reason}"
                continue

            breaker.record_success()
            self._record(chain_id, label, "ok")
            return result

        self.logger.error("All RPC endpoints failed", chain_id=chain_id, method=method, reason=last_error)
        raise RPCError(details={"chain_id": chain_id, "reason": last_error})

    async def _post(self, url: str, payload: Dict[str, Any]) -> str:
        response = await self._client.post(url, json=payload)
        if response.status_code >= 400:
            raise _EndpointFailure(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise _EndpointFailure("response is not JSON")
        if not isinstance(body, dict):
            raise _EndpointFailure("response is not a JSON object")

        if body.get("error"):
            raise _RemoteError(body["error"])

        result = body.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise _EndpointFailure("missing or non-hex result")
        return result

    def _record(self, chain_id: int, endpoint: str, status: str):
        if self.metrics is not None:
            self.metrics.increment_counter("rpc_calls_total", chain_id=str(chain_id), endpoint=endpoint,
                                           status=status)
