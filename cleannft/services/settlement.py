import asyncio
import hashlib
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx


logger = logging.getLogger(__name__)

SEND_TO_CHAIN = "SEND_TO_CHAIN"
PUSH_TO_IPFS = "PUSH_TO_IPFS"

CHAIN_ERRORS = [
    "Insufficient gas",
    "Transaction reverted",
    "Network congestion",
    "Invalid recipient address",
    "Contract execution failed",
]

IPFS_ERRORS = [
    "IPFS node unavailable",
    "File too large",
    "Invalid file format",
    "Network timeout",
]

_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


@dataclass
class SettlementRequest:
    """Detached copy of an outbox event handed to a gateway."""

    event_id: str
    event_type: str
    aggregate: str
    aggregate_id: str
    payload: dict = field(default_factory=dict)


@dataclass
class SettlementResult:
    success: bool
    tx_hash: str | None = None
    error: str | None = None


class SettlementGateway(ABC):
    @abstractmethod
    async def send_to_chain(self, request: SettlementRequest) -> SettlementResult:
        ...

    @abstractmethod
    async def push_to_ipfs(self, request: SettlementRequest) -> SettlementResult:
        ...

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        if request.event_type == SEND_TO_CHAIN:
            return await self.send_to_chain(request)
        if request.event_type == PUSH_TO_IPFS:
            return await self.push_to_ipfs(request)
        return SettlementResult(success=False, error=f"Unknown event type: {request.event_type}")

    async def aclose(self):
        return None


class SimulatedSettlementGateway(SettlementGateway):
    """Randomized stand-in for a chain and an IPFS pinning service."""

    def __init__(
        self,
        *,
        rng: random.Random | None = None,
        sleep=asyncio.sleep,
        chain_latency: tuple[float, float] = (1.0, 3.0),
        chain_failure_rate: float = 0.05,
        ipfs_latency: tuple[float, float] = (0.5, 1.5),
        ipfs_failure_rate: float = 0.02,
    ):
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.chain_latency = chain_latency
        self.chain_failure_rate = chain_failure_rate
        self.ipfs_latency = ipfs_latency
        self.ipfs_failure_rate = ipfs_failure_rate

    async def send_to_chain(self, request: SettlementRequest) -> SettlementResult:
        await self.sleep(self.rng.uniform(*self.chain_latency))
        if self.rng.random() < self.chain_failure_rate:
            return SettlementResult(success=False, error=self.rng.choice(CHAIN_ERRORS))
        return SettlementResult(success=True, tx_hash="0x" + f"{self.rng.getrandbits(256):064x}")

    async def push_to_ipfs(self, request: SettlementRequest) -> SettlementResult:
        await self.sleep(self.rng.uniform(*self.ipfs_latency))
        if self.rng.random() < self.ipfs_failure_rate:
            return SettlementResult(success=False, error=self.rng.choice(IPFS_ERRORS))
        return SettlementResult(success=True, tx_hash="Qm" + "".join(self.rng.choice(_BASE58) for _ in range(44)))


class DeterministicSettlementGateway(SettlementGateway):
    """
    Predictable gateway for tests and local runs.

    Hashes are derived from the event id. Failures are scripted by event type
    or by aggregate id.
    """

    def __init__(
        self,
        *,
        fail_event_types: set[str] | None = None,
        fail_aggregate_ids: set[str] | None = None,
        error: str = "Transaction reverted",
        delay_seconds: float = 0.0,
    ):
        self.fail_event_types = set(fail_event_types or ())
        self.fail_aggregate_ids = set(fail_aggregate_ids or ())
        self.error = error
        self.delay_seconds = delay_seconds
        self.calls: list[SettlementRequest] = []

    def _should_fail(self, request: SettlementRequest) -> bool:
        return request.event_type in self.fail_event_types or request.aggregate_id in self.fail_aggregate_ids

    async def _settle(self, request: SettlementRequest, prefix: str) -> SettlementResult:
        self.calls.append(request)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self._should_fail(request):
            return SettlementResult(success=False, error=self.error)
        digest = hashlib.sha256(f"{request.event_type}:{request.event_id}".encode("utf-8")).hexdigest()
        return SettlementResult(success=True, tx_hash=prefix + digest)

    async def send_to_chain(self, request: SettlementRequest) -> SettlementResult:
        return await self._settle(request, "0x")

    async def push_to_ipfs(self, request: SettlementRequest) -> SettlementResult:
        return await self._settle(request, "Qm")


class HttpSettlementGateway(SettlementGateway):
    """Chain relayer + Pinata adapter."""

    def __init__(
        self,
        *,
        relayer_url: str | None,
        pinata_api_url: str,
        pinata_api_key: str | None,
        pinata_secret_key: str | None,
        network: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.relayer_url = relayer_url.rstrip("/") if relayer_url else None
        self.pinata_api_url = pinata_api_url.rstrip("/")
        self.pinata_api_key = pinata_api_key
        self.pinata_secret_key = pinata_secret_key
        self.network = network
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send_to_chain(self, request: SettlementRequest) -> SettlementResult:
        if not self.relayer_url:
            return SettlementResult(success=False, error="Chain relayer URL not configured")

        body = {
            "reference": request.event_id,
            "aggregate": request.aggregate,
            "aggregateId": request.aggregate_id,
            "network": request.payload.get("network") or self.network,
            "payload": request.payload,
        }
        try:
            resp = await self.client.post(f"{self.relayer_url}/transfers", json=body)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("chain relayer call failed", extra={"event_id": request.event_id, "error": str(e)})
            return SettlementResult(success=False, error=str(e) or type(e).__name__)

        tx_hash = data.get("txHash")
        if not tx_hash:
            return SettlementResult(success=False, error=data.get("error") or "Relayer returned no txHash")
        return SettlementResult(success=True, tx_hash=tx_hash)

    async def push_to_ipfs(self, request: SettlementRequest) -> SettlementResult:
        if not (self.pinata_api_key and self.pinata_secret_key):
            return SettlementResult(success=False, error="Pinata credentials not configured")

        content = request.payload.get("metadata") or request.payload
        body = {
            "pinataMetadata": {
                "name": request.payload.get("name") or f"{request.aggregate}-{request.aggregate_id}",
                "keyvalues": {"aggregate": request.aggregate, "aggregateId": request.aggregate_id},
            },
            "pinataContent": content,
        }
        headers = {
            "pinata_api_key": self.pinata_api_key,
            "pinata_secret_api_key": self.pinata_secret_key,
        }
        try:
            resp = await self.client.post(f"{self.pinata_api_url}/pinning/pinJSONToIPFS", json=body, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("pinata upload failed", extra={"event_id": request.event_id, "error": str(e)})
            return SettlementResult(success=False, error=str(e) or type(e).__name__)

        cid = data.get("IpfsHash")
        if not cid:
            return SettlementResult(success=False, error="Pinata returned no IpfsHash")
        return SettlementResult(success=True, tx_hash=cid)

    async def aclose(self):
        await self.client.aclose()


def build_settlement_gateway(settings) -> SettlementGateway:
    kind = settings.settlement_gateway
    if kind == "simulated":
        return SimulatedSettlementGateway()
    if kind == "deterministic":
        return DeterministicSettlementGateway()
    if kind == "http":
        return HttpSettlementGateway(
            relayer_url=settings.chain_relayer_url,
            pinata_api_url=settings.pinata_api_url,
            pinata_api_key=settings.pinata_api_key,
            pinata_secret_key=settings.pinata_secret_key,
            network=settings.chain_network,
            timeout_seconds=settings.settlement_timeout_seconds,
        )
    raise ValueError(f"Unsupported SETTLEMENT_GATEWAY: {kind}")
