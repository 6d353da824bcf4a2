"""
Event Normalizer - raw pool entries -> NormalizedEvent.

============================================================
RULES
============================================================
Transactions:
- rate = ETH rate from the token cache (pseudo-token address)
- usd_value = round(value * rate, 2)
- unsuccessful transactions are dropped unless watch_failed

Operations:
- token metadata resolved per contract
- value = raw_value / 10**decimals, exact decimal arithmetic
- usd_value = round(value * rate, 2) when the token has a rate
- "approve" operations are dropped

Entries without a block number, or whose block is already processed
according to the checkpoint, are dropped.

============================================================
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any, Optional

from pool_monitor.checkpoint import CheckpointStore
from pool_monitor.dedup import make_event_id
from pool_monitor.models import (
    ETH_ADDRESS,
    EventType,
    NormalizedEvent,
    RawUpdate,
    TokenInfo,
)
from pool_monitor.token_cache import TokenMetadataCache


logger = logging.getLogger(__name__)


IGNORED_OPERATION_TYPES = frozenset({"approve"})

CENT = Decimal("0.01")

# Wide enough for any uint256 amount times a price
_MONEY_CONTEXT = Context(prec=100, rounding=ROUND_HALF_UP)


def scale_amount(raw_value: Any, decimals: int) -> Decimal:
    """
    Exact ``raw_value / 10**decimals``.

    Works on the decimal digits directly so no context precision or binary
    float is involved, whatever the size of ``raw_value``. Trailing zeros of
    the fraction are dropped.
    """
    if isinstance(raw_value, float):
        raw_value = repr(raw_value)
    sign, digits, exponent = Decimal(str(raw_value)).as_tuple()
    if not isinstance(exponent, int):
        raise InvalidOperation(f"Not a finite amount: {raw_value!r}")
    if not any(digits):
        return Decimal(0)
    exponent -= int(decimals)
    while exponent < 0 and digits[-1] == 0:
        digits = digits[:-1]
        exponent += 1
    return Decimal((sign, digits, exponent))


def usd_value(amount: Any, rate: Optional[float]) -> Optional[float]:
    """``round(amount * rate, 2)`` computed in decimal, half-up."""
    if rate is None:
        return None
    product = _MONEY_CONTEXT.multiply(Decimal(str(amount)), Decimal(str(rate)))
    return float(_MONEY_CONTEXT.quantize(product, CENT))


def format_amount(amount: Decimal) -> str:
    """Plain (non-scientific) string form of an amount."""
    return format(amount, "f")


class EventNormalizer:
    """Turns a RawUpdate into publishable events."""

    def __init__(
        self,
        token_cache: TokenMetadataCache,
        checkpoint: CheckpointStore,
        watch_failed: bool = False,
    ) -> None:
        self._tokens = token_cache
        self._checkpoint = checkpoint
        self._watch_failed = watch_failed

    async def resolve_tokens(self, update: RawUpdate) -> dict[str, TokenInfo]:
        """Resolve every distinct contract of the update concurrently."""
        addresses = update.contract_addresses()
        if any(update.transactions.values()):
            addresses.add(ETH_ADDRESS)
        if not addresses:
            return {}
        ordered = sorted(addresses)
        tokens = await asyncio.gather(*(self._tokens.resolve(a) for a in ordered))
        return dict(zip(ordered, tokens))

    async def normalize(self, update: RawUpdate) -> list[NormalizedEvent]:
        tokens = await self.resolve_tokens(update)
        events: list[NormalizedEvent] = []

        if update.transactions:
            logger.debug("[normalizer] Processing transactions...")
            eth = tokens.get(ETH_ADDRESS) or TokenInfo.unknown(ETH_ADDRESS)
            for address, entries in update.transactions.items():
                for tx in entries:
                    event = self.normalize_transaction(address, tx, eth)
                    if event is not None:
                        events.append(event)

        if update.operations:
            logger.debug("[normalizer] Processing operations...")
            for address, entries in update.operations.items():
                for op in entries:
                    contract = str(op.get("contract") or "").lower()
                    token = tokens.get(contract) or TokenInfo.unknown(contract)
                    event = self.normalize_operation(address, op, token)
                    if event is not None:
                        events.append(event)

        return events

    def _is_fresh(self, block_number: Any) -> bool:
        return bool(block_number) and not self._checkpoint.is_processed(int(block_number))

    def normalize_transaction(
        self,
        address: str,
        tx: dict[str, Any],
        eth: TokenInfo,
    ) -> Optional[NormalizedEvent]:
        if not self._watch_failed and not tx.get("success"):
            return None
        block_number = tx.get("blockNumber")
        if not self._is_fresh(block_number):
            return None

        payload = dict(tx)
        payload["rate"] = eth.rate
        usd = usd_value(tx.get("value") or 0, eth.rate)
        payload["usdValue"] = usd

        return NormalizedEvent(
            id=make_event_id(EventType.TRANSACTION, address, tx.get("hash")),
            address=address,
            type=EventType.TRANSACTION,
            block_number=int(block_number),
            payload=payload,
            usd_value=usd,
        )

    def normalize_operation(
        self,
        address: str,
        op: dict[str, Any],
        token: TokenInfo,
    ) -> Optional[NormalizedEvent]:
        if op.get("type") in IGNORED_OPERATION_TYPES:
            return None
        block_number = op.get("blockNumber")
        if not self._is_fresh(block_number):
            return None

        payload = dict(op)
        payload["token"] = token.to_dict()
        value: Optional[Decimal] = None
        usd: Optional[float] = None

        if token.decimals is not None:
            value = scale_amount(op.get("value") or 0, token.decimals)
            payload["rawValue"] = op.get("value")
            payload["value"] = format_amount(value)
            if token.rate:
                usd = usd_value(value, token.rate)
                payload["usdValue"] = usd

        return NormalizedEvent(
            id=make_event_id(EventType.OPERATION, address, op.get("hash"), op.get("priority")),
            address=address,
            type=EventType.OPERATION,
            block_number=int(block_number),
            payload=payload,
            usd_value=usd,
            value=value,
        )
