"""Submit signed transactions and classify the node's answer."""

from __future__ import annotations

import logging

from wallet_core.errors import RpcError, TransportError
from wallet_core.wallet.rpc import RpcClient
from wallet_core.wallet.transactions import BroadcastResult, SignedTransaction

logger = logging.getLogger("wallet_core.wallet.broadcaster")


class Broadcaster:
    """Sends ``eth_sendRawTransaction``.

    A node rejection is an :class:`RpcError` and is surfaced immediately. A
    transport failure re-sends the *same* signed bytes up to ``retries``
    times; re-sending identical bytes cannot consume a second nonce.
    """

    def __init__(self, rpc: RpcClient, retries: int = 1) -> None:
        self.rpc = rpc
        self.retries = max(0, retries)

    async def broadcast(self, signed: SignedTransaction) -> BroadcastResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                tx_hash = await self.rpc.send_raw_transaction(signed.raw_hex)
                break
            except RpcError as exc:
                logger.warning(f"Node rejected tx nonce={signed.nonce}: {exc.message}")
                raise
            except TransportError as exc:
                if attempt > self.retries:
                    logger.error(f"Broadcast failed after {attempt} attempt(s): {exc.cause}")
                    raise
                logger.warning(f"Broadcast attempt {attempt} failed ({exc.cause}); resending")

        if not isinstance(tx_hash, str) or not tx_hash:
            tx_hash = signed.hash
        elif tx_hash.lower() != signed.hash.lower():
            logger.warning(f"Node returned hash {tx_hash}, expected {signed.hash}")

        result = BroadcastResult(
            hash=tx_hash,
            fee=signed.gas_limit * signed.gas_price,
            nonce=signed.nonce,
        )
        logger.info(f"Broadcast tx {result.hash} (nonce {result.nonce})")
        return result
