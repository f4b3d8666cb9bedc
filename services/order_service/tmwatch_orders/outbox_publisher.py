import asyncio
import json
import logging

import aio_pika
from aio_pika.abc import AbstractExchange

from .repository import OrderStore

logger = logging.getLogger(__name__)

EXCHANGE_NAME = "shop_events"


async def publish_pending(store: OrderStore, exchange: AbstractExchange) -> int:
    """Publish every pending outbox message and mark it sent.

    The broker is called outside any unit of work so checkouts never wait on
    it. Messages published before a failure are still marked sent, the rest
    stay pending and go out on the next pass.
    """
    async with store.transaction() as uow:
        messages = await uow.pending_outbox_messages()

    sent: list[int] = []
    try:
        for msg in messages:
            body = json.dumps(msg.payload).encode("utf-8")
            await exchange.publish(
                aio_pika.Message(body=body, content_type="application/json"),
                routing_key=msg.event_type,
            )
            sent.append(msg.id)
    finally:
        if sent:
            async with store.transaction() as uow:
                for message_id in sent:
                    await uow.mark_outbox_sent(message_id)
    return len(sent)


async def publish_outbox_messages(store: OrderStore, rabbitmq_url: str, interval: float = 5):
    """Every ``interval`` seconds push pending outbox messages to RabbitMQ."""
    while True:
        try:
            connection = await aio_pika.connect_robust(rabbitmq_url)
            try:
                channel = await connection.channel()
                exchange = await channel.declare_exchange(
                    EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
                )
                sent = await publish_pending(store, exchange)
                if sent:
                    logger.info("Published %d outbox message(s)", sent)
            finally:
                await connection.close()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Outbox worker error")

        await asyncio.sleep(interval)
