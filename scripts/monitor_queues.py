#!/usr/bin/env python3

# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Queue Monitor for the contract deployer
=======================================
Prints the depth of every deployer queue and the most recent dead letters.
Exits 1 when the dead-letter queue is above its ceiling, so it can drive alerting.

Run manually:
    python scripts/monitor_queues.py

Replay the 5 oldest dead letters with a fresh retry count:
    python scripts/monitor_queues.py --requeue-dlq 5

Run as cron (every 5 minutes):
    */5 * * * * cd /opt/contract-deployer && python scripts/monitor_queues.py --quiet >> /var/log/deployer_queue_monitor.log 2>&1
"""

import argparse
import sys
from datetime import datetime

import redis
from dotenv import load_dotenv

from contract_deployer.config import MonitoringConfig, QueueConfig
from contract_deployer.queues import RedisQueueConsumer


def build_consumer(client) -> RedisQueueConsumer:
    return RedisQueueConsumer(
        client,
        inbound_queue=QueueConfig.get_inbound_queue(),
        processing_queue=QueueConfig.get_processing_queue(),
        dead_letter_queue=QueueConfig.get_dead_letter_queue(),
        outbound_queue=QueueConfig.get_outbound_queue(),
    )


def print_status(consumer: RedisQueueConsumer, show_dead_letters: int):
    depths = consumer.get_queue_depths()
    print(f"[{datetime.now()}] Queue Status:")
    print(f"  Inbound ({consumer.inbound_queue}): {depths.inbound}")
    print(f"  Processing ({consumer.processing_queue}): {depths.processing}")
    print(f"  Dead letters ({consumer.dead_letter_queue}): {depths.dead_letter}")
    print(f"  Outbound ({consumer.outbound_queue}): {depths.outbound}")

    for entry in consumer.list_dead_letters(show_dead_letters):
        original = entry.original_message
        model_id = original.get("model_id", "?") if isinstance(original, dict) else "?"
        print(f"    - {entry.timestamp} {model_id}: {entry.error[:120]}")
    return depths


def main():
    parser = argparse.ArgumentParser(description="Monitor contract deployer queues")
    parser.add_argument("--requeue-dlq", type=int, default=0, metavar="N", help="Move the N oldest dead letters back to the inbound queue")
    parser.add_argument("--show", type=int, default=5, help="Number of recent dead letters to print (default: 5)")
    parser.add_argument("--quiet", action="store_true", help="Only output on issues")
    args = parser.parse_args()

    load_dotenv()
    try:
        client = redis.Redis.from_url(
            QueueConfig.get_redis_url(),
            decode_responses=True,
            socket_connect_timeout=QueueConfig.get_connect_timeout(),
        )
        client.ping()
    except redis.RedisError as e:
        print(f"[{datetime.now()}] ERROR: Cannot connect to Redis: {e}")
        sys.exit(1)

    consumer = build_consumer(client)
    dlq_ceiling = MonitoringConfig.get_queue_ceilings()["dead_letter"]

    if args.requeue_dlq > 0:
        requeued = consumer.requeue_dead_letters(args.requeue_dlq)
        print(f"[{datetime.now()}] Requeued {requeued} dead letter(s)")

    depths = consumer.get_queue_depths()
    if not args.quiet or depths.dead_letter > dlq_ceiling:
        depths = print_status(consumer, args.show)

    if depths.dead_letter > dlq_ceiling:
        print(f"[{datetime.now()}] WARNING: {depths.dead_letter} dead letters (ceiling {dlq_ceiling})")
        sys.exit(1)


if __name__ == "__main__":
    main()
