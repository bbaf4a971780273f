#!/usr/bin/env python3
"""
Operator commands for the pipeline.

Queue commands are sent through the Redis queues; schema, model listing,
graph export and feedback go straight to PostgreSQL.

Usage:
    python -m relation_pipeline.send_pipeline_command <command> [options]

Examples:
    python -m relation_pipeline.send_pipeline_command trigger
    python -m relation_pipeline.send_pipeline_command trigger --from 2024-01-01 --to 2024-01-31
    python -m relation_pipeline.send_pipeline_command reprocess
    python -m relation_pipeline.send_pipeline_command rescore
    python -m relation_pipeline.send_pipeline_command stats
    python -m relation_pipeline.send_pipeline_command init-db
    python -m relation_pipeline.send_pipeline_command models
    python -m relation_pipeline.send_pipeline_command export-graph SK 1 > graph.jsonl
    python -m relation_pipeline.send_pipeline_command feedback '{"relationId": 7, "correct": false}'

Available commands:
    trigger      - Discover new documents (optionally in an explicit window)
    reprocess    - Re-send every stored document to the parser
    rescore      - Re-score every stored sentence (after a model upgrade)
    stats        - Print message counts for every pipeline queue
    init-db      - Create the pipeline tables if missing
    models       - List (scoring service, model version) pairs with relations
    export-graph - Print the nodes and edges of one model as JSON lines
    feedback     - Store a JSON feedback document
"""
import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv
load_dotenv()

from relation_pipeline.config import Settings, get_settings, create_postgres_pool, create_redis_client, create_message_queue
from relation_pipeline.models.envelope import Envelope, RequestType, TriggerRequest, trigger_envelope
from relation_pipeline.repositories import DocumentRepository
from relation_pipeline.utils.datetime_utils import parse_date_bound


# Bulk re-drive commands: target queue setting, request type
QUEUE_COMMANDS = {
    'reprocess': ('queue_trigger_query', RequestType.REPROCESS),
    'rescore': ('queue_scoring', RequestType.RESCORE),
}


def command_target(command: str, settings: Settings):
    """(queue name, envelope) for a reprocess or rescore command"""
    queue_setting, request_type = QUEUE_COMMANDS[command]
    return getattr(settings, queue_setting), Envelope(request_type, {})


async def send_command(settings: Settings, queue_name: str, envelope: Envelope):
    """Send one envelope to a pipeline queue."""
    redis_client = create_redis_client(settings)
    queue = create_message_queue(queue_name, redis_client, settings)
    try:
        await queue.init()
        message_id = await queue.send_message(envelope)
        print(f"✅ {envelope.type_name} sent to {queue_name} ({message_id})")
        if envelope.data:
            print(f"   Data: {envelope.data}")
    finally:
        await redis_client.aclose()


async def print_stats(settings: Settings):
    redis_client = create_redis_client(settings)
    try:
        for name in (settings.queue_trigger_query, settings.queue_new_ids, settings.queue_scoring):
            queue = create_message_queue(name, redis_client, settings)
            print(f"{name}: {await queue.count()}")
    finally:
        await redis_client.aclose()


async def with_repository(settings: Settings, action):
    """Run action(repository) on a short-lived pool"""
    pool = await create_postgres_pool(settings)
    try:
        return await action(DocumentRepository(pool))
    finally:
        await pool.close()


async def init_db(repository: DocumentRepository):
    await repository.ensure_schema()
    print("✅ Pipeline schema ready")


async def print_model_versions(repository: DocumentRepository):
    versions = await repository.get_model_versions()
    if not versions:
        print("No scored relations yet")
    for version in versions:
        print(f"{version.scoring_service_id}\t{version.model_version}")


async def export_graph(repository: DocumentRepository, scoring_service_id: str, model_version: str, out=None) -> int:
    """Write one model's graph as JSON lines: {"set": "nodes"|"edges", ...row}"""
    out = out or sys.stdout

    async def row_handler(set_name, row):
        out.write(json.dumps({'set': set_name, **dict(row)}, default=str) + "\n")

    return await repository.stream_graph(scoring_service_id, model_version, row_handler)


async def add_feedback(repository: DocumentRepository, feedback: str):
    await repository.add_feedback(feedback)
    print("✅ Feedback stored")


def main():
    parser = argparse.ArgumentParser(description="Send commands to the relation pipeline")
    sub = parser.add_subparsers(dest='command', required=True)

    trigger = sub.add_parser('trigger', help="Discover new documents")
    trigger.add_argument('--from', dest='from_date', type=parse_date_bound)
    trigger.add_argument('--to', dest='to_date', type=parse_date_bound)
    sub.add_parser('reprocess', help="Re-send every stored document to the parser")
    sub.add_parser('rescore', help="Re-score every stored sentence")
    sub.add_parser('stats', help="Print queue message counts")
    sub.add_parser('init-db', help="Create pipeline tables")
    sub.add_parser('models', help="List model versions with stored relations")
    graph = sub.add_parser('export-graph', help="Print one model's graph as JSON lines")
    graph.add_argument('scoring_service_id')
    graph.add_argument('model_version')
    feedback = sub.add_parser('feedback', help="Store a JSON feedback document")
    feedback.add_argument('json')

    args = parser.parse_args()
    settings = get_settings()

    if args.command == 'stats':
        asyncio.run(print_stats(settings))
    elif args.command == 'init-db':
        asyncio.run(with_repository(settings, init_db))
    elif args.command == 'models':
        asyncio.run(with_repository(settings, print_model_versions))
    elif args.command == 'export-graph':
        asyncio.run(with_repository(
            settings,
            lambda repository: export_graph(repository, args.scoring_service_id, args.model_version),
        ))
    elif args.command == 'feedback':
        try:
            asyncio.run(with_repository(settings, lambda repository: add_feedback(repository, args.json)))
        except ValueError as e:
            print(f"❌ Feedback is not valid JSON: {e}")
            sys.exit(1)
    elif args.command == 'trigger':
        envelope = trigger_envelope(TriggerRequest(from_date=args.from_date, to_date=args.to_date))
        asyncio.run(send_command(settings, settings.queue_trigger_query, envelope))
    else:
        queue_name, envelope = command_target(args.command, settings)
        asyncio.run(send_command(settings, queue_name, envelope))


if __name__ == '__main__':
    main()
