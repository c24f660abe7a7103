"""Main module for the image processor CLI."""

import argparse
import json
import os
import signal
import sys
import threading
from typing import Any, Callable, Dict, List, Optional

from . import __version__
from .core.config import ServiceConfig
from .core.exceptions import ConfigurationError, ImageNotFoundError, ImageProcessorError
from .core.factories import Pipeline, PipelineFactory
from .core.logging_config import configure_worker_logging
from .core.models import Image
from .storage.schema import create_db_engine, init_schema


def _image_summary(image: Image) -> Dict[str, Any]:
    return json.loads(image.model_dump_json())


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-processor",
        description="Image Processor - upload, resize and serve images via a durable task queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the database tables
  image-processor init-db

  # Upload an image and schedule its processing
  image-processor upload ./photo.jpg

  # Run the second of three workers until interrupted
  WORKER_INDEX=1 WORKER_COUNT=3 image-processor worker

  # Show version
  image-processor version
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create the registry and queue tables")

    upload_parser = subparsers.add_parser("upload", help="Upload an image file")
    upload_parser.add_argument("path", help="Path of the image file to upload")
    upload_parser.add_argument(
        "--name", default=None, help="Filename to register (defaults to the file's name)"
    )

    get_parser = subparsers.add_parser("get", help="Show an image record")
    get_parser.add_argument("image_id", help="Image id")

    list_parser = subparsers.add_parser("list", help="List images, newest first")
    list_parser.add_argument("--limit", type=int, default=None, help="Page size")
    list_parser.add_argument("--offset", type=int, default=0, help="Rows to skip")

    delete_parser = subparsers.add_parser("delete", help="Delete an image and its files")
    delete_parser.add_argument("image_id", help="Image id")

    worker_parser = subparsers.add_parser("worker", help="Consume and process queued tasks")
    worker_parser.add_argument(
        "--drain",
        action="store_true",
        help="Process until the queue is empty, then exit",
    )

    relay_parser = subparsers.add_parser(
        "relay-outbox", help="Publish pending outbox tasks to the queue"
    )
    relay_parser.add_argument(
        "--batch-size", type=int, default=100, help="Maximum tasks to publish"
    )

    subparsers.add_parser("stats", help="Show image counts by status")
    subparsers.add_parser("version", help="Show version information")
    return parser


def cmd_init_db(config: ServiceConfig, args: argparse.Namespace) -> None:
    engine = create_db_engine(config.database.url, echo=config.database.echo)
    try:
        init_schema(engine)
    finally:
        engine.dispose()
    print(f"Schema ready at {config.database.url}")


def cmd_upload(pipeline: Pipeline, args: argparse.Namespace) -> None:
    filename = args.name or os.path.basename(args.path)
    try:
        declared_size = os.path.getsize(args.path)
        stream = open(args.path, "rb")
    except OSError as e:
        raise ConfigurationError(f"cannot read {args.path}: {e}") from e
    with stream:
        image = pipeline.ingestion.upload(stream, declared_size, filename)
    _print_json(_image_summary(image))


def cmd_get(pipeline: Pipeline, args: argparse.Namespace) -> None:
    _print_json(_image_summary(pipeline.ingestion.get_by_id(args.image_id)))


def cmd_list(pipeline: Pipeline, args: argparse.Namespace) -> None:
    images = pipeline.ingestion.list(limit=args.limit, offset=args.offset)
    _print_json([_image_summary(image) for image in images])


def cmd_delete(pipeline: Pipeline, args: argparse.Namespace) -> None:
    pipeline.ingestion.delete(args.image_id)
    print(f"Deleted {args.image_id}")


def cmd_worker(pipeline: Pipeline, args: argparse.Namespace) -> None:
    queue = pipeline.config.queue
    log = configure_worker_logging(queue.worker_index)
    consumer = pipeline.create_consumer()
    worker = pipeline.create_worker(consumer)

    try:
        if args.drain:
            stats = worker.drain()
        else:
            stop_event = threading.Event()

            def request_stop(signum: int, frame: Any) -> None:
                log.info(f"Received signal {signum}, stopping after the current task")
                stop_event.set()

            signal.signal(signal.SIGINT, request_stop)
            signal.signal(signal.SIGTERM, request_stop)
            log.info(
                f"Worker {queue.worker_index + 1}/{queue.worker_count} consuming "
                f"{queue.topic} as {queue.consumer_group}"
            )
            stats = worker.run(stop_event)
    finally:
        consumer.close()

    _print_json(stats.model_dump())


def cmd_relay_outbox(pipeline: Pipeline, args: argparse.Namespace) -> None:
    relayed = pipeline.create_outbox_relay().relay_pending(batch_size=args.batch_size)
    print(f"Published {relayed} outbox task(s)")


def cmd_stats(pipeline: Pipeline, args: argparse.Namespace) -> None:
    _print_json(pipeline.registry.count_by_status())


PIPELINE_COMMANDS: Dict[str, Callable[[Pipeline, argparse.Namespace], None]] = {
    "upload": cmd_upload,
    "get": cmd_get,
    "list": cmd_list,
    "delete": cmd_delete,
    "worker": cmd_worker,
    "relay-outbox": cmd_relay_outbox,
    "stats": cmd_stats,
}


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the image processor command-line interface.

    Configuration comes from the environment (see ``ServiceConfig.from_env``).
    Domain errors are reported on stderr; a missing image exits with status 2,
    every other failure with status 1.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print("Image Processor CLI")
        print(f"Version {__version__}")
        print("Upload, resize and thumbnail images through a durable task queue")
        sys.exit(0)
        return

    if args.command is None:
        parser.print_help()
        sys.exit(1)
        return

    try:
        config = ServiceConfig.from_env()
        if args.command == "init-db":
            cmd_init_db(config, args)
            return
        pipeline = PipelineFactory.create_pipeline(config)
        try:
            PIPELINE_COMMANDS[args.command](pipeline, args)
        finally:
            pipeline.close()
    except ImageNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ImageProcessorError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
        return


if __name__ == "__main__":
    main()
