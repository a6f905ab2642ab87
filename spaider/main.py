import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from spaider.completion import CompletionClient
from spaider.pipeline import PipelineContext, run_pipeline

logger = logging.getLogger(__name__)

_EVENT_PREFIX = {
    "status": "· ",
    "output": "✓ ",
    "error": "✗ ",
    "result": "",
}


def setup_logging() -> str:
    """Configure file logging. Returns the log file path."""
    log_dir = Path("log")
    log_dir.mkdir(exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_file = log_dir / f"spaider-{timestamp}.log"
    logging.basicConfig(
        filename=str(log_file),
        level=logging.DEBUG,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    return str(log_file)


async def run(
    client: CompletionClient,
    request: str,
    files: list[str],
    project_root: str,
    dry_run: bool = False,
    batch: bool = False,
) -> int:
    """Run one request through the pipeline, printing every event.

    Returns the process exit status.
    """
    ctx = PipelineContext.create(request, project_root, files)
    status = 0
    async for event, message in run_pipeline(client, ctx, dry_run=dry_run, batch=batch):
        if event == "error":
            status = 1
            print(f"{_EVENT_PREFIX[event]}{message}", file=sys.stderr)
        else:
            print(f"{_EVENT_PREFIX.get(event, '')}{message}")
    return status


def main():
    parser = argparse.ArgumentParser(
        description="spaider – apply natural-language edit requests to a codebase"
    )
    parser.add_argument("request", help="What to change, or a question about the code")
    parser.add_argument(
        "files",
        nargs="*",
        help="Files to start from, relative to the project root",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute changes without writing or deleting files",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Generate the changes for all planned files in one request",
    )
    parser.add_argument(
        "--log",
        action="store_true",
        help="Enable logging to log/spaider-{datetime}.log",
    )
    args = parser.parse_args()

    if args.log:
        log_file = setup_logging()
        print(f"📝 Logging to: {log_file}")

    project_root = os.path.abspath(args.root or os.getcwd())
    if not os.path.isdir(project_root):
        parser.error(f"Project root is not a directory: {project_root}")

    client = CompletionClient.from_config()
    logger.info("Running request in %s", project_root)
    status = asyncio.run(
        run(
            client,
            args.request,
            args.files,
            project_root,
            dry_run=args.dry_run,
            batch=args.batch,
        )
    )
    sys.exit(status)


if __name__ == "__main__":  # pragma: no cover
    main()
