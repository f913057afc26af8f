import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from friendfinder.tasks.locations import reindex_geohashes_task  # noqa: E402


def main() -> None:
    """Recompute stored geohashes after a storage precision change."""

    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("--precision", type=int, default=None)
    parser.add_argument("--batch-size", type=int, default=500)
    parser.add_argument(
        "--async",
        dest="enqueue",
        action="store_true",
        help="enqueue on the Celery broker instead of running inline",
    )
    args = parser.parse_args()

    if args.enqueue:
        result = reindex_geohashes_task.delay(args.precision, args.batch_size)
        print(f"queued {result.id}")
        return

    print(reindex_geohashes_task.apply(args=(args.precision, args.batch_size)).get())


if __name__ == "__main__":
    main()
