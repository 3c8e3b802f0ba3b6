import argparse

from tenxbraindata.config import DATASETS, DEFAULT_CHUNK_SIZE, Settings, default_cache_dir


# tenxbraindata summarize --dataset="TENxBrainData20k" --chunk_size=5000 \
# --memory_budget=2000000000 --workers=4
def main(argv=None):
    """
    Main function to either download a dataset or compute its per-cell and per-gene summary.
    """
    parser = argparse.ArgumentParser(
        description="Download the 10x mouse brain datasets and summarize them."
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--dataset",
        type=str,
        default="TENxBrainData",
        choices=sorted(DATASETS),
        help="Name of the dataset.",
    )
    common.add_argument(
        "--cache_dir",
        type=str,
        default=str(default_cache_dir()),
        help="Folder storing downloaded files and computed results.",
    )

    subparsers.add_parser(
        "download", parents=[common], help="Download a dataset and print its path"
    )

    summarize_parser = subparsers.add_parser(
        "summarize",
        parents=[common],
        help="Compute per-cell sums, detected genes and per-gene means",
    )
    summarize_parser.add_argument(
        "--chunk_size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help="Number of cells read per block.",
    )
    summarize_parser.add_argument(
        "--memory_budget",
        type=int,
        default=None,
        help="Maximum number of bytes for one dense block, lowers the chunk size if needed.",
    )
    summarize_parser.add_argument(
        "--workers", type=int, default=1, help="Number of threads reading blocks."
    )
    summarize_parser.add_argument(
        "--force",
        action="store_true",
        help="Recompute the summary even if it is already stored.",
    )
    summarize_parser.add_argument(
        "--lamin",
        action="store_true",
        help="Store the summary in the current LaminDB instance instead of the cache folder.",
    )
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    from tenxbraindata.cache import ObjectCache

    if args.command == "download":
        settings = Settings(cache_dir=args.cache_dir)
        path = ObjectCache(settings.cache_dir, settings.resources).resolve(
            args.dataset
        )
        print(path)
        return

    from tenxbraindata.dataset import load_tenx_brain, summarize
    from tenxbraindata.results import LaminResultCache

    settings = Settings(
        cache_dir=args.cache_dir,
        chunk_size=args.chunk_size,
        memory_budget=args.memory_budget,
        n_workers=args.workers,
    )
    with load_tenx_brain(args.dataset, settings) as data:
        outcome = summarize(
            data,
            settings,
            result_cache=LaminResultCache() if args.lamin else None,
            force=args.force,
        )
        annotated = outcome.value
        print(
            "summary", "loaded from cache:" if outcome.is_cached else "computed:", annotated
        )
        for label, values in [
            ("counts per cell", annotated.col_data["sum"]),
            ("detected genes per cell", annotated.col_data["detected"]),
            ("mean counts per gene", annotated.row_data["mean"]),
        ]:
            print(
                f"{label}: min {values.min():g}, median {values.median():g}, max {values.max():g}"
            )


if __name__ == "__main__":
    main()
