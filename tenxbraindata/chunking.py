from typing import List, Optional, Tuple

from .errors import InvalidArgument


def plan_chunks(total_columns: int, chunk_size: int) -> List[Tuple[int, int]]:
    """
    Splits the columns [0, total_columns) into contiguous blocks.

    Every block holds `chunk_size` columns except the last one, which holds
    what is left.

    Args:
        total_columns (int): number of columns of the matrix.
        chunk_size (int): number of columns per block.

    Raises:
        InvalidArgument: if either value is not a positive integer.

    Returns:
        list[tuple[int, int]]: the (start, end) ranges, in ascending order.
    """
    if int(total_columns) != total_columns or total_columns <= 0:
        raise InvalidArgument(
            f"total_columns must be a positive integer, got {total_columns}"
        )
    if int(chunk_size) != chunk_size or chunk_size <= 0:
        raise InvalidArgument(f"chunk_size must be a positive integer, got {chunk_size}")
    total_columns, chunk_size = int(total_columns), int(chunk_size)
    return [
        (start, min(start + chunk_size, total_columns))
        for start in range(0, total_columns, chunk_size)
    ]


def chunk_size_for_budget(
    n_rows: int,
    chunk_size: int,
    memory_budget: Optional[int] = None,
    itemsize: int = 8,
) -> int:
    """
    Clamps `chunk_size` so that one dense block of `n_rows` rows fits in `memory_budget` bytes.

    Args:
        n_rows (int): number of rows of a block.
        chunk_size (int): the configured number of columns per block.
        memory_budget (int, optional): bytes available for one block. None means no limit.
        itemsize (int, optional): bytes per matrix element. Defaults to 8.

    Returns:
        int: the effective chunk size, at least 1.
    """
    if chunk_size <= 0:
        raise InvalidArgument(f"chunk_size must be a positive integer, got {chunk_size}")
    if memory_budget is None:
        return chunk_size
    if memory_budget <= 0:
        raise InvalidArgument(f"memory_budget must be positive, got {memory_budget}")
    fitting = memory_budget // (max(n_rows, 1) * itemsize)
    return int(max(1, min(chunk_size, fitting)))
