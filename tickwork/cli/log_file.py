"""File logging shared by the --log-file option and the logging config."""

import logging
from pathlib import Path


def add_file_handler(path: Path, level: int, format_str: str) -> logging.FileHandler:
    """Attach a root file handler for a path.

    A handler already writing to the same file is reused, and its level
    is lowered to ``level`` if needed, so each line is written once.

    Args:
        path: Log file path; missing parent directories are created
        level: Minimum level written to the file
        format_str: Log record format for a new handler

    Returns:
        The handler writing to the file
    """
    path = Path(path).resolve()
    root = logging.getLogger()

    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename).resolve() == path:
            if handler.level > level:
                handler.setLevel(level)
            break
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(format_str))
        root.addHandler(handler)

    if root.level > level:
        root.setLevel(level)

    return handler
