"""Filesystem helpers shared by the store and the download manager."""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


def remove_file(path: Optional[str]) -> bool:
    """
    Remove a local file, tolerating one that is already gone.

    Parameters:
        path (Optional[str]): Path of the file to remove; `None` or empty is ignored.

    Returns:
        bool: `True` if a file was removed, `False` if there was nothing to remove or removal failed.
    """
    if not path:
        return False

    try:
        os.remove(path)
        logger.debug(f"Deleted file: {path}")
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to delete {path}: {e}")
        return False
