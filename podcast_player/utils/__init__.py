from .files import remove_file

__all__ = ["remove_file"]
