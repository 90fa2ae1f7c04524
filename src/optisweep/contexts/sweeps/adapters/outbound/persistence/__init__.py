from .files import FileSweepJobArchive
from .in_memory import InMemorySweepJobRegistry

__all__ = ["FileSweepJobArchive", "InMemorySweepJobRegistry"]
