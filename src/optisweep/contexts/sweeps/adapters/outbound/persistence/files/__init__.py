from .file_sweep_job_archive import FileSweepJobArchive

__all__ = ["FileSweepJobArchive"]
