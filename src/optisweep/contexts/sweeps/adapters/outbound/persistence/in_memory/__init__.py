from .sweep_job_registry import InMemorySweepJobRegistry

__all__ = ["InMemorySweepJobRegistry"]
