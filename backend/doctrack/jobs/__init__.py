from .supervisor import JobSupervisor, JOB_IDS

__all__ = ["JobSupervisor", "JOB_IDS"]
