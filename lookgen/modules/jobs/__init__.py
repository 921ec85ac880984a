"""
Jobs Module

Remote generation job records and per-session poll state.
"""

from lookgen.modules.jobs.models import Job, JobType, JobStatus, PollState, CompositeResult

__all__ = ["Job", "JobType", "JobStatus", "PollState", "CompositeResult"]
