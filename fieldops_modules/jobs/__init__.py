"""Jobs: scheduled work, created directly or converted from a quote."""

from fieldops_modules.jobs.models import Job, JobStatus
from fieldops_modules.jobs.service import JobService, fallback_job_title
from fieldops_modules.jobs.workflows import JOB_WORKFLOW

__all__ = ["JOB_WORKFLOW", "Job", "JobService", "JobStatus", "fallback_job_title"]
