"""GPU transcoding orchestration.

Submits encode jobs to a remote GPU worker over HTTP, tracks them by polling,
and runs thumbnail and temp upload cleanup steps once they complete.
"""
