"""Feature modules.

- transcoding: Remote GPU worker client, job polling and post-processing steps
"""
