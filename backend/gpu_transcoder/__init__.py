"""GPU transcode orchestration client.

Client-side orchestration for a remote GPU transcoding worker: job submission,
lifecycle polling, preset heuristics, path translation between the web host and
the worker host, and post-completion thumbnail and cleanup steps.

Modules:
    - core: Configuration, structured logging, tracing, metrics
    - modules.transcoding: Worker client, job tracker, side-effect orchestrators
"""

__version__ = "0.1.0"
