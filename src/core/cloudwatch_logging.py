"""
CloudWatch logging via watchtower.

Ships only pipeline-relevant logs (stage progress, pipeline events, provider
and storage failures) plus errors from anywhere, to keep costs minimal.
Disabled unless CLOUDWATCH_ENABLED=true; see CloudWatchConfig for the
remaining settings. Needs the ``cloudwatch`` extra and CloudWatch Logs IAM
permissions.
"""

import logging
from typing import Optional

from src.core.config import CloudWatchConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class PipelineLogFilter(logging.Filter):
    """Only pass through logs from pipeline modules or ERROR+ from anywhere."""

    PIPELINE_MODULES = (
        "src.services.",
        "src.pipeline.events",
        "src.core.llm_connector",
        "src.core.image_generator",
        "src.core.storage",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True
        if record.levelno >= logging.INFO:
            return record.name.startswith(self.PIPELINE_MODULES)
        return False


def setup_cloudwatch_logging(config: Optional[CloudWatchConfig] = None) -> bool:
    """
    Attach a CloudWatch handler to the root logger.

    Returns True if the handler was attached. A missing watchtower package
    or bad credentials only produce a warning, since log shipping must not
    stop the service from starting.
    """
    config = config or CloudWatchConfig()
    if not config.enabled:
        return False

    try:
        import watchtower
    except ImportError:
        logger.warning("CLOUDWATCH_ENABLED=true but watchtower is not installed. pip install watchtower")
        return False

    try:
        handler = watchtower.CloudWatchLogHandler(
            log_group_name=config.log_group,
            log_stream_name=config.log_stream,
            send_interval=config.send_interval,
            max_batch_count=config.max_batch_count,
        )
    except Exception as e:
        logger.warning("Failed to initialize CloudWatch logging: %s", e)
        return False

    handler.setLevel(logging.INFO)
    handler.addFilter(PipelineLogFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    logger.info("CloudWatch logging enabled: group=%s", config.log_group)
    return True


def flush_cloudwatch_logging() -> None:
    """Flush and detach any CloudWatch handlers. Call on shutdown."""
    try:
        import watchtower
    except ImportError:
        return

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, watchtower.CloudWatchLogHandler):
            handler.flush()
            handler.close()
            root.removeHandler(handler)
