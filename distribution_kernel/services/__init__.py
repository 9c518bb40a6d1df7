"""Services for the distribution kernel (write side and editing session)."""

from distribution_kernel.services.distribution_editor import (
    DistributionEditor,
    EditorResult,
    EditorStatus,
    RequestToken,
)
from distribution_kernel.services.persistence_gateway import (
    PersistenceGateway,
    SqlPersistenceGateway,
)
from distribution_kernel.services.publish_scheduler import PublishScheduler

__all__ = [
    "DistributionEditor",
    "EditorResult",
    "EditorStatus",
    "PersistenceGateway",
    "PublishScheduler",
    "RequestToken",
    "SqlPersistenceGateway",
]
