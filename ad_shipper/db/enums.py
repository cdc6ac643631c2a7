from enum import Enum


class PipelineJobStatusEnum(str, Enum):
    queued = "queued"
    analyzing = "analyzing"
    writing_copy = "writing_copy"
    reviewing_copy = "reviewing_copy"
    updating_workspace = "updating_workspace"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"
