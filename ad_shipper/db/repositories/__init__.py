from ad_shipper.db.repositories.analysis_cache import AnalysisCacheRepository
from ad_shipper.db.repositories.pipeline_jobs import InvalidJobTransition, PipelineJobsRepository

__all__ = [
    "AnalysisCacheRepository",
    "InvalidJobTransition",
    "PipelineJobsRepository",
]
