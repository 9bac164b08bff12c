from locallift.database.tables.base_class import Base, BasePublic
from locallift.database.tables.batch_jobs_table import BatchItemResults, BatchJobs
from locallift.database.tables.gbp_integrations_table import GbpIntegrations
from locallift.database.tables.keyword_tracking_table import KeywordRanks, KeywordTracking
from locallift.database.tables.scheduled_posts_table import ScheduledPosts

__all__ = [
    "Base",
    "BasePublic",
    "BatchItemResults",
    "BatchJobs",
    "GbpIntegrations",
    "KeywordRanks",
    "KeywordTracking",
    "ScheduledPosts",
]
