from functools import lru_cache

from healthmate.config import get_settings
from healthmate.database import SessionLocal
from healthmate.pipeline import AnalysisQueue
from healthmate.storage import StorageProvider, build_storage


@lru_cache
def get_storage() -> StorageProvider:
    return build_storage(get_settings())


@lru_cache
def get_analysis_queue() -> AnalysisQueue:
    return AnalysisQueue(SessionLocal, timeout=get_settings().analysis_timeout_seconds)
