from __future__ import annotations

from functools import lru_cache
from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_session
from .services.collector import PageViewCollector
from .services.daily_counters import DailyCounterStore
from .services.report import ReportBuilder
from .settings import AnalyticsSettings, load_settings
from .utils.path_classifier import PathClassifier


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


@lru_cache(maxsize=1)
def get_settings() -> AnalyticsSettings:
    return load_settings()


def get_store(db: Session = Depends(get_db)) -> DailyCounterStore:
    return DailyCounterStore(db)


def get_classifier(settings: AnalyticsSettings = Depends(get_settings)) -> PathClassifier:
    return PathClassifier(settings)


def get_collector(settings: AnalyticsSettings = Depends(get_settings)) -> PageViewCollector:
    return PageViewCollector(settings)


def get_report_builder(
    store: DailyCounterStore = Depends(get_store),
    settings: AnalyticsSettings = Depends(get_settings),
) -> ReportBuilder:
    return ReportBuilder(store, settings)
