"""Shared fixtures for the source_fetch test suite."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from SourceFetch.logging_config import LOGGER_NAME
from SourceFetch.settings import SourceFetchSettings, StagingSettings, invalidate_default_config


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    return tmp_path / "staging"


@pytest.fixture
def settings(staging_root: Path) -> SourceFetchSettings:
    return SourceFetchSettings(staging=StagingSettings(root=staging_root))


@pytest.fixture(autouse=True)
def _isolate_global_state():
    """Reset cached settings and drop handlers installed by ``setup_logging``."""

    invalidate_default_config()
    yield
    invalidate_default_config()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_sourcefetch_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)
