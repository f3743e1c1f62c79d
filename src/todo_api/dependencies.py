from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import Depends

from .ranking import ScoringAlgorithm
from .repositories import Repository, get_repository, utc_now
from .settings import get_settings
from .voice import VoicePipeline


def get_repo(repo: Repository = Depends(get_repository)) -> Repository:
    """
    Dependency wrapper for repository to keep signatures clean.
    """
    return repo


def get_clock() -> Callable[[], datetime]:
    """Clock used for ranking; overridden in tests to pin "now"."""
    return utc_now


def get_ranking_algorithm() -> ScoringAlgorithm:
    return ScoringAlgorithm(get_settings().ranking_algorithm)


def get_voice_pipeline() -> VoicePipeline:
    return VoicePipeline.from_settings(get_settings())
