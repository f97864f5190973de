"""
Database Package
================

Exports key database components.
"""

from sessionlens.db.models import (
    # Base
    Base,
    # Ingested tables
    SessionModel, ToolUsageModel, AgentSpawnModel,
    ToolSequenceModel, SkillUsageModel,
    # Derived tables
    PatternModel,
    # Collaborator tables
    JudgeVerdictModel, MetricModel, UserFeedbackModel,
    ALL_TABLES,
)
from sessionlens.db.connection import init_db, create_engine_for
