"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class ProviderName(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"


class ModelTier(StrEnum):
    PREMIUM = "premium"
    STANDARD = "standard"
    BUDGET = "budget"


class TaskType(StrEnum):
    CHAT = "chat"
    CODEBASE_QA = "codebase_qa"
    CHANGE_ANALYSIS = "change_analysis"
    CHANGELOG_UPDATE = "changelog_update"
    MODULE_DESCRIPTION = "module_description"
    DOCS_GENERATION = "docs_generation"
    QUICK_CLASSIFICATION = "quick_classification"
    CONTEXT_GENERATION = "context_generation"
    DASHBOARD_INSIGHTS = "dashboard_insights"
    PROJECT_INIT = "project_init"
    DEEP_AUDIT = "deep_audit"
    INCREMENTAL_UPDATE = "incremental_update"
