"""Centralized constants for mission node types and categories.

This module provides a single source of truth for all node type definitions,
eliminating duplicate string arrays across the engine.
"""

from typing import FrozenSet

# =============================================================================
# TRIGGER NODE TYPES
# =============================================================================

TRIGGER_TYPES: FrozenSet[str] = frozenset([
    'schedule-trigger',
    'manual-trigger',
    'webhook-trigger',
    'event-trigger',
])

# =============================================================================
# DATA NODE TYPES
# =============================================================================

DATA_TYPES: FrozenSet[str] = frozenset([
    'web-search',
    'http-request',
    'rss-feed',
    'coinbase',
    'file-read',
    'form-input',
])

# =============================================================================
# AI NODE TYPES
# =============================================================================

AI_TYPES: FrozenSet[str] = frozenset([
    'ai-summarize',
    'ai-classify',
    'ai-extract',
    'ai-generate',
    'ai-chat',
])

# =============================================================================
# LOGIC NODE TYPES
# =============================================================================

LOGIC_TYPES: FrozenSet[str] = frozenset([
    'condition',
    'switch',
    'loop',
    'merge',
    'split',
    'wait',
])

# Logic nodes whose NodeOutput.port selects which outgoing edges stay live
BRANCHING_TYPES: FrozenSet[str] = frozenset([
    'condition',
    'switch',
    'loop',
])

# =============================================================================
# TRANSFORM NODE TYPES
# =============================================================================

TRANSFORM_TYPES: FrozenSet[str] = frozenset([
    'set-variables',
    'code',
    'format',
    'filter',
    'sort',
    'dedupe',
])

# =============================================================================
# OUTPUT NODE TYPES
# =============================================================================

OUTPUT_TYPES: FrozenSet[str] = frozenset([
    'novachat-output',
    'telegram-output',
    'discord-output',
    'email-output',
    'webhook-output',
    'slack-output',
])

# =============================================================================
# UTILITY NODE TYPES
# =============================================================================

UTILITY_TYPES: FrozenSet[str] = frozenset([
    'sticky-note',
    'sub-workflow',
])

ALL_NODE_TYPES: FrozenSet[str] = (
    TRIGGER_TYPES | DATA_TYPES | AI_TYPES | LOGIC_TYPES
    | TRANSFORM_TYPES | OUTPUT_TYPES | UTILITY_TYPES
)

# =============================================================================
# PORTS AND DEFAULTS
# =============================================================================

MAIN_PORT = 'main'
ERROR_PORT = 'error'
DEFAULT_CHANNEL = 'novachat'
DEFAULT_TIMEZONE = 'America/New_York'

# Names that can never be assigned or traversed from user-authored expressions
BLOCKED_PROPERTY_NAMES: FrozenSet[str] = frozenset([
    '__proto__',
    'prototype',
    'constructor',
])

WEEKDAYS = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')


def is_trigger_node(node_type: str) -> bool:
    """Check if a node type is a trigger node."""
    return node_type in TRIGGER_TYPES


def is_output_node(node_type: str) -> bool:
    """Check if a node type dispatches to a notification channel."""
    return node_type in OUTPUT_TYPES


def is_ai_node(node_type: str) -> bool:
    """Check if a node type calls the LLM completion collaborator."""
    return node_type in AI_TYPES
