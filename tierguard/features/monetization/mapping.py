"""
tierguard/features/monetization/mapping.py

Static lookup tables: feature -> action -> usage field -> stored resource.

Every feature maps to exactly one action and every action to exactly one usage
field. The tables are checked for consistency by the test suite; nothing here
is mutated at runtime.
"""

from enum import Enum
from typing import Dict, Optional

from tierguard.models.plan import Resource


class Feature(str, Enum):
    VIDEO_GENERATION = "video_generation"
    SOURCE_VIDEOS = "source_videos"
    VOICE_CLONE = "voice_clone"
    ACCOUNT_ANALYSIS = "account_analysis"
    ACCOUNT_INSIGHTS = "account_insights"
    ACCOUNT_CHAT = "account_chat"
    SCRIPT_CONVERSATIONS = "script_conversations"
    SCRIPT_GENERATION = "script_generation"
    CHAT_AI = "chat_ai"


class Action(str, Enum):
    VIDEO_GENERATION = "video_generation"
    SOURCE_VIDEO_UPLOAD = "source_video_upload"
    VOICE_CLONE = "voice_clone"
    ACCOUNT_ANALYSIS = "account_analysis"
    ACCOUNT_INSIGHTS = "account_insights"
    ACCOUNT_CHAT = "account_chat"
    SCRIPT_CONVERSATIONS = "script_conversations"


class UsageField(str, Enum):
    VIDEOS_GENERATED = "videos_generated"
    SOURCE_VIDEOS_USED = "source_videos_used"
    VOICE_CLONES_USED = "voice_clones_used"
    ACCOUNT_ANALYSIS_USED = "account_analysis_used"
    ACCOUNT_INSIGHTS_USED = "account_insights_used"
    ACCOUNT_CHAT_USED = "account_chat_used"
    SCRIPT_CONVERSATIONS_USED = "script_conversations_used"


FEATURE_TO_ACTION_MAP: Dict[Feature, Action] = {
    Feature.VIDEO_GENERATION: Action.VIDEO_GENERATION,
    Feature.SOURCE_VIDEOS: Action.SOURCE_VIDEO_UPLOAD,
    Feature.VOICE_CLONE: Action.VOICE_CLONE,
    Feature.ACCOUNT_ANALYSIS: Action.ACCOUNT_ANALYSIS,
    Feature.ACCOUNT_INSIGHTS: Action.ACCOUNT_INSIGHTS,
    Feature.ACCOUNT_CHAT: Action.ACCOUNT_CHAT,
    Feature.SCRIPT_CONVERSATIONS: Action.SCRIPT_CONVERSATIONS,
    Feature.SCRIPT_GENERATION: Action.SCRIPT_CONVERSATIONS,  # same quota as conversations
    Feature.CHAT_AI: Action.SCRIPT_CONVERSATIONS,
}

ACTION_TO_USAGE_FIELD_MAP: Dict[Action, UsageField] = {
    Action.VIDEO_GENERATION: UsageField.VIDEOS_GENERATED,
    Action.SOURCE_VIDEO_UPLOAD: UsageField.SOURCE_VIDEOS_USED,
    Action.VOICE_CLONE: UsageField.VOICE_CLONES_USED,
    Action.ACCOUNT_ANALYSIS: UsageField.ACCOUNT_ANALYSIS_USED,
    Action.ACCOUNT_INSIGHTS: UsageField.ACCOUNT_INSIGHTS_USED,
    Action.ACCOUNT_CHAT: UsageField.ACCOUNT_CHAT_USED,
    Action.SCRIPT_CONVERSATIONS: UsageField.SCRIPT_CONVERSATIONS_USED,
}

FEATURE_TO_USAGE_FIELD_MAP: Dict[Feature, UsageField] = {
    Feature.VIDEO_GENERATION: UsageField.VIDEOS_GENERATED,
    Feature.SOURCE_VIDEOS: UsageField.SOURCE_VIDEOS_USED,
    Feature.VOICE_CLONE: UsageField.VOICE_CLONES_USED,
    Feature.ACCOUNT_ANALYSIS: UsageField.ACCOUNT_ANALYSIS_USED,
    Feature.ACCOUNT_INSIGHTS: UsageField.ACCOUNT_INSIGHTS_USED,
    Feature.ACCOUNT_CHAT: UsageField.ACCOUNT_CHAT_USED,
    Feature.SCRIPT_CONVERSATIONS: UsageField.SCRIPT_CONVERSATIONS_USED,
    Feature.SCRIPT_GENERATION: UsageField.SCRIPT_CONVERSATIONS_USED,
    Feature.CHAT_AI: UsageField.SCRIPT_CONVERSATIONS_USED,
}

# Insights and chat share the account analysis counters in storage
USAGE_FIELD_TO_RESOURCE_MAP: Dict[UsageField, Resource] = {
    UsageField.VIDEOS_GENERATED: Resource.VIDEOS_GENERATED,
    UsageField.SOURCE_VIDEOS_USED: Resource.SOURCE_VIDEOS,
    UsageField.VOICE_CLONES_USED: Resource.VOICE_CLONES,
    UsageField.ACCOUNT_ANALYSIS_USED: Resource.ACCOUNT_ANALYSIS,
    UsageField.ACCOUNT_INSIGHTS_USED: Resource.ACCOUNT_ANALYSIS,
    UsageField.ACCOUNT_CHAT_USED: Resource.ACCOUNT_ANALYSIS,
    UsageField.SCRIPT_CONVERSATIONS_USED: Resource.SCRIPT_CONVERSATIONS,
}


def get_action_for_feature(feature: Feature) -> Action:
    return FEATURE_TO_ACTION_MAP[feature]


def get_usage_field_for_action(action: Action) -> UsageField:
    return ACTION_TO_USAGE_FIELD_MAP[action]


def get_usage_field_for_feature(feature: Feature) -> UsageField:
    return FEATURE_TO_USAGE_FIELD_MAP[feature]


def get_resource_for_field(field: UsageField) -> Resource:
    return USAGE_FIELD_TO_RESOURCE_MAP[field]


def parse_feature(value: str) -> Optional[Feature]:
    """Return the Feature for a raw id, or None if it is not a known feature."""
    try:
        return Feature(value)
    except ValueError:
        return None


def parse_action(value: str) -> Optional[Action]:
    try:
        return Action(value)
    except ValueError:
        return None


def parse_usage_field(value: str) -> Optional[UsageField]:
    try:
        return UsageField(value)
    except ValueError:
        return None
