from dealerbot.core.extraction.preference_extractor import (  # noqa: F401
    PreferenceDelta,
    ExtractionResult,
    PreferenceExtractor,
    extract_with_rules,
    merge_with_profile,
    confidence_for,
)
