import os

# Settings directory can be relocated for tests or sandboxed installs.
SETTINGS_DIR_NAME = os.environ.get("FOCUSLENS_HOME", ".focuslens")

UNKNOWN_CATEGORY = "unknown"

ACCESSIBILITY_FAMILY = "accessibility"
OCR_FAMILY = "ocr"
APPLICATION_STATE_FAMILY = "application_state"
FUSION_FAMILY = "fusion"
