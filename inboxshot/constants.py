from __future__ import annotations

DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_WAIT_SECONDS = 10.0

# Attempt floors used by the convergence rule.
APPEARANCE_GRACE_ATTEMPTS = 10
SCREENSHOT_GRACE_ATTEMPTS = 15

PROGRESS_EVERY_ATTEMPTS = 5
REQUEST_TIMEOUT_FACTOR = 0.9

MAX_KEY_LENGTH = 100

DEFAULT_CLIENTS_FILE = "default-clients-eoa.json"
DEFAULT_MAX_DIFF_RATIO = 0.05
DEFAULT_COMPARE_WORKERS = 4

TEMP_DIRNAME = "temp"
ARCHIVE_DIRNAME = "archives"
EMAILS_DIRNAME = "emails"
BASELINES_DIRNAME = "visual-baselines"
RESULTS_DIRNAME = "test-results"
