from pathlib import Path

DEFAULT_DATA_DIR = (Path(__file__).parent.parent.resolve() / "data").absolute().resolve()

# Bundled notification templates
BUNDLED_TEMPLATE_DIR = Path(__file__).parent / "reporting" / "templates"
DEFAULT_TEMPLATE_NAME = "default.txt.j2"

# Scheduling defaults
DEFAULT_SCAN_INTERVAL_SECONDS = 3600  # 1 hour
DEFAULT_SEVERITY_THRESHOLD = "LOW"
SCAN_ON_START = True  # Fire the first tick immediately instead of after one interval

# Trivy scanner constants
TRIVY_DEFAULT_PATH = "trivy"
TRIVY_DEFAULT_TIMEOUT = 300  # 5 minutes
# Passed as --exit-code so "vulnerabilities found" is distinguishable from Trivy's own
# failure code (1)
TRIVY_VULNERABLE_EXIT_CODE = 5
TRIVY_SEVERITIES = "CRITICAL,HIGH,MEDIUM,LOW"
TRIVY_ENV_PREFIX = "TRIVY"  # Variables with this prefix are forwarded to Trivy
# Also forwarded so Trivy can reach the Docker daemon, registries and its cache
TRIVY_PASSTHROUGH_ENV = (
    "PATH",
    "HOME",
    "TMPDIR",
    "XDG_CACHE_HOME",
    "DOCKER_HOST",
    "DOCKER_CONFIG",
    "DOCKER_CERT_PATH",
    "DOCKER_TLS_VERIFY",
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "NO_PROXY",
    "http_proxy",
    "https_proxy",
    "no_proxy",
)
TRIVY_ERROR_SNIPPET_CHARS = 500  # Max stderr characters carried in error messages

# Shell convention for "command not found" / "not executable"
EXIT_CODE_NOT_FOUND = 127
EXIT_CODE_NOT_EXECUTABLE = 126

# Notification constants
SHOUTRRR_DEFAULT_PATH = "shoutrrr"
NOTIFY_DEFAULT_TIMEOUT = 30  # seconds per delivery attempt
NOTIFY_MAX_ATTEMPTS = 3
NOTIFY_RETRY_BASE_DELAY = 1.0  # Base delay in seconds for exponential backoff
NOTIFY_RETRY_MAX_DELAY = 30.0
NOTIFY_RETRY_BACKOFF_FACTOR = 2.0
NOTIFY_RETRY_JITTER_FACTOR = 0.1
COMMIT_ON_PARTIAL_DELIVERY = True
COMMIT_ON_FAILED_DELIVERY = False  # Undelivered findings stay new and are retried next cycle

# Container discovery
DOCKER_DEFAULT_PATH = "docker"
DOCKER_DISCOVERY_TIMEOUT = 30

# Dedup state persistence
SEEN_FINDINGS_CATEGORY = "seen_findings"

# Logging
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
