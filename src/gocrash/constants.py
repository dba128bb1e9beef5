"""Constants for the gocrash runner."""

# Worker pool defaults
DEFAULT_CONCURRENCY = 2

# Test suite run inside each cloned volume, relative to its mountpoint
DEFAULT_TEST_COMMAND = ["bash", "./all.bash"]
DEFAULT_TEST_DIR = "goroot/src"

# Storage commands
DEFAULT_ZFS_COMMAND = "zfs"
DEFAULT_PRIVILEGE_COMMAND = ["pfexec"]

# Output sinks left in each volume
STDOUT_SINK = "test_run_stdout"
STDERR_SINK = "test_run_stderr"

# Resource naming
WORKING_AREA_PREFIX = "gocrash"

DEFAULT_LOG_LEVEL = "WARNING"

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
