"""Run a test suite repeatedly in parallel on disposable ZFS clones until it fails."""
