"""Process exit codes for mroast."""

FAILURE = 1
USAGE = 2
