"""Well-known journal field names and syslog priorities."""

from enum import IntEnum

# User fields
MESSAGE = "MESSAGE"
MESSAGE_ID = "MESSAGE_ID"
PRIORITY = "PRIORITY"
CODE_FILE = "CODE_FILE"
CODE_LINE = "CODE_LINE"
CODE_FUNC = "CODE_FUNC"
ERRNO = "ERRNO"
INVOCATION_ID = "INVOCATION_ID"
USER_INVOCATION_ID = "USER_INVOCATION_ID"
SYSLOG_FACILITY = "SYSLOG_FACILITY"
SYSLOG_IDENTIFIER = "SYSLOG_IDENTIFIER"
SYSLOG_PID = "SYSLOG_PID"
SYSLOG_TIMESTAMP = "SYSLOG_TIMESTAMP"
SYSLOG_RAW = "SYSLOG_RAW"
DOCUMENTATION = "DOCUMENTATION"

# Trusted fields, added by the store
PID = "_PID"
UID = "_UID"
GID = "_GID"
COMM = "_COMM"
EXE = "_EXE"
CMDLINE = "_CMDLINE"
CAP_EFFECTIVE = "_CAP_EFFECTIVE"
AUDIT_SESSION = "_AUDIT_SESSION"
AUDIT_LOGINUID = "_AUDIT_LOGINUID"
SYSTEMD_CGROUP = "_SYSTEMD_CGROUP"
SYSTEMD_SESSION = "_SYSTEMD_SESSION"
SYSTEMD_UNIT = "_SYSTEMD_UNIT"
SYSTEMD_USER_UNIT = "_SYSTEMD_USER_UNIT"
SYSTEMD_OWNER_UID = "_SYSTEMD_OWNER_UID"
SYSTEMD_SLICE = "_SYSTEMD_SLICE"
SELINUX_CONTEXT = "_SELINUX_CONTEXT"
SOURCE_REALTIME_TIMESTAMP = "_SOURCE_REALTIME_TIMESTAMP"
BOOT_ID = "_BOOT_ID"
MACHINE_ID = "_MACHINE_ID"
HOSTNAME = "_HOSTNAME"
TRANSPORT = "_TRANSPORT"

# Address fields, never stored, only meaningful in exports
CURSOR = "__CURSOR"
REALTIME_TIMESTAMP = "__REALTIME_TIMESTAMP"
MONOTONIC_TIMESTAMP = "__MONOTONIC_TIMESTAMP"

RESERVED_PREFIX = "_"


class Priority(IntEnum):
    """Syslog priority levels as stored in the PRIORITY field."""

    EMERGENCY = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7
