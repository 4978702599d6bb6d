REFLECTION_SERVICES = (
    'grpc.reflection.v1alpha.ServerReflection',
    'grpc.reflection.v1.ServerReflection',
)

REFLECTION_PACKAGES = (
    'grpc.reflection.v1alpha',
    'grpc.reflection.v1',
)

ANY_TYPE_NAME = 'google.protobuf.Any'

BINARY_HEADER_SUFFIX = '-bin'

# Largest duration representable as signed 64-bit nanoseconds.
MAX_DURATION_NANOS = 2 ** 63 - 1
NANOS_PER_SECOND = 1000000000

# grpc adds a per-call timeout to the wall clock as int64 nanoseconds, so
# longer timeouts are left to the invocation context instead.
MAX_CALL_TIMEOUT_S = 10 * 365 * 24 * 3600.0

# Symbolic names for status codes, indexed by numeric code.
STATUS_CODE_NAMES = {
    0: 'OK',
    1: 'Canceled',
    2: 'Unknown',
    3: 'InvalidArgument',
    4: 'DeadlineExceeded',
    5: 'NotFound',
    6: 'AlreadyExists',
    7: 'PermissionDenied',
    8: 'ResourceExhausted',
    9: 'FailedPrecondition',
    10: 'Aborted',
    11: 'OutOfRange',
    12: 'Unimplemented',
    13: 'Internal',
    14: 'Unavailable',
    15: 'DataLoss',
    16: 'Unauthenticated',
}

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_BACKOFF_S = 0.1
RETRY_MAX_BACKOFF_S = 1.0
RETRY_BACKOFF_MULTIPLIER = 2.0

DEFAULT_CONNECT_TIMEOUT_S = 10.0
DEFAULT_REFLECTION_TIMEOUT_S = 30.0

DEFAULT_LOG_FILE = 'error.log'
LOGGER_NAME = 'grpcbridge'

ENV_PREFIX = 'GRPCBRIDGE_'
