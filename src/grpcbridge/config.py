import os
from typing import List, Optional
from grpcbridge.constants import (
    DEFAULT_CONNECT_TIMEOUT_S, ENV_PREFIX, RETRY_MAX_ATTEMPTS
)
from grpcbridge.errors import UserInputError


def _env(name, default=None):
    return os.environ.get(ENV_PREFIX + name, default)


def _env_list(name) -> List[str]:
    value = _env(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


def _env_float(name, default):
    value = _env(name)
    if value is None or value == '':
        return default
    try:
        return float(value)
    except ValueError as e:
        raise UserInputError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from e


def _env_bool(name, default):
    value = _env(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class BridgeConfig:
    """Settings for one bridge process.

    Header lists use ``name: value`` strings. ``rpc_headers`` go on every
    invoked RPC, ``reflect_headers`` only on reflection requests and
    ``preserve_headers`` names HTTP request headers that are forwarded to
    the RPC as-is.
    """

    def __init__(self,
                 target: str = '',
                 use_reflection: bool = True,
                 protoset_files: Optional[List[str]] = None,
                 proto_files: Optional[List[str]] = None,
                 import_paths: Optional[List[str]] = None,
                 services: Optional[List[str]] = None,
                 methods: Optional[List[str]] = None,
                 rpc_headers: Optional[List[str]] = None,
                 reflect_headers: Optional[List[str]] = None,
                 preserve_headers: Optional[List[str]] = None,
                 max_time: float = 0,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
                 connect_attempts: int = RETRY_MAX_ATTEMPTS,
                 examples_file: Optional[str] = None,
                 emit_defaults: bool = True,
                 exclude_reflection_types: bool = False,
                 host: str = '127.0.0.1',
                 port: int = 8080,
                 log_file: Optional[str] = None,
                 log_to_console: bool = False):
        self.target = target
        self.use_reflection = use_reflection
        self.protoset_files = list(protoset_files or [])
        self.proto_files = list(proto_files or [])
        self.import_paths = list(import_paths or [])
        self.services = list(services or [])
        self.methods = list(methods or [])
        self.rpc_headers = list(rpc_headers or [])
        self.reflect_headers = list(reflect_headers or [])
        self.preserve_headers = list(preserve_headers or [])
        self.max_time = max_time
        self.connect_timeout = connect_timeout
        self.connect_attempts = connect_attempts
        self.examples_file = examples_file
        self.emit_defaults = emit_defaults
        self.exclude_reflection_types = exclude_reflection_types
        self.host = host
        self.port = port
        self.log_file = log_file
        self.log_to_console = log_to_console
        self.validate()

    @classmethod
    def from_env(cls):
        return cls(
            target=_env('TARGET', ''),
            use_reflection=_env_bool('USE_REFLECTION', not (_env_list('PROTOSET') or _env_list('PROTO'))),
            protoset_files=_env_list('PROTOSET'),
            proto_files=_env_list('PROTO'),
            import_paths=_env_list('IMPORT_PATH'),
            services=_env_list('SERVICES'),
            methods=_env_list('METHODS'),
            rpc_headers=_env_list('RPC_HEADERS'),
            reflect_headers=_env_list('REFLECT_HEADERS'),
            preserve_headers=_env_list('PRESERVE_HEADERS'),
            max_time=_env_float('MAX_TIME', 0),
            connect_timeout=_env_float('CONNECT_TIMEOUT', DEFAULT_CONNECT_TIMEOUT_S),
            connect_attempts=int(_env_float('CONNECT_ATTEMPTS', RETRY_MAX_ATTEMPTS)),
            examples_file=_env('EXAMPLES'),
            emit_defaults=_env_bool('EMIT_DEFAULTS', True),
            exclude_reflection_types=_env_bool('EXCLUDE_REFLECTION_TYPES', False),
            host=_env('HOST', '127.0.0.1'),
            port=int(_env_float('PORT', 8080)),
            log_file=_env('LOG_FILE'),
            log_to_console=_env_bool('LOG_TO_CONSOLE', False),
        )

    def validate(self):
        if self.max_time < 0:
            raise UserInputError("max_time cannot be negative")
        if self.connect_timeout < 0:
            raise UserInputError("connect_timeout cannot be negative")
        if self.connect_attempts < 1:
            raise UserInputError("connect_attempts must be at least 1")
        if self.protoset_files and self.proto_files:
            raise UserInputError("use protoset files or proto files, not both")
        if not self.use_reflection and not (self.protoset_files or self.proto_files):
            raise UserInputError("no protoset files or proto files given and reflection is disabled")
        if self.protoset_files and self.reflect_headers and not self.use_reflection:
            raise UserInputError("reflection headers are only used together with server reflection")
