from typing import Any, List, Tuple
import logging
import traceback
import base64
import binascii
import os
import re
from grpcbridge.constants import BINARY_HEADER_SUFFIX, DEFAULT_LOG_FILE, LOGGER_NAME
from grpcbridge.errors import UserInputError

_ENV_REFERENCE = re.compile(r'\$\{([^}]+)\}')


class helper:

    def __init__(self, log_to_console=False, log_file=None):
        log_file = log_file or os.environ.get('GRPCBRIDGE_LOG_FILE', DEFAULT_LOG_FILE)
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.DEBUG)

        # Prevent adding duplicate handlers
        if not self.logger.handlers:
            formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

            file_handler = logging.FileHandler(log_file, delay=True)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

            if log_to_console:
                console_handler = logging.StreamHandler()
                console_handler.setFormatter(formatter)
                self.logger.addHandler(console_handler)

    def log(self, function_name: str, args=None, kwargs=None, output=None, exception: Exception = None):
        args = args or []
        kwargs = kwargs or {}

        self.logger.info(f"Function: {function_name}")

        if (args):
            self.logger.debug(f"Input args: {args}")
        if (kwargs):
            self.logger.debug(f"Input kwargs: {kwargs}")

        if output is not None:
            self.logger.debug(f"Output: {output}")

        if exception is not None:
            self.logger.error(f"Exception in function '{function_name}': {str(exception)}")
            self.logger.error(''.join(traceback.format_exception(type(exception), exception, exception.__traceback__)))

    def expand_headers(self, headers: List[str]) -> List[str]:
        """Replaces ``${NAME}`` references in header strings with environment values."""
        expanded = []
        for header in headers:
            missing = [name for name in _ENV_REFERENCE.findall(header) if name not in os.environ]
            if missing:
                raise UserInputError(f"header {header!r} refers to undefined environment variable(s): {', '.join(missing)}")
            expanded.append(_ENV_REFERENCE.sub(lambda m: os.environ[m.group(1)], header))
        return expanded

    def parse_headers(self, headers: List[str]) -> List[Tuple[str, str]]:
        """Splits ``name: value`` strings into pairs; the value keeps inner whitespace."""
        pairs = []
        for header in headers:
            name, _, value = header.partition(':')
            pairs.append((name.strip(), value.lstrip()))
        return pairs

    def metadata_from_pairs(self, pairs) -> List[Tuple[str, Any]]:
        """Builds outgoing call metadata.

        Names are lower-cased as gRPC requires; values of binary headers are
        base64-decoded.
        """
        metadata = []
        for name, value in pairs:
            name = name.strip().lower()
            if not name:
                continue
            if name.endswith(BINARY_HEADER_SUFFIX):
                value = decode_binary_header(name, value)
            metadata.append((name, value))
        return metadata

    def response_metadata(self, metadata) -> List[Tuple[str, str]]:
        """Sorts received metadata by name and base64-encodes binary values."""
        pairs = []
        for name, value in sorted(metadata or (), key=lambda item: item[0]):
            if name.endswith(BINARY_HEADER_SUFFIX):
                if isinstance(value, str):
                    value = value.encode('utf-8')
                value = base64.b64encode(value).decode('ascii')
            elif isinstance(value, bytes):
                value = value.decode('utf-8', errors='replace')
            pairs.append((name, value))
        return pairs


def decode_binary_header(name, value):
    if isinstance(value, bytes):
        return value
    # Accept padded or unpadded, standard or URL-safe base64.
    padded = value + '=' * (-len(value) % 4)
    try:
        if '-' in value or '_' in value:
            return base64.urlsafe_b64decode(padded)
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise UserInputError(f"header {name!r} must carry a base64 value: {e}") from e
