import json
from typing import Any, Dict, List, Optional, Tuple
from grpcbridge.errors import BadInputError, ReadFailureError


class MetadataPair:

    def __init__(self, name: str, value: str):
        self.name = name
        self.value = value

    def to_dict(self):
        return {'name': self.name, 'value': self.value}

    def __eq__(self, other):
        return isinstance(other, MetadataPair) and (self.name, self.value) == (other.name, other.value)

    def __repr__(self):
        return f"MetadataPair({self.name!r}, {self.value!r})"


class RequestEnvelope:
    """One invocation request: optional timeout, call metadata and the messages to send.

    ``data`` is an immutable tuple of decoded JSON values, one per message.
    """

    def __init__(self, data=(), metadata=None, timeout_seconds: Optional[float] = None):
        self.data: Tuple[Any, ...] = tuple(data)
        self.metadata: List[MetadataPair] = list(metadata or [])
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_json(cls, body):
        try:
            obj = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise BadInputError(str(e)) from e
        return cls.from_dict(obj)

    @classmethod
    def from_stream(cls, stream):
        try:
            body = stream.read()
        except OSError as e:
            raise ReadFailureError(str(e)) from e
        return cls.from_json(body)

    @classmethod
    def from_dict(cls, obj):
        if not isinstance(obj, dict):
            raise BadInputError("request body must be a JSON object")

        timeout = obj.get('timeout_seconds')
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
                raise BadInputError("timeout_seconds must be a number")
            timeout = float(timeout)

        metadata = []
        for entry in obj.get('metadata') or []:
            if not isinstance(entry, dict) or not isinstance(entry.get('name'), str) \
                    or not isinstance(entry.get('value', ''), str):
                raise BadInputError("metadata entries must be objects with string name and value")
            metadata.append(MetadataPair(entry['name'], entry.get('value', '')))

        data = obj.get('data')
        if data is None:
            data = []
        if not isinstance(data, list):
            raise BadInputError("data must be an array")
        return cls(data=data, metadata=metadata, timeout_seconds=timeout)

    def to_dict(self) -> Dict[str, Any]:
        obj = {
            'metadata': [m.to_dict() for m in self.metadata],
            'data': list(self.data),
        }
        if self.timeout_seconds is not None:
            obj['timeout_seconds'] = self.timeout_seconds
        return obj


class Example:
    """A named, ready-made request for one method, offered to clients as a starting point."""

    def __init__(self, name: str, service: str, method: str, request: RequestEnvelope = None):
        self.name = name
        self.service = service
        self.method = method
        self.request = request or RequestEnvelope()

    @classmethod
    def from_dict(cls, obj):
        if not isinstance(obj, dict):
            raise BadInputError("example must be a JSON object")
        for key in ('name', 'service', 'method'):
            if not isinstance(obj.get(key), str) or not obj[key]:
                raise BadInputError(f"example {key} must be a non-empty string")
        try:
            request = RequestEnvelope.from_dict(obj.get('request') or {})
        except BadInputError as e:
            raise BadInputError(f"example {obj['name']!r}: {e}") from e
        return cls(obj['name'], obj['service'], obj['method'], request)

    @property
    def full_method_name(self) -> str:
        return f"{self.service}.{self.method}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'service': self.service,
            'method': self.method,
            'request': self.request.to_dict(),
        }


def load_examples(body) -> List[Example]:
    """Parses a JSON array of examples."""
    try:
        obj = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise BadInputError(str(e)) from e
    if not isinstance(obj, list):
        raise BadInputError("examples must be a JSON array")
    return [Example.from_dict(item) for item in obj]


class ResponseElement:

    def __init__(self, message: Any, is_error: bool = False):
        self.message = message
        self.is_error = is_error

    def to_dict(self):
        return {'message': self.message, 'isError': self.is_error}


class RequestStats:

    def __init__(self, total: int = 0, sent: int = 0):
        self.total = total
        self.sent = sent

    def to_dict(self):
        return {'total': self.total, 'sent': self.sent}


class RpcErrorInfo:

    def __init__(self, code: int, name: str, message: str, details: List[ResponseElement] = None):
        self.code = code
        self.name = name
        self.message = message
        self.details = list(details or [])

    def to_dict(self):
        return {
            'code': self.code,
            'name': self.name,
            'message': self.message,
            'details': [d.to_dict() for d in self.details],
        }


class ResponseEnvelope:

    def __init__(self, total: int = 0):
        self.headers: List[MetadataPair] = []
        self.responses: List[ResponseElement] = []
        self.requests = RequestStats(total=total)
        self.trailers: List[MetadataPair] = []
        self.error: Optional[RpcErrorInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'headers': [h.to_dict() for h in self.headers],
            'error': self.error.to_dict() if self.error is not None else None,
            'responses': [r.to_dict() for r in self.responses],
            'requests': self.requests.to_dict(),
            'trailers': [t.to_dict() for t in self.trailers],
        }

    def to_json(self, indent=2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
