from google.protobuf import descriptor_pool
from google.protobuf import json_format
from google.protobuf.descriptor import Descriptor, FieldDescriptor, FileDescriptor
from google.protobuf.message import Message, DecodeError
from google.protobuf.message_factory import GetMessageClass
from typing import Any
from grpcbridge.constants import ANY_TYPE_NAME
from grpcbridge.DescriptorSource import DescriptorSource
from grpcbridge.envelopes import ResponseElement
from grpcbridge.errors import SymbolNotFoundError
from grpcbridge.helper import helper
from grpcbridge.SchemaWalker import is_map_field


def type_name_from_url(type_url: str) -> str:
    return type_url.rsplit('/', 1)[-1]


class ProtobufConverter(helper):
    """Converts between JSON values and messages for one invocation.

    ``google.protobuf.Any`` payloads are resolved through the descriptor
    source: every type named by a type URL is copied, with its imports and
    known extensions, into a private pool that json_format uses to expand
    the payload inline.
    """

    def __init__(self, descriptor_source: DescriptorSource, emit_defaults: bool = True):
        super().__init__()
        self.source = descriptor_source
        self.emit_defaults = emit_defaults
        self.pool = descriptor_pool.DescriptorPool()
        self._files = set()
        self._types = {}

    def _add_file(self, fd: FileDescriptor):
        pending = [fd]
        while pending:
            current = pending[-1]
            if current.name in self._files:
                pending.pop()
                continue
            missing = [dep for dep in current.dependencies if dep.name not in self._files]
            if missing:
                pending.extend(missing)
                continue
            self.pool.AddSerializedFile(current.serialized_pb)
            self._files.add(current.name)
            pending.pop()

    def _find_in_source(self, name: str) -> Descriptor:
        try:
            return self.source.find_message_type(name)
        except SymbolNotFoundError:
            try:
                return descriptor_pool.Default().FindMessageTypeByName(name)
            except KeyError:
                raise SymbolNotFoundError(name, f"unable to resolve Any type: {name}")

    def resolve_type(self, name: str) -> Descriptor:
        """Makes the named message type, and its extensions, available to json_format."""
        if name in self._types:
            return self._types[name]
        found = self._find_in_source(name)
        self._add_file(found.file)
        try:
            for ext in self.source.all_extensions_for_type(name):
                self._add_file(ext.file)
        except SymbolNotFoundError:
            pass
        resolved = self.pool.FindMessageTypeByName(name)
        self._types[name] = resolved
        return resolved

    def resolve_any_in_json(self, value: Any):
        """Resolves every ``@type`` named anywhere inside a JSON value."""
        pending = [value]
        while pending:
            current = pending.pop()
            if isinstance(current, dict):
                type_url = current.get('@type')
                if isinstance(type_url, str) and type_url:
                    self.resolve_type(type_name_from_url(type_url))
                pending.extend(current.values())
            elif isinstance(current, list):
                pending.extend(current)

    def resolve_any_in_message(self, message: Message):
        """Resolves every Any payload nested in a message, including Any inside Any."""
        pending = [message]
        while pending:
            msg = pending.pop()
            if msg.DESCRIPTOR.full_name == ANY_TYPE_NAME:
                if not msg.type_url:
                    continue
                resolved = self.resolve_type(type_name_from_url(msg.type_url))
                inner = GetMessageClass(resolved)()
                try:
                    inner.ParseFromString(msg.value)
                except DecodeError:
                    # json_format reports the malformed payload itself
                    continue
                pending.append(inner)
                continue

            for field, value in msg.ListFields():
                if field.cpp_type != FieldDescriptor.CPPTYPE_MESSAGE:
                    continue
                if is_map_field(field):
                    if field.message_type.fields_by_name['value'].cpp_type == FieldDescriptor.CPPTYPE_MESSAGE:
                        pending.extend(value.values())
                elif field.is_repeated:
                    pending.extend(value)
                else:
                    pending.append(value)

    def to_protobuf(self, value: Any, message_class) -> Message:
        """Parses one JSON value into a new message; raises json_format.ParseError on mismatch."""
        self.resolve_any_in_json(value)
        msg = message_class()
        json_format.ParseDict(value, msg, descriptor_pool=self.pool)
        return msg

    def to_json(self, msg: Message) -> ResponseElement:
        """Renders a message as JSON, or as an error element when it cannot be rendered."""
        try:
            self.resolve_any_in_message(msg)
            data = json_format.MessageToDict(
                msg,
                always_print_fields_with_no_presence=self.emit_defaults,
                preserving_proto_field_name=True,
                descriptor_pool=self.pool,
            )
            return ResponseElement(data)
        except (SymbolNotFoundError, json_format.Error, TypeError, ValueError) as e:
            self.log(function_name='to_json', args=[msg.DESCRIPTOR.full_name], exception=e)
            return ResponseElement(str(e), is_error=True)
