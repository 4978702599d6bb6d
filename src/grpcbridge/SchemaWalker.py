import base64
import math
from enum import Enum
from typing import Any, Dict, List, Optional
from google.protobuf.descriptor import Descriptor, EnumDescriptor, FieldDescriptor, OneofDescriptor
from grpcbridge.constants import REFLECTION_PACKAGES


class FieldType(str, Enum):
    STRING = 'string'
    BYTES = 'bytes'
    INT32 = 'int32'
    INT64 = 'int64'
    SINT32 = 'sint32'
    SINT64 = 'sint64'
    UINT32 = 'uint32'
    UINT64 = 'uint64'
    FIXED32 = 'fixed32'
    FIXED64 = 'fixed64'
    SFIXED32 = 'sfixed32'
    SFIXED64 = 'sfixed64'
    FLOAT = 'float'
    DOUBLE = 'double'
    BOOL = 'bool'
    ONEOF = 'oneof'


TYPE_TAGS = {
    FieldDescriptor.TYPE_STRING: FieldType.STRING,
    FieldDescriptor.TYPE_BYTES: FieldType.BYTES,
    FieldDescriptor.TYPE_INT32: FieldType.INT32,
    FieldDescriptor.TYPE_INT64: FieldType.INT64,
    FieldDescriptor.TYPE_SINT32: FieldType.SINT32,
    FieldDescriptor.TYPE_SINT64: FieldType.SINT64,
    FieldDescriptor.TYPE_UINT32: FieldType.UINT32,
    FieldDescriptor.TYPE_UINT64: FieldType.UINT64,
    FieldDescriptor.TYPE_FIXED32: FieldType.FIXED32,
    FieldDescriptor.TYPE_FIXED64: FieldType.FIXED64,
    FieldDescriptor.TYPE_SFIXED32: FieldType.SFIXED32,
    FieldDescriptor.TYPE_SFIXED64: FieldType.SFIXED64,
    FieldDescriptor.TYPE_FLOAT: FieldType.FLOAT,
    FieldDescriptor.TYPE_DOUBLE: FieldType.DOUBLE,
    FieldDescriptor.TYPE_BOOL: FieldType.BOOL,
}

# 64-bit integers are strings in JSON
INT64_TYPES = {
    FieldDescriptor.TYPE_INT64,
    FieldDescriptor.TYPE_SINT64,
    FieldDescriptor.TYPE_UINT64,
    FieldDescriptor.TYPE_FIXED64,
    FieldDescriptor.TYPE_SFIXED64,
}


def is_map_field(field: FieldDescriptor) -> bool:
    return (field.is_repeated
            and field.message_type is not None
            and field.message_type.GetOptions().map_entry)


class FieldDef:

    def __init__(self, name, proto_name, type, one_of_fields=None, is_message=False,
                 is_enum=False, is_array=False, is_map=False, is_required=False, default_val=None):
        self.name = name
        self.proto_name = proto_name
        self.type = type
        self.one_of_fields = one_of_fields
        self.is_message = is_message
        self.is_enum = is_enum
        self.is_array = is_array
        self.is_map = is_map
        self.is_required = is_required
        self.default_val = default_val

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'protoName': self.proto_name,
            'type': self.type.value if isinstance(self.type, FieldType) else self.type,
            'oneOfFields': None if self.one_of_fields is None else [f.to_dict() for f in self.one_of_fields],
            'isMessage': self.is_message,
            'isEnum': self.is_enum,
            'isArray': self.is_array,
            'isMap': self.is_map,
            'isRequired': self.is_required,
            'defaultVal': self.default_val,
        }


class EnumValueDef:

    def __init__(self, num: int, name: str):
        self.num = num
        self.name = name

    def to_dict(self):
        return {'num': self.num, 'name': self.name}


class Schema:
    """Message and enum metadata, keyed by fully-qualified name.

    ``request_type`` is only set for schemas rooted at a method.
    """

    def __init__(self, request_type: Optional[str] = None, request_stream: bool = False):
        self.request_type = request_type
        self.request_stream = request_stream
        self.message_types: Dict[str, List[FieldDef]] = {}
        self.enum_types: Dict[str, List[EnumValueDef]] = {}

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        if self.request_type is not None:
            result['requestType'] = self.request_type
            result['requestStream'] = self.request_stream
        result['messageTypes'] = {name: [f.to_dict() for f in fields] for name, fields in self.message_types.items()}
        result['enumTypes'] = {name: [v.to_dict() for v in values] for name, values in self.enum_types.items()}
        return result


class SchemaWalker:
    """Builds a Schema by walking message descriptors.

    Traversal uses an explicit worklist; a message is described once no
    matter how often, or how cyclically, it is referenced.
    """

    def __init__(self, exclude_reflection_types: bool = False):
        self.exclude_reflection_types = exclude_reflection_types

    def schema_for_method(self, method) -> Schema:
        msg = method.input_type
        schema = Schema(request_type=msg.full_name, request_stream=method.client_streaming)
        self._visit(schema, [msg])
        return schema

    def schema_for_all_types(self, files) -> Schema:
        schema = Schema()
        seeds = []
        for fd in files:
            if self.exclude_reflection_types and fd.package in REFLECTION_PACKAGES:
                continue
            pending = list(fd.message_types_by_name.values())
            while pending:
                md = pending.pop(0)
                seeds.append(md)
                pending.extend(md.nested_types)
        # seeds are visited in declaration order
        self._visit(schema, list(reversed(seeds)))
        return schema

    def _visit(self, schema: Schema, pending: List[Descriptor]):
        while pending:
            md = pending.pop()
            if md.full_name in schema.message_types:
                continue
            schema.message_types[md.full_name] = self._fields(schema, md, pending)

    def _fields(self, schema: Schema, md: Descriptor, pending: List[Descriptor]) -> List[FieldDef]:
        fields = []
        oneofs_seen = set()
        for fd in md.fields:
            ood = fd.containing_oneof
            if ood is not None:
                if ood.full_name in oneofs_seen:
                    continue
                oneofs_seen.add(ood.full_name)
                fields.append(self._oneof(schema, ood, pending))
            else:
                fields.append(self._field(schema, fd, pending))
        return fields

    def _oneof(self, schema: Schema, ood: OneofDescriptor, pending) -> FieldDef:
        choices = [self._field(schema, fd, pending) for fd in ood.fields]
        return FieldDef(name=ood.name, proto_name='', type=FieldType.ONEOF, one_of_fields=choices)

    def _field(self, schema: Schema, fd: FieldDescriptor, pending) -> FieldDef:
        is_map = is_map_field(fd)
        is_repeated = fd.is_repeated
        definition = FieldDef(
            name=fd.json_name,
            proto_name=fd.name,
            type=None,
            is_message=fd.message_type is not None,
            is_enum=fd.enum_type is not None,
            is_array=is_repeated and not is_map,
            is_map=is_map,
            is_required=fd.is_required,
            default_val=default_value(fd),
        )

        if fd.type == FieldDescriptor.TYPE_ENUM:
            definition.type = fd.enum_type.full_name
            self._visit_enum(schema, fd.enum_type)
        elif fd.type in (FieldDescriptor.TYPE_MESSAGE, FieldDescriptor.TYPE_GROUP):
            definition.type = fd.message_type.full_name
            if fd.message_type.full_name not in schema.message_types:
                pending.append(fd.message_type)
        else:
            definition.type = TYPE_TAGS[fd.type]
        return definition

    def _visit_enum(self, schema: Schema, ed: EnumDescriptor):
        if ed.full_name in schema.enum_types:
            return
        schema.enum_types[ed.full_name] = [EnumValueDef(v.number, v.name) for v in ed.values]


def default_value(fd: FieldDescriptor):
    """The JSON-safe default value of a field."""
    if is_map_field(fd):
        return {}
    if fd.is_repeated:
        return []
    if fd.cpp_type == FieldDescriptor.CPPTYPE_MESSAGE:
        return None

    value = fd.default_value
    if fd.type in INT64_TYPES:
        return str(value)
    if fd.type == FieldDescriptor.TYPE_BYTES:
        if not value:
            return []
        return base64.b64encode(value).decode('ascii')
    if fd.type == FieldDescriptor.TYPE_ENUM:
        enum_value = fd.enum_type.values_by_number.get(value)
        return enum_value.name if enum_value is not None else value
    if fd.type in (FieldDescriptor.TYPE_FLOAT, FieldDescriptor.TYPE_DOUBLE):
        if math.isnan(value):
            return 'NaN'
        if math.isinf(value):
            return 'Infinity' if value > 0 else '-Infinity'
    return value
