"""Shared test fixtures for grpcbridge tests.

The descriptors under test are built at runtime with ``descriptor_pb2`` and
served by an in-process gRPC server that also exposes server reflection.
"""

import os
import time
import types
from concurrent import futures

import grpc
import pytest
from google.protobuf import any_pb2, descriptor_pb2, descriptor_pool
from google.protobuf.message_factory import GetMessageClass
from google.rpc import status_pb2
from grpc_reflection.v1alpha import reflection, reflection_pb2
from grpc_status import rpc_status

from grpcbridge.grpcprotoclient import grpcprotoclient
from grpcbridge.grpcreflectionclient import grpcreflectionclient

F = descriptor_pb2.FieldDescriptorProto

SERVICE_NAME = 'bridgetest.TestService'


@pytest.fixture(scope="session", autouse=True)
def _log_to_tmp(tmp_path_factory):
    """Keep the bridge's log file out of the working directory."""
    os.environ['GRPCBRIDGE_LOG_FILE'] = str(tmp_path_factory.mktemp('logs') / 'error.log')
    yield


def _field(name, number, type_, label=F.LABEL_OPTIONAL, type_name=None, json_name=None,
           oneof_index=None, default_value=None, extendee=None):
    field = F(name=name, number=number, type=type_, label=label)
    field.json_name = json_name or name
    if type_name is not None:
        field.type_name = type_name
    if oneof_index is not None:
        field.oneof_index = oneof_index
    if default_value is not None:
        field.default_value = default_value
    if extendee is not None:
        field.extendee = extendee
    return field


def _test_file():
    fd = descriptor_pb2.FileDescriptorProto(
        name='bridgetest/test.proto', package='bridgetest', syntax='proto3')
    fd.dependency.append('google/protobuf/any.proto')

    color = fd.enum_type.add(name='Color')
    color.value.add(name='COLOR_UNSPECIFIED', number=0)
    color.value.add(name='RED', number=1)

    node = fd.message_type.add(name='Node')
    node.field.extend([
        _field('name', 1, F.TYPE_STRING),
        _field('child', 2, F.TYPE_MESSAGE, type_name='.bridgetest.Node'),
        _field('children', 3, F.TYPE_MESSAGE, label=F.LABEL_REPEATED, type_name='.bridgetest.Node'),
    ])

    request = fd.message_type.add(name='Request')
    entry = request.nested_type.add(name='LabelsEntry')
    entry.options.map_entry = True
    entry.field.extend([
        _field('key', 1, F.TYPE_STRING),
        _field('value', 2, F.TYPE_INT32),
    ])
    request.oneof_decl.add(name='choice')
    request.field.extend([
        _field('a', 1, F.TYPE_INT32),
        _field('big_number', 2, F.TYPE_INT64, json_name='bigNumber'),
        _field('blob', 3, F.TYPE_BYTES),
        _field('labels', 4, F.TYPE_MESSAGE, label=F.LABEL_REPEATED, type_name='.bridgetest.Request.LabelsEntry'),
        _field('color', 5, F.TYPE_ENUM, type_name='.bridgetest.Color'),
        _field('text', 6, F.TYPE_STRING, oneof_index=0),
        _field('node', 7, F.TYPE_MESSAGE, type_name='.bridgetest.Node', oneof_index=0),
        _field('extra', 8, F.TYPE_MESSAGE, type_name='.google.protobuf.Any'),
    ])

    reply = fd.message_type.add(name='Reply')
    reply.field.extend([
        _field('total', 1, F.TYPE_INT32),
        _field('echo', 2, F.TYPE_STRING),
        _field('extra', 3, F.TYPE_MESSAGE, type_name='.google.protobuf.Any'),
    ])

    service = fd.service.add(name='TestService')
    for name, client_streaming, server_streaming in (
            ('Unary', False, False),
            ('ClientStream', True, False),
            ('ServerStream', False, True),
            ('Bidi', True, True),
            ('Fail', False, False),
            ('Rich', False, False)):
        service.method.add(
            name=name,
            input_type='.bridgetest.Request',
            output_type='.bridgetest.Reply',
            client_streaming=client_streaming,
            server_streaming=server_streaming,
        )
    return fd


def _extra_file():
    fd = descriptor_pb2.FileDescriptorProto(
        name='bridgetest/extra.proto', package='bridgetest', syntax='proto3')
    extra = fd.message_type.add(name='Extra')
    extra.field.append(_field('note', 1, F.TYPE_STRING))
    return fd


def _legacy_file():
    fd = descriptor_pb2.FileDescriptorProto(
        name='bridgetest/legacy.proto', package='bridgetest.legacy', syntax='proto2')
    level = fd.enum_type.add(name='Level')
    level.value.add(name='LOW', number=0)
    level.value.add(name='HIGH', number=1)

    legacy = fd.message_type.add(name='Legacy')
    legacy.extension_range.add(start=100, end=201)
    legacy.field.extend([
        _field('blob', 1, F.TYPE_BYTES, default_value='hi'),
        _field('count', 2, F.TYPE_INT64, default_value='7'),
        _field('ratio', 3, F.TYPE_DOUBLE, default_value='inf'),
        _field('id', 4, F.TYPE_STRING, label=F.LABEL_REQUIRED),
        _field('level', 5, F.TYPE_ENUM, type_name='.bridgetest.legacy.Level', default_value='HIGH'),
        _field('empty', 6, F.TYPE_BYTES),
    ])
    fd.extension.append(_field('tag', 100, F.TYPE_STRING, extendee='.bridgetest.legacy.Legacy'))
    return fd


@pytest.fixture(scope="session")
def protos():
    """Descriptor pool, descriptor set and message classes for the test service."""
    fd_set = descriptor_pb2.FileDescriptorSet()
    any_pb2.DESCRIPTOR.CopyToProto(fd_set.file.add())
    reflection_pb2.DESCRIPTOR.CopyToProto(fd_set.file.add())
    fd_set.file.extend([_test_file(), _extra_file(), _legacy_file()])

    pool = descriptor_pool.DescriptorPool()
    for fd in fd_set.file:
        pool.AddSerializedFile(fd.SerializeToString())

    return types.SimpleNamespace(
        pool=pool,
        fd_set=fd_set,
        service=pool.FindServiceByName(SERVICE_NAME),
        Request=GetMessageClass(pool.FindMessageTypeByName('bridgetest.Request')),
        Reply=GetMessageClass(pool.FindMessageTypeByName('bridgetest.Reply')),
        Extra=GetMessageClass(pool.FindMessageTypeByName('bridgetest.Extra')),
        Legacy=pool.FindMessageTypeByName('bridgetest.legacy.Legacy'),
    )


class _TestServicer:
    """Behaviour keyed on ``Request.a``: -1 fails mid-stream, -2 is slow, -3 answers with an unknown Any."""

    def __init__(self, protos):
        self.protos = protos

    def Unary(self, request, context):
        if request.a == -2:
            deadline = time.monotonic() + 5
            while context.is_active() and time.monotonic() < deadline:
                time.sleep(0.01)
            return self.protos.Reply()
        reply = self.protos.Reply(total=request.a)
        metadata = dict(context.invocation_metadata())
        reply.echo = metadata.get('x-echo', request.text)
        if request.a == -3:
            reply.extra.type_url = 'type.googleapis.com/bridgetest.Missing'
        elif request.HasField('extra'):
            reply.extra.CopyFrom(request.extra)
        return reply

    def ClientStream(self, request_iterator, context):
        count = 0
        total = 0
        for request in request_iterator:
            count += 1
            total += request.a
        return self.protos.Reply(total=total, echo=str(count))

    def ServerStream(self, request, context):
        for i in range(abs(request.a)):
            yield self.protos.Reply(total=i)
            if request.a < 0:
                context.abort(grpc.StatusCode.NOT_FOUND, 'stream ran dry')

    def Bidi(self, request_iterator, context):
        for request in request_iterator:
            yield self.protos.Reply(total=request.a)

    def Fail(self, request, context):
        context.send_initial_metadata((('x-header', 'h'), ('a-bin', b'\x00\xff')))
        context.set_trailing_metadata((('z-trailer', 't'), ('trace-bin', b'\x01\x02')))
        context.abort(grpc.StatusCode.NOT_FOUND, 'no such thing')

    def Rich(self, request, context):
        detail = any_pb2.Any()
        detail.Pack(self.protos.Extra(note='why'))
        status = status_pb2.Status(code=grpc.StatusCode.FAILED_PRECONDITION.value[0], message='not ready')
        status.details.append(detail)
        context.abort_with_status(rpc_status.to_status(status))


def _handlers(protos):
    servicer = _TestServicer(protos)
    kinds = {
        'Unary': grpc.unary_unary_rpc_method_handler,
        'ClientStream': grpc.stream_unary_rpc_method_handler,
        'ServerStream': grpc.unary_stream_rpc_method_handler,
        'Bidi': grpc.stream_stream_rpc_method_handler,
        'Fail': grpc.unary_unary_rpc_method_handler,
        'Rich': grpc.unary_unary_rpc_method_handler,
    }
    return {
        name: kind(
            getattr(servicer, name),
            request_deserializer=protos.Request.FromString,
            response_serializer=protos.Reply.SerializeToString,
        )
        for name, kind in kinds.items()
    }


@pytest.fixture(scope="session")
def grpc_target(protos):
    """Address of an in-process server running the test service and reflection."""
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=16))
    server.add_generic_rpc_handlers((grpc.method_handlers_generic_handler(SERVICE_NAME, _handlers(protos)),))
    reflection.enable_server_reflection((SERVICE_NAME, reflection.SERVICE_NAME), server, pool=protos.pool)
    port = server.add_insecure_port('127.0.0.1:0')
    server.start()
    yield f'127.0.0.1:{port}'
    server.stop(0)


@pytest.fixture
def channel(grpc_target):
    ch = grpc.insecure_channel(grpc_target)
    yield ch
    ch.close()


@pytest.fixture
def reflection_source(channel):
    return grpcreflectionclient(channel)


@pytest.fixture
def static_source(protos):
    return grpcprotoclient(file_descriptor_set=protos.fd_set)
