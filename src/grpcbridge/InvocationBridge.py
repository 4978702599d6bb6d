import math
import grpc
from grpc_status import rpc_status
from google.protobuf import json_format
from google.protobuf.descriptor import MethodDescriptor
from google.protobuf.message_factory import GetMessageClass
from typing import List, Optional, Tuple
from grpcbridge.constants import MAX_CALL_TIMEOUT_S, STATUS_CODE_NAMES
from grpcbridge.context import InvocationContext, duration_from_seconds
from grpcbridge.DescriptorSource import DescriptorSource
from grpcbridge.envelopes import MetadataPair, RequestEnvelope, ResponseEnvelope, RpcErrorInfo
from grpcbridge.errors import InternalError, SymbolNotFoundError
from grpcbridge.helper import helper
from grpcbridge.ProtobufConverter import ProtobufConverter

# Failures while turning request JSON into a message; reported as InvalidArgument.
UNMARSHAL_ERRORS = (json_format.ParseError, SymbolNotFoundError, TypeError, ValueError)


def method_path(method: MethodDescriptor) -> str:
    return f"/{method.containing_service.full_name}/{method.name}"


def call_timeout(remaining: Optional[float]) -> Optional[float]:
    if remaining is None or remaining > MAX_CALL_TIMEOUT_S:
        return None
    return remaining


class RequestProducer:
    """Feeds request messages to an in-flight call, one per pull.

    Reads ``data[cursor]`` each time gRPC asks for a message. Methods
    without a request stream get at most one message, and an empty message
    when there is no data at all; that message is not counted as sent.
    A payload that cannot be unmarshalled is kept in ``failure`` and the
    iterator raises, which makes gRPC cancel the call.
    """

    def __init__(self, data, input_class, converter: ProtobufConverter, client_streaming: bool):
        self.data = tuple(data)
        self.input_class = input_class
        self.converter = converter
        self.client_streaming = client_streaming
        self.cursor = 0
        self.sent = 0
        self.failure: Optional[Exception] = None
        self._sent_empty = False

    def __iter__(self):
        return self

    def __next__(self):
        if self.failure is not None:
            raise StopIteration
        if not self.client_streaming:
            if self.cursor >= 1 or self._sent_empty:
                raise StopIteration
            if not self.data:
                self._sent_empty = True
                return self.input_class()
        if self.cursor >= len(self.data):
            raise StopIteration

        value = self.data[self.cursor]
        try:
            msg = self.converter.to_protobuf(value, self.input_class)
        except Exception as e:
            self.failure = e
            raise
        self.cursor += 1
        self.sent += 1
        return msg


class InvocationBridge(helper):
    """Invokes one RPC of any streaming shape from a JSON request envelope.

    All four shapes go through ``Channel.stream_stream``: unary and
    server-streaming methods simply get a single request message, and the
    responses are drained the same way for every shape.
    """

    def __init__(self, extra_metadata: List[Tuple[str, str]] = None, emit_defaults: bool = True):
        super().__init__()
        self.extra_metadata = list(extra_metadata or [])
        self.emit_defaults = emit_defaults

    def invoke(self,
               method: MethodDescriptor,
               descriptor_source: DescriptorSource,
               channel: grpc.Channel,
               envelope: RequestEnvelope,
               context: InvocationContext = None,
               extra_pairs=()) -> ResponseEnvelope:
        if context is None:
            context = InvocationContext()
        timeout = envelope.timeout_seconds
        if timeout is not None and not math.isnan(timeout) and timeout > 0:
            ctx = context.with_timeout(duration_from_seconds(timeout))
        else:
            ctx = InvocationContext(parent=context)

        with ctx:
            return self._invoke(method, descriptor_source, channel, envelope, ctx, extra_pairs)

    def _invoke(self, method, descriptor_source, channel, envelope, ctx, extra_pairs) -> ResponseEnvelope:
        converter = ProtobufConverter(descriptor_source, emit_defaults=self.emit_defaults)
        input_class = GetMessageClass(method.input_type)
        output_class = GetMessageClass(method.output_type)

        pairs = list(self.extra_metadata)
        pairs.extend(extra_pairs)
        pairs.extend((m.name, m.value) for m in envelope.metadata)
        metadata = self.metadata_from_pairs(pairs)

        result = ResponseEnvelope(total=len(envelope.data))
        producer = RequestProducer(envelope.data, input_class, converter, method.client_streaming)

        self.log(function_name='invoke', args=[method.full_name], kwargs={'metadata': [n for n, _ in metadata]})
        multi_callable = channel.stream_stream(
            method_path(method),
            request_serializer=lambda msg: msg.SerializeToString(),
            response_deserializer=output_class.FromString,
        )
        call = multi_callable(producer, timeout=call_timeout(ctx.time_remaining()), metadata=metadata or None)
        ctx.add_done_callback(call.cancel)

        try:
            self._drain(call, converter, result)
        except Exception as e:
            call.cancel()
            self.log(function_name='invoke', args=[method.full_name], exception=e)
            raise InternalError(f"failed to invoke {method.full_name}: {e}") from e
        finally:
            ctx.remove_done_callback(call.cancel)
            result.requests.sent = producer.sent

        if producer.failure is not None:
            if not isinstance(producer.failure, UNMARSHAL_ERRORS):
                self.log(function_name='invoke', args=[method.full_name], exception=producer.failure)
                raise InternalError(f"failed to invoke {method.full_name}: {producer.failure}") from producer.failure
            result.error = RpcErrorInfo(
                code=grpc.StatusCode.INVALID_ARGUMENT.value[0],
                name=STATUS_CODE_NAMES[grpc.StatusCode.INVALID_ARGUMENT.value[0]],
                message=str(producer.failure),
            )

        self.log(function_name='invoke', args=[method.full_name], output=result.requests.to_dict())
        return result

    def _drain(self, call, converter: ProtobufConverter, result: ResponseEnvelope):
        """Reads headers, then every response message, then trailers and status."""
        try:
            result.headers = self._pairs(call.initial_metadata())
            for response in call:
                result.responses.append(converter.to_json(response))
        except grpc.RpcError:
            # the terminal status is read from the call below
            pass

        result.trailers = self._pairs(call.trailing_metadata())
        code = call.code()
        if code == grpc.StatusCode.OK:
            return

        result.error = RpcErrorInfo(
            code=code.value[0],
            name=STATUS_CODE_NAMES.get(code.value[0], code.name),
            message=call.details() or '',
            details=self._details(call, converter),
        )

    def _details(self, call, converter: ProtobufConverter):
        try:
            status = rpc_status.from_call(call)
        except ValueError as e:
            self.log(function_name='_details', exception=e)
            return []
        if status is None:
            return []
        return [converter.to_json(detail) for detail in status.details]

    def _pairs(self, metadata) -> List[MetadataPair]:
        return [MetadataPair(name, value) for name, value in self.response_metadata(metadata)]
