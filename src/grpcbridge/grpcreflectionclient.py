from grpc_reflection.v1alpha import reflection_pb2, reflection_pb2_grpc
from google.protobuf import descriptor_pb2
from google.protobuf import descriptor_pool
from google.protobuf.descriptor import FieldDescriptor
import grpc
import threading
from typing import Dict, List
from grpcbridge.DescriptorSource import DescriptorSource, find_in_pool
from grpcbridge.constants import DEFAULT_REFLECTION_TIMEOUT_S
from grpcbridge.errors import SymbolNotFoundError, TransportError
from grpcbridge.helper import helper


class grpcreflectionclient(DescriptorSource, helper):
    """Descriptor source backed by the server reflection service.

    Files fetched from the server are added to a private DescriptorPool
    together with their imports. ``metadata`` is only sent on reflection
    requests, never on the RPCs that are invoked afterwards.
    """

    def __init__(self, channel, metadata=None, timeout=DEFAULT_REFLECTION_TIMEOUT_S):
        super().__init__()
        self.channel = channel
        self.metadata = list(metadata or [])
        self.timeout = timeout
        self.reflection_stub = reflection_pb2_grpc.ServerReflectionStub(channel)
        self.pool = descriptor_pool.DescriptorPool()
        self.loaded_files = set()
        self._lock = threading.Lock()

    def _request(self, **kwargs) -> reflection_pb2.ServerReflectionResponse:
        request = reflection_pb2.ServerReflectionRequest(**kwargs)
        try:
            responses = self.reflection_stub.ServerReflectionInfo(
                iter([request]), metadata=self.metadata, timeout=self.timeout)
            response = next(responses)
        except grpc.RpcError as e:
            self.log(function_name='_request', args=[kwargs], exception=e)
            if e.code() == grpc.StatusCode.UNIMPLEMENTED:
                raise TransportError("server does not support the reflection API") from e
            raise TransportError(f"reflection request failed: {e.code().name}: {e.details()}") from e
        except StopIteration:
            raise TransportError("reflection stream closed without a response")

        if response.HasField('error_response'):
            err = response.error_response
            if err.error_code == grpc.StatusCode.NOT_FOUND.value[0]:
                symbol = str(next(iter(kwargs.values())))
                raise SymbolNotFoundError(symbol, f"reflection lookup failed for {symbol}: {err.error_message}")
            raise TransportError(f"reflection error {err.error_code}: {err.error_message}")
        return response

    def _fetch_files(self, **kwargs) -> Dict[str, descriptor_pb2.FileDescriptorProto]:
        response = self._request(**kwargs)
        if not response.HasField('file_descriptor_response'):
            raise TransportError(f"reflection returned no file descriptors for {kwargs}")
        files = {}
        for fd_bytes in response.file_descriptor_response.file_descriptor_proto:
            fd_proto = descriptor_pb2.FileDescriptorProto()
            fd_proto.ParseFromString(fd_bytes)
            files[fd_proto.name] = fd_proto
        return files

    def _add_files(self, fetched: Dict[str, descriptor_pb2.FileDescriptorProto]):
        """Adds files to the pool, imports first, fetching any import the server left out."""
        pending = dict(fetched)
        stack = sorted(pending)
        while stack:
            name = stack[-1]
            if name in self.loaded_files:
                stack.pop()
                continue
            if name not in pending:
                pending.update(self._fetch_files(file_by_filename=name))
                if name not in pending:
                    raise SymbolNotFoundError(name, f"server did not return file {name}")
            fd_proto = pending[name]
            missing = [dep for dep in fd_proto.dependency if dep not in self.loaded_files]
            if missing:
                stack.extend(missing)
                continue
            try:
                self.pool.AddSerializedFile(fd_proto.SerializeToString())
            except TypeError as e:
                self.log(function_name='_add_files', args=[name], exception=e)
                raise TransportError(f"could not load descriptor for {name}: {e}") from e
            self.loaded_files.add(name)
            stack.pop()

    def list_services(self) -> List[str]:
        response = self._request(list_services='')
        return [s.name for s in response.list_services_response.service]

    def find_symbol(self, name: str):
        with self._lock:
            try:
                return find_in_pool(self.pool, name)
            except SymbolNotFoundError:
                pass
            self._load_symbol(name)
            return find_in_pool(self.pool, name)

    def _load_symbol(self, name: str):
        """Loads the file defining ``name``.

        Servers only index top-level symbols, so members such as methods are
        loaded through their enclosing symbol.
        """
        try:
            self._add_files(self._fetch_files(file_containing_symbol=name))
        except SymbolNotFoundError as e:
            parent = name.rpartition('.')[0]
            if not parent:
                raise
            try:
                self._load_symbol(parent)
            except SymbolNotFoundError:
                raise e from None

    def all_extensions_for_type(self, name: str) -> List[FieldDescriptor]:
        with self._lock:
            try:
                message = self.pool.FindMessageTypeByName(name)
            except KeyError:
                self._add_files(self._fetch_files(file_containing_symbol=name))
                message = self.pool.FindMessageTypeByName(name)

            response = self._request(all_extension_numbers_of_type=name)
            known = {ext.number for ext in self.pool.FindAllExtensions(message)}
            for number in response.all_extension_numbers_response.extension_number:
                if number in known:
                    continue
                self._add_files(self._fetch_files(
                    file_containing_extension=reflection_pb2.ExtensionRequest(
                        containing_type=name, extension_number=number)))
            return list(self.pool.FindAllExtensions(message))
