import os
import tempfile
import importlib.resources
from pathlib import Path
from typing import Dict, List
from grpc_tools import protoc
from google.protobuf import descriptor_pb2
from google.protobuf import descriptor_pool
from google.protobuf.descriptor import FieldDescriptor, FileDescriptor
from grpcbridge.DescriptorSource import DescriptorSource, find_in_pool
from grpcbridge.errors import SymbolNotFoundError, UserInputError
from grpcbridge.helper import helper


class grpcprotoclient(DescriptorSource, helper):
    """Descriptor source backed by static descriptors.

    Descriptors come from protoset files (serialized FileDescriptorSets) or
    from .proto sources compiled with protoc. The pool is filled once and is
    read-only afterwards.
    """

    def __init__(self, protoset_files=None, proto_files=None, import_paths=None, file_descriptor_set=None):
        super().__init__()
        self.pool = descriptor_pool.DescriptorPool()
        self.files: Dict[str, FileDescriptor] = {}

        fd_set = descriptor_pb2.FileDescriptorSet()
        if file_descriptor_set is not None:
            fd_set.MergeFrom(file_descriptor_set)
        for protoset in protoset_files or []:
            fd_set.MergeFrom(self.read_protoset(protoset))
        if proto_files:
            fd_set.MergeFrom(self.compile_proto(proto_files, import_paths or []))
        self._load(fd_set)

    def read_protoset(self, path: str) -> descriptor_pb2.FileDescriptorSet:
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            self.log(function_name='read_protoset', args=[path], exception=e)
            raise UserInputError(f"could not read protoset file {path}: {e}") from e
        fd_set = descriptor_pb2.FileDescriptorSet()
        try:
            fd_set.ParseFromString(data)
        except Exception as e:
            self.log(function_name='read_protoset', args=[path], exception=e)
            raise UserInputError(f"could not parse protoset file {path}: {e}") from e
        return fd_set

    def compile_proto(self, proto_files: List[str], import_paths: List[str]) -> descriptor_pb2.FileDescriptorSet:
        google_proto_path = str(importlib.resources.files("grpc_tools").joinpath("_proto"))
        if not import_paths:
            import_paths = sorted({str(Path(p).resolve().parent) for p in proto_files})

        with tempfile.TemporaryDirectory() as output_dir:
            out = os.path.join(output_dir, 'descriptors.protoset')
            result = protoc.main([
                "",
                *[f"-I{path}" for path in import_paths],
                f"-I{google_proto_path}",
                f"--descriptor_set_out={out}",
                "--include_imports",
                *proto_files,
            ])
            if result != 0:
                self.log(function_name='compile_proto', args=[proto_files, import_paths], output=result)
                raise UserInputError(f"failed to compile proto files: {', '.join(proto_files)}")
            return self.read_protoset(out)

    def _load(self, fd_set: descriptor_pb2.FileDescriptorSet):
        by_name = {fd.name: fd for fd in fd_set.file}
        stack = sorted(by_name, reverse=True)
        while stack:
            name = stack[-1]
            if name in self.files:
                stack.pop()
                continue
            if name not in by_name:
                raise UserInputError(f"descriptor set is missing imported file {name}")
            missing = [dep for dep in by_name[name].dependency if dep not in self.files]
            if missing:
                stack.extend(missing)
                continue
            self.pool.AddSerializedFile(by_name[name].SerializeToString())
            self.files[name] = self.pool.FindFileByName(name)
            stack.pop()

    def list_services(self) -> List[str]:
        services = []
        for fd in self.files.values():
            services.extend(svc.full_name for svc in fd.services_by_name.values())
        return sorted(services)

    def find_symbol(self, name: str):
        return find_in_pool(self.pool, name)

    def all_extensions_for_type(self, name: str) -> List[FieldDescriptor]:
        try:
            message = self.pool.FindMessageTypeByName(name)
        except KeyError as e:
            raise SymbolNotFoundError(name) from e
        return list(self.pool.FindAllExtensions(message))

    def all_files(self) -> List[FileDescriptor]:
        return [self.files[name] for name in sorted(self.files)]
