from abc import ABC, abstractmethod
from typing import List
from google.protobuf.descriptor import (
    Descriptor, FieldDescriptor, FileDescriptor,
    MethodDescriptor, ServiceDescriptor
)
from grpcbridge.errors import BridgeError, SymbolNotFoundError


class DescriptorSource(ABC):
    """Resolves names to protobuf descriptors."""

    @abstractmethod
    def list_services(self) -> List[str]:
        """Fully-qualified names of all services the source knows about."""

    @abstractmethod
    def find_symbol(self, name: str):
        """Returns the descriptor for a fully-qualified name.

        Raises SymbolNotFoundError when the name is unknown.
        """

    @abstractmethod
    def all_extensions_for_type(self, name: str) -> List[FieldDescriptor]:
        """All known extensions of the named message type."""

    def find_service(self, name: str) -> ServiceDescriptor:
        d = self.find_symbol(name)
        if not isinstance(d, ServiceDescriptor):
            raise SymbolNotFoundError(name, f"{name} should be a service descriptor but instead is a {type(d).__name__}")
        return d

    def find_message_type(self, name: str) -> Descriptor:
        d = self.find_symbol(name)
        if not isinstance(d, Descriptor):
            raise SymbolNotFoundError(name, f"{name} should be a message descriptor but instead is a {type(d).__name__}")
        return d

    def all_files(self) -> List[FileDescriptor]:
        return get_all_files(self)


def find_in_pool(pool, name: str):
    """Looks a fully-qualified name up in a DescriptorPool, trying every kind of symbol."""
    for finder in (pool.FindMessageTypeByName, pool.FindEnumTypeByName,
                   pool.FindServiceByName, pool.FindMethodByName,
                   pool.FindExtensionByName):
        try:
            return finder(name)
        except KeyError:
            continue
    raise SymbolNotFoundError(name)


def file_of(d) -> FileDescriptor:
    if isinstance(d, FileDescriptor):
        return d
    if isinstance(d, MethodDescriptor):
        return d.containing_service.file
    return d.file


def with_dependencies(files) -> List[FileDescriptor]:
    """Expands files to include their transitive imports, sorted by name."""
    seen = {}
    pending = list(files)
    while pending:
        fd = pending.pop()
        if fd.name in seen:
            continue
        seen[fd.name] = fd
        pending.extend(fd.dependencies)
    return [seen[name] for name in sorted(seen)]


def get_all_files(source: DescriptorSource) -> List[FileDescriptor]:
    """Every file reachable from the services a source lists."""
    files = []
    for svc in source.list_services():
        files.append(file_of(source.find_symbol(svc)))
    return with_dependencies(files)


class CompositeDescriptorSource(DescriptorSource):
    """Uses a static source as a fallback for symbols and extensions.

    Services are only ever listed from the reflection source.
    """

    def __init__(self, reflection: DescriptorSource, file: DescriptorSource):
        self.reflection = reflection
        self.file = file

    def list_services(self) -> List[str]:
        return self.reflection.list_services()

    def find_symbol(self, name: str):
        try:
            return self.reflection.find_symbol(name)
        except BridgeError:
            return self.file.find_symbol(name)

    def all_extensions_for_type(self, name: str) -> List[FieldDescriptor]:
        try:
            exts = list(self.reflection.all_extensions_for_type(name))
        except BridgeError:
            return self.file.all_extensions_for_type(name)
        tags = {ext.number for ext in exts}
        try:
            file_exts = self.file.all_extensions_for_type(name)
        except BridgeError:
            return exts
        # extensions found via reflection win
        for ext in file_exts:
            if ext.number not in tags:
                tags.add(ext.number)
                exts.append(ext)
        return exts
