import grpc
from typing import Dict, List, Optional
from google.protobuf.descriptor import MethodDescriptor
from grpcbridge.config import BridgeConfig
from grpcbridge.connection import connection
from grpcbridge.context import InvocationContext
from grpcbridge.DescriptorSource import CompositeDescriptorSource, DescriptorSource
from grpcbridge.envelopes import Example, RequestEnvelope, ResponseEnvelope, load_examples
from grpcbridge.errors import BadInputError, UnknownMethodError, UserInputError
from grpcbridge.grpcprotoclient import grpcprotoclient
from grpcbridge.grpcreflectionclient import grpcreflectionclient
from grpcbridge.helper import helper
from grpcbridge.InvocationBridge import InvocationBridge
from grpcbridge.MethodEnumerationService import MethodEnumerationService, compute_svc_configs, split_method_name
from grpcbridge.SchemaWalker import Schema, SchemaWalker


class main(helper):
    """Ties a channel, a descriptor source and the configuration together.

    This is the single entry point the HTTP handlers talk to. The channel is
    dialed from ``config.target`` unless one is passed in, and is only
    closed by ``close()`` when it was dialed here.
    """

    def __init__(self, config: BridgeConfig, channel: grpc.Channel = None, descriptor_source: DescriptorSource = None):
        super().__init__(log_to_console=config.log_to_console, log_file=config.log_file)
        self.config = config
        self._owns_channel = channel is None
        if channel is None:
            channel = connection(connect_timeout=config.connect_timeout,
                                 max_attempts=config.connect_attempts).dial(config.target)
        self.channel = channel

        self.rpc_pairs = self.parse_headers(self.expand_headers(config.rpc_headers))
        self.source = descriptor_source or self._build_source()
        self.bridge = InvocationBridge(extra_metadata=self.rpc_pairs, emit_defaults=config.emit_defaults)
        self.walker = SchemaWalker(exclude_reflection_types=config.exclude_reflection_types)
        self._methods: Optional[Dict[str, MethodDescriptor]] = None
        self.examples = self._load_examples()

    def _build_source(self) -> DescriptorSource:
        static = None
        if self.config.protoset_files or self.config.proto_files:
            static = grpcprotoclient(
                protoset_files=self.config.protoset_files,
                proto_files=self.config.proto_files,
                import_paths=self.config.import_paths,
            )
        if not self.config.use_reflection:
            return static

        reflect_pairs = self.parse_headers(self.expand_headers(self.config.reflect_headers))
        reflection = grpcreflectionclient(self.channel, metadata=self.metadata_from_pairs(reflect_pairs))
        if static is None:
            return reflection
        return CompositeDescriptorSource(reflection, static)

    def _load_examples(self) -> List[Example]:
        path = self.config.examples_file
        if not path:
            return []
        try:
            with open(path, 'rb') as f:
                examples = load_examples(f.read())
        except OSError as e:
            self.log(function_name='_load_examples', args=[path], exception=e)
            raise UserInputError(f"Failed to open {path!r}: {e}") from e
        except BadInputError as e:
            raise UserInputError(f"Failed to process contents of {path!r}: {e}") from e
        self.log(function_name='_load_examples', args=[path], output=f"{len(examples)} example(s)")
        return examples

    def get_methods(self) -> List[MethodDescriptor]:
        if self._methods is None:
            configs = compute_svc_configs(self.config.services, self.config.methods)
            methods = MethodEnumerationService(self.source).get_methods(configs)
            self._methods = {md.full_name: md for md in methods}
        return list(self._methods.values())

    def get_services(self) -> List[str]:
        services = []
        for md in self.get_methods():
            name = md.containing_service.full_name
            if name not in services:
                services.append(name)
        return services

    def find_method(self, method_name: str) -> MethodDescriptor:
        """Looks up an exposed method by ``pkg.Svc.Method`` or ``pkg.Svc/Method``."""
        svc, method = split_method_name(method_name or '')
        full_name = f"{svc}.{method}"
        self.get_methods()
        md = self._methods.get(full_name)
        if not svc or md is None:
            raise UnknownMethodError(f"RPC method {method_name!r} not found")
        return md

    def get_schema(self, method_name: str) -> Schema:
        """Schema for one method's request, or for every known type when ``method_name`` is ``*``."""
        if method_name == '*':
            return self.walker.schema_for_all_types(self.source.all_files())
        return self.walker.schema_for_method(self.find_method(method_name))

    def get_examples(self, method_name: str = None) -> List[Example]:
        """All loaded examples, or only those for one exposed method."""
        if not method_name:
            return list(self.examples)
        full_name = self.find_method(method_name).full_name
        return [e for e in self.examples if e.full_method_name == full_name]

    def execute_request(self, method_name: str, body, context: InvocationContext = None, extra_pairs=()) -> ResponseEnvelope:
        """Invokes a method with a JSON request envelope.

        ``body`` may be a readable stream, raw JSON text or an already
        decoded dict.
        """
        md = self.find_method(method_name)
        if isinstance(body, dict):
            envelope = RequestEnvelope.from_dict(body)
        elif hasattr(body, 'read'):
            envelope = RequestEnvelope.from_stream(body)
        else:
            envelope = RequestEnvelope.from_json(body)
        return self.bridge.invoke(md, self.source, self.channel, envelope, context, extra_pairs=extra_pairs)

    def close(self):
        if self._owns_channel:
            self.channel.close()
