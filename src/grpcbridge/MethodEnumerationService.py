from typing import Dict, List, Optional, Set, Tuple
from google.protobuf.descriptor import MethodDescriptor
from grpcbridge.constants import REFLECTION_SERVICES
from grpcbridge.DescriptorSource import DescriptorSource
from grpcbridge.errors import MethodConfigurationError, UserInputError
from grpcbridge.helper import helper


class SvcConfig:
    """What to expose of one service: all of it, or just the named methods."""

    def __init__(self, include_service: bool = False, include_methods: Set[str] = None):
        self.include_service = include_service
        self.include_methods = set(include_methods or ())

    def __eq__(self, other):
        return isinstance(other, SvcConfig) and \
            (self.include_service, self.include_methods) == (other.include_service, other.include_methods)

    def __repr__(self):
        return f"SvcConfig(include_service={self.include_service!r}, include_methods={sorted(self.include_methods)!r})"


def split_method_name(name: str) -> Tuple[str, str]:
    """Splits ``pkg.Svc/Method`` or ``pkg.Svc.Method`` at the last separator."""
    sep = max(name.rfind('.'), name.rfind('/'))
    if sep < 0:
        return '', name
    return name[:sep], name[sep + 1:]


def compute_svc_configs(services: List[str] = None, methods: List[str] = None) -> Dict[str, SvcConfig]:
    configs = {}
    for svc in services or []:
        configs[svc] = SvcConfig(include_service=True)
    for fq_method in methods or []:
        svc, method = split_method_name(fq_method)
        if not svc or not method:
            raise UserInputError(f"could not parse name into service and method names: {fq_method!r}")
        configs.setdefault(svc, SvcConfig()).include_methods.add(method)
    return configs


class MethodEnumerationService(helper):
    """Resolves the configured services and methods against a descriptor source."""

    def __init__(self, descriptor_source: DescriptorSource):
        super().__init__()
        self.source = descriptor_source

    def get_methods(self, configs: Optional[Dict[str, SvcConfig]] = None) -> List[MethodDescriptor]:
        """Returns the exposed methods, in service listing order.

        With no configuration every service except server reflection is
        exposed. Otherwise every configured service and method must exist;
        all misses are reported together in one MethodConfigurationError.
        """
        configs = configs or {}
        remaining = {svc: set(cfg.include_methods) for svc, cfg in configs.items()}
        methods = []
        missing_methods = []
        seen = set()

        for svc in self.source.list_services():
            if svc in seen:
                continue
            seen.add(svc)
            cfg = configs.get(svc)
            if cfg is None:
                if configs or svc in REFLECTION_SERVICES:
                    continue
            sd = self.source.find_service(svc)
            wanted = remaining.pop(svc, set())
            for md in sd.methods:
                if cfg is None:
                    methods.append(md)
                    continue
                found = md.name in wanted
                wanted.discard(md.name)
                if found and cfg.include_service:
                    self.logger.warning("Service %s already configured, so method %s is unnecessary", svc, md.name)
                if found or cfg.include_service:
                    methods.append(md)
            missing_methods.extend(f"{svc}/{m}" for m in wanted)

        missing_services = sorted(svc for svc in remaining if configs[svc].include_service)
        for svc, wanted in remaining.items():
            missing_methods.extend(f"{svc}/{m}" for m in wanted)
        missing = sorted(missing_methods)
        if missing or missing_services:
            parts = []
            if missing_services:
                parts.append(f"configured services not found: {', '.join(missing_services)}")
            if missing:
                parts.append(f"configured methods not found: {', '.join(missing)}")
            error = MethodConfigurationError('; '.join(parts), sorted(missing_services + missing))
            self.log(function_name='get_methods', args=[sorted(configs)], exception=error)
            raise error

        self.log(function_name='get_methods', output=[md.full_name for md in methods])
        return methods
