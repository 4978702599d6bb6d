"""Tests for resolving configured services and methods."""

import logging

import pytest

from grpcbridge.errors import MethodConfigurationError, UserInputError
from grpcbridge.MethodEnumerationService import (
    MethodEnumerationService, SvcConfig, compute_svc_configs, split_method_name
)

ALL_METHODS = ['Unary', 'ClientStream', 'ServerStream', 'Bidi', 'Fail', 'Rich']


class TestSplitMethodName:

    @pytest.mark.parametrize("name,expected", [
        ('pkg.Svc/Method', ('pkg.Svc', 'Method')),
        ('pkg.Svc.Method', ('pkg.Svc', 'Method')),
        ('a.b.Svc/Method', ('a.b.Svc', 'Method')),
        ('Method', ('', 'Method')),
        ('pkg.Svc/', ('pkg.Svc', '')),
    ])
    def test_split(self, name, expected):
        assert split_method_name(name) == expected


class TestComputeSvcConfigs:

    def test_empty(self):
        assert compute_svc_configs([], []) == {}

    def test_services_and_methods(self):
        configs = compute_svc_configs(['a.A'], ['a.A/One', 'b.B.Two', 'b.B/Three'])

        assert configs == {
            'a.A': SvcConfig(include_service=True, include_methods={'One'}),
            'b.B': SvcConfig(include_methods={'Two', 'Three'}),
        }

    def test_unparseable_method(self):
        with pytest.raises(UserInputError):
            compute_svc_configs([], ['NoService'])


class TestGetMethods:
    """Resolution against a live reflection source."""

    def test_default_excludes_reflection(self, reflection_source):
        methods = MethodEnumerationService(reflection_source).get_methods({})

        assert [m.name for m in methods] == ALL_METHODS
        assert all(m.containing_service.full_name == 'bridgetest.TestService' for m in methods)

    def test_whole_service(self, reflection_source):
        configs = compute_svc_configs(['bridgetest.TestService'], [])
        methods = MethodEnumerationService(reflection_source).get_methods(configs)

        assert [m.name for m in methods] == ALL_METHODS

    def test_single_methods(self, reflection_source):
        configs = compute_svc_configs([], ['bridgetest.TestService/Bidi', 'bridgetest.TestService.Unary'])
        methods = MethodEnumerationService(reflection_source).get_methods(configs)

        assert [m.name for m in methods] == ['Unary', 'Bidi']

    def test_reflection_service_when_configured(self, reflection_source):
        configs = compute_svc_configs(['grpc.reflection.v1alpha.ServerReflection'], [])
        methods = MethodEnumerationService(reflection_source).get_methods(configs)

        assert [m.name for m in methods] == ['ServerReflectionInfo']

    def test_redundant_method_warns(self, reflection_source, caplog):
        configs = compute_svc_configs(['bridgetest.TestService'], ['bridgetest.TestService/Unary'])
        with caplog.at_level(logging.WARNING, logger='grpcbridge'):
            methods = MethodEnumerationService(reflection_source).get_methods(configs)

        assert [m.name for m in methods] == ALL_METHODS
        assert 'already configured' in caplog.text

    def test_missing_methods_are_aggregated(self, reflection_source):
        configs = compute_svc_configs([], ['bridgetest.TestService/Zeta', 'bridgetest.TestService/Alpha'])

        with pytest.raises(MethodConfigurationError) as exc_info:
            MethodEnumerationService(reflection_source).get_methods(configs)
        assert exc_info.value.missing == ['bridgetest.TestService/Alpha', 'bridgetest.TestService/Zeta']
        assert 'bridgetest.TestService/Alpha, bridgetest.TestService/Zeta' in str(exc_info.value)

    def test_missing_services_and_methods(self, reflection_source):
        configs = compute_svc_configs(['nope.Gone'], ['other.Missing/Call', 'bridgetest.TestService/Unary'])

        with pytest.raises(MethodConfigurationError) as exc_info:
            MethodEnumerationService(reflection_source).get_methods(configs)
        assert exc_info.value.missing == ['nope.Gone', 'other.Missing/Call']

    def test_duplicate_services_listed_once(self, static_source):
        class Twice:
            def list_services(self):
                return static_source.list_services() * 2

            def find_service(self, name):
                return static_source.find_service(name)

        methods = MethodEnumerationService(Twice()).get_methods()
        assert [m.name for m in methods] == ALL_METHODS
