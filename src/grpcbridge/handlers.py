import json
import falcon
from grpcbridge.config import BridgeConfig
from grpcbridge.context import InvocationContext
from grpcbridge.errors import BadInputError, ReadFailureError, UnknownMethodError, UserInputError
from grpcbridge.main import main

JSON_CONTENT_TYPE = 'application/json'
CLIENT_CLOSED_REQUEST = '499 Client Closed Request'


def _check_content_type(req: falcon.Request):
    content_type = (req.content_type or '').split(';', 1)[0].strip().lower()
    if content_type != JSON_CONTENT_TYPE:
        raise falcon.HTTPUnsupportedMediaType(
            description=f"Content-Type must be {JSON_CONTENT_TYPE}, got {req.content_type!r}")


class InvokeResource:
    """``POST /invoke/{method}``: runs one RPC from a JSON request envelope."""

    def __init__(self, facade: main, config: BridgeConfig):
        self.facade = facade
        self.config = config

    def _preserved_headers(self, req: falcon.Request):
        pairs = []
        for name in self.config.preserve_headers:
            value = req.get_header(name)
            if value is not None:
                pairs.append((name, value))
        return pairs

    def on_post(self, req: falcon.Request, resp: falcon.Response, method: str):
        _check_content_type(req)
        try:
            self.facade.find_method(method)
        except UnknownMethodError as e:
            raise falcon.HTTPNotFound(description=str(e)) from e

        with InvocationContext.with_max_time(self.config.max_time) as ctx:
            try:
                result = self.facade.execute_request(
                    method, req.bounded_stream, context=ctx, extra_pairs=self._preserved_headers(req))
            except ReadFailureError as e:
                raise falcon.HTTPError(CLIENT_CLOSED_REQUEST, description=f"Failed to read request: {e}") from e
            except BadInputError as e:
                raise falcon.HTTPBadRequest(description=f"Failed to parse JSON: {e}") from e
            except UserInputError as e:
                raise falcon.HTTPBadRequest(description=str(e)) from e
            except Exception as e:
                self.facade.log(function_name='on_post', args=[method], exception=e)
                raise falcon.HTTPInternalServerError(description=str(e)) from e
            finally:
                ctx.cancel()

        resp.content_type = JSON_CONTENT_TYPE
        resp.text = result.to_json()
        resp.status = falcon.HTTP_200


class MetadataResource:
    """``GET /metadata?method=<name>``: the request schema of a method, or of every type for ``*``."""

    def __init__(self, facade: main):
        self.facade = facade

    def on_get(self, req: falcon.Request, resp: falcon.Response):
        method = req.get_param('method', required=True)
        try:
            schema = self.facade.get_schema(method)
        except UnknownMethodError as e:
            raise falcon.HTTPUnprocessableEntity(description=str(e)) from e

        resp.content_type = JSON_CONTENT_TYPE
        resp.text = json.dumps(schema.to_dict())


class ExamplesResource:
    """``GET /examples[?method=<name>]``: ready-made request envelopes loaded at start-up."""

    def __init__(self, facade: main):
        self.facade = facade

    def on_get(self, req: falcon.Request, resp: falcon.Response):
        method = req.get_param('method')
        try:
            examples = self.facade.get_examples(method)
        except UnknownMethodError as e:
            raise falcon.HTTPUnprocessableEntity(description=str(e)) from e

        resp.content_type = JSON_CONTENT_TYPE
        resp.text = json.dumps([e.to_dict() for e in examples])


def make_app(facade: main, config: BridgeConfig = None) -> falcon.App:
    config = config or facade.config
    app = falcon.App()
    app.add_route('/invoke/{method}', InvokeResource(facade, config))
    app.add_route('/metadata', MetadataResource(facade))
    app.add_route('/examples', ExamplesResource(facade))
    facade.logger.info(
        "WSGI app created for %s (%d method(s) exposed)", config.target or 'static descriptors', len(facade.get_methods()))
    return app
