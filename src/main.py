import sys
import waitress
from grpcbridge.config import BridgeConfig
from grpcbridge.errors import BridgeError
from grpcbridge.handlers import make_app
from grpcbridge.main import main


if __name__ == "__main__":
    try:
        config = BridgeConfig.from_env()
        facade = main(config)
    except BridgeError as e:
        print(e, file=sys.stderr)
        sys.exit(2)

    try:
        app = make_app(facade, config)
        facade.logger.info("serving %s on http://%s:%d", config.target, config.host, config.port)
        waitress.serve(app, host=config.host, port=config.port, _quiet=True)
    finally:
        facade.close()
