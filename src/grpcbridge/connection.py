import time
import grpc
from grpcbridge.constants import (
    DEFAULT_CONNECT_TIMEOUT_S, RETRY_BACKOFF_MULTIPLIER, RETRY_INITIAL_BACKOFF_S,
    RETRY_MAX_ATTEMPTS, RETRY_MAX_BACKOFF_S
)
from grpcbridge.errors import TransportError
from grpcbridge.helper import helper


class connection(helper):
    """Opens channels and waits until they are ready.

    Failed attempts are retried with exponential backoff; TransportError is
    raised once ``max_attempts`` is exhausted. A ``connect_timeout`` of zero
    waits indefinitely for each attempt.
    """

    def __init__(self,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
                 max_attempts: int = RETRY_MAX_ATTEMPTS,
                 initial_backoff: float = RETRY_INITIAL_BACKOFF_S,
                 max_backoff: float = RETRY_MAX_BACKOFF_S,
                 backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER):
        super().__init__()
        self.connect_timeout = connect_timeout
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

    def _open(self, target, credentials, options) -> grpc.Channel:
        if credentials is None:
            return grpc.insecure_channel(target, options=options)
        return grpc.secure_channel(target, credentials, options=options)

    def dial(self, target: str, credentials: grpc.ChannelCredentials = None, options=None) -> grpc.Channel:
        if not target:
            raise TransportError("no target given")
        backoff = self.initial_backoff
        last_error = None
        for attempt in range(self.max_attempts):
            channel = self._open(target, credentials, options)
            try:
                grpc.channel_ready_future(channel).result(timeout=self.connect_timeout or None)
                self.log(function_name='dial', args=[target], output=f"ready after {attempt + 1} attempt(s)")
                return channel
            except grpc.FutureTimeoutError as e:
                last_error = e
                channel.close()
            if attempt == self.max_attempts - 1:
                break
            sleep_time = min(backoff, self.max_backoff)
            self.logger.warning(
                "dialing %s failed (attempt %d/%d), retrying in %.2fs",
                target, attempt + 1, self.max_attempts, sleep_time,
            )
            time.sleep(sleep_time)
            backoff *= self.backoff_multiplier

        self.log(function_name='dial', args=[target], exception=last_error)
        raise TransportError(
            f"failed to dial target host {target!r} after {self.max_attempts} attempt(s)") from last_error
