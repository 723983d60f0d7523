#
# Copyright (C) 2023 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
import logging
import sys
from typing import Any, MutableMapping, Tuple, Union

LOGGER_NAME = "profwatch"
_LOGGING_FORMAT = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

LoggerType = Union[logging.Logger, logging.LoggerAdapter]

_logger = logging.getLogger(LOGGER_NAME)
_logger.addHandler(logging.NullHandler())


def get_logger() -> logging.Logger:
    return _logger


class SessionLoggerAdapter(logging.LoggerAdapter):
    """
    Sets the session's attributes (e.g profile_id) on every record. Keyword arguments of a logging call that
    aren't logging's own become record attributes too: logger.info("finished", exit_code=0).
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = {**(self.extra or {}), **kwargs.pop("extra", {})}
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def configure_stdout_logging(verbose: bool = False) -> logging.Logger:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOGGING_FORMAT))
    _logger.addHandler(handler)
    _logger.propagate = False
    _logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return _logger
