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
import argparse

import configargparse
import uvicorn

from profwatch import __version__
from profwatch.config import ASYNC_PROFILER_HOME_ENV, DEFAULT_DURATION_SECONDS, ProfilerConfig
from profwatch.controller import ProfilerController
from profwatch.logging import configure_stdout_logging
from profwatch.request import positive_int_or_none
from profwatch.server import create_app

DEFAULT_PORT = 9898


def positive_integer(value: str) -> int:
    parsed = positive_int_or_none(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"invalid positive integer value: {value!r}")
    return parsed


def parse_cmd_args() -> configargparse.Namespace:
    parser = configargparse.ArgumentParser(
        description="Serve async-profiler profiles of this process over HTTP.",
        auto_env_var_prefix="profwatch_",
        add_env_var_help=False,
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Address to listen on (default: %(default)s)")
    parser.add_argument(
        "-p", "--port", type=positive_integer, default=DEFAULT_PORT, help="Port to listen on (default: %(default)s)"
    )
    parser.add_argument(
        "--async-profiler-home",
        dest="profiler_home",
        type=str,
        env_var=ASYNC_PROFILER_HOME_ENV,
        help=f"async-profiler installation directory (default: ${ASYNC_PROFILER_HOME_ENV})",
    )
    parser.add_argument("-o", "--output-dir", type=str, help="Directory for profiler outputs (default: system temp)")
    parser.add_argument(
        "-d",
        "--duration",
        dest="default_duration",
        type=positive_integer,
        default=DEFAULT_DURATION_SECONDS,
        help="Profiling duration in seconds when a request doesn't give one (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="Log debug messages")
    return parser.parse_args()


def main() -> None:
    args = parse_cmd_args()
    logger = configure_stdout_logging(args.verbose)
    config = ProfilerConfig.from_env(
        profiler_home=args.profiler_home, output_dir=args.output_dir, default_duration=args.default_duration
    )
    if not config.is_profiler_configured:
        # not fatal, requests will get the error
        logger.warning(f"{ASYNC_PROFILER_HOME_ENV} is not set, profiling requests will fail")

    app = create_app(ProfilerController(config, logger=logger))
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
