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
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from profwatch import __version__
from profwatch.controller import NO_SESSION_MESSAGE, ProfilerController
from profwatch.events import CONTENT_TYPE_TEXT
from profwatch.exceptions import ProfilerBusy, ProfwatchError
from profwatch.logging import get_logger
from profwatch.request import ProfileRequest

ACCESS_CONTROL_ALLOW_METHODS = "Access-Control-Allow-Methods"
ALLOWED_METHODS = "GET"
ACCESS_CONTROL_ALLOW_ORIGIN = "Access-Control-Allow-Origin"
CORS_HEADERS = {ACCESS_CONTROL_ALLOW_METHODS: ALLOWED_METHODS, ACCESS_CONTROL_ALLOW_ORIGIN: "*"}

logger = get_logger()


def _text(body: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status_code, headers=CORS_HEADERS, media_type=CONTENT_TYPE_TEXT)


def create_app(controller: ProfilerController) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        controller.close()

    app = FastAPI(title="profwatch", description="async-profiler over HTTP", version=__version__, lifespan=lifespan)
    app.state.controller = controller

    @app.exception_handler(ProfwatchError)
    async def profwatch_error_handler(request: Request, exc: ProfwatchError) -> PlainTextResponse:
        logger.warning(f"{request.method} {request.url.path} failed: {exc}", extra=exc.extra)
        return _text(str(exc), status_code=409 if isinstance(exc, ProfilerBusy) else 500)

    @app.get("/prof")
    def profile(request: Request) -> Response:
        # blocking: FastAPI runs sync endpoints in its threadpool
        artifact = controller.profile_once(ProfileRequest.from_params(request.query_params))
        return Response(artifact.content, headers=CORS_HEADERS, media_type=artifact.content_type)

    @app.get("/prof/status")
    def status() -> PlainTextResponse:
        return _text("running" if controller.is_running() else "not running")

    @app.get("/prof/session")
    def session() -> PlainTextResponse:
        snapshot = controller.status()
        return _text(snapshot.render() if snapshot is not None else NO_SESSION_MESSAGE)

    @app.post("/prof/session")
    async def submit(request: Request) -> PlainTextResponse:
        params: Dict[str, Any] = dict(request.query_params)
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
        report = await run_in_threadpool(controller.submit, ProfileRequest.from_params(params))
        return _text(report.render())

    return app
