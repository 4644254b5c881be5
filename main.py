from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import statsd

from chatlog.accumulator import ChatAccumulator
from chatlog.dates import DateNormalizer
from chatlog.db import init_db, make_engine
from chatlog.errors import ChatLogError
from chatlog.profiles import ProfileDirectory
from chatlog.reports import ReportQueryEngine
from chatlog.schemas import RegistUserRequest, UpdateChatRequest
from chatlog.settings import Settings, get_settings

logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")
logger = logging.getLogger("chatlog")


def parse_email_list(values: Optional[List[str]]) -> List[str]:
    # adminEmails may be repeated, comma separated, or both
    emails = []
    for value in values or []:
        emails.extend(item.strip() for item in value.split(",") if item.strip())
    return emails


def create_app(settings: Optional[Settings] = None, pg_engine=None, metrics=None) -> FastAPI:
    settings = settings or get_settings()
    owns_engine = pg_engine is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = pg_engine if pg_engine is not None else make_engine(settings.database_url)
        init_db(engine)
        stats = metrics or statsd.StatsClient(
            host=settings.graphite_host, port=settings.graphite_port, prefix=settings.metrics_prefix
        )
        normalizer = DateNormalizer(settings.timezone)

        app.state.accumulator = ChatAccumulator(engine, normalizer, stats)
        app.state.reports = ReportQueryEngine(engine, normalizer, stats)
        app.state.profiles = ProfileDirectory(engine, stats)
        logger.info("Chat log service ready (timezone=%s)", settings.timezone)
        yield
        if owns_engine:
            engine.dispose()

    app = FastAPI(title="Chat Log API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    @app.exception_handler(ChatLogError)
    async def _chatlog_error(req: Request, exc: ChatLogError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(req: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(req: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", req.method, req.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})

    @app.get("/")
    def _hello_world():
        return "Hello World"

    @app.post("/api/regist_user_info")
    def _regist_user_info(body: RegistUserRequest, req: Request):
        created, user = req.app.state.profiles.register_user(body.email, body.user_name, body.license_number)
        if created:
            return JSONResponse(status_code=201, content={"message": "User registered successfully", "user": user})
        return {"message": "User information updated successfully", "user": user}

    @app.get("/api/check-license")
    def _check_license(req: Request, email: Optional[str] = None):
        return {"license_number": req.app.state.profiles.check_license(email)}

    @app.get("/api/check-userinfo")
    def _check_userinfo(req: Request, email: Optional[str] = None):
        return {"user": req.app.state.profiles.get_user(email)}

    @app.put("/api/update-chat")
    def _update_chat(body: UpdateChatRequest, req: Request):
        logger.debug("Received update-chat body: %s", body.model_dump())
        result = req.app.state.accumulator.append_chat(
            email=body.email,
            chat_date=body.chat_date,
            chat_list=[chat.model_dump() for chat in body.chat_list],
            input_token=body.input_token,
            output_token=body.output_token,
        )
        if result.created:
            return JSONResponse(status_code=201, content={"message": "New chat history created", "result": result.record})
        return {"message": "Chat history updated", "result": result.record}

    @app.get("/api/chat-history")
    def _chat_history(req: Request, email: Optional[str] = None):
        return req.app.state.accumulator.get_user_histories(email)

    @app.get("/api/get-chat-histories")
    def _get_chat_histories(
        req: Request,
        page: int = 1,
        page_size: int = Query(10, alias="pageSize"),
        email: Optional[str] = None,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        exclude_admin_data: bool = Query(False, alias="excludeAdminData"),
        admin_emails: Optional[List[str]] = Query(None, alias="adminEmails"),
    ):
        exclude_emails = None
        if exclude_admin_data:
            exclude_emails = parse_email_list(admin_emails) or settings.admin_emails
        report = req.app.state.reports.query_chat_histories(
            page=page,
            page_size=page_size,
            email=email,
            start_date=start_date,
            end_date=end_date,
            exclude_emails=exclude_emails,
        )
        return report.to_response()

    @app.get("/api/get-chat-list/{record_id}")
    def _get_chat_list(record_id: str, req: Request):
        return req.app.state.reports.get_chat_list(record_id)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=get_settings().port)
