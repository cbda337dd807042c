from __future__ import annotations

import asyncio
import time
from typing import Any

from config.settings import USER_TIMEZONE
from channels.base import DeliveryResult
from datamodel import ReminderValidationError
from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.responses import PlainTextResponse
from logger import logger
from metrics import runtime_metrics

import storage.db_config as db_config
import storage.reminder as reminder_storage
from world.presets import build_routine_reminder, build_task_reminder

from .auth import require_admin_auth
from .schemas import (
    NotificationSend,
    PurgeInvalidRequest,
    ReminderCreate,
    ReminderOut,
    ReminderUpdate,
    RoutineReminderCreate,
    RuntimeControl,
    ShutdownRequest,
    TaskReminderCreate,
)


# 目标失效 -> 410, 可重试的失败 -> 502
_SEND_STATUS = {
    DeliveryResult.DELIVERED: 200,
    DeliveryResult.CHANNEL_INVALID: 410,
    DeliveryResult.TRANSIENT_FAILURE: 502,
}


def ensure_conn() -> None:
    if db_config.conn is None:
        raise HTTPException(status_code=503, detail="数据库尚未就绪")


def _validation_error(e: ReminderValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(e))


def create_app(control: RuntimeControl) -> FastAPI:
    app = FastAPI(title="Nudge Admin API", version="0.1.0")
    admin = [Depends(require_admin_auth)]

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "db_connected": db_config.conn is not None,
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/auth/check", dependencies=admin)
    async def auth_check() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/api/v1/metrics", dependencies=admin)
    async def get_metrics() -> dict[str, Any]:
        scheduler_status: dict[str, Any] = {"running": False, "last_check_at_epoch": None}
        if control.scheduler is not None:
            scheduler_status.update(control.scheduler.get_status())

        return {
            "runtime": runtime_metrics.snapshot(),
            "components": {
                "db": {"connected": db_config.conn is not None},
                "scheduler": scheduler_status,
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/reminders", dependencies=admin)
    async def get_reminders(
        status: str | None = None,
        invalid_token: bool | None = None,
        q: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        ensure_conn()
        limit = max(1, min(limit, 500))
        offset = max(0, offset)

        try:
            total = await reminder_storage.count_reminders(status=status, invalid_token=invalid_token, q=q)
            items = await reminder_storage.list_reminders(
                status=status, invalid_token=invalid_token, q=q, limit=limit, offset=offset,
            )
        except ReminderValidationError as e:
            raise _validation_error(e)

        return {
            "items": [ReminderOut.from_record(r).model_dump(mode="json") for r in items],
            "limit": limit,
            "offset": offset,
            "status": status,
            "invalid_token": invalid_token,
            "q": q,
            "total": total,
        }

    @app.post("/api/v1/reminders", status_code=201, dependencies=admin)
    async def create_reminder(payload: ReminderCreate) -> ReminderOut:
        ensure_conn()
        try:
            reminder = await reminder_storage.insert_reminder(payload.to_record())
        except ReminderValidationError as e:
            raise _validation_error(e)
        logger.info(f"通过 API 创建提醒: reminder_id={reminder.reminder_id}, title={reminder.title}")
        return ReminderOut.from_record(reminder)

    @app.post("/api/v1/reminders/task", status_code=201, dependencies=admin)
    async def create_task_reminder(payload: TaskReminderCreate) -> ReminderOut:
        ensure_conn()
        try:
            draft = build_task_reminder(
                task_title=payload.task_title,
                starts_at=payload.starts_at,
                minutes_before=payload.minutes_before,
                priority=payload.priority,
                task_id=payload.task_id,
                destination=payload.destination,
            )
            if draft is None:
                raise HTTPException(status_code=409, detail="提醒时间已过, 未创建")
            reminder = await reminder_storage.insert_reminder(draft)
        except ReminderValidationError as e:
            raise _validation_error(e)
        return ReminderOut.from_record(reminder)

    @app.post("/api/v1/reminders/routine", status_code=201, dependencies=admin)
    async def create_routine_reminder(payload: RoutineReminderCreate) -> ReminderOut:
        ensure_conn()
        try:
            draft = build_routine_reminder(
                kind=payload.kind,
                time_of_day=payload.time_of_day,
                tz=USER_TIMEZONE,
                habit_title=payload.habit_title,
                destination=payload.destination,
            )
            reminder = await reminder_storage.insert_reminder(draft)
        except ReminderValidationError as e:
            raise _validation_error(e)
        return ReminderOut.from_record(reminder)

    @app.post("/api/v1/reminders/cleanup", dependencies=admin)
    async def cleanup_reminders() -> dict[str, Any]:
        ensure_conn()
        if control.scheduler is None:
            raise HTTPException(status_code=503, detail="调度器未启用")
        deleted = await control.scheduler.cleanup()
        return {"ok": True, "deleted": deleted}

    @app.post("/api/v1/reminders/invalid/purge", dependencies=admin)
    async def purge_invalid_reminders(payload: PurgeInvalidRequest) -> dict[str, Any]:
        ensure_conn()
        deleted = await reminder_storage.purge_invalid(payload.destination)
        return {"ok": True, "deleted": deleted, "destination": payload.destination}

    @app.post("/api/v1/notifications/send", dependencies=admin)
    async def send_notification(payload: NotificationSend, response: Response) -> dict[str, Any]:
        if control.scheduler is None:
            raise HTTPException(status_code=503, detail="调度器未启用")
        result = await control.scheduler.send_now(
            payload.title,
            payload.body,
            payload.destination,
            {**payload.data, "sound": payload.sound},
        )
        response.status_code = _SEND_STATUS[result]
        return {"ok": result is DeliveryResult.DELIVERED, "result": result.value}

    @app.get("/api/v1/reminders/{reminder_id}", dependencies=admin)
    async def get_reminder(reminder_id: str) -> ReminderOut:
        ensure_conn()
        reminder = await reminder_storage.get_reminder(reminder_id)
        if reminder is None:
            raise HTTPException(status_code=404, detail="提醒不存在")
        return ReminderOut.from_record(reminder)

    @app.patch("/api/v1/reminders/{reminder_id}", dependencies=admin)
    async def update_reminder(reminder_id: str, payload: ReminderUpdate) -> ReminderOut:
        ensure_conn()
        try:
            reminder = await reminder_storage.update_reminder(reminder_id, payload.to_changes())
        except ReminderValidationError as e:
            raise _validation_error(e)
        if reminder is None:
            raise HTTPException(status_code=404, detail="提醒不存在")
        return ReminderOut.from_record(reminder)

    @app.delete("/api/v1/reminders/{reminder_id}", status_code=204, dependencies=admin)
    async def delete_reminder(reminder_id: str) -> Response:
        ensure_conn()
        if not await reminder_storage.delete_reminder(reminder_id):
            raise HTTPException(status_code=404, detail="提醒不存在")
        return Response(status_code=204)

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, auth_info: dict = Depends(require_admin_auth)) -> dict[str, Any]:
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
