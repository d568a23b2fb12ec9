import os
import hmac
import json
import uuid
import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import parse_qsl

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.middleware.sessions import SessionMiddleware

from .db import PgCatalog, init_db, list_price_history
from .files import MAX_UPLOAD_BYTES, is_allowed_upload, read_price_file
from .price_parser import parse_price_list, validate_entries
from .price_update import preview_prices, update_prices

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_BOT_USERNAME = os.getenv("TELEGRAM_BOT_USERNAME", "")
SESSION_SECRET = os.getenv("SESSION_SECRET", "change-me")
SESSION_HTTPS_ONLY = os.getenv("SESSION_HTTPS_ONLY", "1") != "0"
ADMIN_TG_IDS_RAW = os.getenv("ADMIN_TG_IDS", "")

log = logging.getLogger("storefront.api")


def get_admin_ids():
    ids = set()
    for part in ADMIN_TG_IDS_RAW.split(","):
        part = part.strip()
        if part.isdigit():
            ids.add(int(part))
    return ids


ADMIN_IDS = get_admin_ids()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(lifespan=lifespan)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax", https_only=SESSION_HTTPS_ONLY)
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


class ApiError(Exception):
    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


def get_catalog():
    return PgCatalog()


# ----------------------
# AUTH
# ----------------------
def telegram_check_auth(data: dict, bot_token: str) -> bool:
    """Проверка подписи Telegram Login Widget."""
    if "hash" not in data:
        return False
    check_hash = data["hash"]
    pairs = [f"{k}={v}" for k, v in data.items() if k != "hash"]
    pairs.sort()
    data_check_string = "\n".join(pairs)
    secret_key = hashlib.sha256(bot_token.encode()).digest()
    hmac_hash = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(hmac_hash, check_hash)


def telegram_check_webapp(init_data: str, bot_token: str):
    """
    Проверка initData из Telegram Mini App (заголовок X-Telegram-Init-Data).
    Возвращает dict пользователя или None, если подпись не сошлась.
    """
    data = dict(parse_qsl(init_data or "", keep_blank_values=True))
    check_hash = data.pop("hash", None)
    if not check_hash:
        return None
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(data.items()))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    hmac_hash = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(hmac_hash, check_hash):
        return None
    try:
        user = json.loads(data.get("user") or "{}")
    except ValueError:
        return None
    return user if isinstance(user, dict) else None


def admin_user_id(request: Request):
    if request.session.get("is_admin"):
        return request.session.get("tg_user_id")

    init_data = request.headers.get("x-telegram-init-data")
    if init_data and TELEGRAM_BOT_TOKEN:
        user = telegram_check_webapp(init_data, TELEGRAM_BOT_TOKEN)
        user_id = (user or {}).get("id")
        if isinstance(user_id, int) and user_id in ADMIN_IDS:
            return user_id
    return None


def require_admin(request: Request):
    if admin_user_id(request) is None:
        raise ApiError("Not authorized", status_code=401)


# ----------------------
# INPUT
# ----------------------
async def read_price_content(request: Request) -> str:
    """
    Текст прайса из запроса: multipart-поле file, поле формы content
    или JSON {"content": "..."}.
    """
    ctype = request.headers.get("content-type", "")
    content = None

    if ctype.startswith("multipart/form-data") or ctype.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        upload = form.get("file")
        if isinstance(upload, UploadFile) and upload.filename:
            if not is_allowed_upload(upload.filename, upload.content_type):
                raise ApiError("Invalid file type")
            data = await upload.read(MAX_UPLOAD_BYTES + 1)
            if len(data) > MAX_UPLOAD_BYTES:
                raise ApiError("File too large", status_code=413)
            try:
                return read_price_file(upload.filename, data)
            except Exception as e:
                log.exception("Failed to read price file %s: %s", upload.filename, e)
                raise ApiError(f"Could not read file: {e}")
        content = form.get("content")
    elif ctype.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ApiError("Invalid JSON body")
        if isinstance(body, dict):
            content = body.get("content")

    if not isinstance(content, str) or not content:
        raise ApiError("No file or content provided")
    return content


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ----------------------
# API: PRICE LISTS
# ----------------------
@app.post("/api/upload/prices")
async def upload_prices(request: Request, preview: str = ""):
    require_admin(request)
    content = await read_price_content(request)

    try:
        entries = list(parse_price_list(content))
        validation_errors = validate_entries(entries)
        if validation_errors:
            return JSONResponse({"error": "Validation failed", "details": validation_errors}, status_code=400)

        catalog = get_catalog()
        if preview == "true":
            matches, _ = await run_in_threadpool(preview_prices, catalog, entries)
            return {"items": [m.to_dict() for m in matches], "count": len(matches)}

        result = await run_in_threadpool(update_prices, catalog, entries)
        return result.to_dict()
    except Exception as e:
        log.exception("Error processing price list: %s", e)
        return JSONResponse({"error": "Failed to process price list"}, status_code=500)


@app.post("/api/upload/prices/preview")
async def upload_prices_preview(request: Request):
    require_admin(request)
    content = await read_price_content(request)

    try:
        entries = list(parse_price_list(content))
        validation_errors = validate_entries(entries)
        matches, summary = await run_in_threadpool(preview_prices, get_catalog(), entries)
        return {
            "items": [m.to_dict() for m in matches],
            "summary": summary,
            "validationErrors": validation_errors,
        }
    except Exception as e:
        log.exception("Error previewing price list: %s", e)
        return JSONResponse({"error": "Failed to preview price list"}, status_code=500)


@app.get("/api/products/{product_id}/price-history")
def product_price_history(product_id: uuid.UUID, limit: int = 10):
    limit = max(1, min(limit, 100))
    rows = list_price_history(product_id, limit=limit)
    return {"product_id": str(product_id), "price_history": rows}


# ----------------------
# ADMIN: TELEGRAM
# ----------------------
@app.get("/")
def root():
    return RedirectResponse("/admin/prices", status_code=303)


@app.get("/admin/login", response_class=HTMLResponse)
def admin_login(request: Request):
    if not TELEGRAM_BOT_USERNAME:
        return HTMLResponse("<h1>TELEGRAM_BOT_USERNAME not set</h1>", status_code=500)

    base = str(request.base_url).rstrip("/")
    auth_url = f"{base}/admin/auth/telegram"

    return templates.TemplateResponse(request, "admin_login.html", {"bot_username": TELEGRAM_BOT_USERNAME, "auth_url": auth_url})


@app.get("/admin/auth/telegram")
def admin_auth_telegram(request: Request):
    if not TELEGRAM_BOT_TOKEN:
        return HTMLResponse("<h1>TELEGRAM_BOT_TOKEN not set</h1>", status_code=500)

    data = dict(request.query_params)

    if not telegram_check_auth(data, TELEGRAM_BOT_TOKEN):
        return HTMLResponse("<h1>Telegram auth failed</h1>", status_code=403)

    user_id = int(data.get("id", "0"))
    if user_id not in ADMIN_IDS:
        return HTMLResponse("<h1>Access denied</h1>", status_code=403)

    request.session["is_admin"] = True
    request.session["tg_user_id"] = user_id
    request.session["tg_username"] = data.get("username", "")

    return RedirectResponse("/admin/prices", status_code=303)


@app.get("/admin/logout")
def admin_logout(request: Request):
    request.session.clear()
    return RedirectResponse("/admin/login", status_code=303)


# ----------------------
# ADMIN: PRICE UPLOAD
# ----------------------
@app.get("/admin/prices", response_class=HTMLResponse)
def admin_prices(request: Request):
    if admin_user_id(request) is None:
        return RedirectResponse("/admin/login", status_code=303)
    return templates.TemplateResponse(request, "admin_prices.html", {"content": "", "tg_username": request.session.get("tg_username")})


@app.post("/admin/prices", response_class=HTMLResponse)
async def admin_prices_submit(request: Request):
    require_admin(request)
    ctx = {"content": "", "tg_username": request.session.get("tg_username")}

    try:
        content = await read_price_content(request)
    except ApiError as e:
        ctx["error"] = e.message
        return templates.TemplateResponse(request, "admin_prices.html", ctx, status_code=e.status_code)

    form = await request.form()
    action = form.get("action") or "preview"
    ctx["content"] = content

    entries = list(parse_price_list(content))
    validation_errors = validate_entries(entries)
    ctx["validation_errors"] = validation_errors

    if action == "apply":
        if validation_errors:
            return templates.TemplateResponse(request, "admin_prices.html", ctx, status_code=400)
        result = await run_in_threadpool(update_prices, get_catalog(), entries)
        ctx["result"] = result
        ctx["content"] = ""
        return templates.TemplateResponse(request, "admin_prices.html", ctx)

    matches, summary = await run_in_threadpool(preview_prices, get_catalog(), entries)
    ctx["matches"] = matches
    ctx["summary"] = summary
    return templates.TemplateResponse(request, "admin_prices.html", ctx)
