import os
import logging

from telegram import (
    Update,
    ReplyKeyboardMarkup,
    InlineKeyboardMarkup,
    InlineKeyboardButton,
)
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    CallbackQueryHandler,
    ContextTypes,
    filters,
)

from .db import PgCatalog
from .files import ALLOWED_EXTS, MAX_UPLOAD_BYTES, file_ext, read_price_file
from .price_parser import parse_price_list, validate_entries
from .price_update import preview_prices, update_prices

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
log = logging.getLogger("storefront.bot")

BOT_TOKEN = os.getenv("BOT_TOKEN", "")
ADMIN_TG_IDS_RAW = os.getenv("ADMIN_TG_IDS", "")  # тот же список, что и для админки сайта

PRICES_BUTTON = "💲 Прайс"
CANCEL_BUTTON = "❌ Отмена"
MAX_ERRORS_SHOWN = 10


def admin_ids() -> set[int]:
    ids = set()
    for p in (ADMIN_TG_IDS_RAW or "").split(","):
        p = p.strip()
        if p.isdigit():
            ids.add(int(p))
    return ids


ADMINS = admin_ids()


def is_admin(update: Update) -> bool:
    user = update.effective_user
    return bool(user and user.id in ADMINS)


def get_catalog():
    return PgCatalog()


def main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[PRICES_BUTTON, CANCEL_BUTTON]],
        resize_keyboard=True,
        one_time_keyboard=False,
    )


def apply_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("✅ Применить", callback_data="prices:apply"),
                InlineKeyboardButton("✖️ Отмена", callback_data="prices:cancel"),
            ]
        ]
    )


def format_preview(summary: dict, validation_errors: list) -> str:
    lines = [
        "📋 Предпросмотр прайса",
        f"Строк: {summary['total']}",
        f"Найдено: {summary['found']}, не найдено: {summary['not_found']}",
        f"Дороже: {summary['price_increased']}, дешевле: {summary['price_decreased']}, "
        f"без изменений: {summary['price_unchanged']}",
    ]
    if validation_errors:
        lines.append("")
        lines.append("⚠️ Предупреждения:")
        lines.extend(validation_errors[:MAX_ERRORS_SHOWN])
        if len(validation_errors) > MAX_ERRORS_SHOWN:
            lines.append(f"…и ещё {len(validation_errors) - MAX_ERRORS_SHOWN}")
    return "\n".join(lines)


def format_result(result) -> str:
    lines = [f"✅ Обновлено: {result.success}", f"❌ Ошибок: {result.failed}"]
    for e in result.errors[:MAX_ERRORS_SHOWN]:
        who = e.article or e.name or "-"
        lines.append(f"Строка {e.line} ({who}): {e.reason}")
    if len(result.errors) > MAX_ERRORS_SHOWN:
        lines.append(f"…и ещё {len(result.errors) - MAX_ERRORS_SHOWN}")
    return "\n".join(lines)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update):
        await update.message.reply_text("Доступ запрещён.")
        return

    await update.message.reply_text(
        "Загрузка прайсов.\nНажми «💲 Прайс» и пришли файл (CSV, TXT, Excel) или текст.",
        reply_markup=main_keyboard(),
    )


async def cmd_prices(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update):
        await update.message.reply_text("Доступ запрещён.")
        return

    context.user_data["awaiting_price_file"] = True
    await update.message.reply_text(
        "Пришли файл прайса или вставь текст:\nартикул;название;цена\nили «Название: цена»."
    )


async def send_preview(update: Update, context: ContextTypes.DEFAULT_TYPE, content: str):
    context.user_data["awaiting_price_file"] = False

    entries = list(parse_price_list(content))
    validation_errors = validate_entries(entries)
    if not entries:
        await update.message.reply_text(validation_errors[0], reply_markup=main_keyboard())
        return

    try:
        _, summary = preview_prices(get_catalog(), entries)
    except Exception as e:
        log.exception("price preview failed: %s", e)
        await update.message.reply_text(f"Не удалось проверить прайс: {e}")
        return

    text = format_preview(summary, validation_errors)
    if validation_errors:
        # с предупреждениями применять нельзя, как и в админке
        await update.message.reply_text(text + "\n\nИсправь файл и пришли заново.", reply_markup=main_keyboard())
        return

    context.user_data["price_content"] = content
    await update.message.reply_text(text, reply_markup=apply_keyboard())


async def on_document(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update):
        return
    if not context.user_data.get("awaiting_price_file"):
        return
    doc = update.message.document
    if not doc:
        return

    file_name = doc.file_name or ""
    if file_ext(file_name) not in ALLOWED_EXTS:
        await update.message.reply_text("Пожалуйста, отправьте файл CSV, TXT, TSV или Excel (.xlsx).")
        return
    if doc.file_size and doc.file_size > MAX_UPLOAD_BYTES:
        await update.message.reply_text("Файл больше 10 МБ.")
        return

    try:
        file_obj = await doc.get_file()
        data = await file_obj.download_as_bytearray()
        content = read_price_file(file_name, bytes(data))
    except Exception as e:
        log.exception("Failed to read price file: %s", e)
        await update.message.reply_text(f"Не удалось прочитать файл: {e}")
        context.user_data["awaiting_price_file"] = False
        return

    await send_preview(update, context, content)


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not is_admin(update):
        await update.message.reply_text("Доступ запрещён.")
        return

    text = (update.message.text or "").strip()

    if text == PRICES_BUTTON:
        await cmd_prices(update, context)
        return

    if text == CANCEL_BUTTON:
        context.user_data.pop("awaiting_price_file", None)
        context.user_data.pop("price_content", None)
        await update.message.reply_text("Отменено.", reply_markup=main_keyboard())
        return

    if context.user_data.get("awaiting_price_file"):
        await send_preview(update, context, update.message.text or "")
        return

    await update.message.reply_text("Команда не распознана. Нажми «💲 Прайс» или /start.")


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    if not is_admin(update):
        await query.answer("Доступ запрещён.", show_alert=True)
        return

    data = query.data or ""

    if data == "prices:cancel":
        context.user_data.pop("price_content", None)
        await query.answer()
        await query.edit_message_text("Отменено.")
        return

    if data == "prices:apply":
        content = context.user_data.pop("price_content", None)
        if not content:
            await query.answer("Прайс устарел, пришли заново.", show_alert=True)
            return

        await query.answer()
        entries = list(parse_price_list(content))
        # матчинг повторяется: каталог мог измениться после предпросмотра
        result = update_prices(get_catalog(), entries)
        log.info("price list applied by %s: success=%s failed=%s", update.effective_user.id, result.success, result.failed)
        await query.edit_message_text(format_result(result))
        return

    await query.answer()


def build_app() -> Application:
    if not BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN is not set")

    application = Application.builder().token(BOT_TOKEN).build()

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("prices", cmd_prices))
    application.add_handler(CallbackQueryHandler(on_callback))
    application.add_handler(MessageHandler(filters.Document.ALL, on_document))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text))

    return application


def main() -> None:
    log.info("Starting price bot…")
    app = build_app()
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
