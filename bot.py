import logging
from functools import wraps

import pytz
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

import recurrence
from completions import ALREADY_RECORDED, COMPLETED, complete_latest, on_user_completion
from config import LOG_LEVEL, MISSED_THRESHOLD_MINUTES, TELEGRAM_BOT_TOKEN
from database import init_db
from delivery import TelegramDelivery
from models import COMPLETION_COMPLETED
from scheduler import ReminderScheduler
from store import ReminderStore
from streaks import StreakLedger

# --- Logging ---
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=LOG_LEVEL
)
logger = logging.getLogger(__name__)


def user_only(func):
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        if update.effective_user is None:
            return
        return await func(update, context)
    return wrapper


def _store(context) -> ReminderStore:
    return context.application.bot_data["store"]


def _ledger(context) -> StreakLedger:
    return context.application.bot_data["scheduler"].ledger


# --- Telegram Bot Handlers ---

@user_only
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user = update.effective_user
    _store(context).create_user(user.id, name=user.first_name or "")
    await update.message.reply_text(
        "Hi! I'll send your recurring reminders and keep track of your streaks.\n"
        "Set your timezone first, e.g. /timezone Europe/Berlin"
    )


@user_only
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(
        "Commands:\n"
        "/timezone <Area/City> - set your timezone\n"
        "/pending - reminders waiting for you to mark done\n"
        "/streaks - your current and best streaks\n"
        "/history <reminder id> - recent completions and misses\n"
        f"Tap Done ✅ on a reminder within {MISSED_THRESHOLD_MINUTES} minutes to keep your streak."
    )


@user_only
async def timezone_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args:
        await update.message.reply_text("Usage: /timezone Europe/Berlin")
        return
    name = context.args[0]
    if name not in pytz.all_timezones_set:
        await update.message.reply_text(f"Unknown timezone: {name}")
        return
    store = _store(context)
    user = update.effective_user
    store.create_user(user.id, name=user.first_name or "")
    store.set_user_timezone(user.id, name)
    await update.message.reply_text(f"Timezone set to {name}.")


@user_only
async def pending_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    logs = _store(context).list_pending_logs(update.effective_user.id, limit=10)
    if not logs:
        await update.message.reply_text("Nothing pending. 🎉")
        return
    for log in logs:
        fired = recurrence.ensure_utc(log.triggered_at).strftime("%Y-%m-%d %H:%M UTC")
        keyboard = InlineKeyboardMarkup([[InlineKeyboardButton("Done ✅", callback_data=f"log|{log.id}")]])
        await update.message.reply_text(f"{log.reminder.title} (sent {fired})", reply_markup=keyboard)


@user_only
async def streaks_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    streaks = _store(context).list_streaks(update.effective_user.id)
    if not streaks:
        await update.message.reply_text("No streaks yet.")
        return
    msg = "Your streaks:\n"
    for s in streaks:
        msg += f"- [{s.reminder_id}] {s.reminder.title}: {s.current_streak} (best {s.longest_streak})\n"
    await update.message.reply_text(msg)


@user_only
async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args or not context.args[0].isdigit():
        await update.message.reply_text("Usage: /history <reminder id>")
        return
    rows = _store(context).completion_history(int(context.args[0]), update.effective_user.id, limit=20)
    if not rows:
        await update.message.reply_text("No history for that reminder.")
        return
    msg = ""
    for row in rows:
        icon = "✅" if row.status == COMPLETION_COMPLETED else "❌"
        msg += f"{icon} {recurrence.ensure_utc(row.scheduled_time).strftime('%Y-%m-%d %H:%M')} UTC\n"
    await update.message.reply_text(msg)


@user_only
async def button_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    user_id = query.from_user.id
    data = query.data.split("|")
    if len(data) != 2 or not data[1].isdigit():
        await query.edit_message_text("Invalid action.")
        return
    action, ref = data[0], int(data[1])
    store, ledger = _store(context), _ledger(context)
    if action == "done":
        result = complete_latest(store, ledger, ref, user_id)
    elif action == "log":
        result = on_user_completion(store, ledger, ref, user_id)
    else:
        await query.edit_message_text("Invalid action.")
        return

    if result.outcome == COMPLETED:
        streak = result.streak
        suffix = f" Streak: {streak.current_streak} 🔥" if streak else ""
        await query.edit_message_text(f"Logged. Nice work!{suffix}")
    elif result.outcome == ALREADY_RECORDED:
        await query.edit_message_text("This one is already recorded.")
    else:
        await query.edit_message_text("Not allowed.")


# --- Main Application Setup ---

async def post_init(application: Application):
    init_db()
    store = ReminderStore()
    scheduler = ReminderScheduler(store, TelegramDelivery(application.bot))
    application.bot_data["store"] = store
    application.bot_data["scheduler"] = scheduler
    scheduler.start()
    logger.info("Bot started.")


async def post_shutdown(application: Application):
    scheduler = application.bot_data.get("scheduler")
    if scheduler is not None:
        await scheduler.shutdown()


def build_application(token=TELEGRAM_BOT_TOKEN) -> Application:
    application = (
        Application.builder()
        .token(token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("timezone", timezone_command))
    application.add_handler(CommandHandler("pending", pending_command))
    application.add_handler(CommandHandler("streaks", streaks_command))
    application.add_handler(CommandHandler("history", history_command))
    application.add_handler(CallbackQueryHandler(button_callback))
    return application


def main():
    if not TELEGRAM_BOT_TOKEN:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set")
    application = build_application()
    try:
        application.run_polling(allowed_updates=Update.ALL_TYPES)
    except KeyboardInterrupt:
        logger.info("Bot stopped by user.")


if __name__ == "__main__":
    main()
