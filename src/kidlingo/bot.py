"""Main Telegram bot module."""
import logging
from html import escape
from pathlib import Path
from typing import Any, Dict, List, Optional

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Update,
)
from telegram.error import BadRequest, TelegramError
from telegram.ext import CallbackContext

from kidlingo.config import settings
from kidlingo.models.base import SessionLocal
from kidlingo.models.lesson_models import ChoiceExercise, ExerciseType, Lesson, MatchExercise
from kidlingo.models.models import LessonResult, User
from kidlingo.models.player_models import AnswerOutcome, Direction, LessonSummary, Phase
from kidlingo.services.exercise_methods import CALLBACK_PREFIX, MatchMethod, get_method
from kidlingo.services.lesson_player import InvalidStateError, LessonPlayer
from kidlingo.services.lesson_service import LessonNotFoundError, LessonService
from kidlingo.services.progress_service import ProgressService
from kidlingo.services.session_service import LessonSessionService
from kidlingo.services.user_service import PARENT, STUDENT, UserService

# Get logger for this module
logger = logging.getLogger(__name__)

# Conversation states
MAIN_MENU, LESSON = range(2)

# Button texts
MENU = "🏠 Menu"
LESSONS = "📚 Lessons"
MY_PROGRESS = "📊 My Progress"
CONTINUE = "Continue →"
PARENT_DASHBOARD = "👪 Parent Dashboard"


def msg_back_to(text: str) -> str: return f"🔙 {text}"


KB_BACK_TO_MENU = [[InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")]]
KB_BACK_TO_DASHBOARD = [
    [InlineKeyboardButton(msg_back_to(PARENT_DASHBOARD), callback_data="parent")],
    [InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")],
]

MSG_NO_ACTIVE_LESSON = "This lesson is no longer open. Pick a lesson to continue."
MSG_PARENTS_ONLY = "This part is for parents only."
MSG_LEARNER_NOT_FOUND = "Learner not found."


async def log_received(update: Update, context_type: str) -> None:
    """Log message."""
    if update.callback_query: txt = f" {update.callback_query.data}"
    elif update.message: txt = f" {update.message.text}"
    else: txt = ""
    logger.info(f"Received @{context_type:8} from user {update.effective_user.username} ({update.effective_user.id}){txt}")


async def send_message(update: Update, text: str, keyboard: List[List[InlineKeyboardButton]]) -> None:
    """Edit the message behind a button press, or reply to a text message."""
    reply_markup = InlineKeyboardMarkup(keyboard)
    if update.callback_query:
        try:
            await update.callback_query.edit_message_text(text, reply_markup=reply_markup, parse_mode="HTML")
        except BadRequest as e:
            logger.warning(f"Error editing message: {e}")
    else:
        await update.message.reply_text(text, reply_markup=reply_markup, parse_mode="HTML")


def prepare_buttons(buttons: List[List[Dict[str, str]]]) -> List[List[InlineKeyboardButton]]:
    """Turn button descriptions into inline keyboard rows."""
    return [
        [InlineKeyboardButton(button["text"], callback_data=button["callback_data"]) for button in row]
        for row in buttons
    ]


def get_user_from_update(update: Update) -> Optional[User]:
    """Get user from database based on update."""
    user = update.effective_user
    if not user:
        return None

    db = SessionLocal()
    try:
        user_service = UserService(db)
        return user_service.get_user_by_telegram_id(user.id)
    finally:
        db.close()


def make_session_service(db) -> LessonSessionService:
    """Create a lesson session service bound to a database session."""
    return LessonSessionService(LessonService(), ProgressService(db))


async def handle_start(update: Update, context: CallbackContext) -> int:
    """Register the learner and show the main menu."""
    await log_received(update, "start")

    db = SessionLocal()
    try:
        user_service = UserService(db)
        # The configured parent list decides the role
        role = PARENT if update.effective_user.id in settings.bot.parent_ids else STUDENT
        user = user_service.get_or_create_user(
            telegram_id=update.effective_user.id,
            username=update.effective_user.username,
            display_name=update.effective_user.first_name,
            role=role,
        )
        if user.role != role:
            user = user_service.set_role(user.id, role)

        keyboard = [
            [InlineKeyboardButton(LESSONS, callback_data="lessons")],
            [InlineKeyboardButton(MY_PROGRESS, callback_data="statistics")],
        ]
        if user.role == PARENT:
            keyboard.append([InlineKeyboardButton(PARENT_DASHBOARD, callback_data="parent")])
        message = (f"Welcome to KidLingo, {escape(user.display_name)}! {user.avatar}\n\n"
                   "Learn new words, then practice them with fun exercises.\n"
                   "What would you like to do?")
        await send_message(update, message, keyboard)
        return MAIN_MENU
    finally:
        db.close()


async def handle_callback(update: Update, context: CallbackContext) -> int:
    """Handle callback queries from inline keyboard."""
    query = update.callback_query
    await log_received(update, "callback")

    # Lesson callbacks answer the query themselves
    if query.data.startswith(CALLBACK_PREFIX):
        return await handle_lesson_response(update, context)

    await query.answer()
    if query.data == "lessons":
        return await show_lessons(update, context)
    elif query.data.startswith("open_lesson_"):
        return await open_lesson(update, context, query.data[len("open_lesson_"):])
    elif query.data == "statistics":
        return await show_statistics(update, context)
    elif query.data == "back_to_menu":
        return await handle_start(update, context)
    elif query.data == "parent":
        return await show_parent_dashboard(update, context)
    elif query.data.startswith("parent_"):
        return await handle_parent_action(update, context, query.data[len("parent_"):])

    return MAIN_MENU


async def handle_message(update: Update, context: CallbackContext) -> int:
    """Handle messages outside of a lesson."""
    await log_received(update, "message")
    await update.message.reply_text("Please start with /start")
    return MAIN_MENU


async def show_lessons(update: Update, context: CallbackContext) -> int:
    """Show the list of lessons."""
    lesson_infos = LessonService().get_lesson_infos()
    if not lesson_infos:
        await send_message(update, "No lessons available yet.", KB_BACK_TO_MENU)
        return MAIN_MENU

    keyboard = [
        [InlineKeyboardButton(
            f"{info.icon} {info.title} ({info.exercise_count} exercises)".strip(),
            callback_data=f"open_lesson_{info.id}",
        )]
        for info in lesson_infos
    ]
    keyboard.extend(KB_BACK_TO_MENU)
    await send_message(update, "📚 Choose a lesson:", keyboard)
    return MAIN_MENU


async def open_lesson(update: Update, context: CallbackContext, lesson_id: str) -> int:
    """Open a lesson, resuming it if the learner stopped half way."""
    user = get_user_from_update(update)
    user_id = user.id if user else None  # unregistered learners play as guests

    db = SessionLocal()
    try:
        session_service = make_session_service(db)
        try:
            player = session_service.open_lesson(update.effective_user.id, user_id, lesson_id)
        except LessonNotFoundError:
            logger.warning(f"Lesson {lesson_id} requested by {update.effective_user.id} not found")
            await send_message(update, "Lesson not found.", KB_BACK_TO_MENU)
            return MAIN_MENU

        context.user_data.pop("match_attempts", None)
        if player.is_complete:
            summary = session_service.finish(update.effective_user.id)
            await send_results(update, player.lesson, summary)
            return MAIN_MENU

        await send_lesson_step(update, context, player)
        return LESSON
    finally:
        db.close()


async def handle_lesson_response(update: Update, context: CallbackContext) -> int:
    """Handle button presses while a lesson is open."""
    query = update.callback_query
    action = query.data[len(CALLBACK_PREFIX):]
    session_key = update.effective_user.id

    db = SessionLocal()
    try:
        session_service = make_session_service(db)
        active = session_service.get_active(session_key)
        if not active:
            await query.answer()
            await send_message(update, MSG_NO_ACTIVE_LESSON, [[InlineKeyboardButton(LESSONS, callback_data="lessons")]])
            return MAIN_MENU

        player = active.player
        if action == "back":
            await query.answer()
            context.user_data.pop("match_attempts", None)
            session_service.abandon(session_key)
            return await handle_start(update, context)

        try:
            if action in ("vocab_next", "vocab_prev"):
                await query.answer()
                direction = Direction.NEXT if action == "vocab_next" else Direction.PREVIOUS
                session_service.move_vocabulary(session_key, direction)
                if player.is_complete:
                    await send_results(update, player.lesson, session_service.finish(session_key))
                    return MAIN_MENU
                await send_lesson_step(update, context, player)

            elif action.startswith("answer_"):
                await query.answer()
                if not isinstance(player.current_exercise, ChoiceExercise):
                    return LESSON
                try:
                    option = int(action[len("answer_"):])
                except ValueError:
                    logger.debug(f"Ignoring malformed lesson action: {action}")
                    return LESSON
                outcome = session_service.answer(session_key, option)
                await send_feedback(update, player, outcome)

            elif action.startswith("match_"):
                exercise = player.current_exercise
                if not isinstance(exercise, MatchExercise) or player.is_answered:
                    await query.answer()
                    return LESSON
                try:
                    left, right = (int(i) for i in action[len("match_"):].split("_"))
                except ValueError:
                    await query.answer()
                    logger.debug(f"Ignoring malformed lesson action: {action}")
                    return LESSON
                attempts = context.user_data.setdefault("match_attempts", [])
                attempts.append((left, right))
                method: MatchMethod = get_method(ExerciseType.MATCH)
                if len(method.matched_pairs(attempts)) == len(exercise.pairs):
                    await query.answer()
                    outcome = session_service.answer(session_key, attempts)
                    context.user_data.pop("match_attempts", None)
                    await send_feedback(update, player, outcome)
                else:
                    await query.answer("✅ Match!" if method.is_pair(left, right) else "❌ Not a pair, try again!")
                    await send_lesson_step(update, context, player)

            elif action == "continue":
                await query.answer()
                summary = session_service.continue_lesson(session_key)
                if summary:
                    await send_results(update, player.lesson, summary)
                    return MAIN_MENU
                await send_lesson_step(update, context, player)

            else:
                await query.answer()
                logger.debug(f"Unknown lesson action: {action}")

        except InvalidStateError as e:
            logger.debug(f"Ignoring lesson action {action} from {session_key}: {e}")
            await send_lesson_step(update, context, player)

        return LESSON
    finally:
        db.close()


async def handle_text_answer(update: Update, context: CallbackContext) -> int:
    """Handle typed answers while a lesson is open."""
    await log_received(update, "answer")
    session_key = update.effective_user.id

    db = SessionLocal()
    try:
        session_service = make_session_service(db)
        active = session_service.get_active(session_key)
        if not active:
            return await handle_message(update, context)

        player = active.player
        exercise = player.current_exercise
        if exercise is None or exercise.type not in (ExerciseType.TYPE_ANSWER, ExerciseType.TRANSLATE) \
                or player.is_answered:
            await update.message.reply_text("Please use the buttons below the exercise 👆")
            return LESSON

        outcome = session_service.answer(session_key, update.message.text)
        await send_feedback(update, player, outcome)
        return LESSON
    finally:
        db.close()


def progress_header(player: LessonPlayer) -> str:
    step, total = player.progress()
    return f"{player.lesson.icon} {player.lesson.title}  ·  {step + 1} / {total}".strip()


async def send_lesson_step(update: Update, context: CallbackContext, player: LessonPlayer) -> None:
    """Send the current vocabulary card or exercise."""
    back_row = [InlineKeyboardButton(msg_back_to(MENU), callback_data=f"{CALLBACK_PREFIX}back")]

    if player.state.phase == Phase.VOCABULARY:
        item = player.current_vocabulary_item
        cursor = player.state.vocab_cursor
        count = len(player.lesson.vocabulary)
        message = f"{progress_header(player)}\n\n📖 Learn New Words\n\n<b>{item.word}</b>"
        if item.pronunciation:
            message += f"\n[ {item.pronunciation} ]"
        message += f"\n= <tg-spoiler>{item.translation}</tg-spoiler>"
        if item.example:
            message += f"\n\n\"{item.example}\""
            if item.example_translation:
                message += f"\n<i>{item.example_translation}</i>"
        message += f"\n\n{cursor + 1} of {count} words"

        nav_row = []
        if cursor > 0:
            nav_row.append(InlineKeyboardButton("← Previous", callback_data=f"{CALLBACK_PREFIX}vocab_prev"))
        next_text = "Next Word →" if cursor < count - 1 else "Start Exercises! 🎯"
        nav_row.append(InlineKeyboardButton(next_text, callback_data=f"{CALLBACK_PREFIX}vocab_next"))
        await send_message(update, message, [nav_row, back_row])
        return

    if player.is_answered:
        keyboard = [
            [InlineKeyboardButton(CONTINUE, callback_data=f"{CALLBACK_PREFIX}continue")],
            back_row,
        ]
        await send_message(update, f"{progress_header(player)}\n\nYou already answered this one.", keyboard)
        return

    exercise = player.current_exercise
    method = get_method(exercise.type)
    if exercise.type == ExerciseType.MATCH:
        prompt = method.create_prompt(exercise, attempts=context.user_data.get("match_attempts", []))
    else:
        prompt = method.create_prompt(exercise)

    if prompt.media:
        await send_media_file(update, exercise.type, prompt.media)
    keyboard = prepare_buttons(prompt.buttons)
    keyboard.append(back_row)
    await send_message(update, f"{progress_header(player)}\n\n{prompt.message}", keyboard)


async def send_feedback(update: Update, player: LessonPlayer, outcome: AnswerOutcome) -> None:
    """Tell the learner whether the answer was right."""
    exercise = player.lesson.exercises[outcome.exercise_index]
    if outcome.is_correct:
        message = "✅ Correct! Great job!"
    else:
        correct_answer = get_method(exercise.type).correct_answer_text(exercise)
        message = f"❌ The correct answer is:\n<b>{correct_answer}</b>"
        if outcome.requeued:
            message += "\n\n🔁 We'll try this one again later."
    message += f"\n\n⭐ Score: {outcome.score}"

    keyboard = [
        [InlineKeyboardButton(CONTINUE, callback_data=f"{CALLBACK_PREFIX}continue")],
        [InlineKeyboardButton(msg_back_to(MENU), callback_data=f"{CALLBACK_PREFIX}back")],
    ]
    await send_message(update, f"{progress_header(player)}\n\n{message}", keyboard)


def result_tier(percentage: int) -> tuple:
    """Icon, title and subtitle for a lesson score."""
    if percentage >= 90:
        return "🏆", "Excelent!", "Outstanding work!"
    if percentage >= 70:
        return "⭐", "Bine!", "Good job!"
    if percentage >= 50:
        return "👍", "OK!", "Keep practicing!"
    return "💪", "Try Again!", "Practice makes perfect!"


def format_duration(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


async def send_results(update: Update, lesson: Lesson, summary: LessonSummary) -> None:
    """Show the result of a completed lesson."""
    icon, title, subtitle = result_tier(summary.percentage)
    message = (
        f"{icon} <b>{title}</b>\n{subtitle}\n\n"
        f"{lesson.icon} {lesson.title}\n"
        f"Score: {summary.percentage}%\n"
        f"Correct: {summary.score}/{summary.total}\n"
        f"Time: {format_duration(summary.elapsed_seconds)}"
    )
    keyboard = [
        [InlineKeyboardButton("🔄 Try Again", callback_data=f"open_lesson_{lesson.id}"),
         InlineKeyboardButton(LESSONS, callback_data="lessons")],
        [InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")],
    ]
    await send_message(update, message, keyboard)


async def show_statistics(update: Update, context: CallbackContext) -> int:
    """Show the learner's lesson statistics."""
    user = get_user_from_update(update)
    if not user:
        await send_message(update, "Please /start first to register", KB_BACK_TO_MENU)
        return MAIN_MENU

    db = SessionLocal()
    try:
        lesson_service = LessonService()
        stats = ProgressService(db).get_user_statistics(user.id, lesson_service.get_lessons_count())

        message = "📊 Your Progress\n\n" + format_statistics(stats, lesson_service)
        await send_message(update, message, KB_BACK_TO_MENU)
    finally:
        db.close()

    return MAIN_MENU


def lesson_name(lesson_service: LessonService, lesson_id: str) -> str:
    lesson = lesson_service.get_lesson(lesson_id)
    return f"{lesson.icon} {lesson.title}".strip() if lesson else lesson_id


def format_result(result: LessonResult) -> str:
    return (f"{result.percentage:.0f}% ({result.score}/{result.total_questions}) "
            f"· {result.created_at:%d.%m.%Y}")


def format_statistics(stats: Dict[str, Any], lesson_service: LessonService) -> str:
    """Statistics text used by My Progress and the parent dashboard."""
    message = (
        f"Lessons completed: {stats['completed_lessons']} / {stats['total_lessons']}\n"
        f"Average score: {stats['average_score']}%\n"
        f"Total time: {format_duration(stats['total_time_seconds'])}\n"
    )
    if stats["recent_results"]:
        message += "\n🕒 Recent results:\n"
        for result in stats["recent_results"]:
            message += f"{lesson_name(lesson_service, result.lesson_id)}: {format_result(result)}\n"
    if stats["best_scores"]:
        message += "\n🏅 Best scores:\n"
        for best in stats["best_scores"]:
            message += (f"{lesson_name(lesson_service, best['lesson_id'])}: "
                        f"{best['best_score']:.0f}% ({best['attempts']} attempts)\n")
    return message


def get_parent(update: Update) -> Optional[User]:
    """Get the user behind the update if they are a parent."""
    user = get_user_from_update(update)
    return user if user and user.role == PARENT else None


def get_learner(user_service: UserService, learner_id: int) -> Optional[User]:
    user = user_service.get_user(learner_id)
    return user if user and user.role == STUDENT else None


async def show_parent_dashboard(update: Update, context: CallbackContext) -> int:
    """Show every learner with a summary of their progress, and the latest results."""
    if not get_parent(update):
        await send_message(update, MSG_PARENTS_ONLY, KB_BACK_TO_MENU)
        return MAIN_MENU

    db = SessionLocal()
    try:
        user_service = UserService(db)
        progress_service = ProgressService(db)
        lesson_service = LessonService()
        total_lessons = lesson_service.get_lessons_count()
        learners = user_service.get_learners()

        message = f"👪 Parent Dashboard\n\n{len(learners)} learners, {user_service.get_users_count()} users in total\n"
        keyboard = []
        for learner in learners:
            stats = progress_service.get_user_statistics(learner.id, total_lessons)
            message += (f"\n{learner.avatar} <b>{escape(learner.display_name)}</b>: "
                        f"{stats['completed_lessons']} / {stats['total_lessons']} lessons, "
                        f"average {stats['average_score']}%")
            keyboard.append([InlineKeyboardButton(f"{learner.avatar} {learner.display_name}",
                                                  callback_data=f"parent_child_{learner.id}")])
        if not learners:
            message += "\nNo learners yet. Ask your children to send /start to the bot."

        results = progress_service.get_all_results(limit=settings.lessons.recent_results_limit)
        if results:
            message += "\n\n🕒 Recent activity:\n"
            for result in results:
                message += (f"{result.user.avatar} {escape(result.user.display_name)} · "
                            f"{lesson_name(lesson_service, result.lesson_id)}: {format_result(result)}\n")

        keyboard.extend(KB_BACK_TO_MENU)
        await send_message(update, message, keyboard)
    finally:
        db.close()

    return MAIN_MENU


async def handle_parent_action(update: Update, context: CallbackContext, action: str) -> int:
    """Route the learner buttons of the parent dashboard."""
    handlers = (
        ("child_", show_learner),
        ("delete_", confirm_delete_learner),
        ("confirm_delete_", delete_learner),
    )
    for prefix, handler in handlers:
        if action.startswith(prefix):
            try:
                learner_id = int(action[len(prefix):])
            except ValueError:
                break
            return await handler(update, context, learner_id)

    logger.debug(f"Unknown parent action: {action}")
    return MAIN_MENU


async def show_learner(update: Update, context: CallbackContext, learner_id: int) -> int:
    """Show the statistics of one learner to a parent."""
    if not get_parent(update):
        await send_message(update, MSG_PARENTS_ONLY, KB_BACK_TO_MENU)
        return MAIN_MENU

    db = SessionLocal()
    try:
        learner = get_learner(UserService(db), learner_id)
        if not learner:
            await send_message(update, MSG_LEARNER_NOT_FOUND, KB_BACK_TO_DASHBOARD)
            return MAIN_MENU

        lesson_service = LessonService()
        stats = ProgressService(db).get_user_statistics(learner.id, lesson_service.get_lessons_count())
        message = f"{learner.avatar} <b>{escape(learner.display_name)}</b>\n\n" + format_statistics(stats, lesson_service)
        keyboard = [[InlineKeyboardButton("🗑 Delete learner", callback_data=f"parent_delete_{learner.id}")]]
        keyboard.extend(KB_BACK_TO_DASHBOARD)
        await send_message(update, message, keyboard)
    finally:
        db.close()

    return MAIN_MENU


async def confirm_delete_learner(update: Update, context: CallbackContext, learner_id: int) -> int:
    """Ask the parent before deleting a learner."""
    if not get_parent(update):
        await send_message(update, MSG_PARENTS_ONLY, KB_BACK_TO_MENU)
        return MAIN_MENU

    db = SessionLocal()
    try:
        learner = get_learner(UserService(db), learner_id)
        if not learner:
            await send_message(update, MSG_LEARNER_NOT_FOUND, KB_BACK_TO_DASHBOARD)
            return MAIN_MENU

        message = (f"Delete {learner.avatar} <b>{escape(learner.display_name)}</b> "
                   "with all their results and saved lessons?\nThis cannot be undone.")
        keyboard = [[
            InlineKeyboardButton("🗑 Yes, delete", callback_data=f"parent_confirm_delete_{learner.id}"),
            InlineKeyboardButton("Cancel", callback_data=f"parent_child_{learner.id}"),
        ]]
        await send_message(update, message, keyboard)
    finally:
        db.close()

    return MAIN_MENU


async def delete_learner(update: Update, context: CallbackContext, learner_id: int) -> int:
    """Delete a learner, then go back to the dashboard."""
    parent = get_parent(update)
    if not parent:
        await send_message(update, MSG_PARENTS_ONLY, KB_BACK_TO_MENU)
        return MAIN_MENU

    db = SessionLocal()
    try:
        user_service = UserService(db)
        learner = get_learner(user_service, learner_id)
        if not learner:
            await send_message(update, MSG_LEARNER_NOT_FOUND, KB_BACK_TO_DASHBOARD)
            return MAIN_MENU

        # A lesson left open must not be saved for a learner who is gone
        make_session_service(db).discard(learner.telegram_id)
        user_service.delete_user(learner.id)
        logger.info(f"Parent {parent.id} deleted learner {learner_id}")
    finally:
        db.close()

    return await show_parent_dashboard(update, context)


async def send_media_file(update: Update, exercise_type: ExerciseType, media: str) -> None:
    """Send the picture or recording an exercise refers to."""
    media_path = Path(settings.paths.data_dir) / media
    if not media_path.is_file():
        logger.warning(f"Media file {media_path} not found")
        return

    message = update.callback_query.message if update.callback_query else update.message
    try:
        with open(media_path, "rb") as media_file:
            if exercise_type == ExerciseType.LISTEN_AND_SELECT:
                await message.reply_audio(media_file)
            else:
                await message.reply_photo(media_file)
    except (OSError, TelegramError) as e:
        logger.error(f"Error sending media file {media_path}: {e}")
