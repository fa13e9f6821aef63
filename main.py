"""
=============================================================================
MAIN.PY — The QuestMaster API
=============================================================================
Defines every endpoint of the REST API plus the realtime WebSocket.

Sections:
  1. AUTH          → Register, login, profile
  2. QUESTS        → CRUD, complete, fail, stats
  3. HABITS        → CRUD, daily/weekly completion
  4. ACHIEVEMENTS  → Progress bars, claiming
  5. AVATARS       → Gallery, collection, unlock, equip
  6. GAMIFICATION  → Level info, dashboard
  7. REALTIME      → WS /ws/changes

Action endpoints answer the uniform ActionResult. When success is False the
same body is sent with a status code that matches its error kind.
"""

import asyncio
import logging
import traceback
from datetime import datetime
from contextlib import asynccontextmanager
from typing import Optional

import pytz
from fastapi import (
    FastAPI, Depends, HTTPException, status, Query, Request,
    WebSocket
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import actions
from auth import (
    hash_password, verify_password, create_access_token,
    get_current_user, user_from_token
)
from catalog import seed_catalogs
from database import get_db, init_db, SessionLocal
from gamification import get_level_info, quest_stats
from models import User, Quest
from realtime import ChangeFeed
from schemas import (
    UserRegister, UserLogin, TokenResponse, ProfileResponse, LevelInfo,
    QuestCreate, QuestUpdate, QuestResponse, QuestStats, QuestState,
    HabitCreate, HabitUpdate, HabitResponse,
    AchievementProgress, AvatarResponse, CollectionStats, ActionResult
)

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("questmaster.api")


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Create tables
      2. Seed the achievement and avatar catalogs
    """
    logger.info("🚀 Starting QuestMaster...")

    init_db()
    logger.info("✅ Database initialized")

    db = SessionLocal()
    try:
        seed_catalogs(db)
    finally:
        db.close()

    logger.info("🎉 QuestMaster ready")
    yield
    logger.info("👋 QuestMaster stopped")


# ─────────────────────────────────────────────────────────────────────────────
# FASTAPI APPLICATION
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="QuestMaster API",
    description="Quests, habits, levels, achievements and avatars for self-improvement",
    version="1.0.0",
    lifespan=lifespan,
)

# One change feed per application. Endpoints reach it through get_feed().
app.state.feed = ChangeFeed()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_feed(request: Request) -> ChangeFeed:
    return request.app.state.feed


# ─────────────────────────────────────────────────────────────────────────────
# ERROR HANDLING
# ─────────────────────────────────────────────────────────────────────────────

ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "duplicate": status.HTTP_409_CONFLICT,
    "invalid_state": status.HTTP_409_CONFLICT,
    "locked": status.HTTP_403_FORBIDDEN,
    "store_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def respond(result: ActionResult):
    """Successful results go out as-is; failed ones keep the body, change the code"""
    if result.success:
        return result
    return JSONResponse(
        status_code=ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
        content=result.model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unhandled → logged with its traceback, answered as JSON 500"""
    error_trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(f"❌ Unhandled error on {request.url}: {exc}\n{error_trace}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "path": str(request.url)
        }
    )


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@app.get("/", tags=["Health"])
def health_check():
    return {
        "status": "ok",
        "app": "QuestMaster",
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat()
    }


# =============================================================================
# ===================== SECTION 1: AUTH =======================================
# =============================================================================

@app.post("/auth/register", response_model=TokenResponse, tags=["Auth"])
def register(data: UserRegister, db: Session = Depends(get_db)):
    """
    Creates the account and its profile (level 1, 0 XP, starter avatar
    equipped) and returns a token.
    """
    if db.query(User).filter(User.email == data.email).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists"
        )
    if data.timezone is not None and data.timezone not in pytz.all_timezones_set:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown timezone: {data.timezone}"
        )

    user = actions.create_profile(
        db, data.email, hash_password(data.password),
        username=data.username, timezone=data.timezone,
    )
    token = create_access_token(user.id, user.email)
    return TokenResponse(access_token=token, user_id=user.id, username=user.username)


@app.post("/auth/login", response_model=TokenResponse, tags=["Auth"])
def login(data: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()

    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wrong email or password"
        )

    token = create_access_token(user.id, user.email)
    return TokenResponse(access_token=token, user_id=user.id, username=user.username)


@app.get("/auth/me", response_model=ProfileResponse, tags=["Auth"])
def get_me(user: User = Depends(get_current_user)):
    return user


# =============================================================================
# ===================== SECTION 2: QUESTS =====================================
# =============================================================================

@app.get("/quests", response_model=list[QuestResponse], tags=["Quests"])
def list_quests(
    status_filter: Optional[QuestState] = Query(default=None, alias="status"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Newest first. ?status=active|completed|failed narrows the list."""
    return actions.list_quests(db, user, status_filter)


@app.get("/quests/stats", response_model=QuestStats, tags=["Quests"])
def get_quest_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return quest_stats(actions.list_quests(db, user))


@app.get("/quests/{quest_id}", response_model=QuestResponse, tags=["Quests"])
def get_quest(quest_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    quest = db.query(Quest).filter(Quest.id == quest_id, Quest.user_id == user.id).first()
    if not quest:
        raise HTTPException(status_code=404, detail="Quest not found")
    return quest


@app.post("/quests", response_model=ActionResult, tags=["Quests"])
def create_quest(
    data: QuestCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.create_quest(db, user, data, feed))


@app.patch("/quests/{quest_id}", response_model=ActionResult, tags=["Quests"])
def update_quest(
    quest_id: int, data: QuestUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.update_quest(db, user, quest_id, data, feed))


@app.post("/quests/{quest_id}/complete", response_model=ActionResult, tags=["Quests"])
def complete_quest(
    quest_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.complete_quest(db, user, quest_id, feed))


@app.post("/quests/{quest_id}/fail", response_model=ActionResult, tags=["Quests"])
def fail_quest(
    quest_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.fail_quest(db, user, quest_id, feed))


@app.delete("/quests/{quest_id}", response_model=ActionResult, tags=["Quests"])
def delete_quest(
    quest_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.delete_quest(db, user, quest_id, feed))


# =============================================================================
# ===================== SECTION 3: HABITS =====================================
# =============================================================================

@app.get("/habits", response_model=list[HabitResponse], tags=["Habits"])
def list_habits(
    include_inactive: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Each habit says whether it can still be completed in the current period"""
    today = actions.user_today(user)
    return [actions.habit_view(h, today) for h in actions.list_habits(db, user, include_inactive)]


@app.post("/habits", response_model=ActionResult, tags=["Habits"])
def create_habit(
    data: HabitCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.create_habit(db, user, data, feed))


@app.patch("/habits/{habit_id}", response_model=ActionResult, tags=["Habits"])
def update_habit(
    habit_id: int, data: HabitUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.update_habit(db, user, habit_id, data, feed))


@app.post("/habits/{habit_id}/complete", response_model=ActionResult, tags=["Habits"])
def complete_habit(
    habit_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.complete_habit(db, user, habit_id, feed))


@app.delete("/habits/{habit_id}", response_model=ActionResult, tags=["Habits"])
def delete_habit(
    habit_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.delete_habit(db, user, habit_id, feed))


# =============================================================================
# ===================== SECTION 4: ACHIEVEMENTS ===============================
# =============================================================================

@app.get("/achievements", response_model=list[AchievementProgress], tags=["Achievements"])
def list_achievements(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return actions.achievement_progress(db, user)


@app.post("/achievements/check", response_model=ActionResult, tags=["Achievements"])
def check_achievements(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    """Claims every finished achievement, then unlocks the avatars that became available"""
    return respond(actions.check_achievements(db, user, feed))


# =============================================================================
# ===================== SECTION 5: AVATARS ====================================
# =============================================================================

@app.get("/avatars", response_model=list[AvatarResponse], tags=["Avatars"])
def list_avatars(
    sort_by: str = Query(default="rarity", pattern="^(rarity|level|name)$"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return actions.avatar_gallery(db, user, sort_by)


@app.get("/avatars/collection", response_model=CollectionStats, tags=["Avatars"])
def get_collection(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return actions.avatar_collection(db, user)


@app.post("/avatars/auto-unlock", response_model=ActionResult, tags=["Avatars"])
def auto_unlock(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.auto_unlock_avatars(db, user, feed))


@app.post("/avatars/{avatar_id}/unlock", response_model=ActionResult, tags=["Avatars"])
def unlock_avatar(
    avatar_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.unlock_avatar(db, user, avatar_id, feed))


@app.post("/avatars/{avatar_id}/equip", response_model=ActionResult, tags=["Avatars"])
def equip_avatar(
    avatar_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed)
):
    return respond(actions.equip_avatar(db, user, avatar_id, feed))


# =============================================================================
# ===================== SECTION 6: GAMIFICATION ===============================
# =============================================================================

@app.get("/gamification/level", response_model=LevelInfo, tags=["Gamification"])
def get_my_level(user: User = Depends(get_current_user)):
    return get_level_info(user.total_exp)


@app.get("/gamification/dashboard", tags=["Gamification"])
def get_dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return actions.dashboard(db, user)


# =============================================================================
# ===================== SECTION 7: REALTIME ===================================
# =============================================================================

@app.websocket("/ws/changes")
async def changes_stream(websocket: WebSocket, token: str = Query(...)):
    """
    Streams every change to the token owner's rows as JSON:
      {"table": "quests", "event_type": "UPDATE", "user_id": 7, "record": {...}}
    """
    db = SessionLocal()
    try:
        user = user_from_token(db, token)
        user_id = user.id if user else None
    finally:
        db.close()

    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # registered before the handshake completes
    subscription = websocket.app.state.feed.subscribe(user_id)
    await websocket.accept()

    async def forward():
        while True:
            event = await subscription.get()
            await websocket.send_json(event.to_dict())

    sender = asyncio.create_task(forward())
    try:
        # incoming frames are ignored, reading only detects the close
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.close()
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"⚠️ Realtime stream of user {user_id} stopped sending: {e}")
    logger.info(f"📴 Realtime client of user {user_id} disconnected")
