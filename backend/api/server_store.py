"""In-memory users, sessions and per-user flashcard sets for the reference server."""

import secrets
import uuid
from dataclasses import dataclass, field

from backend.api.schemas import FlashcardSetSchema, UserResponse
from backend.config import now_millis


@dataclass
class ServerStore:
    users_by_auth_id: dict[str, UserResponse] = field(default_factory=dict)
    sessions: dict[str, str] = field(default_factory=dict)  # token -> user_id
    sets: dict[str, dict[str, FlashcardSetSchema]] = field(default_factory=dict)  # user_id -> id -> set

    def get_or_create_user(self, auth_id: str) -> UserResponse:
        user = self.users_by_auth_id.get(auth_id)
        if user is None:
            user = UserResponse(user_id=str(uuid.uuid4()), auth_id=auth_id, created_at=now_millis())
            self.users_by_auth_id[auth_id] = user
        return user

    def create_session(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)  # 256-bit
        self.sessions[token] = user_id
        return token

    def user_for_token(self, token: str) -> UserResponse | None:
        user_id = self.sessions.get(token)
        if user_id is None:
            return None
        return next((u for u in self.users_by_auth_id.values() if u.user_id == user_id), None)

    def revoke(self, token: str) -> None:
        self.sessions.pop(token, None)

    def user_sets(self, user_id: str) -> dict[str, FlashcardSetSchema]:
        return self.sets.setdefault(user_id, {})
