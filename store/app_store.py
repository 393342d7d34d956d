"""
Client-side synchronization store for the App Hub.

`AppStore` mirrors the server's `apps` and `feedback` collections in memory
and is the only thing that mutates that mirror. Reads are synchronous
lookups; writes go through the REST API:

- add/update/delete are pessimistic: the mirror changes only once the server
  has answered, and the server's record is taken as-is.
- vote_feedback is optimistic: +1 locally first, reconciled with the highest
  server-confirmed record on success, rolled back by decrementing the
  *current* value on failure so a concurrent successful vote is never
  clobbered.

Every operation flips a key in `loading_states` while it is in flight and
notifies subscribers after each state change. Write failures set `error` and
re-raise; read failures set `error` and return.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Type, TypeVar, Union
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from models.app_data import AppData, AppDataCreate, AppDataUpdate
from models.feedback import Feedback, FeedbackCreate, FeedbackUpdate
from store.api_client import ApiClient
from store.config import StoreSettings
from store.errors import ApiError, ValidationError
from store.retry import retry_with_backoff

logger = logging.getLogger(__name__)

Listener = Callable[["AppStore"], None]
M = TypeVar("M", bound=BaseModel)

PLACEHOLDER_THUMBNAIL = "https://picsum.photos/400/200?random={ts}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _coerce(model: Type[M], value: Any) -> M:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except SchemaError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__} ({problems})") from e


def _message(exc: BaseException, fallback: str) -> str:
    if isinstance(exc, ApiError) and exc.message:
        return exc.message
    return str(exc) or fallback


class AppStore:
    """
    In-memory mirror of apps and feedback, synchronized against the REST API.

    Use as an async context manager so the underlying HTTP client is closed:

        async with AppStore() as store:
            await store.load()
            await store.vote_feedback("f1")
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        client: Optional[ApiClient] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.settings = settings or StoreSettings()
        self.client = client or ApiClient(self.settings.api_url, timeout=self.settings.timeout)
        self._sleep = sleep

        self._apps: Dict[str, AppData] = {}
        self._feedbacks: Dict[str, Feedback] = {}
        self.is_loaded = False
        self.error: Optional[str] = None

        self._in_flight: Counter = Counter()
        self._listeners: List[Listener] = []
        # per-record request ordering for pessimistic updates
        self._issued: Counter = Counter()
        self._applied: Dict[str, int] = {}
        # optimistic votes not yet confirmed, by feedback id
        self._pending_votes: Counter = Counter()
        # highest server-confirmed record per item while its votes are in flight
        self._confirmed_votes: Dict[str, Feedback] = {}

    async def __aenter__(self) -> "AppStore":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self.client.close()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Reactive state
    # ------------------------------------------------------------------

    @property
    def apps(self) -> List[AppData]:
        """Apps, newest first."""
        return list(self._apps.values())

    @property
    def feedbacks(self) -> List[Feedback]:
        return list(self._feedbacks.values())

    @property
    def loading_states(self) -> Dict[str, bool]:
        return {key: True for key, count in self._in_flight.items() if count > 0}

    def is_loading(self, key: str) -> bool:
        return self._in_flight[key] > 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener` to be called after every state change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            listener(self)

    @contextmanager
    def _track(self, key: str) -> Iterator[None]:
        self._in_flight[key] += 1
        self._notify()
        try:
            yield
        finally:
            self._in_flight[key] -= 1
            if self._in_flight[key] <= 0:
                del self._in_flight[key]
            self._notify()

    def _fail(self, exc: BaseException, fallback: str):
        self.error = _message(exc, fallback)
        logger.error(f"{fallback}: {self.error}")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_app(self, app_id: str) -> Optional[AppData]:
        return self._apps.get(app_id)

    def get_feedback(self, feedback_id: str) -> Optional[Feedback]:
        return self._feedbacks.get(feedback_id)

    def get_app_feedbacks(self, app_id: str) -> List[Feedback]:
        return [f for f in self._feedbacks.values() if f.app_id == app_id]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch_all(self):
        # both requests run to completion so neither is left unawaited
        results = await asyncio.gather(
            self.client.list_apps(), self.client.list_feedback(), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def load(self):
        """
        Initial load of both collections.

        Transient (network) failures are retried with exponential backoff;
        anything else surfaces at once. `is_loaded` is set after the final
        attempt whatever the outcome, and failures end up in `error`.
        """
        with self._track("load"):
            self.error = None
            try:
                apps, feedbacks = await retry_with_backoff(
                    self._fetch_all,
                    retries=self.settings.load_retries,
                    base_delay=self.settings.retry_base_delay,
                    sleep=self._sleep,
                )
            except ApiError as e:
                self._fail(e, "Failed to load data")
            else:
                self._apps = {a.id: a for a in apps}
                self._feedbacks = {f.id: f for f in feedbacks}
                logger.info(f"Loaded {len(self._apps)} apps and {len(self._feedbacks)} feedback items")
            finally:
                self.is_loaded = True

    async def refresh_apps(self):
        with self._track("refreshApps"):
            self.error = None
            try:
                apps = await self.client.list_apps()
            except ApiError as e:
                self._fail(e, "Failed to refresh apps")
                return
            self._apps = {a.id: a for a in apps}

    async def refresh_feedbacks(self, app_id: Optional[str] = None):
        """
        Re-fetch feedback. With `app_id`, only that app's rows are replaced;
        cached feedback of every other app is left as it was.
        """
        with self._track("refreshFeedbacks"):
            self.error = None
            try:
                fresh = await self.client.list_feedback(app_id=app_id)
            except ApiError as e:
                self._fail(e, "Failed to refresh feedbacks")
                return

            if app_id is None:
                self._feedbacks = {f.id: f for f in fresh}
                return

            merged = [f for f in self._feedbacks.values() if f.app_id != app_id]
            merged.extend(f for f in fresh if f.app_id == app_id)
            merged.sort(key=lambda f: f.created_at, reverse=True)
            self._feedbacks = {f.id: f for f in merged}

    # ------------------------------------------------------------------
    # Apps
    # ------------------------------------------------------------------

    async def add_app(self, draft: Union[AppDataCreate, Mapping[str, Any]]) -> AppData:
        with self._track("addApp"):
            self.error = None
            try:
                draft = self._prepare_app(_coerce(AppDataCreate, draft))
                created = await self.client.create_app(draft)
            except Exception as e:
                self._fail(e, "Failed to create app")
                raise
            rest = {k: v for k, v in self._apps.items() if k != created.id}
            self._apps = {created.id: created, **rest}
            return created

    @staticmethod
    def _prepare_app(draft: AppDataCreate) -> AppDataCreate:
        ts = _now_ms()
        fill: Dict[str, Any] = {"id": draft.id or str(uuid4()), "created_at": draft.created_at or ts}
        if not draft.thumbnail_url:
            placeholder = PLACEHOLDER_THUMBNAIL.format(ts=ts)
            fill.update(thumbnail_url=placeholder, image_url=placeholder)
        return draft.model_copy(update=fill)

    def _begin_update(self, key: str) -> int:
        self._issued[key] += 1
        return self._issued[key]

    def _is_stale(self, key: str, seq: int) -> bool:
        if seq < self._applied.get(key, 0):
            logger.info(f"Discarding stale response #{seq} for {key}")
            return True
        self._applied[key] = seq
        return False

    async def update_app(self, app_id: str, patch: Union[AppDataUpdate, Mapping[str, Any]]) -> AppData:
        key = f"updateApp-{app_id}"
        seq = self._begin_update(key)
        with self._track(key):
            self.error = None
            try:
                updated = await self.client.update_app(app_id, _coerce(AppDataUpdate, patch))
            except Exception as e:
                self._fail(e, "Failed to update app")
                raise
            if not self._is_stale(key, seq) and app_id in self._apps:
                self._apps[app_id] = updated
            return updated

    async def delete_app(self, app_id: str):
        with self._track(f"deleteApp-{app_id}"):
            self.error = None
            try:
                await self.client.delete_app(app_id)
            except Exception as e:
                self._fail(e, "Failed to delete app")
                raise
            # feedback rows referencing the app are the server's to cascade
            self._apps.pop(app_id, None)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def add_feedback(self, draft: Union[FeedbackCreate, Mapping[str, Any]]) -> Feedback:
        with self._track("addFeedback"):
            self.error = None
            try:
                draft = _coerce(FeedbackCreate, draft)
                draft = draft.model_copy(update={
                    "id": draft.id or str(uuid4()),
                    "created_at": draft.created_at or _now_ms(),
                    "author": draft.author,
                })
                created = await self.client.create_feedback(draft)
            except Exception as e:
                self._fail(e, "Failed to create feedback")
                raise
            rest = {k: v for k, v in self._feedbacks.items() if k != created.id}
            self._feedbacks = {created.id: created, **rest}
            return created

    async def update_feedback(
        self, feedback_id: str, patch: Union[FeedbackUpdate, Mapping[str, Any]]
    ) -> Feedback:
        key = f"updateFeedback-{feedback_id}"
        seq = self._begin_update(key)
        with self._track(key):
            self.error = None
            try:
                updated = await self.client.update_feedback(
                    feedback_id, _coerce(FeedbackUpdate, patch)
                )
            except Exception as e:
                self._fail(e, "Failed to update feedback")
                raise
            if not self._is_stale(key, seq) and feedback_id in self._feedbacks:
                self._feedbacks[feedback_id] = self._merge_votes(updated)
            return updated

    async def delete_feedback(self, feedback_id: str):
        with self._track(f"deleteFeedback-{feedback_id}"):
            self.error = None
            try:
                await self.client.delete_feedback(feedback_id)
            except Exception as e:
                self._fail(e, "Failed to delete feedback")
                raise
            self._feedbacks.pop(feedback_id, None)

    def _bump_votes(self, feedback_id: str, delta: int):
        current = self._feedbacks.get(feedback_id)
        if current is not None:
            votes = max(current.votes + delta, 0)
            self._feedbacks[feedback_id] = current.model_copy(update={"votes": votes})

    def _merge_votes(self, record: Feedback) -> Feedback:
        """
        While votes on `record` are still in flight, the mirror already holds
        them optimistically, and the server may or may not have counted them
        in `record`. Keep the higher of the two counts until they settle.
        """
        current = self._feedbacks.get(record.id)
        if not self._pending_votes[record.id] or current is None:
            return record
        return record.model_copy(update={"votes": max(record.votes, current.votes)})

    def _newest_confirmation(self, confirmed: Feedback) -> Feedback:
        # votes only grow through this endpoint, so a higher count is a later state
        best = self._confirmed_votes.get(confirmed.id)
        if best is None or confirmed.votes >= best.votes:
            self._confirmed_votes[confirmed.id] = confirmed
            return confirmed
        logger.info(f"Discarding late vote confirmation for {confirmed.id} ({confirmed.votes} < {best.votes})")
        return best

    async def vote_feedback(self, feedback_id: str) -> Feedback:
        """
        Optimistically add one vote, then confirm with the server.

        Confirmations are reconciled against the highest server count seen
        while votes on the item are in flight, so a response that arrives
        late never rolls back a newer one. On failure one vote is taken back
        from whatever the mirror holds now.
        """
        key = f"voteFeedback-{feedback_id}"
        with self._track(key):
            self.error = None
            optimistic = feedback_id in self._feedbacks
            if optimistic:
                self._pending_votes[feedback_id] += 1
                self._bump_votes(feedback_id, +1)
                self._notify()

            try:
                confirmed = await self.client.vote_feedback(feedback_id, 1)
            except Exception as e:
                if optimistic:
                    self._settle_vote(feedback_id)
                    self._bump_votes(feedback_id, -1)
                    logger.warning(f"Rolled back optimistic vote on {feedback_id}")
                self._fail(e, "Failed to vote feedback")
                raise

            newest = confirmed
            if optimistic:
                newest = self._newest_confirmation(confirmed)
                self._settle_vote(feedback_id)
            if feedback_id in self._feedbacks:
                self._feedbacks[feedback_id] = self._merge_votes(newest)
            return confirmed

    def _settle_vote(self, feedback_id: str):
        self._pending_votes[feedback_id] -= 1
        if self._pending_votes[feedback_id] <= 0:
            del self._pending_votes[feedback_id]
            self._confirmed_votes.pop(feedback_id, None)
