import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from fakes import FakeRedis
from newsdesk.api import articles
from newsdesk.db.session import get_async_session
from newsdesk.errors import ForbiddenError, GoneError, NotFoundError
from newsdesk.main import create_app
from newsdesk.models.schemas import ArticleUpdate, TokenPayload, UserRole
from newsdesk.services.auth import create_access_token
from newsdesk.services.analytics import DashboardItem, DashboardPage
from newsdesk.services.read_tracking import ReadThrottle, ReadTracker


def _article(article_id: str = "a1", author_id: str = "author-1", deleted: bool = False) -> SimpleNamespace:
    created = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)
    return SimpleNamespace(
        id=article_id,
        title="Markets rally",
        content="x" * 60,
        category="Economy",
        status="Published",
        author_id=author_id,
        author=SimpleNamespace(id=author_id, name="Ada Lovelace"),
        created_at=created,
        updated_at=created,
        deleted_at=created if deleted else None,
    )


def _request(host: str | None = "10.0.0.1") -> SimpleNamespace:
    return SimpleNamespace(client=SimpleNamespace(host=host) if host else None)


AUTHOR = TokenPayload(sub="author-1", role=UserRole.AUTHOR)
READER = TokenPayload(sub="reader-1", role=UserRole.READER)


class ReadArticleTests(unittest.IsolatedAsyncioTestCase):
    async def test_guest_read_is_tracked_by_client_address(self) -> None:
        tracker = MagicMock()

        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article())):
            response = await articles.read_article(
                "a1", _request("10.0.0.1"), user=None, session=AsyncMock(), tracker=tracker
            )

        self.assertEqual(response.Object.id, "a1")
        self.assertEqual(response.Object.author.name, "Ada Lovelace")
        tracker.spawn.assert_called_once_with("a1", None, "10.0.0.1")

    async def test_authenticated_read_is_tracked_by_reader(self) -> None:
        tracker = MagicMock()

        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article())):
            await articles.read_article("a1", _request("10.0.0.1"), user=READER, session=AsyncMock(), tracker=tracker)

        tracker.spawn.assert_called_once_with("a1", "reader-1", "10.0.0.1")

    async def test_unknown_article_is_not_found_and_not_tracked(self) -> None:
        tracker = MagicMock()

        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=None)):
            with self.assertRaises(NotFoundError):
                await articles.read_article("missing", _request(), user=None, session=AsyncMock(), tracker=tracker)

        tracker.spawn.assert_not_called()

    async def test_deleted_article_is_gone_and_not_tracked(self) -> None:
        tracker = MagicMock()

        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article(deleted=True))):
            with self.assertRaises(GoneError) as ctx:
                await articles.read_article("a1", _request(), user=None, session=AsyncMock(), tracker=tracker)

        self.assertEqual(ctx.exception.message, "News article no longer available")
        tracker.spawn.assert_not_called()


class AuthorArticleTests(unittest.IsolatedAsyncioTestCase):
    async def test_editing_someone_elses_article_is_forbidden(self) -> None:
        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article(author_id="other"))):
            with self.assertRaises(ForbiddenError):
                await articles.update(
                    "a1", ArticleUpdate(title="New title"), user=AUTHOR, session=AsyncMock()
                )

    async def test_update_applies_only_provided_fields(self) -> None:
        article = _article()
        update_article = AsyncMock(return_value=article)

        with (
            patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=article)),
            patch("newsdesk.api.articles.update_article", update_article),
        ):
            await articles.update("a1", ArticleUpdate(title="New title"), user=AUTHOR, session=AsyncMock())

        self.assertEqual(update_article.await_args.args[2], {"title": "New title"})

    async def test_deleting_an_already_deleted_article_is_not_found(self) -> None:
        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article(deleted=True))):
            with self.assertRaises(NotFoundError):
                await articles.delete("a1", user=AUTHOR, session=AsyncMock())

    async def test_delete_is_soft(self) -> None:
        article = _article()
        soft_delete = AsyncMock()

        with (
            patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=article)),
            patch("newsdesk.api.articles.soft_delete_article", soft_delete),
        ):
            response = await articles.delete("a1", user=AUTHOR, session=AsyncMock())

        soft_delete.assert_awaited_once()
        self.assertTrue(response.Success)
        self.assertIsNone(response.Object)


class _BrokenSessionFactory:
    def __call__(self):
        raise RuntimeError("database unavailable")


class HttpEnvelopeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(use_lifespan=False)

        async def _session():
            yield AsyncMock()

        self.app.dependency_overrides[get_async_session] = _session
        throttle = ReadThrottle(FakeRedis())
        self.app.state.read_tracker = ReadTracker(throttle, _BrokenSessionFactory(), AsyncMock())
        self.client = TestClient(self.app)

    def test_read_succeeds_even_when_tracking_fails(self) -> None:
        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article())):
            response = self.client.get("/api/v1/articles/a1")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["Success"])
        self.assertEqual(body["Object"]["id"], "a1")
        self.assertEqual(body["Object"]["authorId"], "author-1")
        self.assertEqual(body["Object"]["author"], {"id": "author-1", "name": "Ada Lovelace"})

    def test_deleted_article_returns_gone_envelope(self) -> None:
        with patch("newsdesk.api.articles.get_article_by_id", AsyncMock(return_value=_article(deleted=True))):
            response = self.client.get("/api/v1/articles/a1")

        self.assertEqual(response.status_code, 410)
        self.assertEqual(
            response.json(),
            {
                "Success": False,
                "Message": "News article no longer available",
                "Object": None,
                "Errors": ["News article no longer available"],
            },
        )

    def test_dashboard_requires_a_token(self) -> None:
        response = self.client.get("/api/v1/author/dashboard")
        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()["Success"])

    def test_dashboard_rejects_readers(self) -> None:
        token = create_access_token("reader-1", "reader")
        response = self.client.get("/api/v1/author/dashboard", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(response.status_code, 403)

    def test_dashboard_items_use_camel_case_keys(self) -> None:
        item = DashboardItem(
            id="a1",
            title="Markets rally",
            category="Economy",
            status="Published",
            created_at=datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc),
            total_views=12,
        )
        token = create_access_token("author-1", "author")

        with patch(
            "newsdesk.api.dashboard.get_author_dashboard",
            AsyncMock(return_value=DashboardPage(items=[item], total=1)),
        ):
            response = self.client.get("/api/v1/author/dashboard", headers={"Authorization": f"Bearer {token}"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["TotalSize"], 1)
        self.assertEqual(
            set(body["Object"][0]),
            {"id", "title", "category", "status", "createdAt", "totalViews"},
        )
        self.assertEqual(body["Object"][0]["totalViews"], 12)

    def test_unknown_route_uses_error_envelope(self) -> None:
        response = self.client.get("/api/v1/nowhere")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["Message"], "Route not found")

    def test_signup_validation_errors_are_listed(self) -> None:
        response = self.client.post(
            "/api/v1/auth/signup",
            json={"name": "Ada 1", "email": "not-an-email", "password": "weak", "role": "author"},
        )

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["Message"], "Validation failed")
        self.assertTrue(any(error.startswith("name:") for error in body["Errors"]))
        self.assertTrue(any(error.startswith("email:") for error in body["Errors"]))

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["Object"]["status"], "healthy")


if __name__ == "__main__":
    unittest.main()
