"""Test ResourceController envelopes and error mapping."""

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import OperationalError

from repokit.api.controller import ControllerMessages, ResourceController, serialize_record
from repokit.repositories.base import EntityRepository
from repokit.repositories.exceptions import InvalidQueryError
from repokit.repositories.query import QueryFacade
from tests.factories import Author, create_authors, create_numbered_authors


@pytest.fixture
def controller(author_facade: QueryFacade[Author]) -> ResourceController[Author]:
    return ResourceController(author_facade)


class TestCoerceId:
    def test_integer_key_from_text(self, controller: ResourceController[Author]) -> None:
        assert controller.coerce_id("42") == 42

    def test_invalid_integer_key(self, controller: ResourceController[Author]) -> None:
        with pytest.raises(InvalidQueryError, match="Invalid id"):
            controller.coerce_id("abc")


class TestSuccessEnvelopes:
    """Test successful dispatch."""

    async def test_create(self, controller: ResourceController[Author]) -> None:
        envelope = await controller.create({"name": "Ada"})

        assert envelope.status == 201
        assert envelope.message == "Data saved successfully."
        assert envelope.data["record"]["name"] == "Ada"
        assert envelope.data["record"]["is_deleted"] == 0

    async def test_update(
        self, controller: ResourceController[Author], author_repo: EntityRepository[Author]
    ) -> None:
        (author,) = await create_authors(author_repo, "Ada")

        envelope = await controller.update(str(author.id), {"score": 4})

        assert envelope.status == 200
        assert envelope.message == "Data updated successfully."
        assert envelope.data["record"]["score"] == 4

    async def test_delete(
        self, controller: ResourceController[Author], author_repo: EntityRepository[Author]
    ) -> None:
        (author,) = await create_authors(author_repo, "Ada")

        envelope = await controller.delete(author.id)

        assert envelope.status == 200
        assert envelope.data == {}
        assert envelope.message == "Data deleted successfully."
        assert await author_repo.exists({}) is False

    async def test_get_by_id(
        self, controller: ResourceController[Author], author_repo: EntityRepository[Author]
    ) -> None:
        (author,) = await create_authors(author_repo, "Ada")

        envelope = await controller.get_by_id(str(author.id))

        assert envelope.status == 200
        assert envelope.message == "Data fetched successfully."
        assert envelope.data["record"]["id"] == author.id

    async def test_get_all(
        self, controller: ResourceController[Author], author_repo: EntityRepository[Author]
    ) -> None:
        await create_authors(author_repo, "John", "Amy")

        envelope = await controller.get_all()

        assert [r["name"] for r in envelope.data["records"]] == ["Amy", "John"]

    async def test_get_page(
        self, controller: ResourceController[Author], author_repo: EntityRepository[Author]
    ) -> None:
        await create_numbered_authors(author_repo, 25)

        envelope = await controller.get_page("3", "10", order_by="score", order_dir="asc")

        assert envelope.status == 200
        assert [r["score"] for r in envelope.data["records"]] == [21, 22, 23, 24, 25]
        assert envelope.data["total_count"] == 25
        assert envelope.data["total_pages"] == 3
        assert envelope.data["current_page"] == 3
        assert envelope.data["page_size"] == 10


class TestErrorEnvelopes:
    """Test error mapping."""

    async def test_missing_record_on_get(self, controller: ResourceController[Author]) -> None:
        envelope = await controller.get_by_id("999")

        assert envelope.status == 404
        assert envelope.data == {}
        assert envelope.message == "No data available. Please check your request."

    async def test_missing_record_on_update(self, controller: ResourceController[Author]) -> None:
        envelope = await controller.update("999", {"name": "x"})

        assert envelope.status == 404

    async def test_missing_record_on_delete(self, controller: ResourceController[Author]) -> None:
        envelope = await controller.delete("999")

        assert envelope.status == 404

    async def test_constraint_violation(
        self, controller: ResourceController[Author], author_repo: EntityRepository[Author]
    ) -> None:
        await create_authors(author_repo, "Ada", email="ada@example.com")

        envelope = await controller.create({"name": "Ada", "email": "ada@example.com"})

        assert envelope.status == 400
        assert envelope.message == "Data already exists. Please check your request."

    async def test_invalid_page(self, controller: ResourceController[Author]) -> None:
        envelope = await controller.get_page("zero", "10")

        assert envelope.status == 400
        assert "page must be a positive integer" in envelope.message

    @pytest.mark.parametrize("page", ["\u00b3", "\u00b2"])
    async def test_non_ascii_digit_page(
        self, controller: ResourceController[Author], page: str
    ) -> None:
        envelope = await controller.get_page(page, "10")

        assert envelope.status == 400
        assert "page must be a positive integer" in envelope.message

    async def test_invalid_id(self, controller: ResourceController[Author]) -> None:
        envelope = await controller.get_by_id("abc")

        assert envelope.status == 400

    async def test_unexpected_error_is_masked_and_logged(
        self, author_facade: QueryFacade[Author]
    ) -> None:
        controller = ResourceController(author_facade)
        error = OperationalError("SELECT ...", {}, Exception("connection refused"))

        with patch.object(author_facade, "get_all", AsyncMock(side_effect=error)):
            with patch.object(controller, "_logger") as mock_logger:
                envelope = await controller.get_all()

        assert envelope.status == 500
        assert envelope.message == "Server issue, try after some time."
        assert envelope.data == {}
        mock_logger.error.assert_called_once()

    async def test_expected_errors_logged_only_when_enabled(
        self, author_facade: QueryFacade[Author]
    ) -> None:
        quiet = ResourceController(author_facade)
        verbose = ResourceController(author_facade, log_errors=True)

        with patch.object(quiet, "_logger") as quiet_logger:
            await quiet.get_by_id("abc")
        with patch.object(verbose, "_logger") as verbose_logger:
            await verbose.get_by_id("abc")

        quiet_logger.warning.assert_not_called()
        verbose_logger.warning.assert_called_once()

    async def test_custom_messages(self, author_facade: QueryFacade[Author]) -> None:
        controller = ResourceController(
            author_facade, messages={"record_not_available": "No such author"}
        )

        envelope = await controller.get_by_id("1")

        assert envelope.status == 404
        assert envelope.message == "No such author"
        assert ControllerMessages().record_not_available != "No such author"


class TestSerializeRecord:
    async def test_projection_skips_unloaded_columns(
        self, author_repo: EntityRepository[Author]
    ) -> None:
        await create_authors(author_repo, "Ada")

        (author,) = await author_repo.get_all(fields=["name"])

        assert serialize_record(author) == {"id": author.id, "name": "Ada"}
