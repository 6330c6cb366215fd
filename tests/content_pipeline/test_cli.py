"""Unit tests for the content pipeline CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.content_pipeline.cli import build_parser, run_command
from src.content_pipeline.errors import NotFoundError
from src.content_pipeline.schemas import ContentContext, SubmitResult


@pytest.fixture
def services() -> MagicMock:
    services = MagicMock()
    services.content.create_upload_job = AsyncMock(
        return_value=SubmitResult(
            content_id="abc",
            status="queued",
            status_url="/v1/content/status/abc",
            result_url="/v1/content/result/abc",
            is_existing=False,
            message="Job queued for processing",
        )
    )
    services.content.get_status = AsyncMock(side_effect=NotFoundError("Content not found: abc"))
    return services


@pytest.fixture
def clients() -> MagicMock:
    return MagicMock(aclose=AsyncMock())


@pytest.mark.unit
class TestBuildParser:
    """Test suite for CLI argument parsing."""

    def test_submit_defaults(self) -> None:
        args = build_parser().parse_args(["submit", "https://example.com/v.mp4"])

        assert args.command == "submit"
        assert args.language == "ko-KR"
        assert args.force is False
        assert args.format == "vtt"

    def test_search_options(self) -> None:
        args = build_parser().parse_args(
            ["search", "gradient descent", "--content-id", "abc", "--type", "summary", "--top-k", "3"]
        )

        assert args.query == "gradient descent"
        assert args.content_id == "abc"
        assert args.type == "summary"
        assert args.top_k == 3

    def test_recaption_requires_language(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["recaption", "abc"])


@pytest.mark.unit
class TestRunCommand:
    """Test suite for run_command."""

    @pytest.mark.asyncio
    async def test_submit(
        self, services: MagicMock, clients: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that submit forwards options and prints the result."""
        args = build_parser().parse_args(
            ["submit", "https://example.com/v.mp4", "--force", "--format", "srt"]
        )

        with (
            patch("src.content_pipeline.cli.create_clients", new=AsyncMock(return_value=clients)),
            patch("src.content_pipeline.cli.build_services", return_value=services),
        ):
            code = await run_command(args)

        assert code == 0
        services.content.create_upload_job.assert_called_once_with(
            "https://example.com/v.mp4", language="ko-KR", force=True, options={"format": "srt"}
        )
        assert '"contentId": "abc"' in capsys.readouterr().out
        clients.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pipeline_error_returns_exit_code(
        self, services: MagicMock, clients: MagicMock
    ) -> None:
        """Test that domain errors map to exit code 1 and clients still close."""
        args = build_parser().parse_args(["status", "abc"])

        with (
            patch("src.content_pipeline.cli.create_clients", new=AsyncMock(return_value=clients)),
            patch("src.content_pipeline.cli.build_services", return_value=services),
        ):
            code = await run_command(args)

        assert code == 1
        clients.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_prints_grounded_messages(
        self, services: MagicMock, clients: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        """Test that context runs the chat grounding helper on the query."""
        services.retrieval.get_context = AsyncMock(
            return_value=ContentContext(has_context=True, context="Gradient descent.")
        )
        args = build_parser().parse_args(["context", "How are weights updated?"])

        with (
            patch("src.content_pipeline.cli.create_clients", new=AsyncMock(return_value=clients)),
            patch("src.content_pipeline.cli.build_services", return_value=services),
        ):
            code = await run_command(args)

        assert code == 0
        services.retrieval.get_context.assert_called_once_with("How are weights updated?", 5)
        assert "Relevant lecture material" in capsys.readouterr().out
