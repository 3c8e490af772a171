"""Tests for the command-line entry point."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from quorum.__main__ import build_parser, main, print_progress
from quorum.engine import FailurePolicy
from quorum.events import DeliberationEvent, DeliberationEventType
from quorum.reasoning import ProviderError
from test_export import _result


@pytest.fixture(autouse=True)
def _quiet_setup():
    with patch("quorum.__main__.setup_logging"), \
         patch("quorum.__main__.setup_telemetry", return_value=False):
        yield


class TestParser:

    def test_defaults(self):
        args = build_parser().parse_args(["Should we ship?"])

        assert args.topic == "Should we ship?"
        assert args.rounds is None
        assert args.threshold is None
        assert args.output_format == "markdown"
        assert args.objectives == []

    def test_repeatable_options(self):
        args = build_parser().parse_args([
            "t", "--objective", "speed", "--objective", "cost", "--constraint", "budget",
            "--rounds", "3", "--threshold", "80", "--parallel", "--no-quality",
        ])

        assert args.objectives == ["speed", "cost"]
        assert args.constraints == ["budget"]
        assert args.rounds == 3
        assert args.threshold == 80.0
        assert args.parallel is True
        assert args.no_quality is True


class TestPrintProgress:

    def test_consensus_line(self, capsys):
        print_progress(DeliberationEvent(
            DeliberationEventType.CONSENSUS_CALCULATED,
            {"round_number": 1, "consensus_score": 0.72, "achieved": True},
        ))

        assert "consensus 72% (reached)" in capsys.readouterr().err

    def test_ignores_other_events(self, capsys):
        print_progress(DeliberationEvent(DeliberationEventType.QUALITY_ASSESSED, {}))
        assert capsys.readouterr().err == ""


class TestMain:

    def test_writes_markdown_to_stdout(self, capsys):
        with patch("quorum.__main__.run", new_callable=AsyncMock, return_value=_result()):
            code = main(["Four-day week"])

        assert code == 0
        assert "# Four-day week" in capsys.readouterr().out

    def test_writes_json_to_file(self, tmp_path):
        output = tmp_path / "result.json"

        with patch("quorum.__main__.run", new_callable=AsyncMock, return_value=_result()):
            code = main(["Four-day week", "--format", "json", "--output", str(output)])

        assert code == 0
        assert json.loads(output.read_text())["id"] == "d-42"

    def test_passes_options_to_factory(self):
        with patch("quorum.__main__.create_deliberation_engine") as factory, \
             patch("quorum.__main__.run", new_callable=AsyncMock, return_value=_result()):
            main(["t", "--rounds", "2", "--no-moderator", "--skip-failed-experts"])

        kwargs = factory.call_args.kwargs
        assert kwargs["max_rounds"] == 2
        assert kwargs["meta_moderator"].enabled is False
        assert kwargs["quality_monitor"].enabled is True
        assert kwargs["failure_policy"] is FailurePolicy.SKIP_EXPERT

    def test_invalid_configuration_exit_code(self, capsys):
        code = main(["t", "--rounds", "0"])

        assert code == 2
        assert "Invalid configuration" in capsys.readouterr().err

    def test_failed_run_exit_code(self):
        with patch("quorum.__main__.run", new_callable=AsyncMock, side_effect=ProviderError("down")):
            assert main(["t"]) == 1
