"""Tests for the fmchat click CLI, driven against the in-memory host."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from fmchat.cli import StreamPrinter, cli, format_stats
from fmchat.orchestrator import ChatPhase, RenderSnapshot
from fmchat.session import Stats
from fmchat.transcript import Role, Turn

from .conftest import FakeHost, StepClock


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("fmchat.cli.setup_logging"):
        yield


class RejectingRecreateHost(FakeHost):
    """Creates the first session, then refuses every replacement."""

    async def create(self, config):
        if self.sessions:
            raise RuntimeError("temperature locked")
        return await super().create(config)


def invoke(host, args, input=None):
    runner = CliRunner()
    with patch("fmchat.cli.create_host", return_value=host):
        return runner.invoke(cli, args, input=input)


class TestAsk:
    def test_streams_answer(self, host):
        host.queue_response(["4"])

        result = invoke(host, ["ask", "2+2?"])

        assert result.exit_code == 0, result.output
        assert "4" in result.output
        assert host.sessions[0].prompts == ["2+2?"]
        assert host.live_sessions == []

    def test_generation_failure_exit_code(self, host):
        host.queue_response(["par"], error=RuntimeError("timeout"))

        result = invoke(host, ["ask", "hi"])

        assert result.exit_code == 1
        assert "Error: timeout" in result.output

    def test_unsupported_exit_code(self):
        result = invoke(FakeHost(unsupported_reason="no model"), ["ask", "hi"])

        assert result.exit_code == 2
        assert "not available: no model" in result.output

    def test_sampling_options_recreate_session(self, host):
        result = invoke(host, ["ask", "hi", "--temperature", "0.2", "--top-k", "9"])

        assert result.exit_code == 0, result.output
        assert host.sessions[-1].config.temperature == 0.2
        assert host.sessions[-1].config.top_k == 9
        assert host.sessions[-1].prompts == ["hi"]

    def test_failed_sampling_option_is_reported(self):
        host = RejectingRecreateHost()

        result = invoke(host, ["ask", "hi", "--temperature", "0.2"])

        assert result.exit_code == 0, result.output
        assert "Failed to update temperature: temperature locked" in result.output
        assert len(host.sessions) == 1
        assert host.sessions[0].prompts == ["hi"]

    def test_top_k_out_of_range_rejected(self, host):
        result = invoke(host, ["ask", "hi", "--top-k", "41"])

        assert result.exit_code == 2
        assert host.sessions == []


class TestChat:
    def test_repl_session(self, host):
        host.queue_response(["Hi", "Hi there!"])
        script = "hello\n/temp 0.3\n/stats\n/raw\nagain\n/clear\n/quit\n"

        result = invoke(host, ["chat"], input=script)

        assert result.exit_code == 0, result.output
        assert "Hello! I'm Gemini Nano." in result.output
        assert "Hi there!" in result.output
        assert "temperature=0.3 top_k=3" in result.output
        assert "Raw response shown." in result.output
        assert "[raw] 'echo: again'" in result.output
        assert "Chat cleared. How can I help you?" in result.output
        assert host.live_sessions == []

    def test_invalid_command_values(self, host):
        result = invoke(host, ["chat"], input="/topk 99\n/temp warm\n/nope\n")

        assert result.exit_code == 0, result.output
        assert "top-K must be between 1 and 40" in result.output
        assert "Invalid value" in result.output
        assert "Unknown command: /nope" in result.output

    def test_unsupported_exits_early(self):
        result = invoke(FakeHost(unsupported_reason="disabled"), ["chat"], input="hi\n")

        assert result.exit_code == 2
        assert "disabled" in result.output


class TestDoctor:
    def test_reports_defaults(self, host):
        result = invoke(host, ["doctor"])

        assert result.exit_code == 0
        assert "default temperature: 0.8" in result.output
        assert "default top-K:       3" in result.output
        assert "4096 tokens" in result.output

    def test_reports_unsupported(self):
        result = invoke(FakeHost(unsupported_reason="not eligible"), ["doctor"])

        assert result.exit_code == 2
        assert "not eligible" in result.output


class TestRendering:
    def test_format_stats(self):
        stats = Stats(max_tokens=100, tokens_so_far=40, tokens_left=60, temperature=0.5, top_k=4)

        assert format_stats(stats) == "temperature=0.5 top_k=4 tokens=40/100 (60 left, 40% used)"

    def test_printer_writes_only_new_suffix(self, capsys):
        clock = StepClock()
        printer = StreamPrinter()

        def snap(content, sending=True):
            turn = Turn(Role.ASSISTANT, content, clock())
            return RenderSnapshot(
                turns=(turn,),
                stats=Stats.empty(),
                raw_response=content,
                error_banner=None,
                is_sending=sending,
                phase=ChatPhase.SENDING if sending else ChatPhase.IDLE,
            )

        for content in ["...", "Hi", "Hi there", "Hi there"]:
            printer(snap(content))
        printer(snap("Hi there", sending=False))
        printer.finish()

        assert capsys.readouterr().out == "Hi there\n"
