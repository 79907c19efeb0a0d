"""
Tests for the suite runner, the report and the command line
"""

import asyncio
import json

import pytest

from sqllogic.main import SuiteRunner, discover_fixtures, load_skip_list, main
from sqllogic.models import Status
from sqllogic.report import ReportWriter

from conftest import FakeHandler

PASSING = "statement ok\nCREATE TABLE t(a INT);\n\nstatement query I\nSELECT 1;\n\n----\n1\n"
FAILING = "statement query I\nSELECT 2;\n\n----\n3\n"
BROKEN = "statement query Q\nSELECT 1;\n"


def fake_handlers():
    responses = {"SELECT 1;": [(1,)], "SELECT 2;": [(2,)]}
    return {
        "mysql": FakeHandler("mysql", "mysql", responses=responses),
        "http": FakeHandler("http", responses=responses),
    }


def make_runner(config, root, **kwargs) -> SuiteRunner:
    runner = SuiteRunner(config, str(root), **kwargs)
    runner.handlers = fake_handlers()
    return runner


def test_discover_fixtures_sorted_and_filtered(tmp_path, write_fixture):
    write_fixture("b.test", PASSING)
    write_fixture("a/02_x.test", PASSING)
    write_fixture("a/01_y.test", PASSING)
    write_fixture("notes.md", "ignored")

    assert [name for name, _ in discover_fixtures(str(tmp_path))] == ["a/01_y.test", "a/02_x.test", "b.test"]
    assert [name for name, _ in discover_fixtures(str(tmp_path), "02_x")] == ["a/02_x.test"]


def test_load_skip_list(tmp_path):
    path = tmp_path / "skip.txt"
    path.write_text("# slow ones\na/01_y\n\nb.test  # flaky\n", encoding="utf-8")
    assert load_skip_list(str(path)) == ["a/01_y", "b.test"]


@pytest.mark.asyncio
async def test_run_all_passing(tmp_path, write_fixture, config):
    write_fixture("base.test", PASSING)
    runner = make_runner(config, tmp_path)

    report = await runner.run()

    assert report.succeeded
    assert report.totals.passed == 4
    assert report.files["base.test"].passed == 4
    for handler in runner.handlers.values():
        assert handler.opened == 1
        assert not handler.connected


@pytest.mark.asyncio
async def test_run_reports_failures(tmp_path, write_fixture, config):
    write_fixture("base.test", PASSING)
    write_fixture("bad.test", FAILING)
    runner = make_runner(config, tmp_path)

    report = await runner.run()

    assert not report.succeeded
    assert report.files["bad.test"].failed == 2
    assert report.failure_count == 2
    assert {f.backend for f in report.failures} == {"mysql", "http"}

    text = ReportWriter().generate_report(report)
    assert "bad.test:1 (record 0) [mysql] failed: row 1, column 1: expected '3', got '2'" in text
    assert "Result: FAILED" in text


@pytest.mark.asyncio
async def test_failure_list_is_capped(tmp_path, write_fixture, config):
    config.test_settings.max_failures_reported = 1
    write_fixture("bad.test", FAILING)

    report = await make_runner(config, tmp_path).run()

    assert report.failure_count == 2
    assert len(report.failures) == 1
    assert "Failures (first 1 of 2)" in ReportWriter().generate_report(report)


@pytest.mark.asyncio
async def test_parse_error_skips_file_and_continues(tmp_path, write_fixture, config):
    write_fixture("a_broken.test", BROKEN)
    write_fixture("b_base.test", PASSING)

    report = await make_runner(config, tmp_path).run()

    assert len(report.parse_errors) == 1
    assert report.parse_errors[0].line == 1
    assert report.files["b_base.test"].passed == 4
    assert not report.succeeded
    assert "a_broken.test:1: malformed type spec" in ReportWriter().generate_report(report)


@pytest.mark.asyncio
async def test_parse_error_abort_policy(tmp_path, write_fixture, config):
    config.test_settings.parse_error_policy = "abort"
    write_fixture("a_broken.test", BROKEN)
    write_fixture("b_base.test", PASSING)

    report = await make_runner(config, tmp_path).run()

    assert len(report.parse_errors) == 1
    assert "b_base.test" not in report.files


@pytest.mark.asyncio
async def test_skip_list(tmp_path, write_fixture, config):
    config.skip_files = ["bad"]
    write_fixture("base.test", PASSING)
    write_fixture("bad.test", FAILING)
    write_fixture("broken.test", BROKEN)

    runner = make_runner(config, tmp_path, skip=["broken.test"])
    report = await runner.run()

    assert report.succeeded
    assert report.files["bad.test"].skipped == 2
    assert "broken.test" not in report.files
    assert all(r.status == Status.SKIPPED for r in report.results if r.file == "bad.test")
    assert "SELECT 2;" not in runner.handlers["http"].calls


@pytest.mark.asyncio
async def test_cancelled_run_closes_every_connection(tmp_path, write_fixture, config):
    write_fixture("base.test", PASSING)
    runner = SuiteRunner(config, str(tmp_path))
    runner.handlers = {
        name: FakeHandler(name, protocol, delays={"SELECT 1;": 10})
        for name, protocol in (("mysql", "mysql"), ("http", "http"))
    }

    task = asyncio.create_task(runner.run())
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for handler in runner.handlers.values():
        assert handler.calls[-1] == "SELECT 1;"
        assert handler.opened == 1
        assert handler.closed == handler.opened
        assert not handler.connected


@pytest.mark.asyncio
async def test_save_results_and_report(tmp_path, write_fixture, config):
    write_fixture("suite/base.test", PASSING)
    report = await make_runner(config, tmp_path / "suite").run()

    writer = ReportWriter(str(tmp_path / "out"))
    results_path = writer.save_results(report, "results.json")
    report_path = writer.save_report(writer.generate_report(report), "report.txt")

    data = json.loads(open(results_path, encoding="utf-8").read())
    assert data["summary"] == {"passed": 4, "failed": 0, "error": 0, "skipped": 0}
    assert data["results"][0]["status"] == "passed"
    assert "Result: PASSED" in open(report_path, encoding="utf-8").read()


def test_check_command(tmp_path, write_fixture, capsys):
    write_fixture("base.test", PASSING)
    assert main(["check", str(tmp_path)]) == 0

    write_fixture("broken.test", BROKEN)
    assert main(["check", str(tmp_path)]) == 1
    assert "1 parse error(s)" in capsys.readouterr().out


def test_run_command_with_invalid_config(tmp_path, write_fixture):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"backends": {"x": {"protocol": "odbc", "host": "h", "port": 1}}}), encoding="utf-8")
    assert main(["run", str(tmp_path), "--config", str(path)]) == 2


def test_run_command_exit_codes(tmp_path, write_fixture, config, monkeypatch, capsys):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config.to_dict()), encoding="utf-8")
    suite_root = tmp_path / "suite"
    write_fixture("suite/base.test", PASSING)

    monkeypatch.setattr(SuiteRunner, "setup", lambda self: setattr(self, "handlers", fake_handlers()))

    assert main(["run", str(suite_root), "--config", str(path)]) == 0
    assert "Result: PASSED" in capsys.readouterr().out

    write_fixture("suite/bad.test", FAILING)
    assert main(["run", str(suite_root), "--config", str(path)]) == 1
    assert main(["run", str(suite_root), "--config", str(path), "--skip", "bad"]) == 0
    assert main(["run", str(suite_root), "--config", str(path), "--file", "base"]) == 0
