##########################################################################################
#
# Script name: test_main.py
#
# Description: Command-line parsing and exit codes.
#
##########################################################################################

import logging

import pytest

from curator import main as cli
from curator.pipeline.curation_pipeline import PipelineError
from curator.utils.logging_config import PerformanceTracker


def test_parser_defaults_and_exclusive_modes() -> None:
    parser = cli.build_parser()
    args = parser.parse_args([])
    assert not args.curate_only
    assert args.caller == 'cli'

    args = parser.parse_args(['--curate-only', '--json', '--caller', 'alice'])
    assert args.curate_only and args.json
    assert args.caller == 'alice'

    with pytest.raises(SystemExit):
        parser.parse_args(['--curate-only', '--once'])


def test_pipeline_errors_map_to_exit_code_one(monkeypatch, capsys) -> None:
    async def failing_run(args):
        raise PipelineError('No articles fetched (3 feeds failed, 0 skipped)')

    monkeypatch.setattr(cli, 'load_dotenv', lambda: None)
    monkeypatch.setattr(cli, 'run', failing_run)

    assert cli.main(['--curate-only']) == 1
    assert 'Pipeline failed: No articles fetched' in capsys.readouterr().out


def test_successful_run_exits_zero(monkeypatch) -> None:
    async def ok_run(args):
        return 0

    monkeypatch.setattr(cli, 'load_dotenv', lambda: None)
    monkeypatch.setattr(cli, 'run', ok_run)
    assert cli.main([]) == 0


def test_performance_tracker_measures_duration() -> None:
    with PerformanceTracker('noop', logging.getLogger('test')) as tracker:
        sum(range(1000))
    assert tracker.duration_ms >= 0
