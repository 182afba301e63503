"""Integration tests for the mpb command line."""

import subprocess
import sys

import yaml


def run_cli(*args, cwd=None):
    return subprocess.run(
        [sys.executable, '-m', 'microcap.main', *args],
        capture_output=True,
        text=True,
        cwd=cwd
    )


def write_config(path, weights):
    positions = [
        {
            'ticker': ticker,
            'target_weight': weight,
            'entry': {'tranches': [0.5, 0.5], 'buy_dip_percents': [0, -3]},
            'stops': {'trailing_pct': 0.2},
        }
        for ticker, weight in weights.items()
    ]
    config = {
        'portfolio': {'capital': 100000, 'positions': positions},
        'data': {'feed': 'iex'},
        'storage': {
            'state_file': str(path.parent / 'state.json'),
            'out_dir': str(path.parent / 'out'),
        },
    }
    path.write_text(yaml.safe_dump(config))
    return path


def test_cli_help():
    """Test that CLI help lists the commands."""
    result = run_cli('--help')

    assert result.returncode == 0
    assert 'microcap portfolio engine' in result.stdout.lower()
    for command in ['run', 'status', 'targets', 'plan', 'version']:
        assert command in result.stdout


def test_cli_run_help():
    """Test that run help shows its options."""
    result = run_cli('run', '--help')

    assert result.returncode == 0
    assert '--assume-fills' in result.stdout
    assert '--capital' in result.stdout
    assert '--debug' in result.stdout


def test_cli_version():
    """Test that version command works."""
    result = run_cli('version')

    assert result.returncode == 0
    assert 'Microcap Portfolio Engine' in result.stdout
    assert '1.0.0' in result.stdout


def test_config_validation(tmp_path):
    """Test that a config missing required sections exits with code 2."""
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({'invalid': 'config'}))

    result = run_cli('run', '--config-file', str(path), '--dry-run')

    assert result.returncode == 2
    assert 'Configuration error' in result.stdout


def test_weight_sum_rejected(tmp_path):
    """Test that weights not summing to 1 fail at startup."""
    path = write_config(tmp_path / 'config.yaml', {'OMER': 0.5, 'MREO': 0.3})

    result = run_cli('run', '--config-file', str(path), '--dry-run')

    assert result.returncode == 2
    assert 'Sum of target_weight' in result.stdout


def test_missing_config_file(tmp_path):
    """Test that a missing config file exits with code 2."""
    result = run_cli('run', '--config-file', str(tmp_path / 'nope.yaml'), '--dry-run')
    assert result.returncode == 2


def test_dry_run_valid_config(tmp_path):
    """Test that a valid config passes a dry run without touching state."""
    path = write_config(tmp_path / 'config.yaml', {'OMER': 0.6, 'MREO': 0.4})

    result = run_cli('run', '--config-file', str(path), '--dry-run')

    assert result.returncode == 0
    assert 'Configuration valid' in result.stdout
    assert not (tmp_path / 'state.json').exists()


def test_targets_on_fresh_state(tmp_path):
    """Test that targets seeds the state file and needs no market data."""
    path = write_config(tmp_path / 'config.yaml', {'OMER': 0.6, 'MREO': 0.4})

    result = run_cli('targets', '--config-file', str(path))

    assert result.returncode == 0
    assert 'OMER' in result.stdout
    assert (tmp_path / 'state.json').exists()
