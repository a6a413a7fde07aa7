"""
Unit tests for the shared helper functions and the settings layer.
"""

import subprocess
from argparse import Namespace
from unittest import mock

import pytest

from conftest import MOCK_CONFIG
from varvis_download.config import DEFAULTS_CONFIG_PATH, load_settings
from varvis_download.file_types import ALIGNMENT_SPEC, VARIANT_SPEC, get_file_type_spec, matches_filetypes
from varvis_download.utils import normalize_list_input, run_subprocess_with_log, validate_cli_argument

# --- Tests for varvis_download.utils ---


def test_validate_cli_argument_safe():
    """
    Tests that validate_cli_argument passes for region strings and plain names.
    """
    try:
        validate_cli_argument('chr1:1000-2000', 'region')
        validate_cli_argument('chrUn_KI270302v1', 'region')
        validate_cli_argument('simple_filename.vcf.gz', 'file')
    except ValueError:
        pytest.fail('validate_cli_argument raised ValueError unexpectedly on safe values')


def test_validate_cli_argument_unsafe():
    """
    Tests that validate_cli_argument raises ValueError for unsafe strings.
    """
    unsafe_values = [
        'chr1; rm -rf /',
        'chr1&&echo',
        '$(ls)',
        'chr1|tee',
        'chr1 chr2',
        '--output=/etc/passwd',
        'chr1\n',
    ]

    for value in unsafe_values:
        with pytest.raises(ValueError, match='Potential unsafe characters'):
            validate_cli_argument(value, 'region')


def test_run_subprocess_with_log_returns_output():
    process = run_subprocess_with_log(['sh', '-c', 'echo hello'], 'echo')
    assert process.stdout.strip() == 'hello'


def test_run_subprocess_with_log_raises_on_failure():
    with pytest.raises(subprocess.CalledProcessError) as exc_info:
        run_subprocess_with_log(['sh', '-c', 'echo oops >&2; exit 3'], 'failing step')
    assert exc_info.value.returncode == 3
    assert 'oops' in exc_info.value.stderr


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        (None, []),
        ('1,2, 3', ['1', '2', '3']),
        (['1,2', '3'], ['1', '2', '3']),
        ([101, '102'], ['101', '102']),
        (['', ' , '], []),
    ],
)
def test_normalize_list_input(value, expected):
    assert normalize_list_input(value) == expected


# --- Tests for varvis_download.file_types ---


@pytest.mark.parametrize(
    ('file_name', 'expected'),
    [
        ('S1.bam', ALIGNMENT_SPEC),
        ('S1.vcf.gz', VARIANT_SPEC),
        ('S1.bam.bai', None),
        ('S1.vcf.gz.tbi', None),
        ('S1.vcf', None),
        ('report.pdf', None),
    ],
)
def test_get_file_type_spec(file_name, expected):
    assert get_file_type_spec(file_name) is expected


def test_index_names():
    assert ALIGNMENT_SPEC.index_name('S1.bam') == 'S1.bam.bai'
    assert VARIANT_SPEC.index_name('S1.vcf.gz') == 'S1.vcf.gz.tbi'


@pytest.mark.parametrize(
    ('file_name', 'filetypes', 'expected'),
    [
        ('S1.bam', None, True),
        ('S1.bam', [], True),
        ('S1.bam', ['bam'], True),
        ('S1.bam.bai', ['bam'], False),
        ('S1.bam.bai', ['bam', 'bam.bai'], True),
        ('S1.vcf.gz', ['.vcf.gz'], True),
        ('S1.vcf.gz.tbi', ['vcf.gz'], False),
    ],
)
def test_matches_filetypes(file_name, filetypes, expected):
    assert matches_filetypes(file_name, filetypes) is expected


# --- Tests for varvis_download.config ---


def _args(**overrides) -> Namespace:
    values = {
        'config': None,
        'username': None,
        'password': None,
        'target': None,
        'analysis_ids': None,
        'sample_ids': None,
        'lims_ids': None,
        'filter': None,
        'list': False,
        'destination': None,
        'proxy': None,
        'proxy_username': None,
        'proxy_password': None,
        'overwrite': None,
        'filetypes': None,
        'loglevel': None,
        'logfile': None,
        'reportfile': None,
        'range': None,
        'bed': None,
        'restore_archived': None,
        'restoration_file': None,
        'resume_archived_downloads': False,
        'list_urls': False,
        'url_file': None,
    }
    values.update(overrides)
    return Namespace(**values)


def test_load_settings_uses_configuration(mock_cpg_utils_config, monkeypatch):
    monkeypatch.delenv('VARVIS_USER', raising=False)
    monkeypatch.delenv('VARVIS_PASSWORD', raising=False)

    settings = load_settings(_args())

    mock_cpg_utils_config.assert_called_once_with([DEFAULTS_CONFIG_PATH])
    assert settings.target == 'playground'
    assert settings.username == 'tester'
    assert settings.password is None
    assert settings.filetypes == ['bam', 'bam.bai']
    assert settings.restore_archived == 'ask'
    assert settings.restoration_file == 'awaiting-restoration.json'
    assert settings.range is None
    assert settings.overwrite is False
    assert settings.tools.samtools_min_version == '1.17'
    assert settings.http.retry_wait_seconds == 0
    assert not settings.has_selection


def test_load_settings_cli_wins(monkeypatch):
    monkeypatch.delenv('VARVIS_USER', raising=False)
    settings = load_settings(
        _args(
            target='laborberlin',
            username='cli-user',
            analysis_ids=['1,2', '3'],
            filetypes=['vcf.gz'],
            overwrite=True,
            range='chr1:1-100',
            restore_archived='force',
        ),
    )
    assert settings.target == 'laborberlin'
    assert settings.username == 'cli-user'
    assert settings.analysis_ids == ['1', '2', '3']
    assert settings.filetypes == ['vcf.gz']
    assert settings.overwrite is True
    assert settings.range == 'chr1:1-100'
    assert settings.restore_archived == 'force'
    assert settings.has_selection


def test_load_settings_environment_credentials(monkeypatch):
    monkeypatch.setenv('VARVIS_USER', 'env-user')
    monkeypatch.setenv('VARVIS_PASSWORD', 'env-pass')
    settings = load_settings(_args(username='cli-user'))
    assert settings.username == 'env-user'
    assert settings.password == 'env-pass'


def test_load_settings_adds_existing_user_config(mock_cpg_utils_config, tmp_path):
    user_config = tmp_path / 'user.toml'
    user_config.write_text('[varvis]\ntarget = "other"\n')
    load_settings(_args(config=str(user_config)))
    mock_cpg_utils_config.assert_called_once_with([DEFAULTS_CONFIG_PATH, str(user_config)])


def test_load_settings_ignores_missing_user_config(mock_cpg_utils_config, tmp_path):
    load_settings(_args(config=str(tmp_path / 'missing.toml')))
    mock_cpg_utils_config.assert_called_once_with([DEFAULTS_CONFIG_PATH])


def test_load_settings_rejects_unknown_restore_mode():
    with (
        mock.patch.dict(MOCK_CONFIG['restoration'], {'restore_archived': 'sometimes'}),
        pytest.raises(ValueError, match='Invalid restore mode'),
    ):
        load_settings(_args())
