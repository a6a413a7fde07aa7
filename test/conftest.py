"""
Global pytest configuration and fixtures.
"""

import os
import stat
from functools import reduce
from unittest import mock

import pytest

# This is a minimal mock config based on varvis_download_defaults.toml.
# Tests that need different values patch MOCK_CONFIG entries via `mock_config`.
MOCK_CONFIG = {
    'varvis': {
        'target': 'playground',
        'username': 'tester',
        'password': '',
        'proxy': '',
        'proxy_username': '',
        'proxy_password': '',
    },
    'download': {
        'destination': '.',
        'overwrite': False,
        'filetypes': ['bam', 'bam.bai'],
        'filters': [],
        'analysis_ids': [],
        'sample_ids': [],
        'lims_ids': [],
        'range': '',
        'bed': '',
        'reportfile': '',
        'url_file': '',
    },
    'restoration': {
        'restore_archived': 'ask',
        'restoration_file': 'awaiting-restoration.json',
    },
    'logging': {
        'level': 'info',
        'file': '',
    },
    'tools': {
        'samtools': 'samtools',
        'tabix': 'tabix',
        'bgzip': 'bgzip',
        'samtools_min_version': '1.17',
        'tabix_min_version': '1.7',
        'bgzip_min_version': '1.7',
    },
    'http': {
        'retries': 3,
        'retry_wait_seconds': 0,
        'timeout_seconds': 5,
    },
}


def _mock_config_retrieve(keys, default=None):
    """
    A helper function that simulates the real config_retrieve
    by traversing the MOCK_CONFIG dictionary.
    """
    try:
        # This traverses the dict: e.g., MOCK_CONFIG['tools']['samtools']
        return reduce(lambda d, k: d[k], keys, MOCK_CONFIG)
    except (KeyError, TypeError):
        if default is not None:
            return default
        # Raise a realistic error to help with debugging tests
        raise KeyError(f'Mock config key not found in MOCK_CONFIG: {keys}')


@pytest.fixture(autouse=True)
def mock_cpg_utils_config():
    """
    Mocks the cpg_utils.config functions used by varvis_download.config, so no
    test ever reads a real TOML file.

    config.py imports the functions by name, so they are patched where they are
    looked up, not where they are defined.
    """
    with (
        mock.patch('varvis_download.config.config_retrieve') as mock_retrieve,
        mock.patch('varvis_download.config.set_config_paths') as mock_set_paths,
    ):
        # Use .side_effect to call our helper function
        mock_retrieve.side_effect = _mock_config_retrieve
        yield mock_set_paths


@pytest.fixture
def make_tool(tmp_path):
    """
    Writes an executable shell script standing in for an external tool
    (samtools, tabix, bgzip) and returns its path.
    """
    tools_dir = tmp_path / 'tools'
    tools_dir.mkdir(exist_ok=True)

    def _make_tool(name: str, body: str) -> str:
        path = tools_dir / name
        path.write_text(f'#!/bin/sh\n{body}\n')
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return os.fspath(path)

    return _make_tool
