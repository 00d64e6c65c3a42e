"""
Unit tests for the environment utility functions.
"""

import os
import pytest
import tempfile
from unittest.mock import patch

from omni_bootstrap.utils.environment import (
    loadConfigValueFromFileOrEnvironment,
    loadBoolConfigValue,
    normalize_bool,
    is_placeholder,
    strip_uri_scheme,
)


class TestLoadConfigValueFromFileOrEnvironment:
    """Tests for loadConfigValueFromFileOrEnvironment."""

    def test_returns_default_when_no_env_or_file(self):
        """Returns default value when neither env var nor file is set."""
        with patch.dict(os.environ, {}, clear=True):
            result = loadConfigValueFromFileOrEnvironment('NONEXISTENT_KEY', 'default_val')
        assert result == 'default_val'

    def test_returns_env_var_value(self):
        """Returns the environment variable value when set."""
        with patch.dict(os.environ, {'MY_KEY': 'env_value'}, clear=True):
            result = loadConfigValueFromFileOrEnvironment('MY_KEY', 'default')
        assert result == 'env_value'

    def test_explicit_environ_mapping_is_used(self):
        """An explicit mapping is read instead of os.environ."""
        with patch.dict(os.environ, {'MY_KEY': 'process_value'}, clear=True):
            result = loadConfigValueFromFileOrEnvironment('MY_KEY', 'default', {'MY_KEY': 'mapping_value'})
        assert result == 'mapping_value'

    def test_returns_file_content_over_env_var(self, tmp_path):
        """File content takes precedence over environment variable."""
        secret = tmp_path / 'token.txt'
        secret.write_text('file_value')
        env = {'MY_KEY': 'env_value', 'MY_KEY_FILE': str(secret)}
        assert loadConfigValueFromFileOrEnvironment('MY_KEY', 'default', env) == 'file_value'

    def test_strips_whitespace_from_file(self):
        """File content is stripped of leading/trailing whitespace."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            f.write('  trimmed_value  \n')
            f.flush()
            try:
                with patch.dict(os.environ, {'MY_KEY_FILE': f.name}, clear=True):
                    result = loadConfigValueFromFileOrEnvironment('MY_KEY', 'default')
                assert result == 'trimmed_value'
            finally:
                os.unlink(f.name)

    def test_raises_on_nonexistent_file(self):
        """Raises FileNotFoundError when file path doesn't exist."""
        with pytest.raises(FileNotFoundError):
            loadConfigValueFromFileOrEnvironment('MY_KEY', 'default', {'MY_KEY_FILE': '/nonexistent/path.txt'})

    def test_returns_env_when_file_is_empty(self, tmp_path):
        """Falls back to env var when file exists but is empty."""
        empty = tmp_path / 'empty.txt'
        empty.write_text('')
        env = {'MY_KEY': 'env_value', 'MY_KEY_FILE': str(empty)}
        assert loadConfigValueFromFileOrEnvironment('MY_KEY', 'default', env) == 'env_value'

    def test_raises_on_directory_path(self, tmp_path):
        """Raises FileNotFoundError when path is a directory, not a file."""
        with pytest.raises(FileNotFoundError):
            loadConfigValueFromFileOrEnvironment('MY_KEY', 'default', {'MY_KEY_FILE': str(tmp_path)})


class TestLoadBoolConfigValue:
    """Tests for loadBoolConfigValue."""

    @pytest.mark.parametrize("value", ['true', 'True', 'yes', 'on', 'ON', '1'])
    def test_true_values(self, value):
        """Recognises various true string representations."""
        assert loadBoolConfigValue('TEST_BOOL', 'false', environ={'TEST_BOOL': value}) is True

    @pytest.mark.parametrize("value", ['false', 'FALSE', 'no', 'off', '0'])
    def test_false_values(self, value):
        """Recognises various false string representations."""
        assert loadBoolConfigValue('TEST_BOOL', 'true', environ={'TEST_BOOL': value}) is False

    def test_default_value_used_when_not_set(self):
        """Uses default when environment variable is not set."""
        assert loadBoolConfigValue('UNSET_BOOL', 'true', environ={}) is True
        assert loadBoolConfigValue('UNSET_BOOL', 'false', environ={}) is False

    def test_unknown_string_follows_prefer(self):
        """Unknown strings resolve against the preferred value."""
        env = {'TEST_BOOL': 'maybe'}
        assert loadBoolConfigValue('TEST_BOOL', 'false', environ=env) is True
        assert loadBoolConfigValue('TEST_BOOL', 'false', prefer=True, environ=env) is False


class TestNormalizeBool:
    """Tests for the strict auth flag vocabulary."""

    @pytest.mark.parametrize("value", ['true', 'TRUE', '1', 'yes', 'Yes', 'on', 'enabled', 'Enabled', ' true '])
    def test_truthy(self, value):
        assert normalize_bool(value) is True

    @pytest.mark.parametrize("value", [None, '', 'false', '0', 'no', 'off', 'disabled', 'maybe', 'y'])
    def test_everything_else_is_false(self, value):
        assert normalize_bool(value) is False


class TestIsPlaceholder:
    """Tests for placeholder detection."""

    @pytest.mark.parametrize("value", [
        'your-tenant.auth0.com',
        'https://login.example.com',
        'PLACEHOLDER',
        'change-me',
        'replace_with_secret',
        'xxx-client-id',
        'Your-Client-Secret',
    ])
    def test_placeholders(self, value):
        assert is_placeholder(value) is True

    @pytest.mark.parametrize("value", ['', None, 'acme.eu.auth0.com', 'Zt8qLmN3vB7xR2pK', 'https://sso.acme.io/saml'])
    def test_real_values(self, value):
        assert is_placeholder(value) is False


class TestStripUriScheme:
    """Tests for strip_uri_scheme."""

    def test_file_uri(self):
        assert strip_uri_scheme('file:///etc/omni/tls/omni.asc') == '/etc/omni/tls/omni.asc'

    def test_plain_path_untouched(self):
        assert strip_uri_scheme('/etc/omni/tls/omni.asc') == '/etc/omni/tls/omni.asc'

    def test_only_leading_scheme_removed(self):
        assert strip_uri_scheme('file:///data/file://x') == '/data/file://x'
