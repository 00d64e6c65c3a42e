"""
Unit tests for the external tool wrapper and its error type.
"""

import pytest

from omni_bootstrap.errors import ExternalToolError
from omni_bootstrap.utils.external_tools import capture_output, run_tool


class TestRunTool:

    def test_success_captures_stdout(self):
        result = run_tool(['sh', '-c', 'echo hello'], timeout=10)
        assert result.returncode == 0
        assert result.stdout == 'hello\n'

    def test_input_text(self):
        result = run_tool(['cat'], timeout=10, input_text='Key-Type: RSA\n')
        assert result.stdout == 'Key-Type: RSA\n'

    def test_env_replaces_environment(self):
        result = run_tool(['/bin/sh', '-c', 'echo "$GNUPGHOME"'], timeout=10, env={'GNUPGHOME': '/tmp/g'})
        assert result.stdout.strip() == '/tmp/g'

    def test_non_zero_exit(self):
        with pytest.raises(ExternalToolError) as exc_info:
            run_tool(['sh', '-c', 'echo one >&2; echo two >&2; exit 3'], timeout=10)

        err = exc_info.value
        assert err.tool == 'sh'
        assert err.returncode == 3
        assert str(err) == 'sh exited with status 3: one | two'

    def test_missing_tool(self):
        with pytest.raises(ExternalToolError) as exc_info:
            run_tool(['certbot-does-not-exist'], timeout=10)
        assert exc_info.value.returncode is None
        assert 'command not found' in str(exc_info.value)

    def test_timeout(self):
        with pytest.raises(ExternalToolError, match='timed out'):
            run_tool(['sleep', '5'], timeout=0.2)


class TestCaptureOutput:

    def test_combines_streams_regardless_of_status(self):
        output = capture_output(['sh', '-c', 'echo out; echo err >&2; exit 1'], timeout=10)
        assert 'out' in output
        assert 'err' in output

    def test_missing_command(self):
        assert capture_output(['no-such-binary-here'], timeout=10) == ''


class TestExternalToolError:

    def test_keeps_last_three_stderr_lines(self):
        err = ExternalToolError('certbot', 1, 'a\nb\nc\nd\n')
        assert str(err) == 'certbot exited with status 1: b | c | d'
        assert err.stderr == 'a\nb\nc\nd\n'

    def test_without_stderr(self):
        assert str(ExternalToolError('gpg', None)) == 'gpg did not complete'
