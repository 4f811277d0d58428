"""Tests for shell quoting helpers."""

from logscout.utils.shell import quote_path, sudo_wrap


def test_quote_path_plain() -> None:
    """Simple paths are left alone."""
    assert quote_path("/var/log/app.log") == "/var/log/app.log"


def test_quote_path_with_spaces_and_metacharacters() -> None:
    """Spaces and shell metacharacters are single-quoted."""
    assert quote_path("/var/log/my app.log") == "'/var/log/my app.log'"
    assert quote_path("/tmp/$(reboot)") == "'/tmp/$(reboot)'"


def test_quote_path_embedded_quote() -> None:
    """Embedded single quotes are escaped."""
    assert quote_path("it's.log") == "'it'\"'\"'s.log'"


def test_sudo_wrap() -> None:
    """sudo reads the password from stdin."""
    assert sudo_wrap("ls /root") == "sudo -S ls /root"
