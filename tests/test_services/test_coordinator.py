"""Tests for the session coordinator."""

import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from logscout.models import CommandOpts, FileEntry, LogFolder, Target
from logscout.services.coordinator import SessionCoordinator
from logscout.services.dispatch import UpdateDispatcher
from logscout.services.errors import CommandError, ConnectError, SudoAuthError, TailEnded

WEB = Target(name="web1", host="web1", user="deploy", log_path="/var/log/app")
DB = Target(
    name="db1",
    host="db1",
    user="postgres",
    log_folders=(
        LogFolder(path="/var/log/postgresql", name="Postgres", file_patterns=("*.log",)),
        LogFolder(path="/var/log", name="System"),
    ),
)
OTHER = Target(name="other", host="other", user="deploy", log_path="/srv/logs")
SECURE = Target(name="secure", host="secure", user="ops", sudo=True, log_path="/var/log")

FILES = [FileEntry(name="a.log", size=10), FileEntry(name="b.log", size=20)]


class ListSink:
    def __init__(self) -> None:
        self.chunks: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.chunks.append(data)


class FakePool:
    """Pool double with a real sudo password cache."""

    def __init__(self) -> None:
        self.get_client = AsyncMock(side_effect=lambda target: MagicMock(name=target.key))
        self.close_all = AsyncMock()
        self.passwords: dict[str, str] = {}

    def set_sudo_password(self, target: Target, password: str) -> None:
        self.passwords[target.key] = password

    def get_sudo_password(self, target: Target) -> str:
        return self.passwords.get(target.key, "")

    def clear_sudo_password(self, target: Target) -> None:
        self.passwords.pop(target.key, None)


async def hang(*args, **kwargs):
    await asyncio.sleep(60)


async def settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def presenter() -> MagicMock:
    mock = MagicMock()
    mock.sink = ListSink()
    return mock


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


@pytest.fixture
def remote():
    """Patch the remote operations the coordinator calls."""
    tailer = MagicMock()
    tailer.wait_stopped = AsyncMock(return_value=True)
    with (
        patch("logscout.services.coordinator.list_files", new_callable=AsyncMock) as list_files,
        patch(
            "logscout.services.coordinator.read_file_content", new_callable=AsyncMock
        ) as read_file_content,
        patch("logscout.services.coordinator.start_tail", new_callable=AsyncMock) as start_tail,
        patch(
            "logscout.services.coordinator.download_file", new_callable=AsyncMock
        ) as download_file,
    ):
        list_files.return_value = FILES
        read_file_content.return_value = "initial content\n"
        start_tail.return_value = tailer
        download_file.return_value = 2048
        yield SimpleNamespace(
            list_files=list_files,
            read_file_content=read_file_content,
            start_tail=start_tail,
            download_file=download_file,
            tailer=tailer,
        )


@pytest.fixture
def coordinator(pool: FakePool, presenter: MagicMock) -> SessionCoordinator:
    return SessionCoordinator(
        pool,
        presenter,
        dispatcher=UpdateDispatcher(),
        servers=[WEB, DB, OTHER, SECURE],
        tail_lines=50,
        connect_timeout=1.0,
        command_timeout=1.0,
        shutdown_timeout=0.05,
    )


async def run_until_idle(coordinator: SessionCoordinator) -> None:
    """Let background tasks finish and apply what they published."""
    await settle()
    coordinator.dispatcher.drain()


@pytest.mark.asyncio
async def test_select_single_folder_server_lists_files(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """A single-folder server connects and shows its listing."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    pool.get_client.assert_awaited_once_with(WEB)
    remote.list_files.assert_awaited_once()
    args = remote.list_files.call_args.args
    assert args[1:] == ("/var/log/app", (), CommandOpts())
    presenter.show_files.assert_called_once_with(
        WEB, WEB.effective_folders()[0], FILES, False
    )
    presenter.set_context.assert_called_with("web1: select a file")
    assert not coordinator.connecting


@pytest.mark.asyncio
async def test_select_multi_folder_server_shows_folders(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """A multi-folder server shows its folders without connecting."""
    coordinator.select_server(DB)
    await run_until_idle(coordinator)

    presenter.show_folders.assert_called_once_with(DB, list(DB.log_folders))
    pool.get_client.assert_not_awaited()


@pytest.mark.asyncio
async def test_select_folder_lists_with_patterns(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """Selecting a folder lists it with its patterns and offers up-dir."""
    coordinator.select_server(DB)
    coordinator.select_folder(DB.log_folders[0])
    await run_until_idle(coordinator)

    args = remote.list_files.call_args.args
    assert args[1:3] == ("/var/log/postgresql", ("*.log",))
    presenter.show_files.assert_called_once_with(DB, DB.log_folders[0], FILES, True)


@pytest.mark.asyncio
async def test_select_up_dir_returns_to_folders(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """Up-dir clears the folder and shows the folder list again."""
    coordinator.select_server(DB)
    coordinator.select_folder(DB.log_folders[1])
    await run_until_idle(coordinator)

    coordinator.select_up_dir()

    assert coordinator.selection.folder is None
    assert presenter.show_folders.call_count == 2


@pytest.mark.asyncio
async def test_superseded_listing_is_never_shown(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """A listing for A completing after B was selected is dropped."""
    gate = asyncio.Event()

    async def get_client(target):
        if target is OTHER:
            await gate.wait()
        return MagicMock()

    pool.get_client.side_effect = get_client

    coordinator.select_server(WEB)
    await settle()  # A's listing is queued but not yet applied
    coordinator.select_server(OTHER)
    coordinator.dispatcher.drain()

    presenter.show_files.assert_not_called()

    gate.set()
    await run_until_idle(coordinator)

    presenter.show_files.assert_called_once()
    assert presenter.show_files.call_args.args[0] is OTHER


@pytest.mark.asyncio
async def test_new_selection_cancels_inflight_connect(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """Switching servers cancels a connect that is still running."""
    pool.get_client.side_effect = hang

    coordinator.select_server(WEB)
    await settle()
    assert coordinator.connecting

    pool.get_client.side_effect = None
    pool.get_client.return_value = MagicMock()
    coordinator.select_server(OTHER)
    await run_until_idle(coordinator)

    presenter.show_files.assert_called_once()
    assert presenter.show_files.call_args.args[0] is OTHER
    presenter.show_connect_error.assert_not_called()


@pytest.mark.asyncio
async def test_connect_error_is_reported(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """Connection failures go to show_connect_error."""
    pool.get_client.side_effect = ConnectError(WEB.key, "connection refused")

    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    presenter.show_connect_error.assert_called_once_with(
        "Unable to connect: connect deploy@web1:22: connection refused"
    )


@pytest.mark.asyncio
async def test_connect_timeout_is_reported(
    pool: FakePool, presenter: MagicMock, remote
) -> None:
    """A connect that exceeds its bound is surfaced as an error."""
    pool.get_client.side_effect = hang
    coordinator = SessionCoordinator(pool, presenter, connect_timeout=0.01)

    coordinator.select_server(WEB)
    await asyncio.sleep(0.05)
    await run_until_idle(coordinator)

    presenter.show_connect_error.assert_called_once()
    assert "timed out" in presenter.show_connect_error.call_args.args[0]


@pytest.mark.asyncio
async def test_listing_error_is_reported(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """Listing failures go to show_connect_error."""
    remote.list_files.side_effect = CommandError("ls", 2, "No such file")

    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    message = presenter.show_connect_error.call_args.args[0]
    assert message.startswith("Unable to list files: ")
    assert "No such file" in message


@pytest.mark.asyncio
async def test_sudo_prompt_before_connect(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """A sudo server without a cached password prompts first."""
    coordinator.select_server(SECURE)

    presenter.prompt_sudo_password.assert_called_once()
    server_name, callback = presenter.prompt_sudo_password.call_args.args
    assert server_name == "secure"
    pool.get_client.assert_not_awaited()

    callback("s3cret")
    await run_until_idle(coordinator)

    assert pool.get_sudo_password(SECURE) == "s3cret"
    assert remote.list_files.call_args.args[3] == CommandOpts(sudo_password="s3cret")
    presenter.show_files.assert_called_once()


@pytest.mark.asyncio
async def test_sudo_prompt_cancelled(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """Cancelling the sudo prompt returns focus to the server list."""
    coordinator.select_server(SECURE)
    callback = presenter.prompt_sudo_password.call_args.args[1]

    callback(None)
    await run_until_idle(coordinator)

    presenter.set_context.assert_called_with("Sudo password cancelled")
    presenter.focus_servers.assert_called_once()
    pool.get_client.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_sudo_password_prompts_again(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """A rejected password is forgotten and the user is asked again."""
    pool.set_sudo_password(SECURE, "wrong")
    remote.list_files.side_effect = [SudoAuthError("ls"), FILES]

    coordinator.select_server(SECURE)
    await run_until_idle(coordinator)

    assert pool.get_sudo_password(SECURE) == ""
    presenter.show_error.assert_called_once_with("Sudo authentication failed, try again")
    callback = presenter.prompt_sudo_password.call_args.args[1]

    callback("right")
    await run_until_idle(coordinator)

    assert remote.list_files.call_args.args[3] == CommandOpts(sudo_password="right")
    presenter.show_files.assert_called_once()


@pytest.mark.asyncio
async def test_select_file_shows_content_and_tails(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """Selecting a file shows its last lines, then streams new output."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    remote.read_file_content.assert_awaited_once()
    assert remote.read_file_content.call_args.args[1:3] == ("/var/log/app/a.log", 50)
    presenter.show_content.assert_called_once_with("initial content\n")
    presenter.tail_started.assert_called_once_with(WEB, "/var/log/app/a.log")
    assert coordinator.tailer is remote.tailer

    sink = remote.start_tail.call_args.args[2]
    sink.write(b"new line\n")
    coordinator.dispatcher.drain()

    assert presenter.sink.chunks == [b"new line\n"]


@pytest.mark.asyncio
async def test_tail_burst_is_delivered_whole_alongside_refresh(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """A burst of tail chunks loses no bytes and doesn't crowd out a listing."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)
    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    sink = remote.start_tail.call_args.args[2]
    for i in range(1500):
        sink.write(b"%d\n" % (i % 10))
        if i == 750:
            coordinator.refresh()
            await settle()

    assert coordinator.dispatcher.pending <= 3
    await run_until_idle(coordinator)

    expected = b"".join(b"%d\n" % (i % 10) for i in range(1500))
    assert b"".join(presenter.sink.chunks) == expected
    assert len(presenter.sink.chunks) <= 3
    assert presenter.show_files.call_count == 2
    assert coordinator.dispatcher.dropped == 0


@pytest.mark.asyncio
async def test_tail_start_failure_is_reported_as_tail(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """A read that works followed by a failing tail start is labelled "tail"."""
    remote.start_tail.side_effect = CommandError("tail -n 0 -f a.log", None, "channel closed")
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    presenter.show_content.assert_called_once_with("initial content\n")
    message = presenter.show_error.call_args.args[0]
    assert message.startswith("tail: ")
    assert "channel closed" in message
    assert coordinator.tailer is None
    presenter.tail_started.assert_not_called()


@pytest.mark.asyncio
async def test_file_read_failure_is_reported_as_read(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """A failing initial read is labelled "read" and no tail starts."""
    remote.read_file_content.side_effect = CommandError("tail -n 50 a.log", 1, "denied")
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    assert presenter.show_error.call_args.args[0].startswith("read: ")
    remote.start_tail.assert_not_awaited()


@pytest.mark.asyncio
async def test_directories_are_not_tailed(
    coordinator: SessionCoordinator, remote
) -> None:
    """Selecting a directory entry does nothing."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    coordinator.select_file(FileEntry(name="archive", is_dir=True))
    await run_until_idle(coordinator)

    remote.read_file_content.assert_not_awaited()


@pytest.mark.asyncio
async def test_second_file_supersedes_first(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """Only the most recently selected file's content is shown."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    coordinator.select_file(FILES[0])
    coordinator.select_file(FILES[1])
    await run_until_idle(coordinator)

    presenter.show_content.assert_called_once()
    presenter.tail_started.assert_called_once_with(WEB, "/var/log/app/b.log")


@pytest.mark.asyncio
async def test_tail_started_after_selection_moved_is_stopped(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """A tail that starts for a superseded selection is stopped, not kept."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    async def start_then_move_on(*args, **kwargs):
        coordinator.stop_tail()
        return remote.tailer

    remote.start_tail.side_effect = start_then_move_on

    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    remote.tailer.request_stop.assert_called_once()
    assert coordinator.tailer is None
    presenter.tail_started.assert_not_called()


@pytest.mark.asyncio
async def test_tail_disconnect_is_reported(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """A tail that ends on its own reports the connection loss."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)
    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    err_callback = remote.tailer.set_err_callback.call_args.args[0]
    err_callback(TailEnded("/var/log/app/a.log"))
    coordinator.dispatcher.drain()

    presenter.tail_disconnected.assert_called_once_with(
        "connection lost: tail of /var/log/app/a.log ended"
    )


@pytest.mark.asyncio
async def test_stop_tail(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """stop_tail cancels the tail and drops its pending output."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)
    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    sink = remote.start_tail.call_args.args[2]
    sink.write(b"late line\n")
    coordinator.stop_tail()
    coordinator.dispatcher.drain()

    remote.tailer.request_stop.assert_called_once()
    assert coordinator.tailer is None
    assert presenter.sink.chunks == []
    presenter.tail_stopped.assert_called_once_with(WEB)
    presenter.set_context.assert_called_with("Tail stopped: web1")


@pytest.mark.asyncio
async def test_refresh_relists_current_folder(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """refresh lists the folder again without touching the tail."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)

    coordinator.refresh()
    await run_until_idle(coordinator)

    assert remote.list_files.await_count == 2
    assert presenter.show_files.call_count == 2


@pytest.mark.asyncio
async def test_download_current(
    coordinator: SessionCoordinator, presenter: MagicMock, remote, tmp_path: Path
) -> None:
    """The selected file downloads in the background and reports its size."""
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)
    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    coordinator.download_current(str(tmp_path))
    await run_until_idle(coordinator)

    local_path = str(tmp_path / "a.log")
    assert remote.download_file.call_args.args[1:3] == ("/var/log/app/a.log", local_path)
    presenter.download_complete.assert_called_once_with(local_path, "2.0K")


@pytest.mark.asyncio
async def test_auto_select_picks_file(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """auto_select chooses server and file by case-insensitive name."""
    assert coordinator.auto_select("WEB1", file_name="B.LOG")
    await run_until_idle(coordinator)
    await run_until_idle(coordinator)

    presenter.tail_started.assert_called_once_with(WEB, "/var/log/app/b.log")


@pytest.mark.asyncio
async def test_auto_select_folder(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """auto_select picks a folder by path on multi-folder servers."""
    assert coordinator.auto_select("db1", folder_path="/var/log")
    await run_until_idle(coordinator)

    presenter.show_files.assert_called_once_with(DB, DB.log_folders[1], FILES, True)


@pytest.mark.asyncio
async def test_auto_select_unknown_names(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """Unknown servers and folders are reported."""
    assert not coordinator.auto_select("nope")
    presenter.show_error.assert_called_with("Server 'nope' not found")

    assert not coordinator.auto_select("db1", folder_path="/missing")
    presenter.show_error.assert_called_with("Folder '/missing' not found on db1")


@pytest.mark.asyncio
async def test_auto_select_missing_file(
    coordinator: SessionCoordinator, presenter: MagicMock, remote
) -> None:
    """A file that isn't in the listing is reported."""
    coordinator.auto_select("web1", file_name="missing.log")
    await run_until_idle(coordinator)

    presenter.show_error.assert_called_once_with("File 'missing.log' not found")
    remote.read_file_content.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_is_bounded_with_hung_tail(
    coordinator: SessionCoordinator, pool: FakePool, remote
) -> None:
    """Shutdown finishes even if the tail never stops."""
    remote.tailer.wait_stopped = AsyncMock(side_effect=hang)
    coordinator.select_server(WEB)
    await run_until_idle(coordinator)
    coordinator.select_file(FILES[0])
    await run_until_idle(coordinator)

    await asyncio.wait_for(coordinator.shutdown(), timeout=1)

    remote.tailer.request_stop.assert_called_once()
    pool.close_all.assert_awaited_once()
    assert coordinator.dispatcher.closed


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_connect(
    coordinator: SessionCoordinator, presenter: MagicMock, pool: FakePool, remote
) -> None:
    """Shutdown cancels an in-flight connect and later intents do nothing."""
    pool.get_client.side_effect = hang
    coordinator.select_server(WEB)
    await settle()

    await asyncio.wait_for(coordinator.shutdown(), timeout=1)

    assert not coordinator.connecting
    presenter.show_connect_error.assert_not_called()

    coordinator.select_server(OTHER)
    await settle()
    assert pool.get_client.await_count == 1
