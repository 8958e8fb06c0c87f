"""Transfer commands for the dmanager CLI.

Commands:
- upload: Upload a file, a folder (as archive) or a URL
- download: Download a file by id or by name
"""

from __future__ import annotations

import contextlib
import signal
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any, NoReturn

import click

from datamanager.client.cli.config import (
    CLIConfigError,
    get_keystore,
    get_namespace,
    get_server_config,
    load_config,
)
from datamanager.client.keystore import KeyStoreError, KeyUnavailableError
from datamanager.core.cancel import CancellationToken
from datamanager.core.errors import DataManagerError, TransferCancelled
from datamanager.core.types import CipherType, DownloadState


class TransferProgress:
    """Progress bar fed by the pipeline's proxies.

    No bar is drawn when disabled or when the size is unknown.
    """

    def __init__(self, label: str, enabled: bool = True) -> None:
        self._label = label
        self._enabled = enabled
        self._bar: Any = None
        self.transferred = 0

    def start(self, size: int | None) -> None:
        if self._enabled and size:
            self._bar = click.progressbar(length=size, label=self._label, file=sys.stderr)
            self._bar.render_progress()

    def update(self, n: int) -> None:
        self.transferred += n
        if self._bar is not None:
            self._bar.update(n)

    def finish(self) -> None:
        if self._bar is not None:
            self._bar.render_finish()
            self._bar = None


@contextlib.contextmanager
def cancel_on_interrupt(cancel: CancellationToken) -> Iterator[CancellationToken]:
    """Turn the first Ctrl-C into a cancellation of the transfer.

    A second Ctrl-C interrupts immediately.
    """

    def handler(signum: int, frame: Any) -> None:
        if cancel.cancelled:
            raise KeyboardInterrupt
        click.echo("\nCancelling...", err=True)
        cancel.cancel()

    try:
        previous = signal.signal(signal.SIGINT, handler)
    except ValueError:
        # not in the main thread
        yield cancel
        return
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _fail(message: str, code: int = 1) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def _is_url(path: str) -> bool:
    return "://" in path


@click.command()
@click.argument("path")
@click.option("--name", "-n", help="Remote file name (defaults to the local name).")
@click.option("--namespace", "-N", help="Target namespace.")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag to attach (repeatable).")
@click.option("--group", "-g", "groups", multiple=True, help="Group to attach (repeatable).")
@click.option("--public", is_flag=True, help="Publish the file.")
@click.option("--public-name", default="", help="Public name of a published file.")
@click.option("--replace", "replace_id", type=int, default=0, help="Replace the file with this id.")
@click.option("--compress", "-z", is_flag=True, help="Gzip the file before upload.")
@click.option(
    "--encrypt", "-e",
    type=click.Choice(["aes", "age"], case_sensitive=False),
    help="Encrypt the file.",
)
@click.option(
    "--key", "-k", "key_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Key file to encrypt with.",
)
@click.option("--gen-key", is_flag=True, help="Generate a new key for this upload.")
@click.option("--buffer-size", type=int, default=0, help="Chunk size in bytes.")
@click.option("--multipart", is_flag=True, help="Send the file as multipart form data.")
@click.option("--no-progress", is_flag=True, help="Disable the progress bar.")
def upload(
    path: str,
    name: str | None,
    namespace: str | None,
    tags: tuple[str, ...],
    groups: tuple[str, ...],
    public: bool,
    public_name: str,
    replace_id: int,
    compress: bool,
    encrypt: str | None,
    key_file: Path | None,
    gen_key: bool,
    buffer_size: int,
    multipart: bool,
    no_progress: bool,
) -> None:
    """Upload PATH: a file, a folder (sent as tar archive) or a http(s) URL."""
    from datamanager.client.api import HTTPClient
    from datamanager.core.crypto import generate_key
    from datamanager.transfer import FileUploader, ProgressWriter, UploadDescriptor

    config = load_config()
    try:
        server_config = get_server_config(config)
    except CLIConfigError as e:
        _fail(str(e))

    cipher = CipherType.NONE
    key: bytes | None = None
    if encrypt:
        cipher = CipherType[encrypt.upper()]
        if key_file is not None:
            key = key_file.read_bytes()
        elif gen_key:
            key = generate_key(cipher)
        else:
            _fail("--encrypt needs --key or --gen-key")
    elif key_file is not None or gen_key:
        _fail("--key and --gen-key need --encrypt")

    progress = TransferProgress("Uploading", enabled=not no_progress)
    descriptor = UploadDescriptor(
        name=name or "",
        namespace=get_namespace(config, namespace),
        cipher=cipher,
        key=key,
        compressed=compress,
        buffer_size=buffer_size,
        tags=tags,
        groups=groups,
        public=public,
        public_name=public_name,
        replace_file_id=replace_id,
        multipart=multipart,
        writer_proxy=lambda writer: ProgressWriter(writer, progress.update),
    )

    cancel = CancellationToken()
    with HTTPClient(server_config) as client:
        uploader = FileUploader(client)
        try:
            if _is_url(path):
                response = uploader.upload_url(path, descriptor)
                click.echo(f"Uploaded {path} as '{response.filename}' (id {response.file_id})")
                return
            local_path = Path(path)
            if not local_path.exists():
                _fail(f"No such file or directory: {path}")
            with cancel_on_interrupt(cancel):
                if local_path.is_dir():
                    result = uploader.upload_archived_folder(
                        local_path, descriptor, cancel, on_size=progress.start
                    )
                else:
                    result = uploader.upload_file(
                        local_path, descriptor, cancel, on_size=progress.start
                    )
        except TransferCancelled:
            progress.finish()
            _fail("Upload cancelled", code=130)
        except DataManagerError as e:
            progress.finish()
            _fail(str(e))
        progress.finish()

    click.echo(
        f"Uploaded '{result.response.filename}' (id {result.file_id}, "
        f"checksum {result.checksum})"
    )
    if result.response.public_filename:
        click.echo(f"Public name: {result.response.public_filename}")
    if gen_key and key is not None:
        _store_generated_key(config, result.file_id, key)


def _store_generated_key(config: dict[str, Any], file_id: int, key: bytes) -> None:
    keystore = get_keystore(config)
    if keystore is None:
        key_path = Path.cwd() / f"{file_id}.key"
        key_path.write_bytes(key)
        key_path.chmod(0o600)
        click.echo(f"Key saved to {key_path}")
        return
    try:
        with keystore:
            key_path = keystore.save_key(file_id, key)
    except KeyStoreError as e:
        _fail(f"Couldn't store key: {e}")
    click.echo(f"Key stored in keystore: {key_path}")


def _keystore_key(config: dict[str, Any], file_id: int) -> bytes | None:
    keystore = get_keystore(config)
    if keystore is None or not file_id:
        return None
    try:
        with keystore:
            return keystore.get_key(file_id)
    except KeyUnavailableError:
        return None


@click.command()
@click.argument("file_id", type=int, required=False, default=0)
@click.option("--name", "-n", default="", help="Download by file name.")
@click.option("--namespace", "-N", help="Namespace of the file.")
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    help="Target file or folder (defaults to the current folder).",
)
@click.option(
    "--key", "-k", "key_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Key file to decrypt with.",
)
@click.option("--no-decrypt", is_flag=True, help="Save the file as stored on the server.")
@click.option("--extract", "-x", is_flag=True, help="Gunzip a file uploaded compressed.")
@click.option("--ignore-checksum", is_flag=True, help="Skip checksum verification.")
@click.option("--buffer-size", type=int, default=0, help="Chunk size in bytes.")
@click.option("--no-progress", is_flag=True, help="Disable the progress bar.")
def download(
    file_id: int,
    name: str,
    namespace: str | None,
    output: Path | None,
    key_file: Path | None,
    no_decrypt: bool,
    extract: bool,
    ignore_checksum: bool,
    buffer_size: int,
    no_progress: bool,
) -> None:
    """Download the file FILE_ID (or --name) from the server."""
    from datamanager.client.api import HTTPClient
    from datamanager.transfer import DownloadDescriptor, FileDownloader, ProgressReader

    if not file_id and not name:
        _fail("Give a file id or --name")

    config = load_config()
    try:
        server_config = get_server_config(config)
    except CLIConfigError as e:
        _fail(str(e))

    progress = TransferProgress("Downloading", enabled=not no_progress)
    descriptor = DownloadDescriptor(
        name=name,
        file_id=file_id,
        namespace=get_namespace(config, namespace),
        buffer_size=buffer_size,
        extract=extract,
        ignore_checksum=ignore_checksum,
        reader_proxy=lambda reader: ProgressReader(reader, progress.update),
    )

    output = output if output is not None else Path.cwd()
    cancel = CancellationToken()
    with HTTPClient(server_config) as client:
        downloader = FileDownloader(client)
        try:
            with downloader.request(descriptor) as response:
                if no_decrypt:
                    response.no_decrypt()
                elif response.encryption:
                    if key_file is not None:
                        key = key_file.read_bytes()
                    else:
                        key = _keystore_key(config, response.file_id)
                    if key is not None:
                        response.decrypt_with(key)
                if output.is_dir():
                    target = output / Path(response.server_filename).name
                else:
                    target = output
                progress.start(response.size or None)
                with cancel_on_interrupt(cancel):
                    response.write_to_file(target, cancel=cancel)
                state = response.state
        except TransferCancelled:
            progress.finish()
            _fail("Download cancelled", code=130)
        except DataManagerError as e:
            progress.finish()
            _fail(str(e))
        progress.finish()

    click.echo(f"Downloaded '{response.server_filename}' to {target}")
    if state == DownloadState.UNVERIFIED:
        click.echo("Checksum not verified", err=True)
