"""
Git source control client.

Works on a local checkout of the configured repository using the git
command line. Blocking git and file system calls run in a worker thread.
"""

import asyncio
import fnmatch
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from ..config.loader import SourceCodeConfig
from ..core.errors import SourceControlError, SourceFileNotFoundError
from ..core.models import SourceFile

logger = logging.getLogger(__name__)

BOT_NAME = "AutoIssueResolver Bot"
BOT_EMAIL = "robot@git.com"
EXCLUDED_DIRECTORIES = {"bin", "obj"}
EXCLUDED_MARKERS = ("UnitTests", "IntegrationTests")


def run_git_command(args: List[str], cwd: Optional[str] = None, timeout: Optional[int] = None) -> str:
    """Run a git command and return its output.

    Raises:
        SourceControlError: If git is missing or the command fails
    """
    cmd = ["git"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise SourceControlError(f"git {args[0]} timed out after {timeout}s")
    except FileNotFoundError:
        raise SourceControlError("git command not found")
    if result.returncode != 0:
        raise SourceControlError(f"git {args[0]} failed: {result.stderr.strip()}")
    return result.stdout


def with_credentials(repository: str, username: Optional[str], password: Optional[str]) -> str:
    """Embed credentials into an https repository URL."""
    parts = urlsplit(repository)
    if not username or parts.scheme not in ("http", "https"):
        return repository
    userinfo = quote(username, safe="")
    if password:
        userinfo += ":" + quote(password, safe="")
    netloc = f"{userinfo}@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class GitConnector:
    """Source control operations on the local checkout."""

    def __init__(self, config: SourceCodeConfig):
        self.config = config
        self.local_path = Path(config.local_path)

    def _git(self, *args: str) -> str:
        return run_git_command(list(args), cwd=str(self.local_path))

    def _resolve(self, file_path: str) -> Optional[Path]:
        """Absolute path of a repository file, None if it lies outside the checkout."""
        root = self.local_path.resolve()
        candidate = (root / file_path).resolve()
        if candidate != root and root not in candidate.parents:
            return None
        return candidate

    async def clone_repository(self) -> None:
        """Clone the configured branch into a fresh local checkout."""
        logger.info(
            "Cloning repository %s (branch: %s) to %s",
            self.config.repository, self.config.branch, self.local_path
        )
        await asyncio.to_thread(self._clone)
        logger.info("Repository cloned and configured at %s", self.local_path)

    def _clone(self) -> None:
        if self.local_path.exists():
            shutil.rmtree(self.local_path)
        credentials = self.config.credentials
        url = with_credentials(self.config.repository, credentials.username, credentials.password)
        args = ["clone", "--branch", self.config.branch, url, str(self.local_path)]
        try:
            run_git_command(args)
        except SourceControlError as exc:
            # stderr may echo the url
            if credentials.password:
                raise SourceControlError(str(exc).replace(credentials.password, "***")) from None
            raise
        self._git("config", "user.name", BOT_NAME)
        self._git("config", "user.email", BOT_EMAIL)

    async def create_branch(self, name: str) -> None:
        logger.info("Creating and checking out new branch %s", name)
        await asyncio.to_thread(self._git, "checkout", "-b", name)

    async def commit_changes(self, message: str) -> None:
        logger.info("Committing changes with message: %s", message)
        await asyncio.to_thread(self._commit, message)

    def _commit(self, message: str) -> None:
        self._git("add", "-A")
        self._git("commit", "-m", message)

    async def push_changes(self) -> None:
        logger.info("Pushing changes to remote repository")
        await asyncio.to_thread(self._git, "push", "-u", "origin", "HEAD")
        logger.info("Changes pushed to remote repository")

    async def file_exists(self, file_path: str) -> bool:
        path = self._resolve(file_path)
        return path is not None and path.is_file()

    async def get_file_content(self, file_path: str) -> str:
        """Read a repository file.

        Raises:
            SourceFileNotFoundError: If the file does not exist
        """
        path = self._resolve(file_path)
        if path is None or not path.is_file():
            raise SourceFileNotFoundError(f"File {file_path} does not exist")
        return await asyncio.to_thread(path.read_text, encoding="utf-8")

    async def update_file_content(self, file_path: str, content: str) -> None:
        """Overwrite an existing repository file.

        Raises:
            SourceFileNotFoundError: If the file does not exist
        """
        path = self._resolve(file_path)
        if path is None or not path.is_file():
            logger.error("File %s does not exist", file_path)
            raise SourceFileNotFoundError(f"File {file_path} does not exist")
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        logger.info("File %s updated", file_path)

    async def get_all_files(self, extension_filter: str = "*.cs", folder_filter: Optional[str] = None) -> List[SourceFile]:
        """Get all source files matching a file name pattern.

        Build output, hidden paths and test projects are skipped.

        Args:
            extension_filter: Glob the file name has to match
            folder_filter: Text the relative path has to contain

        Returns:
            Source files ordered by path
        """
        files = await asyncio.to_thread(self._collect_files, extension_filter, folder_filter)
        logger.info("Found %d file(s) matching %s", len(files), extension_filter)
        return files

    def _collect_files(self, extension_filter: str, folder_filter: Optional[str]) -> List[SourceFile]:
        files = []
        for directory, dirnames, filenames in os.walk(self.local_path):
            dirnames[:] = [
                name for name in dirnames
                if name not in EXCLUDED_DIRECTORIES and not name.startswith(".")
            ]
            for filename in filenames:
                if filename.startswith(".") or not fnmatch.fnmatch(filename, extension_filter):
                    continue
                relative_path = Path(directory, filename).relative_to(self.local_path).as_posix()
                if any(marker in relative_path for marker in EXCLUDED_MARKERS):
                    continue
                if folder_filter and folder_filter not in relative_path:
                    continue
                try:
                    content = Path(directory, filename).read_text(encoding="utf-8", errors="replace")
                except OSError as exc:
                    logger.warning("Skipping unreadable file %s: %s", relative_path, exc)
                    continue
                files.append(SourceFile(relative_path, content))
        files.sort(key=lambda item: item.file_path)
        return files
