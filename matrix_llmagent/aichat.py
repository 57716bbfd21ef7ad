"""Language backend running prompts through the aichat command line tool."""

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from .errors import BackendExecutionFailed

logger = logging.getLogger(__name__)


class AiChat:
    """Async wrapper around the ``aichat`` binary.

    Each call spawns a fresh process; ``config_dir`` selects an aichat
    configuration so several bot instances can use different providers.
    """

    def __init__(self, binary: str = "aichat", config_dir: str | None = None):
        self.binary = binary
        self.config_dir = config_dir

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.config_dir:
            env["AICHAT_CONFIG_DIR"] = str(Path(self.config_dir).expanduser())
        return env

    async def _run(self, *args: str) -> tuple[int, str, str]:
        logger.debug(f"Running {self.binary} {' '.join(args[:4])}...")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env(),
            )
        except OSError as e:
            raise BackendExecutionFailed(f"Could not start {self.binary}: {e}") from e
        stdout, stderr = await proc.communicate()
        return (
            proc.returncode or 0,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def execute(
        self, model: str | None, prompt: str, media: Sequence[Path] = ()
    ) -> str:
        """Run a prompt and return the generated text.

        Args:
            model: Model to use, None for aichat's configured default
            prompt: Full prompt text
            media: Files attached to the prompt, oldest first

        Raises:
            BackendExecutionFailed: aichat exited with an error
        """
        args = ["--no-stream"]
        if model:
            args += ["--model", model]
        for path in media:
            args += ["--file", str(path)]
        args += ["--", prompt]

        returncode, stdout, stderr = await self._run(*args)
        if returncode != 0:
            raise BackendExecutionFailed(stderr.strip() or stdout.strip() or f"exit code {returncode}")
        return stdout.strip()

    async def list_models(self) -> list[str]:
        """List the models aichat knows about; empty if it cannot be queried."""
        try:
            returncode, stdout, stderr = await self._run("--list-models")
        except BackendExecutionFailed as e:
            logger.error(f"Error listing models: {e}")
            return []
        if returncode != 0:
            logger.error(f"Error listing models: {stderr.strip()}")
            return []
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def default_model(self) -> str:
        """Get the model aichat uses when none is given."""
        try:
            returncode, stdout, _ = await self._run("--info")
        except BackendExecutionFailed as e:
            logger.error(f"Error reading aichat info: {e}")
            return "unknown"
        if returncode == 0:
            for line in stdout.splitlines():
                key, _, value = line.partition(" ")
                if key == "model" and value.strip():
                    return value.strip()
        return "unknown"
