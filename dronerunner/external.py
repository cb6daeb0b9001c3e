import asyncio
import os
from typing import Dict, List, Optional

class ExternalProcess:
    """
    Child process started with `asyncio`. The child shares our stdin, stdout
    and stderr, so its output shows up as if it were our own.

    `env` entries are added on top of our own environment.
    """
    process: Optional[asyncio.subprocess.Process]=None

    def __init__(self, executable: str, params: List[str]=None, env: Dict[str, str]=None):
        self._executable = executable
        self._params = list(params) if params is not None else []
        self._env = env

    async def start(self):
        env = None
        if self._env is not None:
            env = dict(os.environ)
            env.update(self._env)
        self.process = await asyncio.create_subprocess_exec(
                self._executable, *self._params, env=env)

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def wait_until_terminated(self) -> int:
        """
        block until the process exits, and return its exit code
        """
        return await self.process.wait()

    def terminate(self):
        if self.running:
            self.process.terminate()
