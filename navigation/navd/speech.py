import sys
import asyncio
import logging
import shutil

from navigation.navd.interfaces import SpeechPort


def default_tts_command() -> list[str]:
  if sys.platform == 'darwin':
    return ['say']
  return ['espeak']


class SubprocessSpeech(SpeechPort):
  """Speaks through a command line TTS program (`say` on macOS, `espeak` elsewhere)."""

  def __init__(self, command: list[str] | None = None, rate: int | None = None):
    self.command = command or default_tts_command()
    self.rate = rate
    self._process: asyncio.subprocess.Process | None = None
    if shutil.which(self.command[0]) is None:
      logging.warning(f"TTS command {self.command[0]!r} not found, announcements will fail")

  async def speak(self, text: str) -> None:
    args = list(self.command)
    if self.rate is not None:
      args += ['-r', str(self.rate)]
    self._process = await asyncio.create_subprocess_exec(*args, text, stdout=asyncio.subprocess.DEVNULL,
                                                         stderr=asyncio.subprocess.PIPE)
    try:
      _, stderr = await self._process.communicate()
    finally:
      process, self._process = self._process, None
    # negative return codes mean we terminated it in cancel()
    if process.returncode and process.returncode > 0:
      raise RuntimeError(f"{self.command[0]} exited with {process.returncode}: {stderr.decode(errors='replace').strip()}")

  def cancel(self) -> None:
    if self._process is not None and self._process.returncode is None:
      self._process.terminate()
