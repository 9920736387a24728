import time
import logging
import multiprocessing
import importlib
import signal
import sys

from setproctitle import setproctitle

multiprocessing.set_start_method('spawn', force=True)


def python_process_launcher(name, module_name):
  setproctitle(name)
  module = importlib.import_module(module_name)
  module.main()


class PythonProcess:
  def __init__(self, name, module):
    self.name = name
    self.module = module
    self.process = None
    self.restarts = 0

  def start(self):
    self.process = multiprocessing.Process(target=python_process_launcher, args=(self.name, self.module), name=self.name)
    self.process.start()

  def stop(self, timeout=1.0):
    if self.process and self.process.is_alive():
      self.process.terminate()
      self.process.join(timeout=timeout)

  def is_alive(self):
    return self.process.is_alive() if self.process else False


processes = [
  PythonProcess("navigationd", "navigation.navigationd"),
  PythonProcess("livelocationd", "navigation.debug.livelocationd"),
]


def ensure_running(procs):
  """Restart anything that was started and has since exited."""
  restarted = []
  for process in procs:
    if process.process is not None and not process.is_alive():
      logging.warning(f"{process.name} exited with code {process.process.exitcode}, restarting")
      process.restarts += 1
      process.start()
      restarted.append(process.name)
  return restarted


def signal_handler(signum, frame):
  for process in processes:
    process.stop()
  sys.exit(0)


def main():
  for process in processes:
    process.start()

  signal.signal(signal.SIGTERM, signal_handler)
  signal.signal(signal.SIGINT, signal_handler)

  while True:
    ensure_running(processes)
    alive = [process.name for process in processes if process.is_alive()]
    not_alive = [process.name for process in processes if not process.is_alive()]
    print(f"Alive: {alive}, Not alive: {not_alive}")
    time.sleep(1)

if __name__ == "__main__":
  main()
