import os
import json
import base64
from pathlib import Path

import yaml

DEFAULTS_PATH = Path(__file__).with_name('params_defaults.yaml')


class Params:
  """File-backed settings store, one file per key, with YAML defaults."""

  def __init__(self, params_dir=None, defaults_path=DEFAULTS_PATH):
    if params_dir is None:
      params_dir = os.environ.get('NAVD_PARAMS_DIR', '~/.navd/params')
    self.params_dir = Path(os.path.expanduser(str(params_dir)))
    self.params_dir.mkdir(parents=True, exist_ok=True)

    with Path(defaults_path).open() as f:
      self.defaults: dict = yaml.safe_load(f) or {}

  def __decode_value(self, value, encoding):
    if encoding == 'bytes':
      return base64.b64decode(value)
    elif encoding == 'utf8':
      return value
    try:
      return json.loads(value)
    except ValueError:
      return value

  def _get_default(self, key):
    decoded = self.defaults.get(key)
    if key == 'MapboxToken' and decoded is None:
      return ''
    return decoded

  def get(self, key, encoding=None, return_default=True):
    if key == 'MapboxToken':
      if os.environ.get('CI') == 'true':
        return os.environ.get('MAPBOX_TOKEN_CI', '')

    file_path = self.params_dir / key
    if file_path.exists():
      try:
        value = file_path.read_text().strip()
        return self.__decode_value(value, encoding)
      except (OSError, ValueError):
        pass

    return self._get_default(key) if return_default else None

  def get_bool(self, key) -> bool:
    value = self.get(key)
    if isinstance(value, str):
      return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)

  def put(self, key, value):
    file_path = self.params_dir / key
    with file_path.open('w') as f:
      if isinstance(value, bytes):
        f.write(base64.b64encode(value).decode('utf-8'))
      elif isinstance(value, str):
        f.write(value)
      else:
        f.write(json.dumps(value))

  def remove(self, key):
    file_path = self.params_dir / key
    if file_path.exists():
      file_path.unlink()
