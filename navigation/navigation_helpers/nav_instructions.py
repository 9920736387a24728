import re

from navigation.common.constants import CV
from navigation.navd.helpers import compass_direction, signed_angle_difference, string_to_direction

MODIFIER_PHRASES = {
  'left': 'turn left',
  'right': 'turn right',
  'slight left': 'turn slightly left',
  'slight right': 'turn slightly right',
  'sharp left': 'make a sharp left',
  'sharp right': 'make a sharp right',
  'uturn': 'make a U-turn',
  'straight': 'continue straight',
}

IMMEDIATE_PHRASES = {
  'left': 'Turn left now',
  'right': 'Turn right now',
  'slight left': 'Slight left now',
  'slight right': 'Slight right now',
  'sharp left': 'Sharp left turn now',
  'sharp right': 'Sharp right turn now',
  'uturn': 'Make a U-turn',
  'straight': 'Continue straight',
}

_TAG_RE = re.compile(r'<[^>]*>')
_SPACE_RE = re.compile(r'\s+')


class NavigationInstructions:
  """Builds the spoken/visual text for navigation announcements."""

  def __init__(self, is_metric: bool = True, immediate_distance_m: float = 50.0):
    self.is_metric = is_metric
    self.immediate_distance_m = immediate_distance_m

  @staticmethod
  def clean_instruction(text: str) -> str:
    return _SPACE_RE.sub(' ', _TAG_RE.sub('', text or '')).strip()

  def format_distance(self, meters: float) -> str:
    if self.is_metric:
      if meters >= 1000:
        return f"{meters / 1000:.1f} kilometers"
      return f"{int(round(meters / 10) * 10)} meters"

    miles = meters * CV.METERS_TO_MILES
    if miles >= 0.1:
      return f"{miles:.1f} miles"
    return f"{int(round(meters * CV.METERS_TO_FEET / 50) * 50)} feet"

  def maneuver_phrase(self, maneuver: str, modifier: str) -> str:
    modifier = string_to_direction(modifier)
    side = 'left' if 'left' in modifier else 'right' if 'right' in modifier else None
    if maneuver == 'arrive':
      return 'you will arrive at your destination'
    if maneuver == 'merge':
      return 'merge'
    if maneuver == 'fork' and side:
      return f'keep {side}'
    if maneuver in ('roundabout', 'rotary') and side:
      return f'exit {side} at the roundabout'
    if maneuver in ('on ramp', 'off ramp') and side:
      return f'take the {side} ramp'
    return MODIFIER_PHRASES.get(modifier, '')

  def upcoming_maneuver(self, instruction: str, threshold_m: float, maneuver: str = '', modifier: str = 'none') -> str:
    cleaned = self.clean_instruction(instruction)
    if threshold_m <= self.immediate_distance_m:
      immediate = IMMEDIATE_PHRASES.get(string_to_direction(modifier)) if maneuver not in ('arrive', 'depart') else None
      return immediate or cleaned

    phrase = self.maneuver_phrase(maneuver, modifier) or (cleaned[:1].lower() + cleaned[1:])
    return f"In {self.format_distance(threshold_m)}, {phrase}"

  def arrival(self) -> str:
    return 'You have arrived at your destination'

  def better_route(self, savings_seconds: float) -> str:
    minutes = max(1, int(round(savings_seconds / 60)))
    return f"A faster route is available, saving about {minutes} minute{'s' if minutes != 1 else ''}."

  def alternative_route(self) -> str:
    return 'You are off route. A new route from your location is ready.'

  def rerouted(self) -> str:
    return 'Route updated.'

  def route_deviation(self, distance_m: float, duration_s: float, suggested_action: str) -> str:
    if suggested_action == 'recalculate':
      return f"You've been off route for {int(round(duration_s))} seconds. Recalculating a new route from your location."
    if suggested_action == 'alternative':
      return "You're off the main route. Looking for alternative paths from here."
    if distance_m < 20:
      return "You're slightly off route. Please return to the path."
    return f"You're {self.format_distance(distance_m)} off route. Please head back to the main path."

  def wrong_way(self, heading: float, expected_heading: float, count: int = 1) -> str:
    direction = compass_direction(expected_heading)
    if count <= 1:
      return f"You're heading in the wrong direction. Please {self.turn_direction(heading, expected_heading)} to get back on route."
    if count <= 3:
      if abs(signed_angle_difference(heading, expected_heading)) > 150:
        return f"You're going the opposite way! Please turn around and head {direction}."
      return f"Still wrong direction. {self.turn_direction(heading, expected_heading).capitalize()} towards {direction}."
    return f"Multiple wrong turns detected. Please stop safely and check your route, then head {direction}."

  def back_on_route(self) -> str:
    return "You're back on the correct route."

  def traffic_alert(self, description: str, delay_seconds: float) -> str:
    text = f"Traffic ahead: {self.clean_instruction(description)}."
    if delay_seconds >= 60:
      text += f" Expect about {int(round(delay_seconds / 60))} minutes of delay."
    return text

  @staticmethod
  def turn_direction(from_heading: float, to_heading: float) -> str:
    diff = signed_angle_difference(from_heading, to_heading)
    if abs(diff) < 15:
      return 'continue straight'
    if abs(diff) > 150:
      return 'turn around'
    side = 'right' if diff > 0 else 'left'
    if abs(diff) < 45:
      return f'turn slightly {side}'
    if abs(diff) < 135:
      return f'turn {side}'
    return f'turn sharp {side}'
