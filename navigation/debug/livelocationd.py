import time
import logging
import math

import messaging.messenger as messenger
from common.ratekeeper import Ratekeeper
from navigation.common.constants import CV


class Livelocationd:
  '''Debug daemon to simulate live GPS updates.'''

  def __init__(self, speed_mph=25.0):
    self.pm = messenger.PubMaster('livelocationd')
    self.rk = Ratekeeper(1.0 / self.pm.rate_hz)

    # Initial coordinates set along a route navigating to a random house in CA that google picked: 580 Winchester Dr, Oxnard, CA.
    self.lat = 34.2299
    self.lon = -119.1733

    self.lat_increment = 0.0001
    self.lon_increment = -0.0001
    self.heading = math.degrees(math.atan2(self.lon_increment, self.lat_increment)) % 360
    self.speed = speed_mph / CV.MS_TO_MPH

  def new_message(self):
    msg = self.pm.new_message()
    msg.timestamp = int(time.time() * 1000)
    msg.latitude = self.lat
    msg.longitude = self.lon
    msg.accuracy = 5.0
    msg.heading = self.heading
    msg.hasHeading = True
    msg.speed = self.speed
    msg.hasSpeed = True
    msg.status = 'ok'
    return msg

  def run(self):
    logging.warning("livelocationd init")

    while True:
      self.pm.publish(self.new_message())

      self.lat += self.lat_increment
      self.lon += self.lon_increment

      self.rk.keep_time()


def main():
  loc = Livelocationd()
  loc.run()
